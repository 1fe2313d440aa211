from __future__ import annotations

import hashlib
import logging
import os
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from supabase import Client, create_client

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class UserInfo:
    id: str
    email: str | None


def supabase_disabled() -> bool:
    return os.getenv("SUPABASE_DISABLED", "0") == "1"


class SupabaseAuthAdapter:
    """Small wrapper to validate Supabase access tokens.

    When SUPABASE_DISABLED=1, any token is accepted and mapped to a
    deterministic fake user. A token that looks like an email address
    becomes that user's email, which lets tests act as specific accounts.
    """

    def __init__(self) -> None:
        self.disabled = supabase_disabled()
        self.url = os.getenv("SUPABASE_URL")
        self.key = os.getenv("SUPABASE_ANON_KEY")
        self._client: Client | None = None
        if not self.disabled and self.url and self.key:
            self._client = create_client(self.url, self.key)

    def validate_token(self, token: str) -> UserInfo:
        if not token:
            raise ValueError("Missing access token")
        if self.disabled or not self._client:
            fake_id = "fake-" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
            return UserInfo(id=fake_id, email=token if "@" in token else None)
        try:  # pragma: no cover - network
            res = self._client.auth.get_user(token)
            user = res.user if res else None
        except Exception as exc:  # pragma: no cover - network
            raise ValueError(f"Invalid access token: {exc}") from exc
        if not user:
            raise ValueError("Invalid access token")
        return UserInfo(id=user.id, email=user.email)


_CLIENT_SINGLETON: Client | None = None


def get_supabase_client() -> Client | None:
    """Server-side client, preferring the service role key over the anon key."""
    global _CLIENT_SINGLETON
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")
    if supabase_disabled() or not url or not key:
        return None
    if _CLIENT_SINGLETON is None:
        _CLIENT_SINGLETON = create_client(url, key)
        logger.info("Supabase client initialized (service key: %s)", bool(os.getenv("SUPABASE_SERVICE_ROLE_KEY")))
    return _CLIENT_SINGLETON


def with_retry(
    operation: Callable[[], T],
    context: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> T:
    """Run `operation`, retrying with exponential backoff and jitter.

    Attempt n waits base_delay * 2**(n-1) plus up to base_delay of jitter
    before the next try. The last error is re-raised once attempts run out.
    """
    last_error: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            return operation()
        except Exception as exc:
            last_error = exc
            if attempt == max_retries:
                break
            delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay)
            logger.warning(
                "%s failed (attempt %s/%s), retrying in %.2fs: %s",
                context,
                attempt,
                max_retries,
                delay,
                exc,
            )
            time.sleep(delay)
    logger.error("%s failed after %s attempts: %s", context, max_retries, last_error)
    assert last_error is not None
    raise last_error
