from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class AuditLogEntity:
    id: str
    action: str  # e.g. "error", "analysis", "webhook"
    timestamp: datetime
    user_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
