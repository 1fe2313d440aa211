from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

import httpx
import stripe

from src.infrastructure.database.repositories.audit_log_repository import AuditLogRepository

logger = logging.getLogger(__name__)

UPTIME_ENDPOINTS = (
    {"path": "/", "name": "Homepage"},
    {"path": "/health", "name": "Health Check"},
    {"path": "/analysis", "name": "AI Analysis", "method": "POST"},
    {"path": "/meals", "name": "Meals Dashboard"},
)

ERROR_RATE_ALERT = 10  # per 1000 audit entries
ERROR_RATE_CRITICAL = 50

ACTIONS = (
    "check_uptime",
    "check_api_health",
    "track_errors",
    "get_incidents",
    "get_metrics",
)


def calculate_severity(kind: str, details: dict[str, Any]) -> str:
    if kind == "uptime" and details.get("uptimePercentage", 100) < 50:
        return "critical"
    if kind == "errors" and details.get("errorRate", 0) > ERROR_RATE_CRITICAL:
        return "critical"
    if kind == "api" and (details.get("apis", {}).get("openai") or {}).get("status") == "down":
        return "critical"
    return "warning"


class MonitoringService:
    """Uptime, dependency health and error-rate checks with an in-process incident log."""

    def __init__(
        self,
        audit_logs: AuditLogRepository,
        supabase_check: Callable[[], Any] | None = None,
        http: httpx.Client | None = None,
    ) -> None:
        self.audit_logs = audit_logs
        self.supabase_check = supabase_check
        self._http = http
        self.base_url = os.getenv("MONITOR_BASE_URL", "http://localhost:8000").rstrip("/")
        self.slack_webhook = os.getenv("SLACK_WEBHOOK")
        self.alert_email = os.getenv("ALERT_EMAIL")
        self.incidents: list[dict[str, Any]] = []
        self.uptime_metrics: dict[str, dict[str, int]] = {}
        self.error_metrics: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(
                timeout=10.0, headers={"User-Agent": "MealAppeal-Monitor/1.0"}
            )
        return self._http

    def check_endpoint(self, endpoint: dict[str, str]) -> dict[str, Any]:
        start = time.perf_counter()
        result: dict[str, Any] = {"endpoint": endpoint["name"], "path": endpoint["path"]}
        try:
            response = self._client().request(
                endpoint.get("method", "GET"), f"{self.base_url}{endpoint['path']}"
            )
            result["status"] = "up" if 200 <= response.status_code < 400 else "down"
            result["statusCode"] = response.status_code
        except httpx.HTTPError as exc:
            result["status"] = "down"
            result["error"] = str(exc) or exc.__class__.__name__
        result["responseTime"] = int((time.perf_counter() - start) * 1000)
        result["timestamp"] = datetime.now(UTC).isoformat()
        return result

    def check_uptime(self) -> dict[str, Any]:
        checks = [self.check_endpoint(e) for e in UPTIME_ENDPOINTS]
        day = datetime.now(UTC).date().isoformat()
        with self._lock:
            for check in checks:
                metric = self.uptime_metrics.setdefault(
                    f"{check['endpoint']}-{day}", {"total": 0, "successful": 0}
                )
                metric["total"] += 1
                if check["status"] == "up":
                    metric["successful"] += 1
        up = sum(1 for c in checks if c["status"] == "up")
        results = {
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
            "overallStatus": "operational" if up == len(checks) else "degraded",
            "uptimePercentage": up / len(checks) * 100,
        }
        if results["overallStatus"] == "degraded":
            self.create_incident("uptime", results)
        return results

    def _check_openai(self) -> dict[str, Any]:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            return {"status": "down", "error": "OPENAI_API_KEY not configured"}
        try:
            response = self._client().get(
                "https://api.openai.com/v1/models", headers={"Authorization": f"Bearer {api_key}"}
            )
        except httpx.HTTPError as exc:
            return {"status": "down", "error": str(exc)}
        return {"status": "healthy" if response.is_success else "degraded", "statusCode": response.status_code}

    def _check_stripe(self) -> dict[str, Any]:
        api_key = os.getenv("STRIPE_SECRET_KEY")
        if not api_key:
            return {"status": "down", "error": "STRIPE_SECRET_KEY not configured"}
        start = time.perf_counter()
        try:
            stripe.Product.list(limit=1, api_key=api_key)
        except stripe.StripeError as exc:
            return {"status": "down", "error": str(exc)}
        return {"status": "healthy", "responseTime": int((time.perf_counter() - start) * 1000)}

    def _check_supabase(self) -> dict[str, Any]:
        if self.supabase_check is None:
            return {"status": "down", "error": "Supabase not configured"}
        start = time.perf_counter()
        try:
            self.supabase_check()
        except RuntimeError as exc:
            return {"status": "degraded", "error": str(exc)}
        return {"status": "healthy", "responseTime": int((time.perf_counter() - start) * 1000)}

    def check_api_health(self) -> dict[str, Any]:
        apis = {
            "openai": self._check_openai(),
            "stripe": self._check_stripe(),
            "supabase": self._check_supabase(),
        }
        health = {
            "timestamp": datetime.now(UTC).isoformat(),
            "apis": apis,
            "overallHealth": "healthy"
            if all(a["status"] == "healthy" for a in apis.values())
            else "degraded",
        }
        if health["overallHealth"] == "degraded":
            self.create_incident("api", health)
        return health

    def track_errors(self, now: datetime | None = None) -> dict[str, Any]:
        """Summarise the last 24 hours of `error` audit entries."""
        now = now or datetime.now(UTC)
        since = now - timedelta(hours=24)
        entries = self.audit_logs.list_since(since)
        errors = [e for e in entries if e.action == "error"]

        by_type: dict[str, int] = defaultdict(int)
        by_endpoint: dict[str, int] = defaultdict(int)
        critical = []
        for entry in errors:
            by_type[entry.details.get("type") or "unknown"] += 1
            by_endpoint[entry.details.get("endpoint") or "unknown"] += 1
            if entry.details.get("severity") == "critical":
                critical.append(
                    {"id": entry.id, "timestamp": entry.timestamp.isoformat(), "details": entry.details}
                )

        metrics = {
            "timestamp": now.isoformat(),
            "last24Hours": {
                "total": len(errors),
                "byType": dict(by_type),
                "byEndpoint": dict(by_endpoint),
                "criticalErrors": critical,
            },
            "errorRate": len(errors) / len(entries) * 1000 if entries else 0,
        }
        with self._lock:
            self.error_metrics[metrics["timestamp"]] = metrics
        if metrics["errorRate"] > ERROR_RATE_ALERT or critical:
            self.create_incident("errors", metrics)
        return metrics

    def create_incident(self, kind: str, details: dict[str, Any]) -> dict[str, Any]:
        incident = {
            "id": f"INC-{int(time.time() * 1000)}",
            "type": kind,
            "severity": calculate_severity(kind, details),
            "timestamp": datetime.now(UTC).isoformat(),
            "details": details,
            "status": "open",
            "alerts": [],
        }
        with self._lock:
            self.incidents.append(incident)
        logger.warning("Incident %s opened (%s, %s)", incident["id"], kind, incident["severity"])
        if incident["severity"] == "critical":
            self.send_alert(incident)
        return incident

    def send_alert(self, incident: dict[str, Any]) -> None:
        message = (
            f"MealAppeal Alert: {incident['severity'].upper()}\n"
            f"Type: {incident['type']}\n"
            f"Time: {incident['timestamp']}\n"
            f"Details: {json.dumps(incident['details'], indent=2, default=str)}"
        )
        if self.alert_email:
            logger.error("Alert for %s: %s", self.alert_email, message)
        else:
            logger.error("%s", message)
        if self.slack_webhook:
            try:
                self._client().post(self.slack_webhook, json={"text": message})
            except httpx.HTTPError as exc:
                logger.error("Failed to send Slack alert: %s", exc)
        incident["alerts"].append({"channel": "multiple", "sentAt": datetime.now(UTC).isoformat()})

    def get_incidents(self) -> list[dict[str, Any]]:
        with self._lock:
            return [i for i in self.incidents if i["status"] == "open"]

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "uptime": list(self.uptime_metrics.items()),
                "errors": list(self.error_metrics.items()),
            }

    def dispatch(self, action: str, request: dict[str, Any]) -> Any:
        """Run one named action; unknown names raise KeyError."""
        handlers: dict[str, Callable[[], Any]] = {
            "check_uptime": self.check_uptime,
            "check_api_health": self.check_api_health,
            "track_errors": self.track_errors,
            "get_incidents": self.get_incidents,
            "get_metrics": self.get_metrics,
        }
        return handlers[action]()
