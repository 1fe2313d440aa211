from datetime import UTC, datetime
from unittest.mock import MagicMock

import httpx
import pytest

from src.infrastructure.database.repositories.audit_log_repository import AuditLogRepository
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.notification_settings_repository import (
    NotificationSettingsRepository,
)
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.ops.backup_service import BackupService
from src.infrastructure.ops.monitoring_service import MonitoringService, calculate_severity


@pytest.fixture()
def tables() -> dict:
    return {
        "profiles": ProfileRepository(None),
        "meals": MealRepository(None),
        "audit_logs": AuditLogRepository(None),
        "notification_settings": NotificationSettingsRepository(None),
    }


@pytest.fixture()
def backups(tables, tmp_path) -> BackupService:
    return BackupService(tables, backup_dir=tmp_path)


def test_backup_and_replace_restore(tables, backups):
    tables["profiles"].ensure("u1", "u1@example.com")
    tables["profiles"].update("u1", subscription_tier="premium_monthly")
    tables["audit_logs"].record("analysis", "u1", {"meal_id": "m1"})

    created = backups.create_backup("manual")
    assert created["success"]
    assert created["recordCount"] == 2
    assert [b["id"] for b in backups.list_backups()] == [created["backupId"]]

    tables["profiles"].ensure("u2", None)
    tables["profiles"].update("u1", subscription_tier="free")

    dry = backups.restore_backup(created["backupId"], {"dry_run": True})
    assert dry["dryRun"]
    assert {"name": "profiles", "records": 1} in dry["backup"]["tables"]
    assert tables["profiles"].get("u2") is not None

    restored = backups.restore_backup(created["backupId"], {"mode": "replace", "tables": ["profiles"]})
    assert restored["results"] == {"profiles": {"success": True, "recordsRestored": 1}}
    assert tables["profiles"].get("u2") is None
    profile = tables["profiles"].get("u1")
    assert profile.subscription_tier == "premium_monthly"
    assert isinstance(profile.created_at, datetime)


@pytest.mark.parametrize("backup_id", ["backup-missing", "../etc/passwd", ""])
def test_restore_unknown_backup_fails_cleanly(backups, backup_id):
    result = backups.restore_backup(backup_id)
    assert result["success"] is False
    assert result["error"]


def test_old_backups_are_pruned(backups):
    created = backups.create_backup()
    far_future = datetime(2100, 1, 1, tzinfo=UTC).timestamp()
    assert backups.clean_old_backups(now=far_future) == [f"{created['backupId']}.json.gz"]
    assert backups.list_backups() == []


def test_sql_actions_need_database_url(backups):
    assert "DATABASE_URL" in backups.monitor_storage()["error"]
    assert "DATABASE_URL" in backups.monitor_performance()["error"]
    failed = backups.track_migration({"id": "001", "sql": "SELECT 1"})
    assert failed["migration"]["status"] == "failed"


def test_migration_tracking_and_rollback(tables, tmp_path):
    pg = MagicMock(enabled=True)
    service = BackupService(tables, postgres=pg, backup_dir=tmp_path)

    applied = service.dispatch(
        "track_migration",
        {"migration": {"id": "002", "name": "add index", "sql": "CREATE INDEX x", "rollback": "DROP INDEX x"}},
    )
    assert applied["success"]
    pg.execute_script.assert_called_with("CREATE INDEX x")

    rolled = service.dispatch("rollback_migration", {"migrationId": "002"})
    assert rolled["migration"]["status"] == "rolled_back"
    assert "rollback" not in rolled["migration"]
    pg.execute_script.assert_called_with("DROP INDEX x")

    assert not service.rollback_migration("999")["success"]


def test_storage_growth_is_reported(tables, tmp_path):
    pg = MagicMock(enabled=True)
    pg.execute_one.side_effect = [{"size": 1000}, {"size": 1500}]
    pg.execute_many.return_value = []
    service = BackupService(tables, postgres=pg, backup_dir=tmp_path)

    assert service.monitor_storage()["growth"] == {}
    assert service.monitor_storage()["growth"] == {"bytes": 500, "percentage": 50.0}


def test_disaster_recovery_drill(backups):
    report = backups.dispatch("test_disaster_recovery", {})
    assert report["status"] == "healthy"
    assert [t["name"] for t in report["tests"]] == [
        "Backup Creation",
        "Backup Restoration (Dry Run)",
        "Database Connectivity",
    ]


def test_dispatch_rejects_unknown_actions(backups):
    with pytest.raises(KeyError):
        backups.dispatch("drop_everything", {})


def test_severity_rules():
    assert calculate_severity("uptime", {"uptimePercentage": 25}) == "critical"
    assert calculate_severity("uptime", {"uptimePercentage": 75}) == "warning"
    assert calculate_severity("errors", {"errorRate": 51}) == "critical"
    assert calculate_severity("api", {"apis": {"openai": {"status": "down"}}}) == "critical"


def test_track_errors_opens_incident_for_critical_entries():
    audit = AuditLogRepository(None)
    audit.record("analysis", "u1")
    audit.record("error", "u1", {"type": "database", "endpoint": "/analysis", "severity": "critical"})
    monitor = MonitoringService(audit)

    metrics = monitor.track_errors()

    summary = metrics["last24Hours"]
    assert summary["total"] == 1
    assert summary["byType"] == {"database": 1}
    assert len(summary["criticalErrors"]) == 1
    assert metrics["errorRate"] == 500
    incidents = monitor.get_incidents()
    assert incidents[0]["type"] == "errors"
    assert incidents[0]["severity"] == "critical"
    assert incidents[0]["alerts"]


def test_uptime_check_records_metrics_and_incidents():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500 if request.url.path == "/analysis" else 200)

    monitor = MonitoringService(AuditLogRepository(None), http=httpx.Client(transport=httpx.MockTransport(handler)))
    result = monitor.dispatch("check_uptime", {})

    assert result["overallStatus"] == "degraded"
    assert result["uptimePercentage"] == 75
    assert monitor.get_incidents()[0]["severity"] == "warning"
    assert len(monitor.get_metrics()["uptime"]) == 4


def test_api_health_without_credentials(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    ping = MagicMock(side_effect=RuntimeError("db down"))
    monitor = MonitoringService(AuditLogRepository(None), supabase_check=ping)

    health = monitor.check_api_health()

    assert health["overallHealth"] == "degraded"
    assert health["apis"]["openai"]["status"] == "down"
    assert health["apis"]["supabase"] == {"status": "degraded", "error": "db down"}
    assert monitor.get_incidents()[0]["severity"] == "critical"
