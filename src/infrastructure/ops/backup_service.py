"""Database backup, restore and migration tooling.

Backups are gzip-compressed JSON snapshots of the application tables written
to BACKUP_DIR. Migrations and size statistics need raw SQL and therefore a
DATABASE_URL; without it those actions report an error instead of running.
"""
from __future__ import annotations

import gzip
import json
import logging
import os
import re
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import psycopg2

from src.infrastructure.database.postgres_client import PostgresClient

logger = logging.getLogger(__name__)

BACKUP_TABLES = ("profiles", "meals", "audit_logs", "notification_settings")
BACKUP_RETENTION_DAYS = 30
BACKUP_FORMAT_VERSION = "1.0"
SLOW_QUERY_THRESHOLD_MS = 1000
CRITICAL_QUERY_MS = 5000
DB_SIZE_WARNING_BYTES = int(0.8 * 1024**3)

_BACKUP_ID_RE = re.compile(r"^backup-[A-Za-z0-9_-]+$")

ACTIONS = (
    "create_backup",
    "restore_backup",
    "track_migration",
    "rollback_migration",
    "monitor_performance",
    "test_disaster_recovery",
    "monitor_storage",
    "list_backups",
)


class TableStore(Protocol):
    def export_rows(self) -> list[dict[str, Any]]: ...

    def import_rows(self, rows: list[dict[str, Any]], replace_existing: bool = False) -> int: ...


class BackupService:
    def __init__(
        self,
        tables: dict[str, TableStore],
        postgres: PostgresClient | None = None,
        backup_dir: str | Path | None = None,
    ) -> None:
        self.tables = tables
        self.postgres = postgres
        self.backup_dir = Path(backup_dir or os.getenv("BACKUP_DIR", "backups"))
        self._migrations: dict[str, dict[str, Any]] = {}
        self._last_db_size: int | None = None

    def _path_for(self, backup_id: str) -> Path:
        if not _BACKUP_ID_RE.match(backup_id or ""):
            raise ValueError(f"Invalid backup id: {backup_id!r}")
        return self.backup_dir / f"{backup_id}.json.gz"

    def create_backup(self, backup_type: str = "manual") -> dict[str, Any]:
        now = datetime.now(UTC)
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")
        backup_type = re.sub(r"[^A-Za-z0-9_]", "_", backup_type or "manual")
        backup_id = f"backup-{backup_type}-{stamp}"
        snapshot: dict[str, Any] = {
            "id": backup_id,
            "timestamp": now.isoformat(),
            "type": backup_type,
            "tables": {},
            "metadata": {"version": BACKUP_FORMAT_VERSION},
        }
        try:
            for name in BACKUP_TABLES:
                rows = self.tables[name].export_rows()
                snapshot["tables"][name] = {"count": len(rows), "data": rows}
        except RuntimeError as exc:
            logger.error("Backup %s failed: %s", backup_id, exc)
            return {"success": False, "error": str(exc)}

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self._path_for(backup_id)
        with gzip.open(path, "wt", encoding="utf-8") as fh:
            json.dump(snapshot, fh, default=str)
        records = sum(t["count"] for t in snapshot["tables"].values())
        logger.info("Created backup %s (%s records)", backup_id, records)
        self.clean_old_backups()
        return {"success": True, "backupId": backup_id, "path": str(path), "recordCount": records}

    def _load(self, backup_id: str) -> dict[str, Any]:
        path = self._path_for(backup_id)
        if not path.exists():
            raise FileNotFoundError(f"Backup {backup_id} not found")
        with gzip.open(path, "rt", encoding="utf-8") as fh:
            return json.load(fh)

    def restore_backup(self, backup_id: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        """Restore tables from a backup.

        Options: `dry_run` only summarises the backup, `tables` limits which
        tables are restored and `mode="replace"` clears each table first.
        """
        options = options or {}
        try:
            snapshot = self._load(backup_id)
        except (ValueError, FileNotFoundError, OSError, json.JSONDecodeError) as exc:
            logger.error("Restore of %s failed: %s", backup_id, exc)
            return {"success": False, "error": str(exc)}

        if options.get("dry_run") or options.get("dryRun"):
            return {
                "success": True,
                "dryRun": True,
                "backup": {
                    "id": snapshot["id"],
                    "timestamp": snapshot["timestamp"],
                    "tables": [
                        {"name": name, "records": data["count"]}
                        for name, data in snapshot["tables"].items()
                    ],
                },
            }

        only = options.get("tables")
        replace_existing = options.get("mode") == "replace"
        results: dict[str, Any] = {}
        for name, data in snapshot["tables"].items():
            if only and name not in only:
                continue
            store = self.tables.get(name)
            if store is None:
                results[name] = {"success": False, "recordsRestored": 0, "error": "Unknown table"}
                continue
            try:
                restored = store.import_rows(data["data"], replace_existing=replace_existing)
                results[name] = {"success": True, "recordsRestored": restored}
            except RuntimeError as exc:
                logger.error("Restoring table %s from %s failed: %s", name, backup_id, exc)
                results[name] = {"success": False, "recordsRestored": 0, "error": str(exc)}
        logger.info("Restored backup %s", backup_id)
        return {"success": True, "results": results}

    def list_backups(self) -> list[dict[str, Any]]:
        if not self.backup_dir.exists():
            return []
        backups = []
        for path in sorted(self.backup_dir.glob("backup-*.json.gz")):
            stat = path.stat()
            backups.append(
                {
                    "id": path.name[: -len(".json.gz")],
                    "size": stat.st_size,
                    "createdAt": datetime.fromtimestamp(stat.st_mtime, UTC).isoformat(),
                }
            )
        return backups

    def clean_old_backups(self, now: float | None = None) -> list[str]:
        cutoff = (now or time.time()) - BACKUP_RETENTION_DAYS * 24 * 60 * 60
        removed = []
        for path in self.backup_dir.glob("backup-*.json.gz"):
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path.name)
                logger.info("Deleted old backup %s", path.name)
        return removed

    def _require_postgres(self) -> PostgresClient:
        if self.postgres is None or not self.postgres.enabled:
            raise RuntimeError("DATABASE_URL is not configured")
        return self.postgres

    def track_migration(self, migration: dict[str, Any]) -> dict[str, Any]:
        """Apply `migration["sql"]` and record it in schema_migrations."""
        record = {
            "id": migration.get("id"),
            "name": migration.get("name"),
            "checksum": migration.get("checksum"),
            "applied_at": datetime.now(UTC).isoformat(),
            "status": "pending",
        }
        if not record["id"] or not migration.get("sql"):
            return {"success": False, "error": "Migration requires id and sql", "migration": record}
        self._migrations[record["id"]] = {**record, "rollback": migration.get("rollback")}
        try:
            pg = self._require_postgres()
            pg.execute_script(migration["sql"])
            record["status"] = "applied"
            pg.execute_update(
                "INSERT INTO schema_migrations (id, name, checksum, status, applied_at) "
                "VALUES (%s, %s, %s, %s, %s)",
                (record["id"], record["name"], record["checksum"], record["status"], record["applied_at"]),
            )
        except (RuntimeError, psycopg2.Error) as exc:
            record["status"] = "failed"
            self._migrations[record["id"]]["status"] = "failed"
            logger.error("Migration %s failed: %s", record["id"], exc)
            return {"success": False, "error": str(exc), "migration": record}
        self._migrations[record["id"]]["status"] = "applied"
        logger.info("Applied migration %s", record["id"])
        return {"success": True, "migration": record}

    def rollback_migration(self, migration_id: str) -> dict[str, Any]:
        migration = self._migrations.get(migration_id)
        if not migration or not migration.get("rollback"):
            return {"success": False, "error": "Migration not found or not rollbackable"}
        try:
            pg = self._require_postgres()
            pg.execute_script(migration["rollback"])
            pg.execute_update(
                "UPDATE schema_migrations SET status = 'rolled_back' WHERE id = %s", (migration_id,)
            )
        except (RuntimeError, psycopg2.Error) as exc:
            logger.error("Rollback of migration %s failed: %s", migration_id, exc)
            return {"success": False, "error": str(exc)}
        migration["status"] = "rolled_back"
        migration["rolled_back_at"] = datetime.now(UTC).isoformat()
        return {"success": True, "migration": {k: v for k, v in migration.items() if k != "rollback"}}

    def monitor_performance(self) -> dict[str, Any]:
        try:
            pg = self._require_postgres()
            slow = pg.execute_many(
                "SELECT query, calls, mean_exec_time AS mean_time FROM pg_stat_statements "
                "WHERE mean_exec_time > %s ORDER BY mean_exec_time DESC LIMIT 20",
                (SLOW_QUERY_THRESHOLD_MS,),
            )
            stats = pg.execute_many(
                "SELECT relname AS table, n_live_tup AS rows, seq_scan, idx_scan "
                "FROM pg_stat_user_tables WHERE relname IN ('profiles', 'meals')"
            )
        except (RuntimeError, psycopg2.Error) as exc:
            logger.error("Performance monitoring failed: %s", exc)
            return {"error": str(exc)}
        if any((q.get("mean_time") or 0) > CRITICAL_QUERY_MS for q in slow):
            logger.error("Queries taking over %s ms detected", CRITICAL_QUERY_MS)
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "slowQueries": slow,
            "tableStats": {row["table"]: row for row in stats},
        }

    def monitor_storage(self) -> dict[str, Any]:
        try:
            pg = self._require_postgres()
            size_row = pg.execute_one("SELECT pg_database_size(current_database()) AS size")
            tables = pg.execute_many(
                "SELECT relname AS table, pg_total_relation_size(relid) AS size "
                "FROM pg_catalog.pg_statio_user_tables ORDER BY size DESC"
            )
        except (RuntimeError, psycopg2.Error) as exc:
            logger.error("Storage monitoring failed: %s", exc)
            return {"error": str(exc)}
        total = int((size_row or {}).get("size") or 0)
        growth: dict[str, Any] = {}
        if self._last_db_size:
            growth = {
                "bytes": total - self._last_db_size,
                "percentage": (total - self._last_db_size) / self._last_db_size * 100,
            }
        self._last_db_size = total
        if total > DB_SIZE_WARNING_BYTES:
            logger.warning("Database size %s bytes is approaching the 1 GB limit", total)
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "totalSize": total,
            "tables": tables,
            "growth": growth,
        }

    def test_database_connectivity(self) -> dict[str, Any]:
        start = time.perf_counter()
        try:
            if self.postgres is not None and self.postgres.enabled:
                self.postgres.ping()
            else:
                self.tables["profiles"].export_rows()
        except (RuntimeError, psycopg2.Error) as exc:
            return {"success": False, "error": str(exc)}
        latency = int((time.perf_counter() - start) * 1000)
        status = "excellent" if latency < 100 else "good" if latency < 500 else "slow"
        return {"success": True, "latency": latency, "status": status}

    def test_disaster_recovery(self) -> dict[str, Any]:
        started = time.perf_counter()
        tests: list[dict[str, Any]] = []
        backup = self.create_backup("test")
        tests.append(
            {
                "name": "Backup Creation",
                "success": backup["success"],
                "duration": int((time.perf_counter() - started) * 1000),
            }
        )
        if backup["success"]:
            restore = self.restore_backup(backup["backupId"], {"dry_run": True})
            tests.append({"name": "Backup Restoration (Dry Run)", "success": restore["success"], "details": restore})
        tests.append({"name": "Database Connectivity", **self.test_database_connectivity()})

        score = sum(1 for t in tests if t["success"]) / len(tests)
        status = "healthy" if score == 1 else "degraded" if score > 0.5 else "critical"
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "tests": tests,
            "score": score,
            "status": status,
        }

    def dispatch(self, action: str, request: dict[str, Any]) -> Any:
        """Run one named action; unknown names raise KeyError."""
        if action == "create_backup":
            return self.create_backup(request.get("type") or "manual")
        if action == "restore_backup":
            return self.restore_backup(request.get("backupId", ""), request.get("options"))
        if action == "track_migration":
            return self.track_migration(request.get("migration") or {})
        if action == "rollback_migration":
            return self.rollback_migration(request.get("migrationId", ""))
        if action == "monitor_performance":
            return self.monitor_performance()
        if action == "test_disaster_recovery":
            return self.test_disaster_recovery()
        if action == "monitor_storage":
            return self.monitor_storage()
        if action == "list_backups":
            return self.list_backups()
        raise KeyError(action)
