from __future__ import annotations

import hashlib
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from app.core.config import settings


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get_db_path() -> Path:
    return Path(settings.analytics_db_path)


def _user_hash(user_id: str) -> str:
    return hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:12]


def init_db() -> None:
    if not settings.analytics_enabled:
        return
    db_path = _get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS synthesis_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                run_id TEXT NOT NULL,
                user_hash TEXT NOT NULL,
                evidence_count INTEGER NOT NULL,
                batches_total INTEGER NOT NULL,
                batches_failed INTEGER NOT NULL,
                claims_created INTEGER NOT NULL,
                claims_updated INTEGER NOT NULL,
                items_unresolved INTEGER NOT NULL,
                warning_count INTEGER NOT NULL,
                status TEXT NOT NULL,
                latency_ms INTEGER
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS ai_analysis_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                run_id TEXT NOT NULL,
                batch_index INTEGER NOT NULL,
                model TEXT NOT NULL,
                evidence_count INTEGER NOT NULL,
                context_size INTEGER NOT NULL,
                schema_valid INTEGER NOT NULL,
                status TEXT NOT NULL,
                error_code TEXT,
                latency_ms INTEGER
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_synthesis_runs_created_at
            ON synthesis_runs (created_at)
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_ai_analysis_runs_created_at
            ON ai_analysis_runs (created_at)
            """
        )
        conn.commit()
    purge_old_records()


def log_synthesis_run(
    *,
    run_id: str,
    user_id: str,
    evidence_count: int,
    batches_total: int,
    batches_failed: int,
    claims_created: int,
    claims_updated: int,
    items_unresolved: int,
    warning_count: int,
    status: str,
    latency_ms: int | None = None,
) -> None:
    if not settings.analytics_enabled:
        return
    db_path = _get_db_path()
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO synthesis_runs (
                created_at, run_id, user_hash, evidence_count, batches_total, batches_failed,
                claims_created, claims_updated, items_unresolved, warning_count, status, latency_ms
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _utc_now(),
                run_id,
                _user_hash(user_id),
                evidence_count,
                batches_total,
                batches_failed,
                claims_created,
                claims_updated,
                items_unresolved,
                warning_count,
                status,
                latency_ms,
            ),
        )
        conn.commit()


def log_ai_analysis_run(
    *,
    run_id: str,
    batch_index: int,
    model: str,
    evidence_count: int,
    context_size: int,
    schema_valid: bool,
    status: str,
    error_code: str | None = None,
    latency_ms: int | None = None,
) -> None:
    if not settings.analytics_enabled:
        return
    db_path = _get_db_path()
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO ai_analysis_runs (
                created_at, run_id, batch_index, model, evidence_count, context_size,
                schema_valid, status, error_code, latency_ms
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _utc_now(),
                run_id,
                batch_index,
                model,
                evidence_count,
                context_size,
                1 if schema_valid else 0,
                status,
                error_code,
                latency_ms,
            ),
        )
        conn.commit()


def purge_old_records() -> dict[str, int]:
    if not settings.analytics_enabled:
        return {"synthesis_runs": 0, "ai_analysis_runs": 0}

    db_path = _get_db_path()
    retention = max(1, int(settings.analytics_retention_days))

    deleted = {"synthesis_runs": 0, "ai_analysis_runs": 0}
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            "DELETE FROM synthesis_runs WHERE created_at < datetime('now', ?)",
            (f"-{retention} days",),
        )
        deleted["synthesis_runs"] = int(cur.rowcount or 0)

        cur = conn.execute(
            "DELETE FROM ai_analysis_runs WHERE created_at < datetime('now', ?)",
            (f"-{retention} days",),
        )
        deleted["ai_analysis_runs"] = int(cur.rowcount or 0)
        conn.commit()

    return deleted


def _row_to_dict(cursor: sqlite3.Cursor, row: tuple) -> dict[str, Any]:
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def get_summary() -> dict[str, Any]:
    if not settings.analytics_enabled:
        return {"enabled": False}
    db_path = _get_db_path()
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            """
            SELECT COUNT(*), COALESCE(SUM(claims_created), 0), COALESCE(SUM(claims_updated), 0),
                   COALESCE(SUM(batches_failed), 0)
            FROM synthesis_runs
            """
        )
        total, created, updated, failed_batches = cur.fetchone()
        cur = conn.execute(
            """
            SELECT COUNT(*) AS total_7d
            FROM synthesis_runs
            WHERE created_at >= datetime('now', '-7 days')
            """
        )
        total_7d = cur.fetchone()[0]
        cur = conn.execute(
            """
            SELECT COUNT(*), COALESCE(SUM(CASE WHEN status != 'success' THEN 1 ELSE 0 END), 0)
            FROM ai_analysis_runs
            """
        )
        decision_calls, decision_failures = cur.fetchone()
    return {
        "enabled": True,
        "total": total,
        "total_7d": total_7d,
        "claims_created": created,
        "claims_updated": updated,
        "batches_failed": failed_batches,
        "decision_calls": decision_calls,
        "decision_failures": decision_failures,
    }


def get_latest(limit: int = 20) -> list[dict[str, Any]]:
    if not settings.analytics_enabled:
        return []
    db_path = _get_db_path()
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            """
            SELECT created_at, run_id, evidence_count, batches_total, batches_failed,
                   claims_created, claims_updated, items_unresolved, status, latency_ms
            FROM synthesis_runs
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
        rows = cur.fetchall()
        return [_row_to_dict(cur, row) for row in rows]


def get_run_decisions(run_id: str) -> list[dict[str, Any]]:
    """Decision calls of one synthesis run, in batch order."""
    if not settings.analytics_enabled:
        return []
    db_path = _get_db_path()
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            """
            SELECT created_at, batch_index, model, evidence_count, context_size,
                   schema_valid, status, error_code, latency_ms
            FROM ai_analysis_runs
            WHERE run_id = ?
            ORDER BY batch_index, id
            """,
            (run_id,),
        )
        rows = cur.fetchall()
        return [_row_to_dict(cur, row) for row in rows]
