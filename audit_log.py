"""
audit_log.py
------------
RxGuard — Medication Safety Validation Engine — Interaction audit trail
-----------------------------------------------------------------------
SQLite audit trail for drug-interaction checks. The engine writes one row
per critical interaction found and one summary row per check.

Table: interaction_checks
  - One row per check_new_prescription call (the summary record).
  - drug_ids is stored as a JSON array of the combined identifiers.

Table: critical_interactions
  - One row per (check, critical rule). Written before the summary row.

DB file: safety_audit.sqlite (alongside this module unless
SAFETY_AUDIT_DB_PATH says otherwise)

Public API:
    SqliteAuditLogger(db_path)        — creates tables on construction. Idempotent.
    .log_interaction_check(event)     — async; INSERT one summary row.
    .log_critical_interaction(rule, patient_id) — async; INSERT one critical row.
    .get_interaction_checks(patient_id=None)    — SELECT summary rows, newest first.
    .get_critical_interactions(patient_id=None) — SELECT critical rows, newest first.

Blocking sqlite3 calls run in a worker thread via ``asyncio.to_thread``.
Every sqlite3.Error surfaces as ``AuditLogError``.

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, List, Optional, Union

from collaborators import AuditLogError
from schemas import DrugInteractionRule, InteractionCheckEvent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------
_DDL = """
CREATE TABLE IF NOT EXISTS interaction_checks (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    patient_id                  TEXT    NOT NULL,
    drug_ids                    TEXT    NOT NULL DEFAULT '[]',
    interactions_found          INTEGER NOT NULL DEFAULT 0,
    critical_interactions_found INTEGER NOT NULL DEFAULT 0,
    checked_at                  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS critical_interactions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    patient_id  TEXT    NOT NULL,
    rule_id     TEXT    NOT NULL,
    drug_ids    TEXT    NOT NULL DEFAULT '[]',
    severity    TEXT    NOT NULL,
    clinical_effect TEXT NOT NULL DEFAULT '',
    logged_at   TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ic_patient ON interaction_checks (patient_id, checked_at);
CREATE INDEX IF NOT EXISTS idx_ci_patient ON critical_interactions (patient_id, logged_at);
"""


@contextmanager
def get_connection(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """
    Yield an open ``sqlite3.Connection`` that commits on clean exit and rolls
    back on exception.

    Yields:
        sqlite3.Connection: with ``row_factory = sqlite3.Row`` set.
    """
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


class SqliteAuditLogger:
    """
    AuditLogger backed by a local SQLite file.

    Args:
        db_path: Database file; created with its tables if absent.

    Raises:
        AuditLogError: if the tables cannot be created.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self.init_db()

    def init_db(self) -> None:
        """Create both tables and their indexes if they do not exist."""
        try:
            with get_connection(self.db_path) as conn:
                conn.executescript(_DDL)
        except sqlite3.Error as exc:
            raise AuditLogError(f"Could not initialise audit DB at {self.db_path}: {exc}") from exc
        logger.info("safety audit DB ready at '%s'.", self.db_path)

    # ── Sync write/read helpers ──────────────────────────────────────────────

    def insert_interaction_check(self, event: InteractionCheckEvent) -> int:
        sql = """
            INSERT INTO interaction_checks
                (patient_id, drug_ids, interactions_found,
                 critical_interactions_found, checked_at)
            VALUES (?, ?, ?, ?, ?)
        """
        try:
            with get_connection(self.db_path) as conn:
                cur = conn.execute(sql, (
                    event.patient_id,
                    json.dumps(list(event.drug_ids)),
                    event.interactions_found,
                    event.critical_interactions_found,
                    event.timestamp.isoformat(),
                ))
                row_id: int = cur.lastrowid  # type: ignore[assignment]
        except sqlite3.Error as exc:
            raise AuditLogError(f"Could not write interaction check audit: {exc}") from exc

        logger.debug(
            "interaction_checks: patient=%s interactions=%d critical=%d (row=%d).",
            event.patient_id, event.interactions_found,
            event.critical_interactions_found, row_id,
        )
        return row_id

    def insert_critical_interaction(self, rule: DrugInteractionRule, patient_id: str) -> int:
        now = datetime.now(timezone.utc).isoformat()
        sql = """
            INSERT INTO critical_interactions
                (patient_id, rule_id, drug_ids, severity, clinical_effect, logged_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        try:
            with get_connection(self.db_path) as conn:
                cur = conn.execute(sql, (
                    patient_id,
                    rule.id,
                    json.dumps(list(rule.drug_ids)),
                    rule.severity.value,
                    rule.clinical_effect,
                    now,
                ))
                row_id: int = cur.lastrowid  # type: ignore[assignment]
        except sqlite3.Error as exc:
            raise AuditLogError(f"Could not write critical interaction audit: {exc}") from exc

        logger.warning(
            "critical_interactions: patient=%s rule=%s severity=%s (row=%d).",
            patient_id, rule.id, rule.severity.value, row_id,
        )
        return row_id

    def _select(self, table: str, order_col: str, patient_id: Optional[str]) -> List[dict]:
        sql = f"SELECT * FROM {table}"
        params: tuple = ()
        if patient_id is not None:
            sql += " WHERE patient_id = ?"
            params = (patient_id,)
        sql += f" ORDER BY {order_col} DESC, id DESC"
        try:
            with get_connection(self.db_path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise AuditLogError(f"Could not read {table}: {exc}") from exc
        out = []
        for row in rows:
            record = dict(row)
            record["drug_ids"] = json.loads(record["drug_ids"])
            out.append(record)
        return out

    def get_interaction_checks(self, patient_id: Optional[str] = None) -> List[dict]:
        """Summary rows, newest first, optionally for one patient."""
        return self._select("interaction_checks", "checked_at", patient_id)

    def get_critical_interactions(self, patient_id: Optional[str] = None) -> List[dict]:
        """Critical-interaction rows, newest first, optionally for one patient."""
        return self._select("critical_interactions", "logged_at", patient_id)

    # ── AuditLogger protocol ─────────────────────────────────────────────────

    async def log_interaction_check(self, event: InteractionCheckEvent) -> None:
        await asyncio.to_thread(self.insert_interaction_check, event)

    async def log_critical_interaction(self, rule: DrugInteractionRule, patient_id: str) -> None:
        await asyncio.to_thread(self.insert_critical_interaction, rule, patient_id)
