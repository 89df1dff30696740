"""
test_audit_log.py
-----------------
RxGuard — Medication Safety Validation Engine — Test Suite for audit_log.py
---------------------------------------------------------------------------
Each test gets its own SQLite file under pytest's tmp_path.

Tests cover:
    - table creation is idempotent
    - summary and critical rows written through the async protocol methods
    - per-patient filtering, newest first
    - sqlite failures surface as AuditLogError

Run:
    pytest tests/test_audit_log.py -v --tb=short

Project: RxGuard — Medication Safety Validation Engine
"""

import asyncio
import os
import sqlite3
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from audit_log import SqliteAuditLogger
from collaborators import AuditLogError, AuditLogger
from schemas import InteractionCheckEvent
from tests.fakes import make_rule

RULE = make_rule("R-SN", ["136411", "4917"], "contraindicated")


def _event(patient_id="P001", found=1, critical=1, hour=9):
    return InteractionCheckEvent(
        patient_id=patient_id,
        drug_ids=["136411", "4917"],
        interactions_found=found,
        critical_interactions_found=critical,
        timestamp=datetime(2026, 5, 1, hour, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def audit(tmp_path):
    return SqliteAuditLogger(tmp_path / "audit.sqlite")


def test_satisfies_protocol(audit):
    assert isinstance(audit, AuditLogger)


def test_init_is_idempotent(tmp_path):
    path = tmp_path / "audit.sqlite"
    SqliteAuditLogger(path)
    SqliteAuditLogger(path)
    with sqlite3.connect(str(path)) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"interaction_checks", "critical_interactions"} <= tables


def test_log_interaction_check(audit):
    asyncio.run(audit.log_interaction_check(_event()))
    rows = audit.get_interaction_checks()
    assert len(rows) == 1
    assert rows[0]["patient_id"] == "P001"
    assert rows[0]["drug_ids"] == ["136411", "4917"]
    assert rows[0]["interactions_found"] == 1
    assert rows[0]["critical_interactions_found"] == 1
    assert rows[0]["checked_at"].startswith("2026-05-01T09:00")


def test_log_critical_interaction(audit):
    asyncio.run(audit.log_critical_interaction(RULE, "P042"))
    rows = audit.get_critical_interactions()
    assert len(rows) == 1
    assert rows[0]["rule_id"] == "R-SN"
    assert rows[0]["severity"] == "contraindicated"
    assert rows[0]["patient_id"] == "P042"


def test_filter_by_patient_newest_first(audit):
    asyncio.run(audit.log_interaction_check(_event("P001", hour=8)))
    asyncio.run(audit.log_interaction_check(_event("P002", hour=9)))
    asyncio.run(audit.log_interaction_check(_event("P001", found=0, critical=0, hour=10)))
    rows = audit.get_interaction_checks("P001")
    assert [r["interactions_found"] for r in rows] == [0, 1]
    assert audit.get_interaction_checks("P999") == []


def test_write_failure_raises_audit_log_error(audit):
    with sqlite3.connect(str(audit.db_path)) as conn:
        conn.execute("DROP TABLE interaction_checks")
    with pytest.raises(AuditLogError):
        asyncio.run(audit.log_interaction_check(_event()))


def test_unusable_path_raises(tmp_path):
    with pytest.raises(AuditLogError):
        SqliteAuditLogger(tmp_path / "missing-dir" / "audit.sqlite")
