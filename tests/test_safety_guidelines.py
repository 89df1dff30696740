"""
test_safety_guidelines.py
-------------------------
RxGuard — Medication Safety Validation Engine — Test Suite for safety_guidelines.py
-----------------------------------------------------------------------------------
Tests cover:
    - RiskThresholds defaults and ordering check
    - threshold and settings overrides from the environment

Run:
    pytest tests/test_safety_guidelines.py -v --tb=short

Project: RxGuard — Medication Safety Validation Engine
"""

import os
import sys

import pytest
from pydantic import ValidationError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from safety_guidelines import (
    SEVERITY_RECOMMENDATIONS,
    RiskThresholds,
    load_risk_thresholds,
    load_settings,
)

_ENV_VARS = (
    "ALLERGY_SEVERE_HIGH_THRESHOLD",
    "ALLERGY_MODERATE_HIGH_THRESHOLD",
    "ALLERGY_MODERATE_MEDIUM_THRESHOLD",
    "ALLERGY_MILD_MEDIUM_THRESHOLD",
    "INTERACTION_KB_URL",
    "CRITICAL_ALERT_WEBHOOK_URL",
    "SAFETY_AUDIT_DB_PATH",
    "SAFETY_HTTP_TIMEOUT",
    "INTERACTION_CATALOG_PATH",
    "ALLERGY_MAPPINGS_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_default_thresholds():
    t = RiskThresholds()
    assert (t.severe_high, t.moderate_high, t.moderate_medium, t.mild_medium) == (0.5, 0.8, 0.3, 0.8)


def test_threshold_ordering_enforced():
    with pytest.raises(ValidationError):
        RiskThresholds(moderate_high=0.2, moderate_medium=0.3)


def test_thresholds_from_env(monkeypatch):
    monkeypatch.setenv("ALLERGY_SEVERE_HIGH_THRESHOLD", "0.4")
    monkeypatch.setenv("ALLERGY_MILD_MEDIUM_THRESHOLD", "0.7")
    t = load_risk_thresholds()
    assert t.severe_high == 0.4
    assert t.mild_medium == 0.7
    assert t.moderate_high == 0.8


def test_non_numeric_threshold_rejected(monkeypatch):
    monkeypatch.setenv("ALLERGY_SEVERE_HIGH_THRESHOLD", "high")
    with pytest.raises(ValueError, match="ALLERGY_SEVERE_HIGH_THRESHOLD"):
        load_risk_thresholds()


def test_out_of_range_threshold_rejected(monkeypatch):
    monkeypatch.setenv("ALLERGY_MODERATE_HIGH_THRESHOLD", "1.5")
    with pytest.raises(ValueError):
        load_risk_thresholds()


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("INTERACTION_KB_URL", "https://kb.example")
    monkeypatch.setenv("SAFETY_AUDIT_DB_PATH", str(tmp_path / "audit.sqlite"))
    monkeypatch.setenv("SAFETY_HTTP_TIMEOUT", "2.5")
    settings = load_settings()
    assert settings.interaction_kb_url == "https://kb.example"
    assert settings.critical_alert_webhook_url is None
    assert settings.audit_db_path == tmp_path / "audit.sqlite"
    assert settings.http_timeout == 2.5


def test_bundled_catalogs_exist():
    settings = load_settings()
    assert settings.interaction_catalog_path.is_file()
    assert settings.allergy_mappings_path.is_file()


def test_every_severity_has_a_recommendation():
    assert set(SEVERITY_RECOMMENDATIONS) == {"minor", "moderate", "major", "contraindicated"}
