"""
safety_guidelines.py
--------------------
RxGuard — Medication Safety Validation Engine — Policy constants and config
---------------------------------------------------------------------------
Single home for the clinical policy values the engine applies and for the
environment-driven configuration that wires it together.

Policy constants:
    - ROUTE_ALIASES:            abbreviation → canonical route value
    - FREQUENCY_CODES:          canonical frequency strings
    - FREQUENCY_ALIASES:        medical abbreviation → canonical frequency
    - SEVERITY_RECOMMENDATIONS: interaction severity → boilerplate line
    - RISK_RECOMMENDATIONS:     allergy risk tier → recommendation template
    - VITAL_SIGN_LIMITS:        absolute physiological bounds
    - HEART_RATE_RANGES / RESPIRATORY_RATE_RANGES: per life stage
    - DOSING_REVIEW_AGE:        age bounds outside which dosing review is advised

Configuration (read from the environment after ``load_dotenv()``):
    - RiskThresholds / load_risk_thresholds(): cross-reactivity cut-offs
    - EngineSettings / load_settings():        catalog paths, audit DB, URLs

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent

# ---------------------------------------------------------------------------
# Prescription shape policy
# ---------------------------------------------------------------------------

ROUTE_ALIASES: Dict[str, str] = {
    "po": "oral",
    "iv": "intravenous",
    "im": "intramuscular",
    "sc": "subcutaneous",
    "sq": "subcutaneous",
    "subq": "subcutaneous",
    "top": "topical",
}

FREQUENCY_CODES = frozenset({
    "once daily",
    "twice daily",
    "three times daily",
    "four times daily",
    "every other day",
    "at bedtime",
    "as needed",
    "before meals",
    "after meals",
})

FREQUENCY_ALIASES: Dict[str, str] = {
    "qd": "once daily",
    "bid": "twice daily",
    "tid": "three times daily",
    "qid": "four times daily",
    "qod": "every other day",
    "qhs": "at bedtime",
    "prn": "as needed",
    "ac": "before meals",
    "pc": "after meals",
}

# "every N hours" must name an interval within this window.
MIN_INTERVAL_HOURS = 1
MAX_INTERVAL_HOURS = 72

# RxNorm concept identifiers are purely numeric.
RXNORM_PATTERN = r"^\d+$"
ICD10_PATTERN = r"^[A-Z]\d{2}(\.\d{1,3})?$"

# ---------------------------------------------------------------------------
# Recommendation texts
# ---------------------------------------------------------------------------

SEVERITY_RECOMMENDATIONS: Dict[str, str] = {
    "contraindicated": (
        "URGENT: This drug combination is an absolute contraindication. "
        "Locate an alternative immediately."
    ),
    "major": (
        "IMPORTANT: Significant risk of a serious interaction. "
        "Monitor the patient closely."
    ),
    "moderate": (
        "CAUTION: Moderate interaction present. "
        "Periodic reassessment of the patient is advised."
    ),
    "minor": (
        "INFO: Minor interaction present. Monitor if convenient."
    ),
}

RISK_RECOMMENDATIONS: Dict[str, str] = {
    "anaphylaxis": (
        "ABSOLUTE CONTRAINDICATION: History of anaphylaxis to {allergen}. "
        "This drug may cause a life-threatening reaction. Use an alternative."
    ),
    "high": (
        "HIGH RISK: {severity} allergy history to {allergen} "
        "(cross-reactivity {pct}%). Treat as an absolute contraindication: "
        "this drug may be life-threatening, use an alternative."
    ),
    "medium": (
        "CAUTION: {severity} allergy history to {allergen} (cross-reactivity {pct}%). "
        "Use only with close monitoring of the patient."
    ),
    "low": (
        "INFORMATIONAL: {severity} allergy history to {allergen} "
        "(cross-reactivity {pct}%). Administer with awareness and monitor "
        "on first dose."
    ),
}

DOSING_REVIEW_RECOMMENDATION = (
    "Age-related dose adjustment may be required. Review dosing for this "
    "patient's age group."
)

# Patients younger than MIN or older than MAX get the dosing advisory.
DOSING_REVIEW_AGE = {"min": 12, "max": 65}

# ---------------------------------------------------------------------------
# Vital sign limits
# ---------------------------------------------------------------------------

VITAL_SIGN_LIMITS = {
    "systolic_min": 40,
    "systolic_max": 300,
    "diastolic_min": 30,
    "diastolic_max": 200,
    "temperature_min": 35.0,
    "temperature_max": 42.0,
}

HEART_RATE_RANGES = {
    "infant": (100, 160),
    "child": (70, 120),
    "adult": (60, 100),
    "elderly": (60, 100),
}

# Adult women run slightly faster resting rates.
ADULT_FEMALE_HEART_RATE_MAX = 105

RESPIRATORY_RATE_RANGES = {
    "infant": (30, 60),
    "child": (20, 30),
    "adult": (12, 20),
    "elderly": (12, 25),
}

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class RiskThresholds(BaseModel):
    """
    Cross-reactivity cut-offs for the allergy risk tiers.

    Attributes:
        severe_high:     severe allergy → high at or above this value.
        moderate_high:   moderate allergy → high at or above this value.
        moderate_medium: moderate allergy → medium at or above this value.
        mild_medium:     mild/unspecified allergy → medium at or above this value.
    """
    model_config = ConfigDict(frozen=True)

    severe_high:     float = Field(default=0.5, ge=0.0, le=1.0)
    moderate_high:   float = Field(default=0.8, ge=0.0, le=1.0)
    moderate_medium: float = Field(default=0.3, ge=0.0, le=1.0)
    mild_medium:     float = Field(default=0.8, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_moderate_ordering(self) -> "RiskThresholds":
        if self.moderate_medium > self.moderate_high:
            raise ValueError(
                "moderate_medium threshold must not exceed moderate_high."
            )
        return self


class EngineSettings(BaseModel):
    """Collaborator wiring for ``medical_validation.build_validation_service``."""
    model_config = ConfigDict(frozen=True)

    interaction_catalog_path: Path = BASE_DIR / "mock_data" / "interactions.json"
    allergy_mappings_path:    Path = BASE_DIR / "mock_data" / "allergy_mappings.json"
    audit_db_path:            Path = BASE_DIR / "safety_audit.sqlite"
    interaction_kb_url:       Optional[str] = None
    critical_alert_webhook_url: Optional[str] = None
    http_timeout:             float = Field(default=10.0, gt=0)
    thresholds:               RiskThresholds = Field(default_factory=RiskThresholds)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from exc


def load_risk_thresholds() -> RiskThresholds:
    """
    Build RiskThresholds from the environment, falling back to the defaults.

    Raises:
        ValueError: if a variable is not numeric or is outside [0.0, 1.0].
    """
    load_dotenv()
    defaults = RiskThresholds()
    thresholds = RiskThresholds(
        severe_high=_env_float("ALLERGY_SEVERE_HIGH_THRESHOLD", defaults.severe_high),
        moderate_high=_env_float("ALLERGY_MODERATE_HIGH_THRESHOLD", defaults.moderate_high),
        moderate_medium=_env_float("ALLERGY_MODERATE_MEDIUM_THRESHOLD", defaults.moderate_medium),
        mild_medium=_env_float("ALLERGY_MILD_MEDIUM_THRESHOLD", defaults.mild_medium),
    )
    if thresholds != defaults:
        logger.info("safety_guidelines: using overridden risk thresholds %s", thresholds)
    return thresholds


def load_settings() -> EngineSettings:
    """Read EngineSettings from the environment (and ``.env`` if present)."""
    load_dotenv()
    defaults = EngineSettings()
    return EngineSettings(
        interaction_catalog_path=Path(
            os.getenv("INTERACTION_CATALOG_PATH", str(defaults.interaction_catalog_path))
        ),
        allergy_mappings_path=Path(
            os.getenv("ALLERGY_MAPPINGS_PATH", str(defaults.allergy_mappings_path))
        ),
        audit_db_path=Path(os.getenv("SAFETY_AUDIT_DB_PATH", str(defaults.audit_db_path))),
        interaction_kb_url=os.getenv("INTERACTION_KB_URL") or None,
        critical_alert_webhook_url=os.getenv("CRITICAL_ALERT_WEBHOOK_URL") or None,
        http_timeout=_env_float("SAFETY_HTTP_TIMEOUT", defaults.http_timeout),
        thresholds=load_risk_thresholds(),
    )
