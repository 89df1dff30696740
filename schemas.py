"""
schemas.py
----------
RxGuard — Medication Safety Validation Engine — Pydantic Data Contracts
-----------------------------------------------------------------------
Pydantic v2 models that act as the data contract between the order-entry
workflow, the external knowledge sources and the safety engine.

Validation policy
-----------------
Every record validates at construction time. An invalid value never exists:
constructing a record from bad input raises ``pydantic.ValidationError``,
and the façade converts those errors into field-level ``ValidationIssue``s
with dotted paths (``end_date``, ``blood_pressure.diastolic`` …).

  1. Prescription — positive dose, numeric RxNorm drug code, route and
     frequency from closed sets (abbreviations are normalised), end date
     strictly after start date.

  2. DrugInteractionRule — two or more distinct drugs, stored sorted so
     equal rules serialise identically.

  3. AllergyDrugMapping — cross-reactivity must already be within
     [0.0, 1.0]; it is reference data, so it is rejected rather than clamped.

  4. Severity and risk tiers are closed ``str`` enums.

All records are frozen. Engine outputs (DrugInteractionOutcome,
MedicalValidationResult, SafetyCheckResult …) are built once per call and
never mutated.

Public API
----------
    Route, InteractionSeverity, ReactionType, AllergySeverity, RiskLevel, Gender
    Prescription, DrugInteractionRule, Allergy, AllergyDrugMapping
    Demographics, MedicalHistoryEntry, PatientPersona
    AllergyConflict, ValidationIssue, DrugInteractionOutcome,
    MedicalValidationResult, SafetyCheckResult, InteractionCheckEvent,
    CriticalAlert
    PrescriptionShapeError
    issues_from_validation_error()

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from safety_guidelines import (
    FREQUENCY_ALIASES,
    FREQUENCY_CODES,
    ICD10_PATTERN,
    MAX_INTERVAL_HOURS,
    MIN_INTERVAL_HOURS,
    ROUTE_ALIASES,
    RXNORM_PATTERN,
)
from vital_signs import VITAL_GENDERS, BloodPressure, VitalSigns

_RECORD_CONFIG = ConfigDict(
    frozen=True,
    str_strip_whitespace=True,   # strip str fields before constraints run
    extra="ignore",              # callers may send surrounding order metadata
    allow_inf_nan=False,         # NaN and inf are never a valid dose or measurement
)

_EVERY_N_HOURS_RE = re.compile(r"^every (\d+) hours?$")
_QNH_RE = re.compile(r"^q(\d+)h$")


# ---------------------------------------------------------------------------
# Closed enumerations
# ---------------------------------------------------------------------------

class Route(str, Enum):
    """Route of administration."""
    ORAL = "oral"
    INTRAVENOUS = "intravenous"
    INTRAMUSCULAR = "intramuscular"
    SUBCUTANEOUS = "subcutaneous"
    TOPICAL = "topical"


class InteractionSeverity(str, Enum):
    """Four-level ordinal severity of a known drug-drug interaction."""
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CONTRAINDICATED = "contraindicated"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_critical(self) -> bool:
        """Major and contraindicated interactions trigger escalation."""
        return self in (InteractionSeverity.MAJOR, InteractionSeverity.CONTRAINDICATED)


_SEVERITY_RANK = {
    InteractionSeverity.MINOR: 1,
    InteractionSeverity.MODERATE: 2,
    InteractionSeverity.MAJOR: 3,
    InteractionSeverity.CONTRAINDICATED: 4,
}


class ReactionType(str, Enum):
    ANAPHYLAXIS = "anaphylaxis"
    ANGIOEDEMA = "angioedema"
    RASH = "rash"
    URTICARIA = "urticaria"
    RESPIRATORY = "respiratory"
    GASTROINTESTINAL = "gastrointestinal"
    OTHER = "other"


class AllergySeverity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class RiskLevel(str, Enum):
    """Derived allergy-conflict risk tier."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNKNOWN = "unknown"


def _lower_if_str(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Prescription
# ---------------------------------------------------------------------------

class Prescription(BaseModel):
    """
    An immutable prescription order.

    A changed order is a new Prescription, never a mutated one.

    Fields
    ------
    patient_id: Patient identifier.
    drug_id:    RxNorm concept identifier (digits only).
    dose:       Strictly positive amount in ``unit``.
    unit:       Dose unit, e.g. ``"mg"``.
    route:      Route enum; PO/IV/IM/SC are accepted and normalised.
    frequency:  Canonical frequency; BID/TID/q8h … are normalised.
    start_date: First day of administration.
    end_date:   Optional last day, strictly after ``start_date``.
    """

    model_config = _RECORD_CONFIG

    patient_id: str            = Field(min_length=1)
    drug_id:    str            = Field(min_length=1, pattern=RXNORM_PATTERN)
    dose:       float          = Field(gt=0)
    unit:       str            = Field(min_length=1)
    route:      Route
    frequency:  str
    start_date: date
    end_date:   Optional[date] = None

    @field_validator("route", mode="before")
    @classmethod
    def normalise_route(cls, v: Any) -> Any:
        """Accept standard abbreviations (PO, IV, IM, SC) for the route."""
        v = _lower_if_str(v)
        if isinstance(v, str):
            return ROUTE_ALIASES.get(v, v)
        return v

    @field_validator("frequency", mode="before")
    @classmethod
    def normalise_frequency(cls, v: Any) -> str:
        """
        Map the frequency onto its canonical form.

        Raises:
            ValueError: when the value is not a recognised frequency code.
        """
        if not isinstance(v, str):
            raise ValueError("frequency must be a string such as 'twice daily' or 'every 8 hours'.")
        text = " ".join(v.strip().lower().split())
        text = FREQUENCY_ALIASES.get(text, text)

        qnh = _QNH_RE.match(text)
        if qnh:
            text = f"every {int(qnh.group(1))} hours"

        every = _EVERY_N_HOURS_RE.match(text)
        if every:
            hours = int(every.group(1))
            if not MIN_INTERVAL_HOURS <= hours <= MAX_INTERVAL_HOURS:
                raise ValueError(
                    f"Dosing interval must be between {MIN_INTERVAL_HOURS} and "
                    f"{MAX_INTERVAL_HOURS} hours, got {hours}."
                )
            return f"every {hours} hours"

        if text in FREQUENCY_CODES:
            return text
        raise ValueError(
            f"'{v}' is not a recognised frequency. Use a standard code such as "
            "'twice daily', 'every 8 hours', BID or q8h."
        )

    @field_validator("end_date")
    @classmethod
    def check_end_after_start(cls, v: Optional[date], info: ValidationInfo) -> Optional[date]:
        start = info.data.get("start_date")
        if v is not None and start is not None and v <= start:
            raise ValueError("End date must be after the start date.")
        return v


class PrescriptionShapeError(ValueError):
    """Raised when a candidate prescription fails shape validation."""

    def __init__(self, issues: List["ValidationIssue"]) -> None:
        self.issues = issues
        detail = "; ".join(f"{i.field or '<root>'}: {i.message}" for i in issues)
        super().__init__(f"Invalid prescription: {detail}")


# ---------------------------------------------------------------------------
# Knowledge-base records
# ---------------------------------------------------------------------------

def _clean_id_list(v: Any, field_name: str) -> Tuple[str, ...]:
    if isinstance(v, (str, bytes)) or not hasattr(v, "__iter__"):
        raise ValueError(f"{field_name} must be a list of drug identifiers.")
    cleaned = {str(item).strip() for item in v}
    if "" in cleaned:
        raise ValueError(f"{field_name} must not contain empty identifiers.")
    return tuple(sorted(cleaned))


class DrugInteractionRule(BaseModel):
    """
    A known drug-drug interaction from the external knowledge base.

    ``drug_ids`` holds the full combination; the rule applies only when every
    one of them is being administered.
    """

    model_config = _RECORD_CONFIG

    id:              str = Field(min_length=1)
    drug_ids:        Tuple[str, ...]
    severity:        InteractionSeverity
    mechanism:       str = Field(min_length=1)
    clinical_effect: str = Field(min_length=1)
    recommendation:  str = Field(min_length=1)

    @field_validator("drug_ids", mode="before")
    @classmethod
    def check_combination(cls, v: Any) -> Tuple[str, ...]:
        """De-duplicate and sort; an interaction needs at least two drugs."""
        ids = _clean_id_list(v, "drug_ids")
        if len(ids) < 2:
            raise ValueError("An interaction requires at least two distinct drugs.")
        return ids

    @field_validator("severity", mode="before")
    @classmethod
    def lower_severity(cls, v: Any) -> Any:
        return _lower_if_str(v)


class Allergy(BaseModel):
    """A documented patient allergy. Unspecified severity is treated as mild."""

    model_config = _RECORD_CONFIG

    allergen:   str                       = Field(min_length=1)
    reaction:   ReactionType
    severity:   Optional[AllergySeverity] = None
    onset_date: Optional[date]            = None
    notes:      Optional[str]             = None

    @field_validator("reaction", "severity", mode="before")
    @classmethod
    def lower_enums(cls, v: Any) -> Any:
        return _lower_if_str(v)


class AllergyDrugMapping(BaseModel):
    """Reference data linking an allergen to cross-reactive drugs."""

    model_config = _RECORD_CONFIG

    allergen:         str             = Field(min_length=1)
    related_drug_ids: Tuple[str, ...] = ()
    cross_reactivity: float           = Field(ge=0.0, le=1.0)

    @field_validator("related_drug_ids", mode="before")
    @classmethod
    def clean_related(cls, v: Any) -> Tuple[str, ...]:
        return _clean_id_list(v, "related_drug_ids")


# ---------------------------------------------------------------------------
# Patient persona
# ---------------------------------------------------------------------------

class Demographics(BaseModel):
    model_config = _RECORD_CONFIG

    age:    int    = Field(ge=0, le=150)
    gender: Gender
    weight: float  = Field(ge=0.5, le=500)   # kg
    height: float  = Field(ge=30, le=300)    # cm


class MedicalHistoryEntry(BaseModel):
    model_config = _RECORD_CONFIG

    condition:  str  = Field(min_length=1)
    icd10_code: str  = Field(pattern=ICD10_PATTERN)
    onset_date: Optional[date] = None
    severity:   AllergySeverity


class PatientPersona(BaseModel):
    """
    A patient record as supplied by the patient-generation workflow.

    Vital signs, when present, are checked against the ranges for the
    persona's own age and gender.
    """

    model_config = _RECORD_CONFIG

    demographics:    Demographics
    medical_history: List[MedicalHistoryEntry] = Field(default_factory=list)
    allergies:       List[Allergy]             = Field(default_factory=list)
    vital_signs:     Optional[VitalSigns]      = None

    @model_validator(mode="before")
    @classmethod
    def carry_demographics_into_vitals(cls, data: Any) -> Any:
        """Hand age and gender to the vital-sign ranges; ``{}`` means not recorded."""
        if not isinstance(data, dict):
            return data
        vitals = data.get("vital_signs")
        if isinstance(vitals, dict) and not vitals:
            return {**data, "vital_signs": None}
        if not isinstance(vitals, dict):
            return data

        demographics = data.get("demographics")
        if isinstance(demographics, Demographics):
            age, gender = demographics.age, demographics.gender.value
        elif isinstance(demographics, dict):
            age, gender = demographics.get("age"), demographics.get("gender")
        else:
            return data

        vitals = dict(vitals)
        if isinstance(age, (int, float)) and not isinstance(age, bool):
            vitals["age"] = age
        if gender in VITAL_GENDERS:
            vitals["gender"] = gender
        return {**data, "vital_signs": vitals}


# ---------------------------------------------------------------------------
# Engine outputs
# ---------------------------------------------------------------------------

class AllergyConflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    allergen:            str
    conflicting_drug_id: str
    cross_reactivity:    float
    risk_level:          RiskLevel
    recommendation:      str


class ValidationIssue(BaseModel):
    """A single blocking error or advisory warning."""
    model_config = ConfigDict(frozen=True)

    code:    str
    message: str
    field:   Optional[str] = None
    kind:    Literal["error", "warning"] = "error"


class DrugInteractionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid:              bool
    interactions:          List[DrugInteractionRule] = Field(default_factory=list)
    critical_interactions: List[DrugInteractionRule] = Field(default_factory=list)
    recommendations:       List[str]                 = Field(default_factory=list)


class MedicalValidationResult(BaseModel):
    """Aggregate safety report for one candidate prescription."""
    model_config = ConfigDict(frozen=True)

    is_valid:          bool
    errors:            List[ValidationIssue]          = Field(default_factory=list)
    warnings:          List[ValidationIssue]          = Field(default_factory=list)
    drug_interactions: Optional[DrugInteractionOutcome] = None
    allergy_conflicts: List[AllergyConflict]          = Field(default_factory=list)


class SafetyCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_safe:         bool
    issues:          List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class PatientValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    patient:  Optional[PatientPersona] = None
    errors:   List[ValidationIssue]    = Field(default_factory=list)


class VitalSignsValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid:    bool
    vital_signs: Optional[VitalSigns]   = None
    errors:      List[ValidationIssue]  = Field(default_factory=list)


class BloodPressureValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid:       bool
    blood_pressure: Optional[BloodPressure] = None
    errors:         List[ValidationIssue]   = Field(default_factory=list)


class InteractionCheckEvent(BaseModel):
    """Summary audit record written once per interaction check."""
    model_config = ConfigDict(frozen=True)

    patient_id:                  str
    drug_ids:                    List[str]
    interactions_found:          int = Field(ge=0)
    critical_interactions_found: int = Field(ge=0)
    timestamp:                   datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class CriticalAlert(BaseModel):
    """Escalation payload for the notification collaborator."""
    model_config = ConfigDict(frozen=True)

    type:                         Literal["critical_drug_interaction"] = "critical_drug_interaction"
    patient_id:                   str
    interactions:                 List[DrugInteractionRule] = Field(min_length=1)
    requires_immediate_attention: bool = True


# ---------------------------------------------------------------------------
# Error conversion
# ---------------------------------------------------------------------------

def issues_from_validation_error(
    exc: ValidationError,
    code: str,
    *,
    prefix: Optional[str] = None,
    kind: Literal["error", "warning"] = "error",
) -> List[ValidationIssue]:
    """
    Convert a ``pydantic.ValidationError`` into one ValidationIssue per error.

    Args:
        exc:    The validation error raised by a model.
        code:   Issue code to stamp on every issue.
        prefix: Optional dotted path prepended to every field path, e.g.
                ``"existing_prescriptions.0"``.
        kind:   ``"error"`` or ``"warning"``.

    Returns:
        List[ValidationIssue]: in the order pydantic reported them.
    """
    issues: List[ValidationIssue] = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err.get("loc", ()))
        if prefix:
            path = f"{prefix}.{path}" if path else prefix
        message = err.get("msg", "Invalid value.")
        # Our own ValueErrors carry a readable message; drop pydantic's prefix.
        ctx_error = (err.get("ctx") or {}).get("error")
        if err.get("type") == "value_error" and ctx_error is not None:
            message = str(ctx_error)
        issues.append(ValidationIssue(code=code, message=message, field=path or None, kind=kind))
    return issues


__all__: List[str] = [
    "Route", "InteractionSeverity", "ReactionType", "AllergySeverity", "RiskLevel", "Gender",
    "Prescription", "PrescriptionShapeError", "DrugInteractionRule", "Allergy",
    "AllergyDrugMapping", "Demographics", "MedicalHistoryEntry", "PatientPersona",
    "BloodPressure", "VitalSigns",
    "AllergyConflict", "ValidationIssue", "DrugInteractionOutcome", "MedicalValidationResult",
    "SafetyCheckResult", "PatientValidationResult", "VitalSignsValidationResult",
    "BloodPressureValidationResult", "InteractionCheckEvent", "CriticalAlert",
    "issues_from_validation_error",
]
