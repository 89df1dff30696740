"""
vital_signs.py
--------------
RxGuard — Medication Safety Validation Engine — Vital sign plausibility gate
----------------------------------------------------------------------------
Age- and gender-aware range checks for vital signs, used as an independent
plausibility gate on patient records. The checks live on Pydantic models so
an out-of-range reading can never be constructed.

Life stages:
    infant  < 1 year
    child   < 12 years
    adult   < 65 years
    elderly >= 65 years

Key objects:
    - BloodPressure:          systolic/diastolic with absolute bounds, diastolic < systolic
    - VitalSigns:             heart rate, temperature, blood pressure, respiratory rate
    - heart_rate_range():     (min, max) for an age and gender
    - respiratory_rate_range(): (min, max) for an age
    - build_vital_signs():    validate a raw dict against a given age and gender

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from safety_guidelines import (
    ADULT_FEMALE_HEART_RATE_MAX,
    HEART_RATE_RANGES,
    RESPIRATORY_RATE_RANGES,
    VITAL_SIGN_LIMITS,
)

VitalGender = Literal["male", "female", "other", "unknown", "all"]
VITAL_GENDERS = ("male", "female", "other", "unknown", "all")


def age_group(age: float) -> str:
    """Map an age in years onto its life stage."""
    if age < 1:
        return "infant"
    if age < 12:
        return "child"
    if age < 65:
        return "adult"
    return "elderly"


def heart_rate_range(age: float, gender: str = "all") -> Tuple[int, int]:
    """
    Normal resting heart rate for an age and gender.

    Args:
        age:    Age in years (fractions allowed for infants).
        gender: One of male, female, other, unknown, all.

    Returns:
        Tuple[int, int]: (min, max) beats per minute, inclusive.
    """
    group = age_group(age)
    low, high = HEART_RATE_RANGES[group]
    if gender == "female" and group == "adult":
        high = ADULT_FEMALE_HEART_RATE_MAX
    return low, high


def respiratory_rate_range(age: float) -> Tuple[int, int]:
    """Normal respiratory rate (breaths per minute) for an age."""
    return RESPIRATORY_RATE_RANGES[age_group(age)]


def _check_range(label: str, value: float, low: float, high: float, unit: str = "") -> float:
    if not math.isfinite(value):
        raise ValueError(f"{label} must be a finite number.")
    if value < low:
        raise ValueError(f"{label} is too low (minimum: {low}{unit}).")
    if value > high:
        raise ValueError(f"{label} is too high (maximum: {high}{unit}).")
    return value


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class BloodPressure(BaseModel):
    """A single blood pressure reading in mmHg."""

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    systolic:   int
    diastolic:  int
    unit:       Literal["mmHg"] = "mmHg"
    taken_at:   Optional[datetime] = None
    patient_id: Optional[str] = None

    @field_validator("systolic")
    @classmethod
    def check_systolic(cls, v: int) -> int:
        return _check_range(
            "Systolic pressure", v,
            VITAL_SIGN_LIMITS["systolic_min"], VITAL_SIGN_LIMITS["systolic_max"], " mmHg",
        )

    @field_validator("diastolic")
    @classmethod
    def check_diastolic(cls, v: int, info: ValidationInfo) -> int:
        """Absolute bounds first, then diastolic must sit strictly below systolic."""
        _check_range(
            "Diastolic pressure", v,
            VITAL_SIGN_LIMITS["diastolic_min"], VITAL_SIGN_LIMITS["diastolic_max"], " mmHg",
        )
        systolic = info.data.get("systolic")
        if systolic is not None and v >= systolic:
            raise ValueError("Diastolic pressure must be lower than systolic pressure.")
        return v


class VitalSigns(BaseModel):
    """
    Vital signs checked against the ranges for the patient's life stage.

    ``age`` and ``gender`` select the ranges and are not part of the
    serialised reading. Without an age the adult ranges apply.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    age:              Optional[float] = Field(default=None, exclude=True, repr=False)
    gender:           VitalGender     = Field(default="all", exclude=True, repr=False)
    heart_rate:       int
    temperature:      float
    blood_pressure:   BloodPressure
    respiratory_rate: Optional[int] = None

    @field_validator("heart_rate")
    @classmethod
    def check_heart_rate(cls, v: int, info: ValidationInfo) -> int:
        age = info.data.get("age")
        low, high = heart_rate_range(30 if age is None else age, info.data.get("gender", "all"))
        return _check_range("Heart rate", v, low, high, " bpm")

    @field_validator("temperature")
    @classmethod
    def check_temperature(cls, v: float) -> float:
        return _check_range(
            "Temperature", v,
            VITAL_SIGN_LIMITS["temperature_min"], VITAL_SIGN_LIMITS["temperature_max"], "°C",
        )

    @field_validator("respiratory_rate")
    @classmethod
    def check_respiratory_rate(cls, v: Optional[int], info: ValidationInfo) -> Optional[int]:
        if v is None:
            return None
        age = info.data.get("age")
        low, high = respiratory_rate_range(30 if age is None else age)
        return _check_range("Respiratory rate", v, low, high, "/min")


def build_vital_signs(raw: Dict[str, Any], age: float, gender: str = "all") -> VitalSigns:
    """
    Validate a raw vital-sign payload for a patient of the given age and gender.

    Args:
        raw:    Dict with heart_rate, temperature, blood_pressure and
                optionally respiratory_rate.
        age:    Patient age in years.
        gender: male, female, other, unknown or all.

    Returns:
        VitalSigns: the validated reading.

    Raises:
        pydantic.ValidationError: when any reading is out of range or malformed.
    """
    payload = dict(raw) if isinstance(raw, dict) else raw
    if isinstance(payload, dict):
        payload["age"] = age
        payload["gender"] = gender
    return VitalSigns.model_validate(payload)
