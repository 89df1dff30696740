"""
test_schemas.py
---------------
RxGuard — Medication Safety Validation Engine — Test Suite for schemas.py
-------------------------------------------------------------------------
Construction-time validation of the domain records and the conversion of
pydantic errors into field-level ValidationIssues.

Tests cover:
    - Prescription: dose, drug code, route/frequency normalisation, date order
    - DrugInteractionRule: combination size, sorting, severity ordering
    - AllergyDrugMapping: cross-reactivity bounds (rejected, not clamped)
    - PatientPersona: demographics carried into vital sign ranges
    - issues_from_validation_error: dotted paths and prefixes

Run:
    pytest tests/test_schemas.py -v --tb=short

Project: RxGuard — Medication Safety Validation Engine
"""

import os
import sys

import pytest
from pydantic import ValidationError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from schemas import (
    Allergy,
    AllergyDrugMapping,
    AllergySeverity,
    CriticalAlert,
    DrugInteractionRule,
    InteractionSeverity,
    PatientPersona,
    Prescription,
    PrescriptionShapeError,
    ReactionType,
    Route,
    issues_from_validation_error,
)
from tests.fakes import make_rule, rx


def _patient(**overrides):
    raw = {
        "demographics": {"age": 40, "gender": "female", "weight": 70, "height": 165},
        "medical_history": [
            {"condition": "Hypertension", "icd10_code": "I10", "severity": "moderate"},
        ],
        "allergies": [{"allergen": "penicillin", "reaction": "rash", "severity": "mild"}],
        "vital_signs": {
            "heart_rate": 72,
            "temperature": 36.8,
            "blood_pressure": {"systolic": 120, "diastolic": 80},
        },
    }
    raw.update(overrides)
    return raw


# ── Prescription ───────────────────────────────────────────────────────────

class TestPrescription:
    def test_valid_prescription_constructs(self):
        p = Prescription.model_validate(rx("11289"))
        assert p.drug_id == "11289"
        assert p.route is Route.ORAL
        assert p.frequency == "once daily"

    def test_prescription_is_immutable(self):
        p = Prescription.model_validate(rx("11289"))
        with pytest.raises(ValidationError):
            p.dose = 20

    @pytest.mark.parametrize("dose", [0, -5])
    def test_non_positive_dose_rejected(self, dose):
        with pytest.raises(ValidationError) as exc_info:
            Prescription.model_validate(rx("11289", dose=dose))
        assert exc_info.value.errors()[0]["loc"] == ("dose",)

    @pytest.mark.parametrize("dose", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_dose_rejected(self, dose):
        with pytest.raises(ValidationError) as exc_info:
            Prescription.model_validate(rx("723", dose=dose))
        assert exc_info.value.errors()[0]["loc"] == ("dose",)

    def test_non_numeric_drug_code_rejected(self):
        with pytest.raises(ValidationError):
            Prescription.model_validate(rx("WARF-1"))

    @pytest.mark.parametrize("raw,expected", [
        ("PO", Route.ORAL),
        ("iv", Route.INTRAVENOUS),
        ("IM", Route.INTRAMUSCULAR),
        ("sq", Route.SUBCUTANEOUS),
        ("Topical", Route.TOPICAL),
    ])
    def test_route_abbreviations_normalised(self, raw, expected):
        assert Prescription.model_validate(rx("1191", route=raw)).route is expected

    def test_unknown_route_rejected(self):
        with pytest.raises(ValidationError):
            Prescription.model_validate(rx("1191", route="intranasal"))

    @pytest.mark.parametrize("raw,expected", [
        ("BID", "twice daily"),
        ("tid", "three times daily"),
        ("QHS", "at bedtime"),
        ("prn", "as needed"),
        ("q8h", "every 8 hours"),
        ("Every 6 hours", "every 6 hours"),
        ("every 1 hour", "every 1 hours"),
        ("  twice   daily ", "twice daily"),
    ])
    def test_frequency_normalised(self, raw, expected):
        assert Prescription.model_validate(rx("1191", frequency=raw)).frequency == expected

    @pytest.mark.parametrize("raw", ["whenever", "every 0 hours", "q96h", "every 73 hours"])
    def test_bad_frequency_rejected(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            Prescription.model_validate(rx("1191", frequency=raw))
        assert exc_info.value.errors()[0]["loc"] == ("frequency",)

    def test_end_date_must_follow_start_date(self):
        with pytest.raises(ValidationError) as exc_info:
            Prescription.model_validate(rx("1191", start_date="2026-03-01", end_date="2026-03-01"))
        issues = issues_from_validation_error(exc_info.value, "PRESCRIPTION_VALIDATION_ERROR")
        assert [i.field for i in issues] == ["end_date"]
        assert issues[0].message == "End date must be after the start date."

    def test_end_date_after_start_accepted(self):
        p = Prescription.model_validate(rx("1191", start_date="2026-03-01", end_date="2026-03-08"))
        assert p.end_date.isoformat() == "2026-03-08"

    def test_shape_error_carries_issues(self):
        with pytest.raises(ValidationError) as exc_info:
            Prescription.model_validate(rx("1191", dose=0, unit=""))
        err = PrescriptionShapeError(issues_from_validation_error(exc_info.value, "X"))
        assert {i.field for i in err.issues} == {"dose", "unit"}
        assert str(err).startswith("Invalid prescription:")


# ── Knowledge-base records ─────────────────────────────────────────────────

class TestDrugInteractionRule:
    def test_drug_ids_sorted_and_deduplicated(self):
        rule = make_rule("R1", ["1191", "11289", "1191"], "major")
        assert rule.drug_ids == ("11289", "1191")

    def test_single_drug_rejected(self):
        with pytest.raises(ValidationError):
            make_rule("R1", ["1191", "1191"], "major")

    def test_severity_case_insensitive(self):
        assert make_rule("R1", ["1", "2"], "MAJOR").severity is InteractionSeverity.MAJOR

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValidationError):
            make_rule("R1", ["1", "2"], "catastrophic")

    def test_severity_ordering(self):
        ranks = [s.rank for s in (
            InteractionSeverity.MINOR, InteractionSeverity.MODERATE,
            InteractionSeverity.MAJOR, InteractionSeverity.CONTRAINDICATED,
        )]
        assert ranks == sorted(ranks)
        assert InteractionSeverity.MAJOR.is_critical
        assert InteractionSeverity.CONTRAINDICATED.is_critical
        assert not InteractionSeverity.MODERATE.is_critical


class TestAllergyRecords:
    def test_allergy_enums_normalised(self):
        a = Allergy(allergen="penicillin", reaction="Anaphylaxis", severity="SEVERE")
        assert a.reaction is ReactionType.ANAPHYLAXIS
        assert a.severity is AllergySeverity.SEVERE

    def test_allergy_severity_optional(self):
        assert Allergy(allergen="latex", reaction="rash").severity is None

    @pytest.mark.parametrize("xr", [-0.01, 1.01])
    def test_cross_reactivity_out_of_range_rejected(self, xr):
        with pytest.raises(ValidationError):
            AllergyDrugMapping(allergen="penicillin", related_drug_ids=["723"], cross_reactivity=xr)

    @pytest.mark.parametrize("xr", [0.0, 1.0])
    def test_cross_reactivity_bounds_inclusive(self, xr):
        m = AllergyDrugMapping(allergen="penicillin", related_drug_ids=["723"], cross_reactivity=xr)
        assert m.cross_reactivity == xr


# ── PatientPersona ─────────────────────────────────────────────────────────

class TestPatientPersona:
    def test_valid_persona(self):
        patient = PatientPersona.model_validate(_patient())
        assert patient.demographics.age == 40
        assert patient.vital_signs.heart_rate == 72

    def test_empty_vitals_mean_not_recorded(self):
        assert PatientPersona.model_validate(_patient(vital_signs={})).vital_signs is None

    def test_vitals_use_persona_age(self):
        # 130 bpm is normal for an infant and tachycardic for an adult.
        vitals = {
            "heart_rate": 130,
            "temperature": 37.0,
            "blood_pressure": {"systolic": 85, "diastolic": 55},
        }
        infant = _patient(
            demographics={"age": 0, "gender": "male", "weight": 4, "height": 55},
            vital_signs=vitals,
        )
        assert PatientPersona.model_validate(infant).vital_signs.heart_rate == 130
        with pytest.raises(ValidationError) as exc_info:
            PatientPersona.model_validate(_patient(vital_signs=vitals))
        locs = [e["loc"] for e in exc_info.value.errors()]
        assert ("vital_signs", "heart_rate") in locs

    @pytest.mark.parametrize("field", ["weight", "height"])
    def test_non_finite_body_measurements_rejected(self, field):
        demographics = {"age": 40, "gender": "female", "weight": 70, "height": 165}
        demographics[field] = float("nan")
        with pytest.raises(ValidationError) as exc_info:
            PatientPersona.model_validate(_patient(demographics=demographics))
        assert [e["loc"] for e in exc_info.value.errors()] == [("demographics", field)]

    def test_bad_icd10_code_reported_with_path(self):
        raw = _patient(medical_history=[
            {"condition": "Diabetes", "icd10_code": "diabetes", "severity": "mild"},
        ])
        with pytest.raises(ValidationError) as exc_info:
            PatientPersona.model_validate(raw)
        issues = issues_from_validation_error(exc_info.value, "VALIDATION_ERROR")
        assert issues[0].field == "medical_history.0.icd10_code"


# ── issues_from_validation_error ───────────────────────────────────────────

def test_issue_prefix_applied():
    with pytest.raises(ValidationError) as exc_info:
        Prescription.model_validate(rx("1191", dose=-1))
    issues = issues_from_validation_error(
        exc_info.value, "PRESCRIPTION_VALIDATION_ERROR", prefix="existing_prescriptions.2",
    )
    assert issues[0].field == "existing_prescriptions.2.dose"
    assert issues[0].code == "PRESCRIPTION_VALIDATION_ERROR"
    assert issues[0].kind == "error"


def test_critical_alert_requires_an_interaction():
    with pytest.raises(ValidationError):
        CriticalAlert(patient_id="P001", interactions=[])
    alert = CriticalAlert(patient_id="P001", interactions=[make_rule("R1", ["1", "2"], "major")])
    assert alert.type == "critical_drug_interaction"
    assert alert.requires_immediate_attention is True
