"""
medical_validation.py
---------------------
RxGuard — Medication Safety Validation Engine — Medical validation façade
-------------------------------------------------------------------------
Top-level entry point for the order-entry workflow. Composes record-shape
validation, the drug interaction service and the allergy conflict checker
into one report per call.

Merge policy for validate_new_prescription:
    critical interaction (major, contraindicated) → error   CRITICAL_DRUG_INTERACTION
    moderate interaction                          → warning MODERATE_DRUG_INTERACTION
    minor interaction                             → sub-result only
    high-risk allergy conflict                    → error   HIGH_RISK_ALLERGY_CONFLICT
    medium-risk allergy conflict                  → warning MEDIUM_RISK_ALLERGY_CONFLICT
    low-risk allergy conflict                     → sub-result only
    is_valid = no errors

Shape problems never raise from the validate_* operations: they come back as
ValidationIssues with dotted field paths. Collaborator failures always raise.

Key objects:
    - MedicalValidationService
    - build_validation_service(settings=None): wiring from configuration

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Tuple

from langsmith import traceable
from pydantic import ValidationError

from allergy_check import find_conflicts
from audit_log import SqliteAuditLogger
from collaborators import AuditLogger, InteractionKnowledgeSource, NotificationService
from drug_interaction_service import DrugInteractionService, build_recommendations
from interactions import InMemoryKnowledgeBase, load_allergy_mappings
from knowledge_client import HttpKnowledgeSource
from notifications import LoggingNotificationService, WebhookNotificationService
from safety_guidelines import (
    DOSING_REVIEW_AGE,
    DOSING_REVIEW_RECOMMENDATION,
    EngineSettings,
    RiskThresholds,
    load_settings,
)
from schemas import (
    Allergy,
    AllergyConflict,
    AllergyDrugMapping,
    BloodPressure,
    BloodPressureValidationResult,
    DrugInteractionOutcome,
    InteractionSeverity,
    MedicalValidationResult,
    PatientPersona,
    PatientValidationResult,
    Prescription,
    RiskLevel,
    SafetyCheckResult,
    ValidationIssue,
    VitalSignsValidationResult,
    issues_from_validation_error,
)
from vital_signs import build_vital_signs

logger = logging.getLogger(__name__)

PRESCRIPTION_CODE = "PRESCRIPTION_VALIDATION_ERROR"


def _dedupe(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _interaction_message(rule) -> str:
    return (
        f"{rule.severity.value.capitalize()} interaction between drugs "
        f"{', '.join(rule.drug_ids)}: {rule.clinical_effect}"
    )


def _conflict_message(conflict: AllergyConflict) -> str:
    return (
        f"{conflict.risk_level.value.capitalize()}-risk allergy conflict: drug "
        f"{conflict.conflicting_drug_id} is related to documented allergen "
        f"'{conflict.allergen}' (cross-reactivity {conflict.cross_reactivity * 100:.0f}%)."
    )


class MedicalValidationService:
    """
    Façade over the safety checks.

    Args:
        knowledge_source:     Interaction knowledge source.
        audit_logger:         Audit trail for interaction checks.
        notification_service: Critical alert delivery.
        allergy_mappings:     Allergen → related drug reference data.
        thresholds:           Allergy risk cut-offs; defaults when omitted.
    """

    def __init__(
        self,
        knowledge_source: InteractionKnowledgeSource,
        audit_logger: AuditLogger,
        notification_service: NotificationService,
        allergy_mappings: Sequence[AllergyDrugMapping],
        thresholds: Optional[RiskThresholds] = None,
    ) -> None:
        self.drug_interactions = DrugInteractionService(
            knowledge_source, audit_logger, notification_service
        )
        self.allergy_mappings = tuple(allergy_mappings)
        self.thresholds = thresholds or RiskThresholds()

    # ── Record shape ─────────────────────────────────────────────────────────

    def validate_patient_record(self, raw: Any) -> PatientValidationResult:
        """Validate a generated patient persona; one issue per violated field."""
        try:
            patient = PatientPersona.model_validate(raw)
        except ValidationError as exc:
            errors = issues_from_validation_error(exc, "VALIDATION_ERROR")
            logger.info("MedicalValidationService: patient record rejected (%d issue(s)).", len(errors))
            return PatientValidationResult(is_valid=False, errors=errors)
        return PatientValidationResult(is_valid=True, patient=patient)

    def validate_vital_signs(
        self, raw: Any, age: float, gender: str = "all"
    ) -> VitalSignsValidationResult:
        """Check a vital-sign reading against the ranges for ``age`` and ``gender``."""
        try:
            vitals = build_vital_signs(raw, age, gender)
        except ValidationError as exc:
            return VitalSignsValidationResult(
                is_valid=False,
                errors=issues_from_validation_error(exc, "VITAL_SIGNS_ERROR"),
            )
        return VitalSignsValidationResult(is_valid=True, vital_signs=vitals)

    def validate_blood_pressure(self, raw: Any) -> BloodPressureValidationResult:
        try:
            reading = BloodPressure.model_validate(raw)
        except ValidationError as exc:
            return BloodPressureValidationResult(
                is_valid=False,
                errors=issues_from_validation_error(exc, "BLOOD_PRESSURE_ERROR"),
            )
        return BloodPressureValidationResult(is_valid=True, blood_pressure=reading)

    def _parse_order(
        self,
        candidate: Any,
        existing_prescriptions: Sequence[Any],
        patient_allergies: Sequence[Any],
    ) -> Tuple[Optional[Prescription], List[Prescription], List[Allergy], List[ValidationIssue]]:
        errors: List[ValidationIssue] = []

        def parse(model, raw, prefix):
            if isinstance(raw, model):
                return raw
            try:
                return model.model_validate(raw)
            except ValidationError as exc:
                errors.extend(issues_from_validation_error(exc, PRESCRIPTION_CODE, prefix=prefix))
                return None

        candidate_rx = parse(Prescription, candidate, None)
        existing = [
            parse(Prescription, raw, f"existing_prescriptions.{i}")
            for i, raw in enumerate(existing_prescriptions)
        ]
        allergies = [
            parse(Allergy, raw, f"patient_allergies.{i}")
            for i, raw in enumerate(patient_allergies)
        ]
        return candidate_rx, existing, allergies, errors

    # ── Prescription check ───────────────────────────────────────────────────

    @traceable
    async def validate_new_prescription(
        self,
        patient_id: str,
        candidate: Any,
        existing_prescriptions: Sequence[Any],
        patient_allergies: Sequence[Any],
    ) -> MedicalValidationResult:
        """
        Aggregate safety report for one candidate prescription.

        Args:
            patient_id:             Patient the order is for.
            candidate:              New prescription (model or raw dict).
            existing_prescriptions: Current prescriptions (models or raw dicts).
            patient_allergies:      Documented allergies (models or raw dicts).

        Returns:
            MedicalValidationResult: shape problems come back as
            PRESCRIPTION_VALIDATION_ERROR issues with no I/O performed.

        Raises:
            CollaboratorError: when the knowledge source, audit log or
                notification service fails. The order must not be finalized.
        """
        candidate_rx, existing, allergies, shape_errors = self._parse_order(
            candidate, existing_prescriptions, patient_allergies
        )
        if shape_errors:
            logger.info(
                "MedicalValidationService: order for patient %s rejected on shape (%d issue(s)).",
                patient_id, len(shape_errors),
            )
            return MedicalValidationResult(is_valid=False, errors=shape_errors)

        conflicts = find_conflicts(
            allergies, [*existing, candidate_rx], self.allergy_mappings, self.thresholds
        )
        outcome = await self.drug_interactions.check_new_prescription(
            patient_id, candidate_rx, existing
        )

        errors, warnings = self._merge(outcome, conflicts)
        result = MedicalValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            drug_interactions=outcome,
            allergy_conflicts=conflicts,
        )
        logger.info(
            "MedicalValidationService: patient %s drug %s → valid=%s (%d error(s), %d warning(s)).",
            patient_id, candidate_rx.drug_id, result.is_valid, len(errors), len(warnings),
        )
        return result

    @staticmethod
    def _merge(
        outcome: DrugInteractionOutcome, conflicts: Sequence[AllergyConflict]
    ) -> Tuple[List[ValidationIssue], List[ValidationIssue]]:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        for rule in outcome.interactions:
            if rule.severity.is_critical:
                errors.append(ValidationIssue(
                    code="CRITICAL_DRUG_INTERACTION",
                    message=_interaction_message(rule),
                ))
            elif rule.severity == InteractionSeverity.MODERATE:
                warnings.append(ValidationIssue(
                    code="MODERATE_DRUG_INTERACTION",
                    message=_interaction_message(rule),
                    kind="warning",
                ))

        for conflict in conflicts:
            if conflict.risk_level == RiskLevel.HIGH:
                errors.append(ValidationIssue(
                    code="HIGH_RISK_ALLERGY_CONFLICT",
                    message=_conflict_message(conflict),
                ))
            elif conflict.risk_level == RiskLevel.MEDIUM:
                warnings.append(ValidationIssue(
                    code="MEDIUM_RISK_ALLERGY_CONFLICT",
                    message=_conflict_message(conflict),
                    kind="warning",
                ))
        return errors, warnings

    # ── Whole-patient sweep ──────────────────────────────────────────────────

    @traceable
    async def perform_comprehensive_safety_check(
        self, patient: Any, prescriptions: Sequence[Any]
    ) -> SafetyCheckResult:
        """
        Review every current prescription of a patient at once.

        Nothing is audited or alerted here; this is a review sweep, not an
        order check.

        Raises:
            pydantic.ValidationError: if ``patient`` is not a valid persona.
            PrescriptionShapeError:   if a prescription is malformed.
            KnowledgeSourceError:     if the interaction lookup fails.
        """
        persona = patient if isinstance(patient, PatientPersona) else PatientPersona.model_validate(patient)
        validated = [self.drug_interactions.validate_prescription(p) for p in prescriptions]

        issues: List[str] = []
        recommendations: List[str] = []

        conflicts = find_conflicts(
            persona.allergies, validated, self.allergy_mappings, self.thresholds
        )
        for conflict in conflicts:
            if conflict.risk_level == RiskLevel.HIGH:
                issues.append(_conflict_message(conflict))
            recommendations.append(conflict.recommendation)

        interactions = await self.drug_interactions.check_prescription_interactions(validated)
        for rule in interactions:
            if rule.severity.is_critical:
                issues.append(_interaction_message(rule))
        recommendations.extend(build_recommendations(interactions))

        age = persona.demographics.age
        if age < DOSING_REVIEW_AGE["min"] or age > DOSING_REVIEW_AGE["max"]:
            recommendations.append(DOSING_REVIEW_RECOMMENDATION)

        return SafetyCheckResult(
            is_safe=not issues,
            issues=_dedupe(issues),
            recommendations=_dedupe(recommendations),
        )


def build_validation_service(settings: Optional[EngineSettings] = None) -> MedicalValidationService:
    """
    Wire a MedicalValidationService from configuration.

    Uses the remote knowledge base when ``interaction_kb_url`` is set, else
    the bundled JSON catalog; webhook alerts when
    ``critical_alert_webhook_url`` is set, else log-only alerts.

    Raises:
        KnowledgeSourceError: if a bundled catalog or mapping file is unreadable.
        AuditLogError:        if the audit DB cannot be initialised.
    """
    settings = settings or load_settings()

    if settings.interaction_kb_url:
        knowledge_source = HttpKnowledgeSource(settings.interaction_kb_url, settings.http_timeout)
    else:
        knowledge_source = InMemoryKnowledgeBase.from_json(settings.interaction_catalog_path)

    if settings.critical_alert_webhook_url:
        notifier = WebhookNotificationService(
            settings.critical_alert_webhook_url, settings.http_timeout
        )
    else:
        notifier = LoggingNotificationService()

    logger.info(
        "build_validation_service: knowledge=%s notifications=%s audit=%s",
        type(knowledge_source).__name__, type(notifier).__name__, settings.audit_db_path,
    )
    return MedicalValidationService(
        knowledge_source=knowledge_source,
        audit_logger=SqliteAuditLogger(settings.audit_db_path),
        notification_service=notifier,
        allergy_mappings=load_allergy_mappings(settings.allergy_mappings_path),
        thresholds=settings.thresholds,
    )
