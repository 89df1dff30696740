"""
drug_interaction_service.py
---------------------------
RxGuard — Medication Safety Validation Engine — Drug interaction service
------------------------------------------------------------------------
Orchestrates the interaction check for a new prescription: merges the
candidate with the patient's existing prescriptions, queries the knowledge
source, classifies what it finds, escalates critical findings, writes the
audit trail, and builds recommendations.

Escalation:
  - Every critical rule (major or contraindicated) gets its own audit row and
    its own CriticalAlert. These calls run concurrently.
  - Exactly one summary audit row is written after all of them have been
    attempted, whether or not any failed.
  - A failed escalation step raises EscalationError after the summary row.

Failure policy:
  A knowledge-source failure raises KnowledgeSourceError. It is never read
  as "no interactions", and nothing is audited for a check that could not run.

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Sequence, Union

from langsmith import traceable
from pydantic import ValidationError

from collaborators import (
    AuditLogError,
    AuditLogger,
    CollaboratorError,
    EscalationError,
    InteractionKnowledgeSource,
    KnowledgeSourceError,
    NotificationService,
)
from interactions import find_active_interactions
from safety_guidelines import SEVERITY_RECOMMENDATIONS
from schemas import (
    CriticalAlert,
    DrugInteractionOutcome,
    DrugInteractionRule,
    InteractionCheckEvent,
    Prescription,
    PrescriptionShapeError,
    issues_from_validation_error,
)

logger = logging.getLogger(__name__)

PrescriptionInput = Union[Prescription, dict]


def build_recommendations(rules: Iterable[DrugInteractionRule]) -> List[str]:
    """Each rule's own advice followed by its severity line, de-duplicated in order."""
    seen = set()
    out: List[str] = []
    for rule in rules:
        for text in (rule.recommendation, SEVERITY_RECOMMENDATIONS[rule.severity.value]):
            if text not in seen:
                seen.add(text)
                out.append(text)
    return out


class DrugInteractionService:
    """
    Args:
        knowledge_source:     Where interaction rules come from.
        audit_logger:         Receives critical and summary audit records.
        notification_service: Receives one CriticalAlert per critical rule.
    """

    def __init__(
        self,
        knowledge_source: InteractionKnowledgeSource,
        audit_logger: AuditLogger,
        notification_service: NotificationService,
    ) -> None:
        self.knowledge_source = knowledge_source
        self.audit_logger = audit_logger
        self.notification_service = notification_service

    # ── Shape ────────────────────────────────────────────────────────────────

    @staticmethod
    def validate_prescription(raw: Any) -> Prescription:
        """
        Return ``raw`` as a validated Prescription.

        Raises:
            PrescriptionShapeError: carrying one ValidationIssue per bad field.
        """
        if isinstance(raw, Prescription):
            return raw
        try:
            return Prescription.model_validate(raw)
        except ValidationError as exc:
            raise PrescriptionShapeError(
                issues_from_validation_error(exc, "PRESCRIPTION_VALIDATION_ERROR")
            ) from exc

    # ── Lookup ───────────────────────────────────────────────────────────────

    async def _lookup(self, drug_ids: List[str]) -> List[DrugInteractionRule]:
        try:
            found = await self.knowledge_source.find_interactions(drug_ids)
        except KnowledgeSourceError as exc:
            logger.error("DrugInteractionService: knowledge lookup failed: %s", exc)
            raise
        except Exception as exc:
            logger.error("DrugInteractionService: knowledge lookup failed: %s", exc)
            raise KnowledgeSourceError(f"Interaction lookup failed: {exc}") from exc
        return find_active_interactions(drug_ids, found)

    async def check_prescription_interactions(
        self, prescriptions: Sequence[PrescriptionInput]
    ) -> List[DrugInteractionRule]:
        """
        Interactions among ``prescriptions``, without audit or notification.

        Raises:
            PrescriptionShapeError: if any prescription is malformed.
            KnowledgeSourceError:   if the lookup fails.
        """
        validated = [self.validate_prescription(p) for p in prescriptions]
        drug_ids = sorted({p.drug_id for p in validated})
        if len(drug_ids) < 2:
            return []
        return await self._lookup(drug_ids)

    # ── Main check ───────────────────────────────────────────────────────────

    @traceable
    async def check_new_prescription(
        self,
        patient_id: str,
        candidate: PrescriptionInput,
        existing_prescriptions: Sequence[PrescriptionInput],
    ) -> DrugInteractionOutcome:
        """
        Check a candidate prescription against the patient's existing ones.

        Args:
            patient_id:             Patient the order is for.
            candidate:              The new prescription (model or raw dict).
            existing_prescriptions: The patient's current prescriptions.

        Returns:
            DrugInteractionOutcome: is_valid is False when any critical
            interaction was found.

        Raises:
            PrescriptionShapeError: candidate or existing prescription malformed (no I/O done).
            KnowledgeSourceError:   lookup failed (nothing audited).
            AuditLogError:          the summary audit row could not be written.
            EscalationError:        a per-rule audit write or alert failed.
        """
        candidate_rx = self.validate_prescription(candidate)
        existing = [self.validate_prescription(p) for p in existing_prescriptions]

        drug_ids = sorted({p.drug_id for p in existing} | {candidate_rx.drug_id})
        interactions = await self._lookup(drug_ids)
        # most severe first; catalog order within a tier
        critical = sorted(
            (rule for rule in interactions if rule.severity.is_critical),
            key=lambda rule: -rule.severity.rank,
        )

        await self._escalate(patient_id, drug_ids, interactions, critical)

        if critical:
            logger.warning(
                "DrugInteractionService: %d critical interaction(s) for patient %s: %s",
                len(critical), patient_id, ", ".join(r.id for r in critical),
            )
        return DrugInteractionOutcome(
            is_valid=not critical,
            interactions=interactions,
            critical_interactions=critical,
            recommendations=build_recommendations(interactions),
        )

    async def _escalate(
        self,
        patient_id: str,
        drug_ids: List[str],
        interactions: List[DrugInteractionRule],
        critical: List[DrugInteractionRule],
    ) -> None:
        steps = []
        for rule in critical:
            steps.append(self.audit_logger.log_critical_interaction(rule, patient_id))
            steps.append(self.notification_service.send_critical_alert(
                CriticalAlert(patient_id=patient_id, interactions=[rule])
            ))
        results = await asyncio.gather(*steps, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            logger.error(
                "DrugInteractionService: escalation step failed for patient %s: %r",
                patient_id, failure,
            )

        event = InteractionCheckEvent(
            patient_id=patient_id,
            drug_ids=drug_ids,
            interactions_found=len(interactions),
            critical_interactions_found=len(critical),
        )
        try:
            await self.audit_logger.log_interaction_check(event)
        except CollaboratorError:
            logger.error("DrugInteractionService: summary audit failed for patient %s.", patient_id)
            raise
        except Exception as exc:
            logger.error("DrugInteractionService: summary audit failed for patient %s.", patient_id)
            raise AuditLogError(f"Summary audit write failed: {exc}") from exc

        if failures:
            raise EscalationError(patient_id, failures) from failures[0]
