"""
collaborators.py
----------------
RxGuard — Medication Safety Validation Engine — Collaborator contracts
----------------------------------------------------------------------
Interfaces for the three external collaborators the engine talks to, and
the exceptions they raise. Implementations are injected into the services
so tests can substitute deterministic fakes.

Interfaces:
    - InteractionKnowledgeSource: find_interactions(drug_ids)
    - AuditLogger:                log_interaction_check(event),
                                  log_critical_interaction(rule, patient_id)
    - NotificationService:        send_critical_alert(alert)

Exceptions (all subclasses of CollaboratorError):
    - KnowledgeSourceError: interaction lookup failed or returned bad data
    - AuditLogError:        an audit record could not be written
    - NotificationError:    a critical alert could not be delivered
    - EscalationError:      one or more per-interaction escalation steps failed

A CollaboratorError always fails the validation call. It is never read as
"no issues found".

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from schemas import CriticalAlert, DrugInteractionRule, InteractionCheckEvent


class CollaboratorError(Exception):
    """Base class for failures of an external collaborator."""


class KnowledgeSourceError(CollaboratorError):
    """Raised when the interaction knowledge source cannot answer."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AuditLogError(CollaboratorError):
    """Raised when an audit record cannot be persisted."""


class NotificationError(CollaboratorError):
    """Raised when a critical alert cannot be delivered."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class EscalationError(CollaboratorError):
    """
    Raised after a check when critical-interaction escalation partly failed.

    Attributes:
        failures: every exception raised by the audit/notification calls.
    """

    def __init__(self, patient_id: str, failures: List[BaseException]) -> None:
        self.patient_id = patient_id
        self.failures = failures
        super().__init__(
            f"Critical interaction escalation failed for patient {patient_id}: "
            f"{len(failures)} step(s) did not complete ({failures[0]!r})."
        )


@runtime_checkable
class InteractionKnowledgeSource(Protocol):
    async def find_interactions(self, drug_ids: List[str]) -> List[DrugInteractionRule]:
        """Return every known rule whose drug set is contained in ``drug_ids``."""
        ...


@runtime_checkable
class AuditLogger(Protocol):
    async def log_interaction_check(self, event: InteractionCheckEvent) -> None:
        ...

    async def log_critical_interaction(self, rule: DrugInteractionRule, patient_id: str) -> None:
        ...


@runtime_checkable
class NotificationService(Protocol):
    async def send_critical_alert(self, alert: CriticalAlert) -> None:
        ...
