"""
main.py
-------
RxGuard — Medication Safety Validation Engine — FastAPI server
--------------------------------------------------------------
Exposes the medical validation façade to the order-entry workflow.

An order may be finalized only when validation completed AND reported no
blocking error. Every validation response carries ``finalize_allowed``; a
collaborator failure (knowledge base, audit log, alerting) is a 503 with
``finalize_allowed: false``, never an empty "all clear".

Endpoints:
    GET  /health                   — Service health check
    POST /validate/patient         — Patient persona shape + vital-sign plausibility
    POST /validate/vitals          — Age/gender-aware vital-sign range check
    POST /validate/blood-pressure  — Single blood pressure reading
    POST /validate/prescription    — Full safety report for a candidate prescription
    POST /safety-check             — Whole-patient review across all prescriptions

Project: RxGuard — Medication Safety Validation Engine
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from collaborators import CollaboratorError
from medical_validation import MedicalValidationService, build_validation_service
from schemas import PrescriptionShapeError, issues_from_validation_error

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ── Config ─────────────────────────────────────────────────────────────────────

VERSION = "1.0.0"
SERVICE_NAME = "RxGuard Medication Safety Validation Engine"

# Built on first request so importing this module touches no files.
_service: Optional[MedicalValidationService] = None


def get_validation_service() -> MedicalValidationService:
    global _service
    if _service is None:
        _service = build_validation_service()
    return _service


# ── FastAPI app ────────────────────────────────────────────────────────────────

app = FastAPI(
    title=SERVICE_NAME,
    version=VERSION,
    description="Safety validation for prescriptions, patient records and vital signs.",
)


@app.exception_handler(CollaboratorError)
async def collaborator_error_handler(request: Request, exc: CollaboratorError) -> JSONResponse:
    """Validation could not complete: the order must not be finalized."""
    logger.error("main: %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={
            "error": type(exc).__name__,
            "detail": str(exc),
            "finalize_allowed": False,
        },
    )


# ── Request models ─────────────────────────────────────────────────────────────
# Payload fields are ``Any`` so malformed records reach the engine and come
# back as field-level issues instead of a bare 422.

class VitalSignsRequest(BaseModel):
    """Request body for POST /validate/vitals."""
    vital_signs: Any
    age: float = Field(ge=0, le=150)
    gender: str = "all"


class PrescriptionCheckRequest(BaseModel):
    """Request body for POST /validate/prescription."""
    patient_id: str = Field(min_length=1)
    candidate: Any
    existing_prescriptions: List[Any] = Field(default_factory=list)
    patient_allergies: List[Any] = Field(default_factory=list)


class SafetyCheckRequest(BaseModel):
    """Request body for POST /safety-check."""
    patient: Any
    prescriptions: List[Any] = Field(default_factory=list)


def _with_finalize(payload: dict, allowed: bool) -> dict:
    return {**payload, "finalize_allowed": allowed}


# ── Endpoints ──────────────────────────────────────────────────────────────────

@app.get("/health")
def health_check() -> dict:
    """
    Return service health status.

    Returns:
        dict: service, version, status, timestamp.
    """
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/validate/patient")
def validate_patient(
    payload: Any = Body(default=None),
    service: MedicalValidationService = Depends(get_validation_service),
) -> dict:
    result = service.validate_patient_record(payload)
    return _with_finalize(result.model_dump(mode="json"), result.is_valid)


@app.post("/validate/vitals")
def validate_vitals(
    request: VitalSignsRequest,
    service: MedicalValidationService = Depends(get_validation_service),
) -> dict:
    result = service.validate_vital_signs(request.vital_signs, request.age, request.gender)
    return _with_finalize(result.model_dump(mode="json"), result.is_valid)


@app.post("/validate/blood-pressure")
def validate_blood_pressure(
    payload: Any = Body(default=None),
    service: MedicalValidationService = Depends(get_validation_service),
) -> dict:
    result = service.validate_blood_pressure(payload)
    return _with_finalize(result.model_dump(mode="json"), result.is_valid)


@app.post("/validate/prescription")
async def validate_prescription(
    request: PrescriptionCheckRequest,
    service: MedicalValidationService = Depends(get_validation_service),
) -> dict:
    """
    Full safety report for one candidate prescription.

    Returns:
        dict: MedicalValidationResult fields plus ``finalize_allowed``.
        A collaborator failure is answered with 503 by the exception handler.
    """
    result = await service.validate_new_prescription(
        request.patient_id,
        request.candidate,
        request.existing_prescriptions,
        request.patient_allergies,
    )
    return _with_finalize(result.model_dump(mode="json"), result.is_valid)


@app.post("/safety-check")
async def safety_check(
    request: SafetyCheckRequest,
    service: MedicalValidationService = Depends(get_validation_service),
):
    """Whole-patient review. Malformed records are a 422 with field-level issues."""
    try:
        result = await service.perform_comprehensive_safety_check(
            request.patient, request.prescriptions
        )
    except PrescriptionShapeError as exc:
        issues = [issue.model_dump(mode="json") for issue in exc.issues]
        return JSONResponse(status_code=422, content=_with_finalize({"errors": issues}, False))
    except ValidationError as exc:
        issues = [i.model_dump(mode="json") for i in issues_from_validation_error(exc, "VALIDATION_ERROR")]
        return JSONResponse(status_code=422, content=_with_finalize({"errors": issues}, False))
    return _with_finalize(result.model_dump(mode="json"), result.is_safe)
