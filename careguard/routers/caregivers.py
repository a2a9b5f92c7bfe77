"""
Caregiver Notification API Router

Endpoints for caregivers to see and acknowledge their notifications,
record what they did, and for operators to run the chain sweep.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from careguard.core.exceptions import Forbidden, NotFound
from careguard.dependencies import get_current_user, get_engine, verify_internal_api_key
from careguard.models.directory_models import User
from careguard.schemas.emergency import (
    CaregiverActionRequest,
    CaregiverActionResponse,
    CaregiverNotificationResponse,
    CaregiverSweepResponse,
)
from careguard.services.alert_engine import EscalationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/caregivers", tags=["caregivers"])


@router.get("/notifications", response_model=List[CaregiverNotificationResponse])
def list_pending_notifications(
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    return engine.caregivers.get_pending_notifications(current_user.id)


@router.post("/notifications/{notification_id}/acknowledge", response_model=CaregiverNotificationResponse)
def acknowledge_notification(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    notification = engine.caregivers.acknowledge(notification_id, current_user.id)
    if notification is None:
        raise NotFound("Notification not found or expired", notification_id)
    return notification


@router.post("/actions", response_model=CaregiverActionResponse, status_code=201)
def log_action(
    request: CaregiverActionRequest,
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    return engine.caregivers.log_caregiver_action(
        patient_id=request.patient_id,
        caregiver_id=current_user.id,
        action=request.action,
        alert_id=request.alert_id,
        notification_id=request.notification_id,
        notes=request.notes,
    )


@router.get("/patients/{patient_id}/activity", response_model=List[CaregiverActionResponse])
def get_patient_activity(
    patient_id: str,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    """Caregiver activity for a patient; visible to the patient and their caregivers"""
    if current_user.id != patient_id and not engine.directory.has_caregiver_access(current_user.id, patient_id):
        raise Forbidden("Access denied", patient_id)
    return engine.caregivers.get_caregiver_activity(patient_id, limit=limit)


@router.post("/_internal/escalations", response_model=CaregiverSweepResponse)
def run_caregiver_sweep(
    _: str = Depends(verify_internal_api_key),
    engine: EscalationEngine = Depends(get_engine),
):
    return CaregiverSweepResponse(checked=engine.caregivers.check_pending_escalations())
