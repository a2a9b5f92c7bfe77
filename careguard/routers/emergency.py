"""
Emergency Alert API Router

REST API endpoints for raising, acknowledging and resolving patient
emergency alerts, plus the internal escalation sweep trigger.

HIPAA Compliance:
- All patient endpoints require an authenticated caller
- Alert reads are limited to the patient and their active caregivers
- State transitions are audit logged by the alert lifecycle service
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from careguard.dependencies import get_current_user, get_engine, verify_internal_api_key
from careguard.models.directory_models import User
from careguard.schemas.emergency import (
    AcknowledgeAlertRequest,
    AlertDetailResponse,
    AlertResponse,
    CreateAlertRequest,
    EscalationSweepResponse,
    NotificationAttemptResponse,
    ResolveAlertRequest,
    SosRequest,
)
from careguard.schemas.enums import AlertStatus, AlertType
from careguard.services.alert_engine import EscalationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/emergency", tags=["emergency"])


@router.post("/alerts", response_model=AlertResponse, status_code=status.HTTP_201_CREATED)
def create_alert(
    request: CreateAlertRequest,
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    """Raise an emergency alert for the calling patient"""
    return engine.lifecycle.create(
        patient_id=current_user.id,
        alert_type=request.type,
        vital_sign_id=request.vital_sign_id,
        medication_id=request.medication_id,
        location=request.location,
        notes=request.notes,
        bypass_escalation=request.bypass_escalation,
    )


@router.post("/sos", response_model=AlertResponse, status_code=status.HTTP_201_CREATED)
def trigger_sos(
    request: SosRequest,
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    """SOS button: notify everyone and emergency services immediately"""
    logger.warning("SOS triggered")
    return engine.lifecycle.create(
        patient_id=current_user.id,
        alert_type=AlertType.MANUAL_TRIGGER,
        location=request.location,
        notes=request.notes,
        bypass_escalation=True,
    )


@router.get("/alerts", response_model=List[AlertResponse])
def list_alerts(
    status_filter: Optional[AlertStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    return engine.lifecycle.list_for_patient(current_user.id, status=status_filter, limit=limit)


@router.get("/alerts/active", response_model=List[AlertResponse])
def list_active_alerts(
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    return engine.lifecycle.list_active(current_user.id)


@router.get("/alerts/{alert_id}", response_model=AlertDetailResponse)
def get_alert(
    alert_id: str,
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    """Alert with its notification history"""
    alert, attempts = engine.lifecycle.get_with_notifications(alert_id, current_user.id)
    return AlertDetailResponse(
        alert=AlertResponse.model_validate(alert),
        notifications=[NotificationAttemptResponse.model_validate(a) for a in attempts],
    )


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
def acknowledge_alert(
    alert_id: str,
    request: AcknowledgeAlertRequest,
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    return engine.lifecycle.acknowledge(alert_id, current_user.id, notes=request.notes)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
def resolve_alert(
    alert_id: str,
    request: ResolveAlertRequest,
    current_user: User = Depends(get_current_user),
    engine: EscalationEngine = Depends(get_engine),
):
    return engine.lifecycle.resolve(
        alert_id,
        current_user.id,
        notes=request.notes,
        was_false_alarm=request.was_false_alarm,
    )


@router.post("/_internal/escalate", response_model=EscalationSweepResponse)
def run_escalation_sweep(
    _: str = Depends(verify_internal_api_key),
    engine: EscalationEngine = Depends(get_engine),
):
    """Run one escalation sweep on demand (external cron)"""
    return engine.escalation.escalate_unresponsive_alerts().to_dict()
