from fastapi import APIRouter, Depends, Query
from typing import Optional
from clinic_scheduler.models.payment import PaymentStatus
from clinic_scheduler.schemas.payment import ApplyCreditRequest, MarkPaidRequest
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.routes.dependencies import get_scheduling_service
from clinic_scheduler.utils.response import APIResponse

router = APIRouter(prefix="/payments", tags=["Payments"])

@router.get("/", summary="List payments")
def list_payments(
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Newest payments first, optionally filtered by status"""
    return APIResponse.success(service.list_payments(status=payment_status, limit=limit))

@router.get("/appointment/{appointment_id}", summary="Payment status of an appointment")
def get_payment_status(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    return APIResponse.success(service.get_payment_status(appointment_id))

@router.post(
    "/appointment/{appointment_id}/mark-paid",
    summary="Register a manual payment",
    responses={
        200: {"description": "Payment marked paid and appointment confirmed"},
        409: {"description": "Payment already settled or appointment cancelled"}
    }
)
def mark_paid(
    appointment_id: int,
    payment: MarkPaidRequest,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """
    Mark the pending payment of an appointment as paid

    - **payment_method**: cash, card, transfer...
    - **amount**: optional override of the resolved fee
    """
    paid = service.mark_paid(
        appointment_id,
        payment.payment_method,
        amount=payment.amount,
        notes=payment.notes,
        paid_by=payment.paid_by
    )
    return APIResponse.success(paid, message="Payment registered")

@router.post(
    "/apply-credit",
    summary="Pay an appointment with a credit",
    responses={
        200: {"description": "Credit consumed and target paid"},
        409: {"description": "Credit not available or target already paid"},
        422: {"description": "Credit does not cover the target amount"}
    }
)
def apply_credit(request: ApplyCreditRequest, service: SchedulingService = Depends(get_scheduling_service)):
    application = service.apply_credit(request.credit_payment_id, request.target_appointment_id, paid_by=request.paid_by)
    return APIResponse.success(application, message="Credit applied")

@router.get("/credits/{patient_id}", summary="Available credits of a patient")
def get_patient_credits(patient_id: str, service: SchedulingService = Depends(get_scheduling_service)):
    return APIResponse.success(service.get_patient_credits(patient_id))
