import hmac
from collections.abc import Callable

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from medislot.auth.dependencies import get_current_user, get_db
from medislot.core import config
from medislot.lifecycle.errors import LifecycleError, PersistenceUnavailableError
from medislot.lifecycle.results import AppointmentPage, AppointmentSnapshot, OperationResult
from medislot.models.user import User
from medislot.routes import common
from medislot.services.appointment_service import AppointmentService
from medislot.services.notifications import LoggingNotifier, Notifier
from medislot.services.settlement import LoggingWalletGateway, SettlementNotifier, WalletGateway

router = APIRouter(tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    slot_id: int
    channel: str
    reason: str | None = None

    @field_validator('channel')
    @classmethod
    def normalize_channel(cls, value: str) -> str:
        return value.strip().lower()


class ReasonRequest(BaseModel):
    # Blank reasons are rejected by the service so they surface as ValidationError.
    reason: str = ''


class RescheduleRequest(BaseModel):
    slot_id: int


class CompleteRequest(BaseModel):
    notes: str | None = None


class PaymentOutcomeRequest(BaseModel):
    outcome: str
    reference: str | None = None

    @field_validator('outcome')
    @classmethod
    def normalize_outcome(cls, value: str) -> str:
        return value.strip().lower()


def get_wallet_gateway() -> WalletGateway:
    return LoggingWalletGateway()


def get_notifier() -> Notifier:
    return LoggingNotifier()


def get_appointment_service(
    db: Session = Depends(get_db),
    gateway: WalletGateway = Depends(get_wallet_gateway),
    notifier: Notifier = Depends(get_notifier),
    clock=Depends(common.get_clock),
) -> AppointmentService:
    return AppointmentService(
        db,
        settlement=SettlementNotifier(db, gateway=gateway, clock=clock),
        notifier=notifier,
        clock=clock,
    )


def run_operation(operation: Callable[[], AppointmentSnapshot]) -> OperationResult:
    common.ensure_database_ready()

    try:
        return OperationResult.ok(operation())
    except LifecycleError as exc:
        raise common.lifecycle_http_error(exc) from exc
    except PersistenceUnavailableError as exc:
        raise common.database_unavailable() from exc


@router.post('', response_model=OperationResult, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(
        lambda: service.create(current_user.id, data.doctor_id, data.slot_id, data.channel, data.reason)
    )


@router.get('', response_model=AppointmentPage)
def list_my_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    common.ensure_database_ready()

    try:
        return service.list_for_user(current_user.id, status=status_filter, page=page, limit=limit)
    except LifecycleError as exc:
        raise common.lifecycle_http_error(exc) from exc
    except PersistenceUnavailableError as exc:
        raise common.database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentSnapshot)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    common.ensure_database_ready()

    try:
        return service.get(appointment_id, current_user.id)
    except LifecycleError as exc:
        raise common.lifecycle_http_error(exc) from exc
    except PersistenceUnavailableError as exc:
        raise common.database_unavailable() from exc


@router.post('/{appointment_id}/approve', response_model=OperationResult)
def approve_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(lambda: service.approve(appointment_id, current_user.id))


@router.post('/{appointment_id}/reject', response_model=OperationResult)
def reject_appointment(
    appointment_id: int,
    data: ReasonRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(lambda: service.reject(appointment_id, current_user.id, data.reason))


@router.post('/{appointment_id}/cancel', response_model=OperationResult)
def cancel_appointment(
    appointment_id: int,
    data: ReasonRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(lambda: service.cancel(appointment_id, current_user.id, data.reason))


@router.post('/{appointment_id}/complete', response_model=OperationResult)
def complete_appointment(
    appointment_id: int,
    data: CompleteRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(lambda: service.complete(appointment_id, current_user.id, data.notes))


@router.post('/{appointment_id}/reschedule', response_model=OperationResult)
def propose_reschedule(
    appointment_id: int,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(lambda: service.propose_reschedule(appointment_id, current_user.id, data.slot_id))


@router.post('/{appointment_id}/reschedule/accept', response_model=OperationResult)
def accept_reschedule(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(lambda: service.accept_reschedule(appointment_id, current_user.id))


@router.post('/{appointment_id}/reschedule/reject', response_model=OperationResult)
def reject_reschedule(
    appointment_id: int,
    data: ReasonRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return run_operation(lambda: service.reject_reschedule(appointment_id, current_user.id, data.reason))


@router.post('/{appointment_id}/payment', response_model=OperationResult)
def record_payment(
    appointment_id: int,
    data: PaymentOutcomeRequest,
    payment_secret: str = Header(default='', alias='X-Payment-Secret'),
    service: AppointmentService = Depends(get_appointment_service),
):
    if not config.PAYMENT_WEBHOOK_SECRET or not hmac.compare_digest(payment_secret, config.PAYMENT_WEBHOOK_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid payment callback secret.',
        )

    return run_operation(lambda: service.record_payment(appointment_id, data.outcome, data.reference))
