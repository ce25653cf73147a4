from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from medislot.lifecycle.errors import LifecycleError
from medislot.models.appointment import Appointment


class RescheduleProposal(BaseModel):
    slot_id: int
    proposed_date: date
    proposed_time: str
    proposed_by: str


class AppointmentSnapshot(BaseModel):
    id: int
    custom_id: str
    patient_id: int
    doctor_id: int
    slot_id: int | None = None
    appointment_date: date
    appointment_time: str
    channel: str
    status: str
    payment_status: str
    consultation_fee: Decimal
    doctor_earnings: Decimal | None = None
    platform_commission: Decimal | None = None
    reason: str | None = None
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    doctor_notes: str | None = None
    completed_at: datetime | None = None
    pending_reschedule: RescheduleProposal | None = None
    reschedule_rejection_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, appointment: Appointment) -> 'AppointmentSnapshot':
        proposal = None
        if appointment.proposed_slot_id is not None:
            proposal = RescheduleProposal(
                slot_id=appointment.proposed_slot_id,
                proposed_date=appointment.proposed_date,
                proposed_time=appointment.proposed_time,
                proposed_by=appointment.proposed_by,
            )

        return cls(
            id=appointment.id,
            custom_id=appointment.custom_id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            slot_id=appointment.slot_id,
            appointment_date=appointment.appointment_date,
            appointment_time=appointment.appointment_time,
            channel=appointment.channel,
            status=appointment.status,
            payment_status=appointment.payment_status,
            consultation_fee=appointment.consultation_fee,
            doctor_earnings=appointment.doctor_earnings,
            platform_commission=appointment.platform_commission,
            reason=appointment.reason,
            rejection_reason=appointment.rejection_reason,
            cancellation_reason=appointment.cancellation_reason,
            cancelled_by=appointment.cancelled_by,
            cancelled_at=appointment.cancelled_at,
            doctor_notes=appointment.doctor_notes,
            completed_at=appointment.completed_at,
            pending_reschedule=proposal,
            reschedule_rejection_reason=appointment.reschedule_rejection_reason,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


class OperationResult(BaseModel):
    """Envelope returned by every write operation."""

    success: bool
    appointment: AppointmentSnapshot | None = None
    reason: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, snapshot: AppointmentSnapshot) -> 'OperationResult':
        return cls(success=True, appointment=snapshot)

    @classmethod
    def failed(cls, error: LifecycleError) -> 'OperationResult':
        return cls(success=False, reason=error.code, message=error.message)


class AppointmentPage(BaseModel):
    items: list[AppointmentSnapshot]
    total: int
    page: int
    limit: int
