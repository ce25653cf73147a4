"""Appointment lifecycle controller.

Every write follows the same order: validate input, load the appointment and
the acting profile, check ownership, resolve the transition, reserve slots by
compare-and-set, then update the appointment conditioned on the status and
payment status that were read. Settlement intents are written in the same
transaction; delivery and notifications run after commit and never undo it.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medislot.core import config
from medislot.core.identifiers import generate_appointment_id
from medislot.lifecycle import state_machine
from medislot.lifecycle.errors import (
    InvalidStateError,
    LifecycleError,
    NotFoundError,
    PersistenceUnavailableError,
    SlotUnavailableError,
    UnauthorizedError,
    ValidationFailedError,
)
from medislot.lifecycle.results import AppointmentPage, AppointmentSnapshot
from medislot.lifecycle.state_machine import (
    AppointmentStatus,
    Channel,
    Operation,
    PaymentStatus,
    Role,
    SideEffect,
    Transition,
)
from medislot.models.appointment import Appointment
from medislot.models.slot import Slot
from medislot.services.notifications import LoggingNotifier, Notifier, notify_parties
from medislot.services.profiles import ProfileDirectory, UserProfile
from medislot.services.settlement import IntentType, SettlementNotifier
from medislot.services.slot_ledger import SlotLedger

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

_CLEARED_PROPOSAL = {
    'proposed_slot_id': None,
    'proposed_date': None,
    'proposed_time': None,
    'proposed_by': None,
}


def split_fee(fee: Decimal, commission_rate: float | None = None) -> tuple[Decimal, Decimal]:
    """Return (doctor earnings, platform commission) for a consultation fee."""
    rate = Decimal(str(config.PLATFORM_COMMISSION_RATE if commission_rate is None else commission_rate))
    fee = Decimal(fee).quantize(CENT, rounding=ROUND_HALF_UP)
    earnings = (fee * (Decimal('1') - rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return earnings, fee - earnings


def require_reason(value: str | None, label: str = 'A reason') -> str:
    normalized = (value or '').strip()
    if not normalized:
        raise ValidationFailedError(f'{label} is required.')
    if len(normalized) > config.MAX_REASON_LENGTH:
        raise ValidationFailedError(f'{label} must be {config.MAX_REASON_LENGTH} characters or fewer.')
    return normalized


def clean_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValidationFailedError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class AppointmentService:
    def __init__(
        self,
        db: Session,
        ledger: SlotLedger | None = None,
        settlement: SettlementNotifier | None = None,
        directory: ProfileDirectory | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.clock = clock
        self.ledger = ledger or SlotLedger(db, clock=clock)
        self.settlement = settlement or SettlementNotifier(db, clock=clock)
        self.directory = directory or ProfileDirectory(db)
        self.notifier = notifier or LoggingNotifier()

    # ----------------------- PATIENT --------------------------

    def create(
        self,
        patient_id: int,
        doctor_id: int,
        slot_id: int,
        channel: str,
        reason: str | None = None,
    ) -> AppointmentSnapshot:
        reason = clean_optional_text(reason, config.MAX_REASON_LENGTH, 'Reason')
        normalized_channel = (channel or '').strip().lower()
        if normalized_channel not in {item.value for item in Channel}:
            raise ValidationFailedError('Channel must be "video" or "chat".')

        with self._unit_of_work():
            patient = self._active_profile(patient_id)
            if patient.role != Role.PATIENT.value:
                raise UnauthorizedError('Only patients can book appointments.')

            doctor = self.directory.get_user_profile(doctor_id)
            if doctor.role != Role.DOCTOR.value:
                raise NotFoundError('Doctor not found.')
            if not doctor.is_active:
                raise SlotUnavailableError('Doctor is not accepting appointments.')

            fee = doctor.fee_for(normalized_channel)

            slot = self.ledger.get(slot_id)
            if slot.doctor_id != doctor_id:
                raise NotFoundError('Slot not found for this doctor.')
            self._ensure_slot_in_future(slot)

            self.ledger.reserve(slot.id)

            doctor_earnings, platform_commission = split_fee(fee)
            appointment = Appointment(
                custom_id=generate_appointment_id(),
                patient_id=patient_id,
                doctor_id=doctor_id,
                slot_id=slot.id,
                appointment_date=slot.date,
                appointment_time=slot.window,
                channel=normalized_channel,
                status=AppointmentStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                consultation_fee=fee,
                doctor_earnings=doctor_earnings,
                platform_commission=platform_commission,
                reason=reason,
            )
            self.db.add(appointment)
            self.db.flush()

            self.settlement.record(appointment, IntentType.CAPTURE, patient_id, appointment.consultation_fee)
            self.db.commit()

        logger.info('Appointment %s created for slot %s', appointment.id, slot_id)
        return self._after_commit(appointment, 'appointment_created')

    def accept_reschedule(self, appointment_id: int, acting_patient_id: int) -> AppointmentSnapshot:
        with self._unit_of_work():
            appointment, _actor, transition = self._resolve(
                appointment_id, acting_patient_id, Operation.ACCEPT_RESCHEDULE
            )
            self._execute(appointment, transition, {})

        return self._after_commit(appointment, 'reschedule_accepted')

    def reject_reschedule(self, appointment_id: int, acting_patient_id: int, reason: str) -> AppointmentSnapshot:
        reason = require_reason(reason)

        with self._unit_of_work():
            appointment, _actor, transition = self._resolve(
                appointment_id, acting_patient_id, Operation.REJECT_RESCHEDULE
            )
            self._execute(appointment, transition, {'reschedule_rejection_reason': reason})

        return self._after_commit(appointment, 'reschedule_rejected')

    # ----------------------- EITHER PARTY --------------------------

    def cancel(self, appointment_id: int, acting_user_id: int, reason: str) -> AppointmentSnapshot:
        reason = require_reason(reason)

        with self._unit_of_work():
            appointment, actor, transition = self._resolve(appointment_id, acting_user_id, Operation.CANCEL)
            self._execute(
                appointment,
                transition,
                {
                    'cancellation_reason': reason,
                    'cancelled_by': actor.role,
                    'cancelled_at': self.clock(),
                },
            )

        return self._after_commit(appointment, 'appointment_cancelled')

    # ==================== DOCTOR SIDE ====================

    def approve(self, appointment_id: int, acting_doctor_id: int) -> AppointmentSnapshot:
        with self._unit_of_work():
            appointment, _actor, transition = self._resolve(appointment_id, acting_doctor_id, Operation.APPROVE)
            self._execute(appointment, transition, {})

        return self._after_commit(appointment, 'appointment_approved')

    def reject(self, appointment_id: int, acting_doctor_id: int, reason: str) -> AppointmentSnapshot:
        reason = require_reason(reason)

        with self._unit_of_work():
            appointment, _actor, transition = self._resolve(appointment_id, acting_doctor_id, Operation.REJECT)
            self._execute(appointment, transition, {'rejection_reason': reason})

        return self._after_commit(appointment, 'appointment_rejected')

    def propose_reschedule(
        self,
        appointment_id: int,
        acting_doctor_id: int,
        candidate_slot_id: int,
    ) -> AppointmentSnapshot:
        with self._unit_of_work():
            appointment, actor, transition = self._resolve(
                appointment_id, acting_doctor_id, Operation.PROPOSE_RESCHEDULE
            )

            candidate = self.ledger.get(candidate_slot_id)
            if candidate.doctor_id != appointment.doctor_id:
                raise NotFoundError('Slot not found for this doctor.')
            if candidate.id == appointment.slot_id:
                raise ValidationFailedError('The proposed slot is the one already booked.')
            self._ensure_slot_in_future(candidate)

            self._execute(
                appointment,
                transition,
                {
                    'proposed_slot_id': candidate.id,
                    'proposed_date': candidate.date,
                    'proposed_time': candidate.window,
                    'proposed_by': actor.role,
                },
                candidate_slot_id=candidate.id,
            )

        return self._after_commit(appointment, 'reschedule_requested')

    def complete(
        self,
        appointment_id: int,
        acting_doctor_id: int,
        completion_notes: str | None = None,
    ) -> AppointmentSnapshot:
        notes = clean_optional_text(completion_notes, config.MAX_NOTES_LENGTH, 'Notes')

        with self._unit_of_work():
            appointment, _actor, transition = self._resolve(appointment_id, acting_doctor_id, Operation.COMPLETE)
            self._execute(appointment, transition, {'doctor_notes': notes, 'completed_at': self.clock()})

        return self._after_commit(appointment, 'appointment_completed')

    # ==================== PAYMENT COLLABORATOR ====================

    def record_payment(self, appointment_id: int, outcome: str, reference: str | None = None) -> AppointmentSnapshot:
        """Apply the payment collaborator's verdict (``paid`` or ``failed``).

        A ``paid`` verdict that arrives after the appointment was cancelled or
        rejected is refunded straight away: the payment status becomes
        ``refunded`` and a refund intent is recorded in the same transaction.
        """
        normalized_outcome = (outcome or '').strip().lower()
        if normalized_outcome not in {PaymentStatus.PAID.value, PaymentStatus.FAILED.value}:
            raise ValidationFailedError('Payment outcome must be "paid" or "failed".')

        with self._unit_of_work():
            appointment = self._get_appointment(appointment_id)
            paid = normalized_outcome == PaymentStatus.PAID.value
            withdrawn = appointment.status in {AppointmentStatus.CANCELLED.value, AppointmentStatus.REJECTED.value}

            if paid and (
                appointment.payment_status == PaymentStatus.PAID.value
                or (withdrawn and appointment.payment_status == PaymentStatus.REFUNDED.value)
            ):
                # Repeated confirmation from the gateway.
                return AppointmentSnapshot.from_record(appointment)

            late_refund = paid and withdrawn
            if state_machine.is_terminal(appointment.status) and not late_refund:
                raise InvalidStateError(f'Appointment is already {appointment.status}.')
            if appointment.payment_status not in {PaymentStatus.PENDING.value, PaymentStatus.FAILED.value}:
                raise InvalidStateError(f'Payment is already {appointment.payment_status}.')

            new_status = PaymentStatus.REFUNDED.value if late_refund else normalized_outcome
            result = self.db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment.id,
                    Appointment.status == appointment.status,
                    Appointment.payment_status == appointment.payment_status,
                )
                .values(payment_status=new_status, payment_reference=reference)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidStateError('Appointment was changed by another request.')

            if late_refund:
                self.settlement.record(
                    appointment, IntentType.REFUND, appointment.patient_id, appointment.consultation_fee
                )
            self.db.commit()

        logger.info('Payment for appointment %s marked %s', appointment_id, new_status)
        return self._after_commit(appointment, f'payment_{new_status}')

    # ==================== READ PATHS ====================

    def get(self, appointment_id: int, acting_user_id: int) -> AppointmentSnapshot:
        with self._unit_of_work():
            appointment = self._get_appointment(appointment_id)
            actor = self._active_profile(acting_user_id)
            if actor.role != Role.ADMIN.value:
                self._ensure_party(appointment, actor)
            return AppointmentSnapshot.from_record(appointment)

    def list_for_user(
        self,
        acting_user_id: int,
        status: str | None = None,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_SIZE,
    ) -> AppointmentPage:
        if status is not None:
            try:
                status = AppointmentStatus(status.strip().lower()).value
            except ValueError as exc:
                raise ValidationFailedError('Invalid appointment status.') from exc
        page = max(page, 1)
        limit = min(max(limit, 1), config.MAX_PAGE_SIZE)

        with self._unit_of_work():
            actor = self._active_profile(acting_user_id)
            query = self.db.query(Appointment)
            if actor.role == Role.PATIENT.value:
                query = query.filter(Appointment.patient_id == actor.id)
            elif actor.role == Role.DOCTOR.value:
                query = query.filter(Appointment.doctor_id == actor.id)
            elif actor.role != Role.ADMIN.value:
                raise UnauthorizedError('Invalid role.')

            if status is not None:
                query = query.filter(Appointment.status == status)

            total = query.count()
            appointments = query.order_by(
                Appointment.appointment_date.desc(),
                Appointment.id.desc(),
            ).offset((page - 1) * limit).limit(limit).all()

            return AppointmentPage(
                items=[AppointmentSnapshot.from_record(appointment) for appointment in appointments],
                total=total,
                page=page,
                limit=limit,
            )

    # ----------------------- internals --------------------------

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        try:
            yield
        except LifecycleError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Persistence failure during appointment operation')
            raise PersistenceUnavailableError(PersistenceUnavailableError.message) from exc

    def _get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        return appointment

    def _active_profile(self, user_id: int) -> UserProfile:
        profile = self.directory.get_user_profile(user_id)
        if not profile.is_active:
            raise UnauthorizedError('This account is inactive.')
        return profile

    def _ensure_party(self, appointment: Appointment, actor: UserProfile) -> None:
        if actor.role == Role.PATIENT.value and appointment.patient_id == actor.id:
            return
        if actor.role == Role.DOCTOR.value and appointment.doctor_id == actor.id:
            return
        raise UnauthorizedError('You are not a party to this appointment.')

    def _ensure_slot_in_future(self, slot: Slot) -> None:
        if datetime.combine(slot.date, slot.start_time) <= self.clock():
            raise SlotUnavailableError('This slot has already started.')

    def _resolve(
        self,
        appointment_id: int,
        acting_user_id: int,
        operation: Operation,
    ) -> tuple[Appointment, UserProfile, Transition]:
        appointment = self._get_appointment(appointment_id)
        actor = self._active_profile(acting_user_id)
        self._ensure_party(appointment, actor)

        transition = state_machine.transition(
            appointment.status,
            operation,
            actor.role,
            appointment.payment_status,
        )
        return appointment, actor, transition

    def _execute(
        self,
        appointment: Appointment,
        transition: Transition,
        values: dict[str, Any],
        candidate_slot_id: int | None = None,
    ) -> None:
        effects = transition.effects
        held_slot_id = appointment.slot_id
        proposed_slot_id = appointment.proposed_slot_id
        read_payment_status = appointment.payment_status
        refund = SideEffect.REFUND_IF_PAID in effects and read_payment_status == PaymentStatus.PAID.value

        values = dict(values, status=transition.target.value)

        if SideEffect.RESERVE_CANDIDATE_SLOT in effects:
            self.ledger.reserve(candidate_slot_id)

        if SideEffect.ADOPT_CANDIDATE_SLOT in effects:
            values.update(
                slot_id=proposed_slot_id,
                appointment_date=appointment.proposed_date,
                appointment_time=appointment.proposed_time,
            )

        if transition.source is AppointmentStatus.RESCHEDULE_REQUESTED:
            values.update(_CLEARED_PROPOSAL)

        if refund:
            values['payment_status'] = PaymentStatus.REFUNDED.value

        # Conditioned on the status and payment status that were read.
        result = self.db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.status == transition.source.value,
                Appointment.payment_status == read_payment_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError('Appointment was changed by another request.')

        if SideEffect.RELEASE_HELD_SLOT in effects:
            self.ledger.release(held_slot_id)
        if SideEffect.RELEASE_CANDIDATE_SLOT in effects:
            self.ledger.release(proposed_slot_id)

        if refund:
            self.settlement.record(
                appointment, IntentType.REFUND, appointment.patient_id, appointment.consultation_fee
            )
        if SideEffect.PAYOUT in effects:
            self.settlement.record(
                appointment, IntentType.PAYOUT, appointment.doctor_id, appointment.doctor_earnings
            )

        self.db.commit()

        logger.info(
            'Appointment %s: %s -> %s',
            appointment.id,
            transition.source.value,
            transition.target.value,
        )

    def _after_commit(self, appointment: Appointment, event: str) -> AppointmentSnapshot:
        snapshot = AppointmentSnapshot.from_record(appointment)

        try:
            self.settlement.deliver_pending(appointment_id=snapshot.id)
        except Exception:
            self.db.rollback()
            logger.exception('Settlement delivery failed after %s for appointment %s', event, appointment.id)

        notify_parties(
            self.notifier,
            [snapshot.patient_id, snapshot.doctor_id],
            event,
            {
                'appointment_id': snapshot.id,
                'custom_id': snapshot.custom_id,
                'status': snapshot.status,
                'appointment_date': snapshot.appointment_date.isoformat(),
                'appointment_time': snapshot.appointment_time,
            },
        )
        return snapshot
