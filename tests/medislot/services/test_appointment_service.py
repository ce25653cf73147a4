from datetime import date, time
from decimal import Decimal

import pytest

from medislot.lifecycle.errors import (
    InvalidStateError,
    NotFoundError,
    PaymentRequiredError,
    SlotUnavailableError,
    UnauthorizedError,
    ValidationFailedError,
)
from medislot.models.settlement import SettlementIntent
from medislot.models.slot import Slot
from medislot.services.appointment_service import split_fee

from helpers import make_slot, make_user


def slot_is_booked(db, slot_id: int) -> bool:
    db.expire_all()
    return db.get(Slot, slot_id).is_booked


def intent_types(db, appointment_id: int) -> list[str]:
    return [
        intent.intent_type
        for intent in db.query(SettlementIntent)
        .filter(SettlementIntent.appointment_id == appointment_id)
        .order_by(SettlementIntent.id.asc())
    ]


@pytest.fixture
def booked(service, patient, doctor, morning_slot):
    return service.create(patient.id, doctor.id, morning_slot.id, 'video', 'Persistent cough')


@pytest.fixture
def confirmed(service, doctor, booked):
    service.record_payment(booked.id, 'paid', 'pay_123')
    return service.approve(booked.id, doctor.id)


def test_split_fee_applies_platform_commission() -> None:
    assert split_fee(Decimal('50.00'), 0.2) == (Decimal('40.00'), Decimal('10.00'))
    assert split_fee(Decimal('33.33'), 0.2) == (Decimal('26.66'), Decimal('6.67'))


def test_create_reserves_slot_and_starts_pending(appointment_db, service, wallet, notifier, patient, doctor, booked, morning_slot) -> None:
    assert booked.status == 'pending'
    assert booked.payment_status == 'pending'
    assert booked.custom_id.startswith('APP') and len(booked.custom_id) == 9
    assert booked.slot_id == morning_slot.id
    assert booked.appointment_date == date(2024, 6, 10)
    assert booked.appointment_time == '10:00 - 10:30'
    assert booked.channel == 'video'
    assert booked.reason == 'Persistent cough'
    assert booked.consultation_fee == Decimal('50.00')
    assert booked.doctor_earnings == Decimal('40.00')
    assert booked.platform_commission == Decimal('10.00')
    assert booked.pending_reschedule is None
    assert slot_is_booked(appointment_db, morning_slot.id)

    assert wallet.calls == [('capture', booked.id, Decimal('50.00'))]
    assert [(party, event) for party, event, _ in notifier.events] == [
        (patient.id, 'appointment_created'),
        (doctor.id, 'appointment_created'),
    ]


def test_create_uses_channel_fee(service, patient, doctor, morning_slot) -> None:
    appointment = service.create(patient.id, doctor.id, morning_slot.id, ' Chat ')

    assert appointment.channel == 'chat'
    assert appointment.consultation_fee == Decimal('30.00')


def test_create_on_reserved_slot_reports_slot_unavailable(service, other_patient, doctor, booked, morning_slot) -> None:
    with pytest.raises(SlotUnavailableError):
        service.create(other_patient.id, doctor.id, morning_slot.id, 'video')


def test_create_rejects_elapsed_slot(appointment_db, service, patient, doctor) -> None:
    elapsed = make_slot(appointment_db, doctor, time(7, 0), time(7, 30))

    with pytest.raises(SlotUnavailableError):
        service.create(patient.id, doctor.id, elapsed.id, 'video')

    assert not slot_is_booked(appointment_db, elapsed.id)


def test_create_requires_patient_role(service, doctor, other_doctor, morning_slot) -> None:
    with pytest.raises(UnauthorizedError):
        service.create(other_doctor.id, doctor.id, morning_slot.id, 'video')


def test_create_rejects_slot_of_another_doctor(appointment_db, service, patient, other_doctor, morning_slot) -> None:
    with pytest.raises(NotFoundError):
        service.create(patient.id, other_doctor.id, morning_slot.id, 'video')

    assert not slot_is_booked(appointment_db, morning_slot.id)


def test_create_requires_fee_for_channel(appointment_db, service, patient, other_doctor) -> None:
    slot = make_slot(appointment_db, other_doctor, time(10, 0), time(10, 30))

    with pytest.raises(ValidationFailedError):
        service.create(patient.id, other_doctor.id, slot.id, 'chat')

    assert not slot_is_booked(appointment_db, slot.id)


def test_create_rejects_unknown_channel(service, patient, doctor, morning_slot) -> None:
    with pytest.raises(ValidationFailedError):
        service.create(patient.id, doctor.id, morning_slot.id, 'phone')


def test_create_rejects_inactive_doctor(appointment_db, service, patient) -> None:
    retired = make_user(appointment_db, 'retired@example.com', 'doctor', video_fee=Decimal('40.00'))
    retired.is_active = False
    appointment_db.commit()
    slot = make_slot(appointment_db, retired, time(10, 0), time(10, 30))

    with pytest.raises(SlotUnavailableError):
        service.create(patient.id, retired.id, slot.id, 'video')


def test_approve_requires_payment(service, doctor, booked) -> None:
    with pytest.raises(PaymentRequiredError):
        service.approve(booked.id, doctor.id)

    paid = service.record_payment(booked.id, 'paid', 'pay_123')
    assert paid.payment_status == 'paid'

    approved = service.approve(booked.id, doctor.id)
    assert approved.status == 'confirmed'


def test_approve_checks_role_and_ownership(service, patient, other_doctor, booked) -> None:
    service.record_payment(booked.id, 'paid')

    with pytest.raises(UnauthorizedError):
        service.approve(booked.id, patient.id)
    with pytest.raises(UnauthorizedError):
        service.approve(booked.id, other_doctor.id)


def test_unknown_appointment_is_not_found(service, doctor) -> None:
    with pytest.raises(NotFoundError):
        service.approve(404, doctor.id)


def test_failed_payment_can_be_retried(service, doctor, booked) -> None:
    failed = service.record_payment(booked.id, 'failed')
    assert failed.payment_status == 'failed'

    with pytest.raises(PaymentRequiredError):
        service.approve(booked.id, doctor.id)

    assert service.record_payment(booked.id, 'paid', 'pay_456').payment_status == 'paid'
    assert service.record_payment(booked.id, 'paid', 'pay_456').payment_status == 'paid'


def test_record_payment_rejects_unknown_outcome(service, booked) -> None:
    with pytest.raises(ValidationFailedError):
        service.record_payment(booked.id, 'maybe')


@pytest.mark.parametrize('blank', ['', '   ', '\n\t'])
def test_reject_and_cancel_require_reason(service, patient, doctor, booked, blank) -> None:
    with pytest.raises(ValidationFailedError):
        service.reject(booked.id, doctor.id, blank)
    with pytest.raises(ValidationFailedError):
        service.cancel(booked.id, patient.id, blank)

    assert service.get(booked.id, patient.id).status == 'pending'


def test_reject_releases_slot_and_refunds_captured_payment(appointment_db, service, wallet, doctor, booked, morning_slot) -> None:
    service.record_payment(booked.id, 'paid')

    rejected = service.reject(booked.id, doctor.id, '  Not my specialty  ')

    assert rejected.status == 'rejected'
    assert rejected.rejection_reason == 'Not my specialty'
    assert rejected.payment_status == 'refunded'
    assert not slot_is_booked(appointment_db, morning_slot.id)
    assert intent_types(appointment_db, booked.id) == ['capture', 'refund']
    assert ('refund', booked.id, Decimal('50.00')) in wallet.calls


def test_cancel_unpaid_request_does_not_refund(appointment_db, service, patient, booked, morning_slot) -> None:
    cancelled = service.cancel(booked.id, patient.id, 'Feeling better')

    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_by == 'patient'
    assert cancelled.cancellation_reason == 'Feeling better'
    assert cancelled.cancelled_at is not None
    assert cancelled.payment_status == 'pending'
    assert intent_types(appointment_db, booked.id) == ['capture']
    assert not slot_is_booked(appointment_db, morning_slot.id)


def test_doctor_cancels_confirmed_appointment(appointment_db, service, doctor, confirmed, morning_slot) -> None:
    cancelled = service.cancel(confirmed.id, doctor.id, 'Emergency at the hospital')

    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_by == 'doctor'
    assert cancelled.payment_status == 'refunded'
    assert not slot_is_booked(appointment_db, morning_slot.id)


def test_cancel_by_stranger_is_unauthorized(service, other_patient, booked) -> None:
    with pytest.raises(UnauthorizedError):
        service.cancel(booked.id, other_patient.id, 'Not mine')


def test_released_slot_can_be_booked_again(service, patient, other_patient, doctor, booked, morning_slot) -> None:
    service.cancel(booked.id, patient.id, 'Schedule clash')

    rebooked = service.create(other_patient.id, doctor.id, morning_slot.id, 'video')

    assert rebooked.status == 'pending'
    assert rebooked.slot_id == morning_slot.id


def test_terminal_appointment_is_immutable(appointment_db, service, patient, doctor, confirmed, late_morning_slot) -> None:
    service.complete(confirmed.id, doctor.id, 'Follow up in two weeks')
    before = service.get(confirmed.id, doctor.id)

    attempts = [
        lambda: service.approve(confirmed.id, doctor.id),
        lambda: service.reject(confirmed.id, doctor.id, 'late'),
        lambda: service.cancel(confirmed.id, patient.id, 'late'),
        lambda: service.cancel(confirmed.id, doctor.id, 'late'),
        lambda: service.complete(confirmed.id, doctor.id, 'again'),
        lambda: service.propose_reschedule(confirmed.id, doctor.id, late_morning_slot.id),
        lambda: service.accept_reschedule(confirmed.id, patient.id),
        lambda: service.reject_reschedule(confirmed.id, patient.id, 'no'),
        lambda: service.record_payment(confirmed.id, 'failed'),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidStateError):
            attempt()

    assert service.get(confirmed.id, doctor.id) == before
    assert not slot_is_booked(appointment_db, late_morning_slot.id)


def test_complete_emits_payout(appointment_db, service, wallet, doctor, confirmed) -> None:
    completed = service.complete(confirmed.id, doctor.id, '  Prescribed rest  ')

    assert completed.status == 'completed'
    assert completed.doctor_notes == 'Prescribed rest'
    assert completed.completed_at is not None
    assert ('payout', doctor.id, Decimal('40.00')) in wallet.calls
    assert intent_types(appointment_db, confirmed.id) == ['capture', 'payout']


def test_complete_requires_confirmed(service, doctor, booked) -> None:
    with pytest.raises(InvalidStateError):
        service.complete(booked.id, doctor.id)


def test_reject_reschedule_restores_original_schedule(appointment_db, service, patient, doctor, confirmed, morning_slot, late_morning_slot) -> None:
    proposed = service.propose_reschedule(confirmed.id, doctor.id, late_morning_slot.id)

    assert proposed.status == 'reschedule_requested'
    assert proposed.pending_reschedule.slot_id == late_morning_slot.id
    assert proposed.pending_reschedule.proposed_time == '11:00 - 11:30'
    assert proposed.pending_reschedule.proposed_by == 'doctor'
    assert slot_is_booked(appointment_db, morning_slot.id)
    assert slot_is_booked(appointment_db, late_morning_slot.id)

    restored = service.reject_reschedule(confirmed.id, patient.id, 'conflict')

    assert restored.status == 'confirmed'
    assert restored.pending_reschedule is None
    assert restored.reschedule_rejection_reason == 'conflict'
    assert restored.slot_id == morning_slot.id
    assert restored.appointment_date == confirmed.appointment_date
    assert restored.appointment_time == '10:00 - 10:30'
    assert slot_is_booked(appointment_db, morning_slot.id)
    assert not slot_is_booked(appointment_db, late_morning_slot.id)


def test_accept_reschedule_moves_appointment(appointment_db, service, patient, doctor, confirmed, morning_slot) -> None:
    next_day_slot = make_slot(appointment_db, doctor, time(9, 0), time(9, 30), slot_date=date(2024, 6, 11))
    service.propose_reschedule(confirmed.id, doctor.id, next_day_slot.id)

    moved = service.accept_reschedule(confirmed.id, patient.id)

    assert moved.status == 'confirmed'
    assert moved.pending_reschedule is None
    assert moved.slot_id == next_day_slot.id
    assert moved.appointment_date == date(2024, 6, 11)
    assert moved.appointment_time == '09:00 - 09:30'
    assert not slot_is_booked(appointment_db, morning_slot.id)
    assert slot_is_booked(appointment_db, next_day_slot.id)


def test_reschedule_negotiation_roles(service, patient, doctor, confirmed, late_morning_slot) -> None:
    with pytest.raises(UnauthorizedError):
        service.propose_reschedule(confirmed.id, patient.id, late_morning_slot.id)

    service.propose_reschedule(confirmed.id, doctor.id, late_morning_slot.id)

    with pytest.raises(UnauthorizedError):
        service.accept_reschedule(confirmed.id, doctor.id)
    with pytest.raises(UnauthorizedError):
        service.reject_reschedule(confirmed.id, doctor.id, 'no')
    with pytest.raises(InvalidStateError):
        service.propose_reschedule(confirmed.id, doctor.id, late_morning_slot.id)


def test_propose_reschedule_to_taken_slot_fails(appointment_db, service, doctor, confirmed) -> None:
    taken = make_slot(appointment_db, doctor, time(12, 0), time(12, 30), is_booked=True)

    with pytest.raises(SlotUnavailableError):
        service.propose_reschedule(confirmed.id, doctor.id, taken.id)

    after = service.get(confirmed.id, doctor.id)
    assert after.status == 'confirmed'
    assert after.pending_reschedule is None


def test_propose_reschedule_validates_candidate(appointment_db, service, doctor, other_doctor, confirmed, morning_slot) -> None:
    foreign = make_slot(appointment_db, other_doctor, time(11, 0), time(11, 30))

    with pytest.raises(ValidationFailedError):
        service.propose_reschedule(confirmed.id, doctor.id, morning_slot.id)
    with pytest.raises(NotFoundError):
        service.propose_reschedule(confirmed.id, doctor.id, foreign.id)

    assert not slot_is_booked(appointment_db, foreign.id)


def test_propose_requires_confirmed(service, doctor, booked, late_morning_slot) -> None:
    with pytest.raises(InvalidStateError):
        service.propose_reschedule(booked.id, doctor.id, late_morning_slot.id)


def test_cancel_during_negotiation_releases_both_slots(appointment_db, service, patient, doctor, confirmed, morning_slot, late_morning_slot) -> None:
    service.propose_reschedule(confirmed.id, doctor.id, late_morning_slot.id)

    cancelled = service.cancel(confirmed.id, patient.id, 'Found another clinic')

    assert cancelled.status == 'cancelled'
    assert cancelled.pending_reschedule is None
    assert cancelled.payment_status == 'refunded'
    assert not slot_is_booked(appointment_db, morning_slot.id)
    assert not slot_is_booked(appointment_db, late_morning_slot.id)


def test_list_for_user_is_scoped_by_role(appointment_db, service, patient, other_patient, doctor, booked, late_morning_slot) -> None:
    service.create(other_patient.id, doctor.id, late_morning_slot.id, 'chat')
    admin = make_user(appointment_db, 'admin@example.com', 'admin')

    assert [item.id for item in service.list_for_user(patient.id).items] == [booked.id]
    assert service.list_for_user(doctor.id).total == 2
    assert service.list_for_user(admin.id).total == 2
    assert service.list_for_user(doctor.id, status='confirmed').total == 0

    page = service.list_for_user(doctor.id, page=2, limit=1)
    assert page.total == 2
    assert len(page.items) == 1

    with pytest.raises(ValidationFailedError):
        service.list_for_user(doctor.id, status='archived')


def test_get_hides_appointment_from_strangers(service, other_patient, booked) -> None:
    with pytest.raises(UnauthorizedError):
        service.get(booked.id, other_patient.id)


def test_booking_to_completion_scenario(appointment_db, service, wallet, patient, doctor, morning_slot, late_morning_slot) -> None:
    appointment = service.create(patient.id, doctor.id, morning_slot.id, 'video', 'Check-up')
    assert appointment.status == 'pending'
    assert slot_is_booked(appointment_db, morning_slot.id)

    assert service.record_payment(appointment.id, 'paid', 'pay_789').payment_status == 'paid'
    assert service.approve(appointment.id, doctor.id).status == 'confirmed'

    proposed = service.propose_reschedule(appointment.id, doctor.id, late_morning_slot.id)
    assert proposed.status == 'reschedule_requested'
    assert slot_is_booked(appointment_db, morning_slot.id)
    assert slot_is_booked(appointment_db, late_morning_slot.id)

    kept = service.reject_reschedule(appointment.id, patient.id, 'conflict')
    assert kept.status == 'confirmed'
    assert slot_is_booked(appointment_db, morning_slot.id)
    assert not slot_is_booked(appointment_db, late_morning_slot.id)

    completed = service.complete(appointment.id, doctor.id, 'notes')
    assert completed.status == 'completed'
    assert wallet.calls == [
        ('capture', appointment.id, Decimal('50.00')),
        ('payout', doctor.id, Decimal('40.00')),
    ]


def test_payment_after_cancellation_is_refunded(appointment_db, service, wallet, patient, booked) -> None:
    service.cancel(booked.id, patient.id, 'Booked by mistake')

    late = service.record_payment(booked.id, 'paid', 'pay_late')

    assert late.status == 'cancelled'
    assert late.payment_status == 'refunded'
    assert intent_types(appointment_db, booked.id) == ['capture', 'refund']
    assert ('refund', booked.id, Decimal('50.00')) in wallet.calls

    repeated = service.record_payment(booked.id, 'paid', 'pay_late')
    assert repeated.payment_status == 'refunded'
    assert intent_types(appointment_db, booked.id) == ['capture', 'refund']


def test_payment_after_rejection_is_refunded(appointment_db, service, doctor, booked) -> None:
    service.reject(booked.id, doctor.id, 'Outside my specialty')

    late = service.record_payment(booked.id, 'paid')

    assert late.status == 'rejected'
    assert late.payment_status == 'refunded'
    assert intent_types(appointment_db, booked.id) == ['capture', 'refund']


def test_failed_payment_after_cancellation_is_invalid(service, patient, booked) -> None:
    service.cancel(booked.id, patient.id, 'Booked by mistake')

    with pytest.raises(InvalidStateError):
        service.record_payment(booked.id, 'failed')
