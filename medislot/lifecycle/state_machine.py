"""Appointment state machine.

All legal moves live in ``TRANSITIONS``; ``transition`` is the only place that
decides whether an operation may run. It never touches the database: it
returns the target status plus the side effects the caller has to carry out.
"""

from dataclasses import dataclass
from enum import Enum

from medislot.lifecycle.errors import InvalidStateError, PaymentRequiredError, UnauthorizedError


class AppointmentStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    RESCHEDULE_REQUESTED = 'reschedule_requested'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    REJECTED = 'rejected'


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.REJECTED,
})


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class Role(str, Enum):
    PATIENT = 'patient'
    DOCTOR = 'doctor'
    ADMIN = 'admin'


class Channel(str, Enum):
    VIDEO = 'video'
    CHAT = 'chat'


class Operation(str, Enum):
    APPROVE = 'approve'
    REJECT = 'reject'
    CANCEL = 'cancel'
    PROPOSE_RESCHEDULE = 'propose_reschedule'
    ACCEPT_RESCHEDULE = 'accept_reschedule'
    REJECT_RESCHEDULE = 'reject_reschedule'
    COMPLETE = 'complete'


class SideEffect(str, Enum):
    RELEASE_HELD_SLOT = 'release_held_slot'
    RESERVE_CANDIDATE_SLOT = 'reserve_candidate_slot'
    RELEASE_CANDIDATE_SLOT = 'release_candidate_slot'
    ADOPT_CANDIDATE_SLOT = 'adopt_candidate_slot'
    REFUND_IF_PAID = 'refund_if_paid'
    PAYOUT = 'payout'


OPERATION_ROLES: dict[Operation, frozenset[Role]] = {
    Operation.APPROVE: frozenset({Role.DOCTOR}),
    Operation.REJECT: frozenset({Role.DOCTOR}),
    Operation.CANCEL: frozenset({Role.PATIENT, Role.DOCTOR}),
    Operation.PROPOSE_RESCHEDULE: frozenset({Role.DOCTOR}),
    Operation.ACCEPT_RESCHEDULE: frozenset({Role.PATIENT}),
    Operation.REJECT_RESCHEDULE: frozenset({Role.PATIENT}),
    Operation.COMPLETE: frozenset({Role.DOCTOR}),
}

_CANCEL_EFFECTS = (SideEffect.RELEASE_HELD_SLOT, SideEffect.REFUND_IF_PAID)

TRANSITIONS: dict[tuple[AppointmentStatus, Operation], tuple[AppointmentStatus, tuple[SideEffect, ...]]] = {
    (AppointmentStatus.PENDING, Operation.APPROVE): (AppointmentStatus.CONFIRMED, ()),
    (AppointmentStatus.PENDING, Operation.REJECT): (
        AppointmentStatus.REJECTED,
        (SideEffect.RELEASE_HELD_SLOT, SideEffect.REFUND_IF_PAID),
    ),
    (AppointmentStatus.PENDING, Operation.CANCEL): (AppointmentStatus.CANCELLED, _CANCEL_EFFECTS),
    (AppointmentStatus.CONFIRMED, Operation.CANCEL): (AppointmentStatus.CANCELLED, _CANCEL_EFFECTS),
    (AppointmentStatus.RESCHEDULE_REQUESTED, Operation.CANCEL): (
        AppointmentStatus.CANCELLED,
        (SideEffect.RELEASE_HELD_SLOT, SideEffect.RELEASE_CANDIDATE_SLOT, SideEffect.REFUND_IF_PAID),
    ),
    (AppointmentStatus.CONFIRMED, Operation.PROPOSE_RESCHEDULE): (
        AppointmentStatus.RESCHEDULE_REQUESTED,
        (SideEffect.RESERVE_CANDIDATE_SLOT,),
    ),
    (AppointmentStatus.RESCHEDULE_REQUESTED, Operation.ACCEPT_RESCHEDULE): (
        AppointmentStatus.CONFIRMED,
        (SideEffect.RELEASE_HELD_SLOT, SideEffect.ADOPT_CANDIDATE_SLOT),
    ),
    (AppointmentStatus.RESCHEDULE_REQUESTED, Operation.REJECT_RESCHEDULE): (
        AppointmentStatus.CONFIRMED,
        (SideEffect.RELEASE_CANDIDATE_SLOT,),
    ),
    (AppointmentStatus.CONFIRMED, Operation.COMPLETE): (AppointmentStatus.COMPLETED, (SideEffect.PAYOUT,)),
}


@dataclass(frozen=True)
class Transition:
    source: AppointmentStatus
    target: AppointmentStatus
    effects: tuple[SideEffect, ...]


def is_terminal(appointment_status: str) -> bool:
    return AppointmentStatus(appointment_status) in TERMINAL_STATUSES


def transition(
    current_status: str,
    operation: Operation,
    role: str,
    payment_status: str = PaymentStatus.PENDING.value,
) -> Transition:
    """Resolve ``operation`` by ``role`` against ``current_status``.

    Raises ``UnauthorizedError`` when the role may never run the operation,
    ``InvalidStateError`` when the current status forbids it and
    ``PaymentRequiredError`` when approval is attempted before payment.
    """
    source = AppointmentStatus(current_status)

    if Role(role) not in OPERATION_ROLES[operation]:
        raise UnauthorizedError(f'A {role} cannot {operation.value.replace("_", " ")} an appointment.')

    if source in TERMINAL_STATUSES:
        raise InvalidStateError(f'Appointment is already {source.value}.')

    rule = TRANSITIONS.get((source, operation))
    if rule is None:
        raise InvalidStateError(
            f'Cannot {operation.value.replace("_", " ")} an appointment that is {source.value}.'
        )

    if operation is Operation.APPROVE and PaymentStatus(payment_status) is not PaymentStatus.PAID:
        raise PaymentRequiredError('Payment must be completed before the appointment can be approved.')

    target, effects = rule
    return Transition(source=source, target=target, effects=effects)
