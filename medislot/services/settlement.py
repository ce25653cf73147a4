"""Settlement intents for the wallet collaborator.

Lifecycle transitions write intents into the ``settlement_intents`` outbox in
the same transaction as the appointment change. Delivery to the wallet happens
afterwards and may be repeated; the unique (appointment, intent type) pair
keeps a repeated intent from being recorded twice.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medislot.models.appointment import Appointment
from medislot.models.settlement import SettlementIntent

logger = logging.getLogger(__name__)


class IntentType(str, Enum):
    CAPTURE = 'capture'
    REFUND = 'refund'
    PAYOUT = 'payout'


class WalletGateway(Protocol):
    def capture_payment(self, appointment_id: int, amount: Decimal) -> None:
        ...

    def refund(self, appointment_id: int, amount: Decimal) -> None:
        ...

    def payout(self, doctor_id: int, amount: Decimal) -> None:
        ...


class LoggingWalletGateway:
    def capture_payment(self, appointment_id: int, amount: Decimal) -> None:
        logger.info('Capture %s for appointment %s', amount, appointment_id)

    def refund(self, appointment_id: int, amount: Decimal) -> None:
        logger.info('Refund %s for appointment %s', amount, appointment_id)

    def payout(self, doctor_id: int, amount: Decimal) -> None:
        logger.info('Payout %s to doctor %s', amount, doctor_id)


class SettlementNotifier:
    def __init__(
        self,
        db: Session,
        gateway: WalletGateway | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.gateway = gateway or LoggingWalletGateway()
        self.clock = clock

    def record(self, appointment: Appointment, intent_type: IntentType, party_id: int, amount: Decimal) -> bool:
        """Add an intent to the outbox. Returns False when it was already recorded."""
        exists = self.db.query(SettlementIntent.id).filter(
            SettlementIntent.appointment_id == appointment.id,
            SettlementIntent.intent_type == intent_type.value,
        ).first()
        if exists:
            return False

        try:
            with self.db.begin_nested():
                self.db.add(
                    SettlementIntent(
                        appointment_id=appointment.id,
                        intent_type=intent_type.value,
                        party_id=party_id,
                        amount=amount,
                    )
                )
        except IntegrityError:
            # A concurrent writer recorded the same intent first.
            return False

        logger.info('Recorded %s intent for appointment %s', intent_type.value, appointment.id)
        return True

    def pending(self, appointment_id: int | None = None) -> list[SettlementIntent]:
        query = self.db.query(SettlementIntent).filter(SettlementIntent.delivered_at.is_(None))
        if appointment_id is not None:
            query = query.filter(SettlementIntent.appointment_id == appointment_id)
        return query.order_by(SettlementIntent.id.asc()).all()

    def deliver_pending(self, appointment_id: int | None = None) -> int:
        """Hand undelivered intents to the wallet; returns how many were delivered."""
        delivered = 0
        for intent in self.pending(appointment_id):
            try:
                self._dispatch(intent)
            except Exception:
                logger.exception(
                    'Settlement %s for appointment %s failed; will retry',
                    intent.intent_type,
                    intent.appointment_id,
                )
                continue

            intent.delivered_at = self.clock()
            self.db.commit()
            delivered += 1

        return delivered

    def _dispatch(self, intent: SettlementIntent) -> None:
        amount = Decimal(intent.amount)
        intent_type = IntentType(intent.intent_type)

        if intent_type is IntentType.CAPTURE:
            self.gateway.capture_payment(intent.appointment_id, amount)
        elif intent_type is IntentType.REFUND:
            self.gateway.refund(intent.appointment_id, amount)
        else:
            self.gateway.payout(intent.party_id, amount)
