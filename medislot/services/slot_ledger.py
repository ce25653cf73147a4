"""Per-doctor, per-date slot ledger.

The ledger is the only place that flips ``Slot.is_booked``. Reservation is a
single conditional ``UPDATE ... WHERE is_booked = false`` so two requests
racing for one slot cannot both win; the loser sees zero affected rows.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, time

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from medislot.core.identifiers import generate_slot_id
from medislot.lifecycle.errors import NotFoundError, SlotUnavailableError, ValidationFailedError
from medislot.models.slot import Slot
from medislot.models.user import User

logger = logging.getLogger(__name__)


class SlotLedger:
    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    def get(self, slot_id: int) -> Slot:
        slot = self.db.get(Slot, slot_id)
        if slot is None:
            raise NotFoundError('Slot not found.')
        return slot

    def list_available(self, doctor_id: int, on_date: date) -> list[Slot]:
        now = self.clock()
        if on_date < now.date():
            return []

        query = self.db.query(Slot).filter(
            Slot.doctor_id == doctor_id,
            Slot.date == on_date,
            Slot.is_booked.is_(False),
        )
        if on_date == now.date():
            query = query.filter(Slot.start_time > now.time().replace(microsecond=0))

        return query.order_by(Slot.start_time.asc()).all()

    def reserve(self, slot_id: int) -> None:
        result = self.db.execute(
            update(Slot)
            .where(Slot.id == slot_id, Slot.is_booked.is_(False))
            .values(is_booked=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self._expire_cached(slot_id)
            logger.debug('Reserved slot %s', slot_id)
            return

        # Nothing changed: either the slot does not exist or someone holds it.
        self.get(slot_id)
        raise SlotUnavailableError('This slot is no longer available.')

    def release(self, slot_id: int | None) -> None:
        if slot_id is None:
            return

        self.db.execute(
            update(Slot)
            .where(Slot.id == slot_id, Slot.is_booked.is_(True))
            .values(is_booked=False)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(slot_id)
        logger.debug('Released slot %s', slot_id)

    def publish(self, doctor_id: int, slot_date: date, start_time: time, end_time: time) -> Slot:
        start_time = start_time.replace(second=0, microsecond=0)
        end_time = end_time.replace(second=0, microsecond=0)

        if end_time <= start_time:
            raise ValidationFailedError('Slot end time must be after its start time.')

        now = self.clock()
        if datetime.combine(slot_date, start_time) <= now:
            raise ValidationFailedError('Slots can only be published in the future.')

        # Publishes for one doctor run one at a time until commit.
        doctor = self.db.query(User.id).filter(User.id == doctor_id).with_for_update().first()
        if doctor is None:
            raise NotFoundError('Doctor not found.')

        overlapping_slot = self.db.query(Slot).filter(
            Slot.doctor_id == doctor_id,
            Slot.date == slot_date,
            Slot.start_time < end_time,
            Slot.end_time > start_time,
        ).first()
        if overlapping_slot:
            raise SlotUnavailableError('This window overlaps an existing slot.')

        slot = Slot(
            custom_id=generate_slot_id(),
            doctor_id=doctor_id,
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            is_booked=False,
        )
        self.db.add(slot)
        self.db.flush()

        return slot

    def _expire_cached(self, slot_id: int) -> None:
        # Conditional updates bypass the identity map; drop any stale copy.
        cached = self.db.identity_map.get(identity_key(Slot, slot_id))
        if cached is not None:
            self.db.expire(cached)
