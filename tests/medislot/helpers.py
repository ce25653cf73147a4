from datetime import date, datetime, time
from decimal import Decimal

from medislot.core.identifiers import generate_slot_id
from medislot.models.slot import Slot
from medislot.models.user import User

NOW = datetime(2024, 6, 10, 8, 0)
BOOKING_DAY = date(2024, 6, 10)


def fixed_clock() -> datetime:
    return NOW


class FakeWalletGateway:
    def __init__(self):
        self.calls: list[tuple[str, int, Decimal]] = []

    def capture_payment(self, appointment_id: int, amount: Decimal) -> None:
        self.calls.append(('capture', appointment_id, amount))

    def refund(self, appointment_id: int, amount: Decimal) -> None:
        self.calls.append(('refund', appointment_id, amount))

    def payout(self, doctor_id: int, amount: Decimal) -> None:
        self.calls.append(('payout', doctor_id, amount))


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[int, str, dict]] = []

    def notify(self, party_id: int, event: str, payload: dict) -> None:
        self.events.append((party_id, event, payload))


def make_user(db, email: str, role: str, **fields) -> User:
    user = User(email=email, hashed_password='', role=role, full_name=email.split('@')[0], is_active=True, **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_slot(db, doctor: User, start: time, end: time, slot_date: date = BOOKING_DAY, is_booked: bool = False) -> Slot:
    slot = Slot(
        custom_id=generate_slot_id(),
        doctor_id=doctor.id,
        date=slot_date,
        start_time=start,
        end_time=end,
        is_booked=is_booked,
    )
    db.add(slot)
    db.commit()
    db.refresh(slot)
    return slot
