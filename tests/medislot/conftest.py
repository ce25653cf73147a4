import os
from datetime import time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medislot.database import Base  # noqa: E402
from medislot.models.appointment import Appointment  # noqa: E402
from medislot.models.settlement import SettlementIntent  # noqa: E402
from medislot.models.slot import Slot  # noqa: E402
from medislot.models.user import User  # noqa: E402
from medislot.services.appointment_service import AppointmentService  # noqa: E402
from medislot.services.settlement import SettlementNotifier  # noqa: E402

from helpers import FakeWalletGateway, RecordingNotifier, fixed_clock, make_slot, make_user  # noqa: E402

TABLES = [User.__table__, Slot.__table__, Appointment.__table__, SettlementIntent.__table__]


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def appointment_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def doctor(appointment_db) -> User:
    return make_user(
        appointment_db,
        'doctor@example.com',
        'doctor',
        video_fee=Decimal('50.00'),
        chat_fee=Decimal('30.00'),
    )


@pytest.fixture
def other_doctor(appointment_db) -> User:
    return make_user(appointment_db, 'other.doctor@example.com', 'doctor', video_fee=Decimal('80.00'))


@pytest.fixture
def patient(appointment_db) -> User:
    return make_user(appointment_db, 'patient@example.com', 'patient')


@pytest.fixture
def other_patient(appointment_db) -> User:
    return make_user(appointment_db, 'other.patient@example.com', 'patient')


@pytest.fixture
def morning_slot(appointment_db, doctor) -> Slot:
    return make_slot(appointment_db, doctor, time(10, 0), time(10, 30))


@pytest.fixture
def late_morning_slot(appointment_db, doctor) -> Slot:
    return make_slot(appointment_db, doctor, time(11, 0), time(11, 30))


@pytest.fixture
def wallet() -> FakeWalletGateway:
    return FakeWalletGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(appointment_db, wallet, notifier) -> AppointmentService:
    return AppointmentService(
        appointment_db,
        settlement=SettlementNotifier(appointment_db, gateway=wallet, clock=fixed_clock),
        notifier=notifier,
        clock=fixed_clock,
    )
