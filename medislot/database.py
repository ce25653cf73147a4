import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from medislot.core import config


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medislot.db")

engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_slot_schema_checked = False
_appointment_schema_checked = False


def ensure_slot_schema() -> None:
    global _slot_schema_checked

    if _slot_schema_checked:
        return

    with _schema_lock:
        if _slot_schema_checked:
            return

        inspector = inspect(engine)

        if 'slots' not in inspector.get_table_names():
            _slot_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_slots_doctor_date ON slots(doctor_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_slots_booked_date ON slots(is_booked, date)')
            )

        _slot_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('reschedule_rejection_reason', 'ALTER TABLE appointments ADD COLUMN reschedule_rejection_reason VARCHAR'),
            ('payment_reference', 'ALTER TABLE appointments ADD COLUMN payment_reference VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_status ON appointments(patient_id, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_status ON appointments(doctor_id, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_date_doctor ON appointments(appointment_date, doctor_id)')
            )

        _appointment_schema_checked = True
