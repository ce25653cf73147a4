"""Slot model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Time, UniqueConstraint
from medislot.database import Base


class Slot(Base):
    """A doctor-published time window on one calendar date."""
    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "start_time", name="uq_slots_doctor_date_start"),
    )

    id = Column(Integer, primary_key=True)
    custom_id = Column(String, unique=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_booked = Column(Boolean, default=False, nullable=False)

    @property
    def window(self) -> str:
        return f"{self.start_time:%H:%M} - {self.end_time:%H:%M}"
