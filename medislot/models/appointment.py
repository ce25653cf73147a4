"""Appointment model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, func
from medislot.database import Base


class Appointment(Base):
    """One booking between a patient and a doctor, kept for its whole history."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    custom_id = Column(String, unique=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("slots.id"))
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(String, nullable=False)  # "HH:MM - HH:MM"
    channel = Column(String, nullable=False)  # video/chat
    status = Column(String, nullable=False, default="pending")

    payment_status = Column(String, nullable=False, default="pending")
    payment_reference = Column(String)
    consultation_fee = Column(Numeric(10, 2), nullable=False)
    doctor_earnings = Column(Numeric(10, 2))
    platform_commission = Column(Numeric(10, 2))

    reason = Column(String)
    rejection_reason = Column(String)
    cancellation_reason = Column(String)
    cancelled_by = Column(String)
    cancelled_at = Column(DateTime)
    doctor_notes = Column(String)
    completed_at = Column(DateTime)

    # Outstanding reschedule proposal, present only while status is reschedule_requested.
    proposed_slot_id = Column(Integer, ForeignKey("slots.id"))
    proposed_date = Column(Date)
    proposed_time = Column(String)
    proposed_by = Column(String)
    reschedule_rejection_reason = Column(String)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
