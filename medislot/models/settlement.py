"""Settlement intent model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from medislot.database import Base


class SettlementIntent(Base):
    """Outbox row asking the wallet collaborator to move money for an appointment."""
    __tablename__ = "settlement_intents"
    __table_args__ = (
        UniqueConstraint("appointment_id", "intent_type", name="uq_settlement_appointment_type"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    intent_type = Column(String, nullable=False)  # capture/refund/payout
    party_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    delivered_at = Column(DateTime)
