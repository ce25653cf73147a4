"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, Numeric, String
from medislot.database import Base


class User(Base):
    """Represents a marketplace user (patient, doctor or admin)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # patient/doctor/admin
    full_name = Column(String)
    is_active = Column(Boolean, default=True)
    video_fee = Column(Numeric(10, 2))
    chat_fee = Column(Numeric(10, 2))
