from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from medislot.lifecycle.errors import NotFoundError, ValidationFailedError
from medislot.lifecycle.state_machine import Channel
from medislot.models.user import User


@dataclass(frozen=True)
class UserProfile:
    id: int
    email: str
    role: str
    full_name: str | None
    is_active: bool
    video_fee: Decimal | None = None
    chat_fee: Decimal | None = None

    def fee_for(self, channel: str) -> Decimal:
        fee = self.video_fee if Channel(channel) is Channel.VIDEO else self.chat_fee
        if not fee or fee <= 0:
            raise ValidationFailedError(f'Doctor has not set a consultation fee for {channel} appointments.')
        return Decimal(fee)


class ProfileDirectory:
    """Read-only view of the user collaborator used for authorization checks."""

    def __init__(self, db: Session):
        self.db = db

    def get_user_profile(self, user_id: int) -> UserProfile:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError('User not found.')

        return UserProfile(
            id=user.id,
            email=user.email,
            role=(user.role or '').strip().lower(),
            full_name=user.full_name,
            is_active=user.is_active is not False,
            video_fee=user.video_fee,
            chat_fee=user.chat_fee,
        )
