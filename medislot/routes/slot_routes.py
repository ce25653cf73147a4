from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medislot.auth.dependencies import get_current_user, get_db
from medislot.lifecycle.errors import LifecycleError
from medislot.lifecycle.state_machine import Role
from medislot.models.slot import Slot
from medislot.models.user import User
from medislot.routes import common
from medislot.services.slot_ledger import SlotLedger

router = APIRouter(tags=['slots'])


class PublishSlotRequest(BaseModel):
    date: date
    start_time: time
    end_time: time

    @field_validator('start_time', 'end_time')
    @classmethod
    def strip_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)


class SlotResponse(BaseModel):
    id: int
    custom_id: str
    doctor_id: int
    date: date
    start_time: time
    end_time: time
    window: str
    is_booked: bool

    class Config:
        from_attributes = True


def to_slot_response(slot: Slot) -> SlotResponse:
    return SlotResponse.model_validate(slot)


@router.get('/{doctor_id}', response_model=list[SlotResponse])
def list_available_slots(
    doctor_id: int,
    on_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    clock=Depends(common.get_clock),
):
    common.ensure_database_ready()

    try:
        slots = SlotLedger(db, clock=clock).list_available(doctor_id, on_date)
        return [to_slot_response(slot) for slot in slots]
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc


@router.post('', response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def publish_slot(
    data: PublishSlotRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(common.get_clock),
):
    if (current_user.role or '').strip().lower() != Role.DOCTOR.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only doctors can publish slots.',
        )

    common.ensure_database_ready()

    try:
        slot = SlotLedger(db, clock=clock).publish(current_user.id, data.date, data.start_time, data.end_time)
        db.commit()
        db.refresh(slot)

        return to_slot_response(slot)
    except LifecycleError as exc:
        db.rollback()
        raise common.lifecycle_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc
