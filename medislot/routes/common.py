from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from medislot.database import ensure_appointment_schema, ensure_slot_schema
from medislot.lifecycle.errors import LifecycleError, PersistenceUnavailableError
from medislot.lifecycle.results import OperationResult


def get_clock():
    return datetime.now


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=PersistenceUnavailableError.message,
    )


def ensure_database_ready() -> None:
    try:
        ensure_slot_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def lifecycle_http_error(error: LifecycleError) -> HTTPException:
    return HTTPException(
        status_code=error.http_status,
        detail=OperationResult.failed(error).model_dump(),
    )
