"""Failure taxonomy for appointment lifecycle operations.

Every :class:`LifecycleError` is a recoverable business condition reported to
the caller. :class:`PersistenceUnavailableError` sits outside that hierarchy:
it means the database could not be reached, not that a rule was broken.
"""

from fastapi import status


class LifecycleError(Exception):
    code = 'LifecycleError'
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LifecycleError):
    code = 'NotFound'
    http_status = status.HTTP_404_NOT_FOUND


class UnauthorizedError(LifecycleError):
    code = 'Unauthorized'
    http_status = status.HTTP_403_FORBIDDEN


class InvalidStateError(LifecycleError):
    code = 'InvalidState'
    http_status = status.HTTP_409_CONFLICT


class SlotUnavailableError(LifecycleError):
    code = 'SlotUnavailable'
    http_status = status.HTTP_409_CONFLICT


class PaymentRequiredError(LifecycleError):
    code = 'PaymentRequired'
    http_status = status.HTTP_402_PAYMENT_REQUIRED


class ValidationFailedError(LifecycleError):
    code = 'ValidationError'
    http_status = 422


class PersistenceUnavailableError(Exception):
    """The persistence layer failed; not a business rule violation."""

    message = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'
