# clinic_scheduler/exceptions.py

"""
Domain errors raised by the scheduling engine.

Every error carries a category that decides how the HTTP boundary reports it:

* validation - bad input, rejected before any side effect
* conflict   - expected race outcomes, the caller re-fetches and retries
* policy     - business-rule rejections that need a user-facing message
* integrity  - broken invariants, sent to the operator alert channel
* retryable  - storage timeouts, distinct from a definitive conflict
"""

from typing import Any, Dict, Optional

VALIDATION = "validation"
CONFLICT = "conflict"
POLICY = "policy"
INTEGRITY = "integrity"
RETRYABLE = "retryable"


class SchedulingError(Exception):
    category = VALIDATION
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.status_code,
            "message": self.message,
            "type": self.error_type,
            "category": self.category,
            "details": self.details or None
        }


# Validation

class InvalidDateError(SchedulingError):
    pass


class PastTimeError(SchedulingError):
    pass


class InvalidSlotError(SchedulingError):
    pass


class InvalidAmountError(SchedulingError):
    pass


class InvalidRatingError(SchedulingError):
    status_code = 422


class InvalidActionError(SchedulingError):
    pass


class NotFoundError(SchedulingError):
    status_code = 404


class DoctorNotFoundError(NotFoundError):
    pass


class AppointmentNotFoundError(NotFoundError):
    pass


class RoomNotFoundError(NotFoundError):
    pass


class ReminderNotFoundError(NotFoundError):
    pass


class SurveyNotFoundError(NotFoundError):
    pass


# Conflict

class ConflictError(SchedulingError):
    category = CONFLICT
    status_code = 409


class SlotConflictError(ConflictError):
    pass


class CreditNotFoundError(ConflictError):
    pass


class AlreadyPaidError(ConflictError):
    pass


class TokenAlreadyUsedError(ConflictError):
    pass


class AlreadyCancelledError(ConflictError):
    pass


class InvalidTransitionError(ConflictError):
    pass


class DoctorAlreadyExistsError(ConflictError):
    pass


# Policy

class PolicyError(SchedulingError):
    category = POLICY
    status_code = 422


class NoRoomAvailableError(PolicyError):
    pass


class TooLateToCancelError(PolicyError):
    pass


class PaymentRequiredError(PolicyError):
    pass


class InsufficientCreditError(PolicyError):
    pass


# Integrity

class IntegrityViolationError(SchedulingError):
    category = INTEGRITY
    status_code = 500


class TargetPaymentNotFoundError(IntegrityViolationError):
    pass


class MissingPaymentError(IntegrityViolationError):
    pass


class ScheduleConfigurationError(IntegrityViolationError):
    pass


# Infrastructure

class StorageTimeoutError(SchedulingError):
    category = RETRYABLE
    status_code = 503


class PreconditionFailedError(Exception):
    """Raised by repositories when a status-guarded update matches no row"""

    def __init__(self, entity: str, entity_id: Any, expected: Any, actual: Any = None):
        super().__init__(f"{entity} {entity_id}: expected status {expected}, found {actual}")
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
