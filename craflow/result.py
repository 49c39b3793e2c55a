"""
Uniform return contract for every CRA operation.

Operations return either ``Success`` or ``Failure``; business conditions are
never raised. ``service_operation`` is the single place where an unexpected
exception is caught, and where the operation's transaction is committed or
rolled back.
"""
import functools
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict

from .logging import bind_operation, clear_operation


logger = structlog.get_logger(__name__)


class Severity(str, Enum):
    bad_request = "bad_request"
    forbidden = "forbidden"
    conflict = "conflict"
    not_found = "not_found"
    internal_error = "internal_error"


class ErrorCode(str, Enum):
    missing_input = "missing_input"
    invalid_format = "invalid_format"
    # field validation
    missing_date = "missing_date"
    invalid_date_format = "invalid_date_format"
    future_date_not_allowed = "future_date_not_allowed"
    invalid_quantity = "invalid_quantity"
    quantity_exceeds_limit = "quantity_exceeds_limit"
    invalid_unit_price = "invalid_unit_price"
    unit_price_exceeds_limit = "unit_price_exceeds_limit"
    description_too_long = "description_too_long"
    invalid_month = "invalid_month"
    invalid_year = "invalid_year"
    invalid_currency = "invalid_currency"
    no_valid_attributes = "no_valid_attributes"
    # access
    insufficient_permissions = "insufficient_permissions"
    # lifecycle
    report_submitted = "report_submitted"
    report_locked = "report_locked"
    invalid_cra_state = "invalid_cra_state"
    invalid_transition = "invalid_transition"
    cra_has_no_entries = "cra_has_no_entries"
    # uniqueness
    duplicate_entry = "duplicate_entry"
    cra_already_exists = "cra_already_exists"
    not_found = "not_found"
    internal_error = "internal_error"


class Success(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: Any = None
    message: Optional[str] = None
    meta: Dict[str, Any] = {}

    @property
    def ok(self) -> bool:
        return True


class Failure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Severity
    error_code: ErrorCode
    message: str
    resource_type: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return False

    def to_payload(self) -> Dict[str, Any]:
        """Error body handed to the transport layer."""
        payload: Dict[str, Any] = {
            "error_code": self.error_code.value,
            "message": self.message,
            "resource_type": self.resource_type,
        }
        if self.details:
            payload["details"] = self.details
        return payload


Result = Union[Success, Failure]


def _failure(status: Severity, error_code: ErrorCode, message: str,
             resource_type: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> Failure:
    return Failure(status=status, error_code=error_code, message=message,
                   resource_type=resource_type, details=details)


def bad_request(error_code: ErrorCode, message: str, **kwargs) -> Failure:
    return _failure(Severity.bad_request, error_code, message, **kwargs)


def forbidden(message: str = "Access denied", error_code: ErrorCode = ErrorCode.insufficient_permissions, **kwargs) -> Failure:
    return _failure(Severity.forbidden, error_code, message, **kwargs)


def conflict(error_code: ErrorCode, message: str, **kwargs) -> Failure:
    return _failure(Severity.conflict, error_code, message, **kwargs)


def not_found(resource_type: str, message: Optional[str] = None, **kwargs) -> Failure:
    return _failure(Severity.not_found, ErrorCode.not_found,
                    message or f"{resource_type} not found", resource_type=resource_type, **kwargs)


def internal_error(message: str = "An unexpected error occurred", **kwargs) -> Failure:
    return _failure(Severity.internal_error, ErrorCode.internal_error, message, **kwargs)


def service_operation(resource_type: str, readonly: bool = False) -> Callable:
    """
    Wrap a public operation ``fn(db, actor, ...)``.

    - a missing actor is refused before the operation runs
    - Success commits the session (reads roll back instead)
    - Failure rolls back, so nothing a refused call touched is persisted
    - any exception rolls back and becomes Failure(internal_error); the
      transaction outcome is then unknown to the caller
    """
    def decorator(fn: Callable[..., Result]) -> Callable[..., Result]:
        @functools.wraps(fn)
        def wrapper(db, actor, *args, **kwargs) -> Result:
            if actor is None:
                return bad_request(ErrorCode.missing_input, "Current user is required",
                                   resource_type=resource_type)
            bind_operation(fn.__name__, str(getattr(actor, "id", None)))
            try:
                result = fn(db, actor, *args, **kwargs)
                if isinstance(result, Failure):
                    db.rollback()
                    if result.resource_type is None:
                        result = result.model_copy(update={"resource_type": resource_type})
                    logger.warning(
                        "operation_refused",
                        error_code=result.error_code.value,
                        status=result.status.value,
                        resource_type=result.resource_type,
                    )
                    return result
                if readonly:
                    db.rollback()
                else:
                    db.commit()
                return result
            except Exception as e:
                db.rollback()
                logger.exception("operation_failed", error=str(e))
                return internal_error(resource_type=resource_type)
            finally:
                clear_operation()

        return wrapper

    return decorator
