"""
Field validators for reports and entries.

Every validator is a pure function: it takes a raw value (and a policy when
limits apply) and returns ``Success(data=normalized_value)`` or a named
``Failure``. They run inside the services even when the caller already
coerced types.
"""
import re
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from ..config import Settings, settings
from ..result import ErrorCode, Result, Success, bad_request
from .time_rules import local_today


CURRENCY_FORMAT = re.compile(r"^[A-Z]{3}$")
QUANTITY_SCALE = Decimal("0.01")

PROFILE_CURRENT = "current"
PROFILE_LEGACY = "legacy"


class ValidationPolicy(BaseModel):
    """Limits applied by the validators, resolved from one validation profile."""
    model_config = ConfigDict(frozen=True)

    profile: str = PROFILE_CURRENT
    quantity_ceiling: Decimal = Decimal("1000")
    unit_price_ceiling: int = 1_000_000_000
    unit_price_allow_zero: bool = False
    year_min: int = 2000
    year_max: int = 2100
    allowed_currencies: Tuple[str, ...] = ("EUR", "USD", "GBP")
    entry_description_max: int = 500
    report_description_max: int = 2000

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None, today: Optional[date] = None) -> "ValidationPolicy":
        cfg = cfg or settings
        today = today or local_today()
        if cfg.validation_profile == PROFILE_LEGACY:
            quantity_ceiling = cfg.quantity_ceiling_legacy
            unit_price_ceiling = cfg.unit_price_ceiling_legacy
            year_min, year_max = cfg.year_min_legacy, cfg.year_max_legacy
        else:
            quantity_ceiling = cfg.quantity_ceiling_current
            unit_price_ceiling = cfg.unit_price_ceiling_current
            year_min, year_max = cfg.year_min_current, today.year + cfg.year_future_window_current
        return cls(
            profile=cfg.validation_profile,
            quantity_ceiling=Decimal(quantity_ceiling),
            unit_price_ceiling=unit_price_ceiling,
            unit_price_allow_zero=cfg.unit_price_allow_zero,
            year_min=year_min,
            year_max=year_max,
            allowed_currencies=tuple(c.upper() for c in cfg.allowed_currencies),
            entry_description_max=cfg.entry_description_max,
            report_description_max=cfg.report_description_max,
        )


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_date(value: Any, today: Optional[date] = None, allow_future: bool = True) -> Result:
    """
    Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string.

    Future dates are refused only when ``allow_future`` is False (creation).
    """
    if _is_blank(value):
        return bad_request(ErrorCode.missing_date, "Date is required", details={"field": "date"})
    if isinstance(value, datetime):
        parsed = value.date()
    elif isinstance(value, date):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = date.fromisoformat(value.strip())
        except ValueError:
            return bad_request(ErrorCode.invalid_date_format,
                               "Date must be in valid format (YYYY-MM-DD)", details={"field": "date"})
    else:
        return bad_request(ErrorCode.invalid_date_format,
                           "Date must be in valid format (YYYY-MM-DD)", details={"field": "date"})
    if not allow_future and today is not None and parsed > today:
        return bad_request(ErrorCode.future_date_not_allowed,
                           "Cannot create entries for future dates", details={"field": "date"})
    return Success(data=parsed)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = repr(value)
    try:
        number = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def validate_quantity(value: Any, policy: ValidationPolicy) -> Result:
    """Days as a decimal with at most two places, strictly positive and under the ceiling."""
    quantity = None if _is_blank(value) else _to_decimal(value)
    if quantity is None or quantity <= 0:
        return bad_request(ErrorCode.invalid_quantity, "Quantity must be greater than 0",
                           details={"field": "quantity"})
    # ceiling first: quantize overflows on very large values
    if quantity > policy.quantity_ceiling:
        return bad_request(ErrorCode.quantity_exceeds_limit,
                           f"Quantity cannot exceed {policy.quantity_ceiling} days",
                           details={"field": "quantity", "limit": str(policy.quantity_ceiling)})
    if quantity != quantity.quantize(QUANTITY_SCALE):
        return bad_request(ErrorCode.invalid_quantity, "Quantity allows at most two decimal places",
                           details={"field": "quantity"})
    return Success(data=quantity.quantize(QUANTITY_SCALE))


def validate_unit_price(value: Any, policy: ValidationPolicy) -> Result:
    """Integer minor currency units; zero is accepted only when the policy allows it."""
    number = None if _is_blank(value) else _to_decimal(value)
    if number is None or number != number.to_integral_value():
        return bad_request(ErrorCode.invalid_unit_price, "Unit price must be an integer amount in minor units",
                           details={"field": "unit_price"})
    unit_price = int(number)
    if unit_price < 0 or (unit_price == 0 and not policy.unit_price_allow_zero):
        message = "Unit price cannot be negative" if policy.unit_price_allow_zero else "Unit price must be greater than 0"
        return bad_request(ErrorCode.invalid_unit_price, message, details={"field": "unit_price"})
    if unit_price > policy.unit_price_ceiling:
        return bad_request(ErrorCode.unit_price_exceeds_limit,
                           f"Unit price cannot exceed {policy.unit_price_ceiling} minor units",
                           details={"field": "unit_price", "limit": policy.unit_price_ceiling})
    return Success(data=unit_price)


def validate_description(value: Any, max_length: int = 500) -> Result:
    if _is_blank(value):
        return Success(data=None)
    description = str(value).strip()
    if len(description) > max_length:
        return bad_request(ErrorCode.description_too_long,
                           f"Description cannot exceed {max_length} characters",
                           details={"field": "description", "limit": max_length})
    return Success(data=description)


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def validate_month(value: Any) -> Result:
    if _is_blank(value):
        return bad_request(ErrorCode.missing_input, "Month is required", details={"field": "month"})
    month = _to_int(value)
    if month is None or not 1 <= month <= 12:
        return bad_request(ErrorCode.invalid_month, "Month must be between 1 and 12", details={"field": "month"})
    return Success(data=month)


def validate_year(value: Any, policy: ValidationPolicy) -> Result:
    if _is_blank(value):
        return bad_request(ErrorCode.missing_input, "Year is required", details={"field": "year"})
    year = _to_int(value)
    if year is None or not policy.year_min <= year <= policy.year_max:
        return bad_request(ErrorCode.invalid_year,
                           f"Year must be between {policy.year_min} and {policy.year_max}",
                           details={"field": "year"})
    return Success(data=year)


def validate_currency(value: Any, policy: ValidationPolicy) -> Result:
    if _is_blank(value):
        return bad_request(ErrorCode.missing_input, "Currency is required", details={"field": "currency"})
    currency = str(value).strip().upper()
    if not CURRENCY_FORMAT.match(currency) or currency not in policy.allowed_currencies:
        return bad_request(ErrorCode.invalid_currency,
                           f"Currency must be one of: {', '.join(policy.allowed_currencies)}",
                           details={"field": "currency"})
    return Success(data=currency)


def validate_uuid(value: Any, field: str = "id") -> Result:
    """Identifiers arrive as UUIDs or their string form."""
    if _is_blank(value):
        return bad_request(ErrorCode.missing_input, f"{field} is required", details={"field": field})
    if isinstance(value, uuid.UUID):
        return Success(data=value)
    try:
        return Success(data=uuid.UUID(str(value).strip()))
    except ValueError:
        return bad_request(ErrorCode.invalid_format, f"{field} is not a valid identifier", details={"field": field})


def validate_entry_fields(
    policy: ValidationPolicy,
    *,
    date_value: Any,
    quantity: Any,
    unit_price: Any,
    description: Any = None,
    today: Optional[date] = None,
    allow_future: bool = False,
) -> Result:
    """Run the entry validators in order; the first failure wins."""
    checks = (
        ("date", validate_date(date_value, today=today, allow_future=allow_future)),
        ("quantity", validate_quantity(quantity, policy)),
        ("unit_price", validate_unit_price(unit_price, policy)),
        ("description", validate_description(description, policy.entry_description_max)),
    )
    values = {}
    for field, result in checks:
        if not result.ok:
            return result
        values[field] = result.data
    return Success(data=values)
