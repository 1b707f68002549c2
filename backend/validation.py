"""
Bounds, type and staleness checks.

Both entry points are total: they return `ACCEPTED` or a `Rejection` and
never raise. The service turns a rejection into the matching
`errors.WebhookError` at the HTTP boundary.

Checks run in a fixed order and the first failure wins:
1. body size and item count ceilings
2. event level cents fields
3. per item amount and quantity
4. staleness (unparseable timestamps never count as stale)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Union

from coercion import is_whole_cents, to_number
from errors import EventTooOld, MalformedInput, PayloadTooLarge, WebhookError
from models import CanonicalEvent
from settings import settings

CENTS_FIELDS = ("subtotal_cents", "discount_cents", "tax_cents", "total_cents")


class RejectionReason(str, Enum):
    PAYLOAD_TOO_LARGE = "payload_too_large"
    NOT_AN_OBJECT = "not_an_object"
    ITEMS_NOT_ARRAY = "items_not_array"
    TOO_MANY_ITEMS = "too_many_items"
    INVALID_SUBTOTAL_CENTS = "invalid_subtotal_cents"
    INVALID_DISCOUNT_CENTS = "invalid_discount_cents"
    INVALID_TAX_CENTS = "invalid_tax_cents"
    INVALID_TOTAL_CENTS = "invalid_total_cents"
    INVALID_UNIT_AMOUNT = "invalid_unit_amount_cents"
    INVALID_QUANTITY = "invalid_quantity"
    EVENT_TOO_OLD = "event_too_old"


_CENTS_REASONS = {
    "subtotal_cents": RejectionReason.INVALID_SUBTOTAL_CENTS,
    "discount_cents": RejectionReason.INVALID_DISCOUNT_CENTS,
    "tax_cents": RejectionReason.INVALID_TAX_CENTS,
    "total_cents": RejectionReason.INVALID_TOTAL_CENTS,
}

_ERROR_TYPES = {
    RejectionReason.PAYLOAD_TOO_LARGE: PayloadTooLarge,
    RejectionReason.EVENT_TOO_OLD: EventTooOld,
}


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    message: str

    def to_error(self) -> WebhookError:
        error_type = _ERROR_TYPES.get(self.reason, MalformedInput)
        return error_type(self.message, reason=self.reason.value)


class _Accepted:
    def __repr__(self) -> str:
        return "ACCEPTED"

    def __bool__(self) -> bool:
        return True


ACCEPTED = _Accepted()

ValidationResult = Union[_Accepted, Rejection]


def check_raw_payload(payload: Any) -> Optional[Rejection]:
    """Pre-normalization checks on the decoded JSON body.

    Returns None when the payload may be handed to the detector.
    """

    if not isinstance(payload, dict):
        return Rejection(RejectionReason.NOT_AN_OBJECT, "Invalid JSON object")

    items = payload.get("items")
    if items is not None:
        if not isinstance(items, list):
            return Rejection(RejectionReason.ITEMS_NOT_ARRAY, "items must be an array")
        if len(items) > settings.max_items:
            return Rejection(RejectionReason.TOO_MANY_ITEMS, "Too many items")

    for key in CENTS_FIELDS:
        if payload.get(key) is not None:
            if not is_whole_cents(to_number(payload[key]), settings.max_cents):
                return Rejection(_CENTS_REASONS[key], f"Invalid value for {key}")
    return None


def validate_event(
    event: CanonicalEvent,
    now: datetime,
    body_bytes: Optional[int] = None,
) -> ValidationResult:
    """Decide whether a normalized event may be attributed and persisted."""

    if body_bytes is not None and body_bytes > settings.max_body_bytes:
        return Rejection(RejectionReason.PAYLOAD_TOO_LARGE, "Payload too large")
    if len(event.items) > settings.max_items:
        return Rejection(RejectionReason.TOO_MANY_ITEMS, "Too many items")

    for key in CENTS_FIELDS:
        if not is_whole_cents(getattr(event, key), settings.max_cents):
            return Rejection(_CENTS_REASONS[key], f"Invalid {key}")

    for item in event.items:
        if not is_whole_cents(item.unit_amount_cents, settings.max_cents):
            return Rejection(RejectionReason.INVALID_UNIT_AMOUNT, "Invalid unit_amount_cents")
        if not is_whole_cents(item.quantity, settings.max_quantity) or item.quantity < 1:
            return Rejection(RejectionReason.INVALID_QUANTITY, "Invalid quantity")

    if is_stale(event.occurred_at, now):
        return Rejection(RejectionReason.EVENT_TOO_OLD, "Event too old")

    return ACCEPTED


def is_stale(occurred_at: Optional[datetime], now: datetime) -> bool:
    if occurred_at is None:
        return False
    return now - occurred_at > timedelta(days=settings.max_event_age_days)
