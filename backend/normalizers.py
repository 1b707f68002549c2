"""
Per-provider normalizers.

Each function maps one detected payload shape to a `CanonicalEvent`. They
are best-effort and never reject: missing fields fall back to defaults and
bad numbers are carried as NaN so `validation` can reject them with a
precise reason.

A missing provider event id is replaced with a random one. Such events
cannot be deduplicated across retries; only providers that send a stable
id get idempotent ingestion.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from coercion import (
    Number,
    dig,
    first_present,
    from_epoch_seconds,
    is_present,
    major_to_cents,
    parse_timestamp,
    random_event_id,
    round_half_up,
    to_currency,
    to_number,
    to_optional_str,
)
from detect import ProviderShape
from models import CanonicalEvent, EventType, LineItem, Provider
from settings import settings

# Stripe event types whose amount lives in a known field.
STRIPE_AMOUNT_FIELDS = {
    "checkout.session.completed": "amount_total",
    "payment_intent.succeeded": "amount",
    "invoice.payment_succeeded": "total",
}

# Below this value a Paddle amount is read as a major-unit decimal.
PADDLE_MAJOR_UNIT_THRESHOLD = 1000


def _event_id(*candidates: Any) -> str:
    value = to_optional_str(first_present(*candidates))
    return value if value is not None else random_event_id()


def _occurred_at(value: Any, now: datetime) -> datetime:
    return parse_timestamp(value) or now


def normalize_stripe(payload: Mapping[str, Any], now: datetime) -> CanonicalEvent:
    obj = dig(payload, "data", "object")
    if not isinstance(obj, Mapping):
        obj = {}

    event_type = payload.get("type")
    field = STRIPE_AMOUNT_FIELDS.get(event_type) if isinstance(event_type, str) else None
    if field is not None:
        total = to_number(obj.get(field))
    else:
        total = to_number(first_present(obj.get("amount_total"), obj.get("amount")))

    return CanonicalEvent(
        provider=Provider.STRIPE,
        provider_event_id=_event_id(payload.get("id")),
        event_type=EventType.PURCHASE,
        occurred_at=from_epoch_seconds(payload.get("created"), default=now),
        currency=to_currency(obj.get("currency"), settings.default_currency),
        total_cents=total,
        customer_ref=to_optional_str(obj.get("customer")),
    )


def normalize_paddle(payload: Mapping[str, Any], now: datetime) -> CanonicalEvent:
    raw_total = to_number(
        first_present(payload.get("sale_gross"), payload.get("total"), payload.get("amount"))
    )
    # TODO: confirm with Paddle whether classic alerts ever send cents; the
    # threshold misreads a $1000+ sale given in dollars as cents.
    scale = 100 if raw_total < PADDLE_MAJOR_UNIT_THRESHOLD else 1
    items = payload.get("items")

    return CanonicalEvent(
        provider=Provider.PADDLE,
        provider_event_id=_event_id(payload.get("event_id"), payload.get("alert_id")),
        event_type=EventType.PURCHASE,
        occurred_at=_occurred_at(payload.get("event_time"), now),
        currency=to_currency(payload.get("currency"), settings.default_currency),
        total_cents=round_half_up(raw_total * scale),
        items_count=len(items) if isinstance(items, list) else 0,
    )


def normalize_lemonsqueezy(payload: Mapping[str, Any], now: datetime) -> CanonicalEvent:
    attributes = dig(payload, "data", "attributes")
    if not isinstance(attributes, Mapping):
        attributes = {}

    return CanonicalEvent(
        provider=Provider.LEMONSQUEEZY,
        provider_event_id=_event_id(dig(payload, "meta", "event_id")),
        event_type=EventType.PURCHASE,
        occurred_at=_occurred_at(attributes.get("created_at"), now),
        currency=to_currency(attributes.get("currency"), settings.default_currency),
        total_cents=to_number(attributes.get("total")),
    )


def _shopify_quantity(value: Any) -> Number:
    quantity = to_number(value, default=1)
    # Non-numeric quantities fall back to one unit; fractional ones are
    # left for validation to reject.
    if isinstance(quantity, float) and math.isnan(quantity):
        return 1
    return quantity


def normalize_shopify(payload: Mapping[str, Any], now: datetime) -> CanonicalEvent:
    currency = to_currency(payload.get("currency"), settings.default_currency)
    total = major_to_cents(
        first_present(payload.get("total_price"), payload.get("subtotal_price"))
    )

    items: List[LineItem] = []
    for line in payload.get("line_items") or []:
        if not isinstance(line, Mapping):
            line = {}
        unit = major_to_cents(line.get("price"))
        items.append(
            LineItem(
                name=to_optional_str(line.get("title")),
                quantity=_shopify_quantity(line.get("quantity")),
                unit_amount_cents=0 if isinstance(unit, float) and math.isnan(unit) else unit,
                currency=currency,
            )
        )

    return CanonicalEvent(
        provider=Provider.SHOPIFY,
        provider_event_id=_event_id(payload.get("id")),
        event_type=EventType.PURCHASE,
        occurred_at=_occurred_at(payload.get("created_at"), now),
        currency=currency,
        total_cents=total,
        items=items,
        items_count=len(items),
    )


def _custom_provider(value: Any) -> Provider:
    if not isinstance(value, str):
        return Provider.CUSTOM
    try:
        return Provider(value)
    except ValueError:
        return Provider.CUSTOM


def _custom_event_type(value: Any) -> EventType:
    if not is_present(value):
        return EventType.PURCHASE
    if not isinstance(value, str):
        return EventType.CUSTOM
    try:
        return EventType(value)
    except ValueError:
        return EventType.CUSTOM


def normalize_custom(payload: Mapping[str, Any], now: datetime) -> CanonicalEvent:
    """Direct mapping for senders that already speak the canonical schema.

    Cents are read literally; there is no unit-scale inference. The
    timestamp comes from `occurred_at`; a truthy `event_time` would have
    been detected as Paddle, so it is only a secondary source here.
    """

    currency = to_currency(payload.get("currency"), settings.default_currency)
    raw_items = payload.get("items")

    items: List[LineItem] = []
    for raw in raw_items if isinstance(raw_items, list) else []:
        if not isinstance(raw, Mapping):
            raw = {}
        items.append(
            LineItem(
                name=to_optional_str(raw.get("name")),
                quantity=1 if raw.get("quantity") is None else to_number(raw.get("quantity")),
                unit_amount_cents=to_number(raw.get("unit_amount_cents")),
                currency=to_currency(raw.get("currency"), currency),
                is_bump=bool(raw.get("is_bump")),
            )
        )

    extra = payload.get("data")

    return CanonicalEvent(
        provider=_custom_provider(payload.get("provider")),
        provider_event_id=_event_id(payload.get("provider_event_id"), payload.get("id")),
        event_type=_custom_event_type(payload.get("type")),
        occurred_at=_occurred_at(
            first_present(payload.get("occurred_at"), payload.get("event_time")), now
        ),
        currency=currency,
        subtotal_cents=to_number(payload.get("subtotal_cents")),
        discount_cents=to_number(payload.get("discount_cents")),
        tax_cents=to_number(payload.get("tax_cents")),
        total_cents=to_number(payload.get("total_cents")),
        items=items,
        items_count=len(items),
        customer_ref=to_optional_str(
            first_present(payload.get("customer_id"), payload.get("provider_customer_id"))
        ),
        session_ref=to_optional_str(payload.get("session_id")),
        visitor_ref=to_optional_str(payload.get("visitor_id")),
        extra=dict(extra) if isinstance(extra, Mapping) else {},
    )


NORMALIZERS: Dict[ProviderShape, Callable[[Mapping[str, Any], datetime], CanonicalEvent]] = {
    ProviderShape.STRIPE: normalize_stripe,
    ProviderShape.PADDLE: normalize_paddle,
    ProviderShape.LEMONSQUEEZY: normalize_lemonsqueezy,
    ProviderShape.SHOPIFY: normalize_shopify,
    ProviderShape.CUSTOM: normalize_custom,
}


def normalize(
    payload: Mapping[str, Any], shape: ProviderShape, now: Optional[datetime] = None
) -> CanonicalEvent:
    """Dispatch to the normalizer for `shape`.

    `now` is the arrival time used for any missing timestamp.
    """

    if shape is ProviderShape.UNSUPPORTED:
        raise ValueError("Cannot normalize an unsupported payload")
    if now is None:
        now = datetime.now(timezone.utc)
    return NORMALIZERS[shape](payload, now)
