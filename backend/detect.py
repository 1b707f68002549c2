"""
Provider shape detection.

Webhooks arrive without any provider secret, so the shape is guessed from
the fields present. Each predicate below is a standalone function and the
detector tries them in a fixed order; the first match wins because shapes
share field names (a Shopify order also carries `order_id`-like keys, a
Stripe event has a `data` object, and so on).

False positives are possible. `ProviderShape.UNSUPPORTED` is a regular
result, never an exception.
"""

from enum import Enum
from typing import Any, Callable, List, Mapping, Tuple

from coercion import dig, is_present


class ProviderShape(str, Enum):
    STRIPE = "stripe"
    PADDLE = "paddle"
    LEMONSQUEEZY = "lemonsqueezy"
    SHOPIFY = "shopify"
    CUSTOM = "custom"
    UNSUPPORTED = "unsupported"


def looks_like_stripe(payload: Mapping[str, Any]) -> bool:
    if payload.get("object") == "event":
        return True
    event_type = payload.get("type")
    return isinstance(event_type, str) and "." in event_type


def looks_like_paddle(payload: Mapping[str, Any]) -> bool:
    return any(is_present(payload.get(k)) for k in ("alert_id", "event_time", "order_id"))


def looks_like_lemonsqueezy(payload: Mapping[str, Any]) -> bool:
    return is_present(dig(payload, "meta", "event_name")) or is_present(
        dig(payload, "data", "attributes", "total")
    )


def looks_like_shopify(payload: Mapping[str, Any]) -> bool:
    if not isinstance(payload.get("line_items"), list):
        return False
    return is_present(payload.get("total_price")) or is_present(payload.get("subtotal_price"))


def looks_like_custom(payload: Mapping[str, Any]) -> bool:
    return is_present(payload.get("total_cents")) or is_present(payload.get("items"))


DETECTION_ORDER: List[Tuple[ProviderShape, Callable[[Mapping[str, Any]], bool]]] = [
    (ProviderShape.STRIPE, looks_like_stripe),
    (ProviderShape.PADDLE, looks_like_paddle),
    (ProviderShape.LEMONSQUEEZY, looks_like_lemonsqueezy),
    (ProviderShape.SHOPIFY, looks_like_shopify),
    (ProviderShape.CUSTOM, looks_like_custom),
]


def detect_provider(payload: Any) -> ProviderShape:
    """Classify a decoded JSON value. Never raises."""

    if not isinstance(payload, Mapping):
        return ProviderShape.UNSUPPORTED
    for shape, predicate in DETECTION_ORDER:
        if predicate(payload):
            return shape
    return ProviderShape.UNSUPPORTED
