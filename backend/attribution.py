"""
Attribution of line items to a node's catalog products.

An item is matched to the first mapping (in the order the repository
returned them) that lists a price point within tolerance of the item's
unit amount: `|p - amount| <= max(1, p * tolerance)`. There is no scoring
across several candidates. Unmatched items fall back to the node's primary
product, or stay uncategorized when the node has none.
"""

import logging
from typing import List, Optional, Sequence

from models import CanonicalEvent, LineItem, ProductMapping
from settings import settings

logger = logging.getLogger(__name__)

FALLBACK_ITEM_NAME = "Order"


def find_primary(mappings: Sequence[ProductMapping]) -> Optional[ProductMapping]:
    return next((m for m in mappings if m.is_primary), None)


def price_matches(price_point: int, amount: int, tolerance: float) -> bool:
    return abs(price_point - amount) <= max(1, price_point * tolerance)


def match_product(
    amount: int, mappings: Sequence[ProductMapping], tolerance: float
) -> Optional[ProductMapping]:
    # A zero amount never price-matches; it can only reach the primary.
    if not amount:
        return None
    for mapping in mappings:
        if any(price_matches(p, amount, tolerance) for p in mapping.price_points_cents):
            return mapping
    return None


def match_items(
    items: Sequence[LineItem],
    mappings: Sequence[ProductMapping],
    default_currency: str,
    tolerance: Optional[float] = None,
) -> List[LineItem]:
    """Return copies of `items` with `product_ref` and `currency` resolved."""

    if tolerance is None:
        tolerance = settings.price_tolerance
    primary = find_primary(mappings)

    matched: List[LineItem] = []
    for item in items:
        mapping = match_product(item.unit_amount_cents, mappings, tolerance) or primary
        matched.append(
            item.model_copy(
                update={
                    "product_ref": mapping.product_id if mapping else None,
                    "currency": item.currency or default_currency,
                }
            )
        )
    return matched


def attribute_event(
    event: CanonicalEvent, mappings: Sequence[ProductMapping]
) -> List[LineItem]:
    """Resolve the items to persist for `event`.

    When the provider sent no line items at all, the whole total is
    attributed to the primary product as a single synthetic item so the
    revenue is not lost.
    """

    if event.items:
        return match_items(event.items, mappings, event.currency)

    primary = find_primary(mappings)
    if primary is None:
        return []

    logger.debug(
        "No line items from %s event %s, attributing total to primary product %s",
        event.provider.value,
        event.provider_event_id,
        primary.product_id,
    )
    return [
        LineItem(
            name=FALLBACK_ITEM_NAME,
            quantity=1,
            unit_amount_cents=event.total_cents,
            currency=event.currency,
            is_bump=False,
            product_ref=primary.product_id,
        )
    ]
