"""
Pydantic models used across the backend.

`CanonicalEvent` and `LineItem` are the provider-independent shapes every
normalizer produces. `ProductMapping` and `NodeRecord` are read-only
snapshots returned by the repository; `StoredConversion` is what the
persistence layer hands back after an upsert.

Guidelines:
- Cents fields are typed `Cents` (int or float) so a non-integral value
  survives normalization and is rejected by `validation`, not silently
  truncated.
- Events are frozen once built. Attribution produces new `LineItem`
  copies with `product_ref` set instead of mutating the originals.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Cents = Union[int, float]


class Provider(str, Enum):
    STRIPE = "stripe"
    PADDLE = "paddle"
    LEMONSQUEEZY = "lemonsqueezy"
    SHOPIFY = "shopify"
    CUSTOM = "custom"


class EventType(str, Enum):
    PURCHASE = "purchase"
    OPT_IN = "opt_in"
    BOOKING = "booking"
    QUIZ = "quiz"
    CUSTOM = "custom"


class LineItem(BaseModel):
    """One purchased unit-group within an event.

    Fields:
    - `name`: optional display string.
    - `quantity`: validated to lie in [1, MAX_QUANTITY].
    - `unit_amount_cents`: price per unit in minor currency units.
    - `currency`: inherited from the parent event when the source omits it.
    - `is_bump`: order bump / upsell flag.
    - `product_ref`: catalog product id, set only by `attribution`.
    """

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    quantity: Cents = 1
    unit_amount_cents: Cents = 0
    currency: Optional[str] = None
    is_bump: bool = False
    product_ref: Optional[str] = None


class CanonicalEvent(BaseModel):
    """Normalized representation of one inbound occurrence."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    provider_event_id: str
    event_type: EventType = EventType.PURCHASE
    occurred_at: datetime
    currency: str = "USD"
    subtotal_cents: Cents = 0
    discount_cents: Cents = 0
    tax_cents: Cents = 0
    total_cents: Cents
    items: List[LineItem] = Field(default_factory=list)
    items_count: int = 0
    customer_ref: Optional[str] = None
    session_ref: Optional[str] = None
    visitor_ref: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class ProductMapping(BaseModel):
    """A catalog product attached to a node, with its expected price points."""

    product_id: str
    is_primary: bool = False
    price_points_cents: List[int] = Field(default_factory=list)


class NodeRecord(BaseModel):
    """A webhook destination resolved together with its funnel's workspace."""

    id: str
    funnel_id: str
    workspace_id: Optional[str] = None
    webhook_token: Optional[str] = None


class StoredConversion(BaseModel):
    id: str
    event_time: datetime
