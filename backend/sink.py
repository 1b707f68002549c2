"""
Idempotent persistence of a canonical event and its attributed items.

One logical conversion exists per (workspace, provider, provider event id,
event time). Concurrent duplicate deliveries race on the upsert; the loser
gets no row back and reads the winner's id instead. Items are written with
their position in the event as `line_no`, and the repository ignores
conflicts on that key, so a retried request is safe end to end.
"""

import logging
from typing import Any, Dict, List, Sequence

from errors import DownstreamError
from models import CanonicalEvent, LineItem, NodeRecord, StoredConversion
from repo_conversions import ConversionKey, ConversionRepo

logger = logging.getLogger(__name__)


class EventSink:
    def __init__(self, repo: ConversionRepo):
        self.repo = repo

    def persist(
        self,
        workspace_id: str,
        node: NodeRecord,
        event: CanonicalEvent,
        items: Sequence[LineItem],
    ) -> StoredConversion:
        """Store `event` once, then attach `items` to it.

        Raises `DownstreamError` on any repository failure. Nothing is
        rolled back; the caller may retry the whole request.
        """

        key = ConversionKey(
            workspace_id=workspace_id,
            provider=event.provider.value,
            provider_event_id=event.provider_event_id,
            event_time=event.occurred_at,
        )

        try:
            stored = self.repo.upsert_conversion(conversion_row(workspace_id, node, event))
        except Exception as e:
            logger.error("Conversion upsert failed for node %s: %s", node.id, e)
            raise DownstreamError(str(e)) from e

        if stored is None:
            try:
                stored = self.repo.find_conversion(key)
            except Exception as e:
                logger.error("Conversion lookup failed for node %s: %s", node.id, e)
                raise DownstreamError(str(e)) from e
            if stored is None:
                raise DownstreamError("Upsert failed")
            logger.info(
                "Duplicate %s event %s, reusing conversion %s",
                key.provider,
                key.provider_event_id,
                stored.id,
            )

        if items:
            try:
                self.repo.insert_items(stored, item_rows(workspace_id, event, items))
            except Exception as e:
                logger.error("Item insert failed for conversion %s: %s", stored.id, e)
                raise DownstreamError(str(e)) from e

        return stored


def conversion_row(workspace_id: str, node: NodeRecord, event: CanonicalEvent) -> Dict[str, Any]:
    return {
        "workspace_id": workspace_id,
        "funnel_id": node.funnel_id,
        "node_id": node.id,
        "type": event.event_type.value,
        "provider": event.provider.value,
        "provider_event_id": event.provider_event_id,
        "total_cents": event.total_cents,
        "event_time": event.occurred_at,
        "provider_customer_id": event.customer_ref,
        "session_id": event.session_ref,
        "visitor_id": event.visitor_ref,
        "currency": event.currency,
        "subtotal_cents": event.subtotal_cents,
        "discount_cents": event.discount_cents,
        "tax_cents": event.tax_cents,
        "items_count": event.items_count or len(event.items),
        "data": event.extra,
    }


def item_rows(
    workspace_id: str, event: CanonicalEvent, items: Sequence[LineItem]
) -> List[Dict[str, Any]]:
    return [
        {
            "workspace_id": workspace_id,
            "line_no": line_no,
            "product_id": item.product_ref,
            "name": item.name,
            "quantity": item.quantity,
            "unit_amount_cents": item.unit_amount_cents,
            "currency": item.currency or event.currency,
            "is_bump": item.is_bump,
        }
        for line_no, item in enumerate(items)
    ]
