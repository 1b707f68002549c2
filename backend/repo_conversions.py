"""
Repository: SQL operations for nodes, product mappings and conversions.

This file contains only DB interaction code. It maps Pydantic models
to SQL parameters and converts DB rows back to models. Keep business
rules out of this module.

Important notes:
- SQL strings use positional parameters for psycopg.
- `data` is stored via `Jsonb` so Postgres keeps native JSONB.
- `conversions` is partitioned by `event_time`, which is why the event
  time is part of every unique key and is carried on each item row.
- Each write method commits before returning; callers expect the write
  to be durable once the method returns.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from psycopg.types.json import Jsonb

from db import get_conn
from models import NodeRecord, ProductMapping, StoredConversion


@dataclass(frozen=True)
class ConversionKey:
    """Unique key of one logical conversion."""

    workspace_id: str
    provider: str
    provider_event_id: str
    event_time: datetime


class ConversionRepo:
    """DB access only. No business logic here."""

    def fetch_node(self, node_id: str) -> Optional[NodeRecord]:
        """Return the node joined with its funnel's workspace, or None."""

        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT n.id, n.funnel_id, f.workspace_id, n.webhook_token "
                    "FROM nodes n LEFT JOIN funnels f ON f.id = n.funnel_id "
                    "WHERE n.id = %s",
                    (node_id,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return NodeRecord(
            id=str(row[0]),
            funnel_id=str(row[1]),
            workspace_id=None if row[2] is None else str(row[2]),
            webhook_token=row[3],
        )

    def fetch_product_mappings(self, workspace_id: str, node_id: str) -> List[ProductMapping]:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT product_id, is_primary, price_points_cents "
                    "FROM node_products WHERE workspace_id = %s AND node_id = %s "
                    "ORDER BY created_at, product_id",
                    (workspace_id, node_id),
                )
                return [
                    ProductMapping(
                        product_id=str(r[0]),
                        is_primary=bool(r[1]),
                        price_points_cents=list(r[2] or []),
                    )
                    for r in cur.fetchall()
                ]

    def upsert_conversion(self, row: Dict[str, Any]) -> Optional[StoredConversion]:
        """Insert a conversion unless its unique key already exists.

        Returns the new row, or None when another writer got there first.
        """

        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO conversions (
                        workspace_id, funnel_id, node_id, type, provider,
                        provider_event_id, total_cents, event_time,
                        provider_customer_id, session_id, visitor_id, currency,
                        subtotal_cents, discount_cents, tax_cents, items_count, data
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (workspace_id, provider, provider_event_id, event_time)
                    DO NOTHING
                    RETURNING id, event_time
                    """,
                    (
                        row["workspace_id"],
                        row["funnel_id"],
                        row["node_id"],
                        row["type"],
                        row["provider"],
                        row["provider_event_id"],
                        row["total_cents"],
                        row["event_time"],
                        row["provider_customer_id"],
                        row["session_id"],
                        row["visitor_id"],
                        row["currency"],
                        row["subtotal_cents"],
                        row["discount_cents"],
                        row["tax_cents"],
                        row["items_count"],
                        Jsonb(row["data"]),
                    ),
                )
                inserted = cur.fetchone()
            conn.commit()
        if inserted is None:
            return None
        return StoredConversion(id=str(inserted[0]), event_time=inserted[1])

    def find_conversion(self, key: ConversionKey) -> Optional[StoredConversion]:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, event_time FROM conversions "
                    "WHERE workspace_id = %s AND provider = %s "
                    "AND provider_event_id = %s AND event_time = %s",
                    (key.workspace_id, key.provider, key.provider_event_id, key.event_time),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return StoredConversion(id=str(row[0]), event_time=row[1])

    def insert_items(self, conversion: StoredConversion, rows: Sequence[Dict[str, Any]]) -> int:
        """Batch-insert attributed items for `conversion`.

        Rows are keyed on (conversion, line_no) and conflicts are ignored,
        so replaying the same request never duplicates items.
        """

        params = [
            (
                r["workspace_id"],
                conversion.id,
                conversion.event_time,
                r["line_no"],
                r["product_id"],
                r["name"],
                r["quantity"],
                r["unit_amount_cents"],
                r["currency"],
                r["is_bump"],
            )
            for r in rows
        ]
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO conversion_items (
                        workspace_id, conversion_id, conversion_event_time, line_no,
                        product_id, name, quantity, unit_amount_cents, currency, is_bump
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (conversion_id, conversion_event_time, line_no) DO NOTHING
                    """,
                    params,
                )
            conn.commit()
        return len(params)

    def ping(self) -> None:
        """Lightweight DB health check. Raises on error."""

        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
