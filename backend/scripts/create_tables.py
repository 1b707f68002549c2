"""
Create the funnel, node, product mapping and conversion tables.

Run after `pip install -e .` so `settings` is importable:

    python backend/scripts/create_tables.py
"""

import psycopg

from settings import settings

DDL = '''
CREATE TABLE IF NOT EXISTS funnels (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    funnel_id TEXT NOT NULL REFERENCES funnels (id),
    webhook_token TEXT
);

CREATE TABLE IF NOT EXISTS node_products (
    workspace_id TEXT NOT NULL,
    node_id TEXT NOT NULL REFERENCES nodes (id),
    product_id TEXT NOT NULL,
    is_primary BOOLEAN NOT NULL DEFAULT FALSE,
    price_points_cents BIGINT[],
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
    PRIMARY KEY (node_id, product_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_node_products_primary
    ON node_products (node_id) WHERE is_primary;

CREATE TABLE IF NOT EXISTS conversions (
    id UUID NOT NULL DEFAULT gen_random_uuid(),
    workspace_id TEXT NOT NULL,
    funnel_id TEXT NOT NULL,
    node_id TEXT NOT NULL,
    type TEXT NOT NULL,
    provider TEXT NOT NULL,
    provider_event_id TEXT NOT NULL,
    total_cents BIGINT NOT NULL,
    event_time TIMESTAMP WITH TIME ZONE NOT NULL,
    provider_customer_id TEXT,
    session_id TEXT,
    visitor_id TEXT,
    currency CHAR(3),
    subtotal_cents BIGINT NOT NULL DEFAULT 0,
    discount_cents BIGINT NOT NULL DEFAULT 0,
    tax_cents BIGINT NOT NULL DEFAULT 0,
    items_count INTEGER NOT NULL DEFAULT 0,
    data JSONB,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
    PRIMARY KEY (id, event_time),
    UNIQUE (workspace_id, provider, provider_event_id, event_time)
) PARTITION BY RANGE (event_time);

CREATE TABLE IF NOT EXISTS conversions_default
    PARTITION OF conversions DEFAULT;

CREATE TABLE IF NOT EXISTS conversion_items (
    id BIGSERIAL,
    workspace_id TEXT NOT NULL,
    conversion_id UUID NOT NULL,
    conversion_event_time TIMESTAMP WITH TIME ZONE NOT NULL,
    line_no INTEGER NOT NULL,
    product_id TEXT,
    name TEXT,
    quantity INTEGER NOT NULL,
    unit_amount_cents BIGINT NOT NULL,
    currency CHAR(3),
    is_bump BOOLEAN NOT NULL DEFAULT FALSE,
    PRIMARY KEY (conversion_id, conversion_event_time, line_no),
    FOREIGN KEY (conversion_id, conversion_event_time)
        REFERENCES conversions (id, event_time)
);

CREATE INDEX IF NOT EXISTS idx_conversions_workspace_time
    ON conversions (workspace_id, event_time DESC);
'''

print('Connecting to', settings.db_url)
with psycopg.connect(settings.db_url, connect_timeout=5) as conn:
    with conn.cursor() as cur:
        cur.execute(DDL)
    conn.commit()
print('DDL applied')
