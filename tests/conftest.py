"""Shared fixtures: an in-memory repository and a wired-up test client."""

from __future__ import annotations

import threading
import uuid
from typing import Any

import pytest
from fastapi.testclient import TestClient

from models import NodeRecord, ProductMapping, StoredConversion
from rate_limit import FixedWindowRateLimiter
from repo_conversions import ConversionKey
from service_webhooks import WebhookService

WORKSPACE = "ws_1"
NODE = "node_1"
TOKEN = "tok_secret"


class FakeRepo:
    """Thread-safe stand-in for `ConversionRepo` with the same unique keys."""

    def __init__(self) -> None:
        self.nodes: dict[str, NodeRecord] = {}
        self.mappings: dict[tuple[str, str], list[ProductMapping]] = {}
        self.conversions: dict[tuple[Any, ...], dict[str, Any]] = {}
        self.items: dict[tuple[str, int], dict[str, Any]] = {}
        self.fail: dict[str, Exception] = {}
        self.upsert_calls = 0
        self._lock = threading.Lock()

    def add_node(self, node_id: str, workspace_id: str, token: str | None) -> None:
        self.nodes[node_id] = NodeRecord(
            id=node_id, funnel_id=f"funnel_{node_id}", workspace_id=workspace_id, webhook_token=token
        )

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail:
            raise self.fail[op]

    def fetch_node(self, node_id: str) -> NodeRecord | None:
        self._maybe_fail("fetch_node")
        return self.nodes.get(node_id)

    def fetch_product_mappings(self, workspace_id: str, node_id: str) -> list[ProductMapping]:
        self._maybe_fail("fetch_product_mappings")
        return list(self.mappings.get((workspace_id, node_id), []))

    def upsert_conversion(self, row: dict[str, Any]) -> StoredConversion | None:
        self._maybe_fail("upsert_conversion")
        key = (row["workspace_id"], row["provider"], row["provider_event_id"], row["event_time"])
        with self._lock:
            self.upsert_calls += 1
            if key in self.conversions:
                return None
            stored = dict(row, id=str(uuid.uuid4()))
            self.conversions[key] = stored
        return StoredConversion(id=stored["id"], event_time=row["event_time"])

    def find_conversion(self, key: ConversionKey) -> StoredConversion | None:
        self._maybe_fail("find_conversion")
        row = self.conversions.get(
            (key.workspace_id, key.provider, key.provider_event_id, key.event_time)
        )
        if row is None:
            return None
        return StoredConversion(id=row["id"], event_time=row["event_time"])

    def insert_items(self, conversion: StoredConversion, rows: list[dict[str, Any]]) -> int:
        self._maybe_fail("insert_items")
        with self._lock:
            for r in rows:
                self.items.setdefault(
                    (conversion.id, r["line_no"]),
                    dict(r, conversion_id=conversion.id, conversion_event_time=conversion.event_time),
                )
        return len(rows)

    def ping(self) -> None:
        self._maybe_fail("ping")


@pytest.fixture
def repo() -> FakeRepo:
    fake = FakeRepo()
    fake.add_node(NODE, WORKSPACE, TOKEN)
    return fake


@pytest.fixture
def limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(window_seconds=60, clock=lambda: 6_000_000.0)


@pytest.fixture
def service(repo: FakeRepo, limiter: FixedWindowRateLimiter) -> WebhookService:
    return WebhookService(repo, limiter)


@pytest.fixture
def client(service: WebhookService):
    from main import app, get_service

    app.dependency_overrides[get_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
