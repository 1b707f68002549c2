"""Unit tests for idempotent conversion persistence."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from conftest import NODE, WORKSPACE, FakeRepo
from errors import DownstreamError
from models import CanonicalEvent, LineItem, Provider
from sink import EventSink, conversion_row, item_rows

NOW = datetime(2026, 10, 19, 12, tzinfo=timezone.utc)


def make_event(event_id: str = "evt_1", **overrides) -> CanonicalEvent:
    fields = dict(
        provider=Provider.STRIPE,
        provider_event_id=event_id,
        occurred_at=NOW,
        total_cents=9900,
        currency="USD",
    )
    fields.update(overrides)
    return CanonicalEvent(**fields)


@pytest.fixture
def sink(repo: FakeRepo) -> EventSink:
    return EventSink(repo)


class TestPersist:
    def test_inserts_event_and_items(self, repo: FakeRepo, sink: EventSink) -> None:
        items = [LineItem(name="Pro", quantity=1, unit_amount_cents=9900, product_ref="p1")]
        stored = sink.persist(WORKSPACE, repo.nodes[NODE], make_event(), items)

        assert len(repo.conversions) == 1
        [row] = repo.conversions.values()
        assert row["id"] == stored.id
        assert row["total_cents"] == 9900
        assert row["node_id"] == NODE
        assert row["funnel_id"] == f"funnel_{NODE}"
        [item_row] = repo.items.values()
        assert item_row["conversion_id"] == stored.id
        assert item_row["conversion_event_time"] == NOW
        assert item_row["product_id"] == "p1"

    def test_no_items_skips_item_insert(self, repo: FakeRepo, sink: EventSink) -> None:
        repo.fail["insert_items"] = RuntimeError("should not be called")
        sink.persist(WORKSPACE, repo.nodes[NODE], make_event(), [])
        assert repo.items == {}

    def test_duplicate_reuses_existing_conversion(self, repo: FakeRepo, sink: EventSink) -> None:
        node = repo.nodes[NODE]
        first = sink.persist(WORKSPACE, node, make_event(), [])
        second = sink.persist(WORKSPACE, node, make_event(), [])
        assert first.id == second.id
        assert len(repo.conversions) == 1

    def test_different_event_time_is_a_new_conversion(self, repo: FakeRepo, sink: EventSink) -> None:
        node = repo.nodes[NODE]
        sink.persist(WORKSPACE, node, make_event(), [])
        sink.persist(WORKSPACE, node, make_event(occurred_at=datetime(2026, 10, 18, tzinfo=timezone.utc)), [])
        assert len(repo.conversions) == 2

    def test_retry_does_not_duplicate_items(self, repo: FakeRepo, sink: EventSink) -> None:
        node = repo.nodes[NODE]
        items = [
            LineItem(name="a", quantity=1, unit_amount_cents=100),
            LineItem(name="b", quantity=2, unit_amount_cents=200),
        ]
        sink.persist(WORKSPACE, node, make_event(), items)
        sink.persist(WORKSPACE, node, make_event(), items)
        assert len(repo.items) == 2

    def test_concurrent_duplicates_store_one_row(self, repo: FakeRepo, sink: EventSink) -> None:
        node = repo.nodes[NODE]
        items = [LineItem(quantity=1, unit_amount_cents=9900)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(lambda _: sink.persist(WORKSPACE, node, make_event(), items), range(16))
            )
        assert len(repo.conversions) == 1
        assert len({r.id for r in results}) == 1
        assert len(repo.items) == 1
        assert repo.upsert_calls == 16


class TestPersistFailures:
    @pytest.mark.parametrize("op", ["upsert_conversion", "insert_items"])
    def test_repo_errors_become_downstream(self, repo: FakeRepo, sink: EventSink, op: str) -> None:
        repo.fail[op] = RuntimeError("connection reset")
        with pytest.raises(DownstreamError) as exc:
            sink.persist(WORKSPACE, repo.nodes[NODE], make_event(), [LineItem(unit_amount_cents=1)])
        assert exc.value.message == "connection reset"
        assert exc.value.status_code == 500

    def test_lookup_error_after_conflict(self, repo: FakeRepo, sink: EventSink) -> None:
        sink.persist(WORKSPACE, repo.nodes[NODE], make_event(), [])
        repo.fail["find_conversion"] = RuntimeError("timeout")
        with pytest.raises(DownstreamError, match="timeout"):
            sink.persist(WORKSPACE, repo.nodes[NODE], make_event(), [])

    def test_conflict_without_existing_row(self, repo: FakeRepo, sink: EventSink, monkeypatch) -> None:
        monkeypatch.setattr(repo, "upsert_conversion", lambda row: None)
        with pytest.raises(DownstreamError, match="Upsert failed"):
            sink.persist(WORKSPACE, repo.nodes[NODE], make_event(), [])


class TestRows:
    def test_conversion_row(self, repo: FakeRepo) -> None:
        event = make_event(customer_ref="cus_1", items_count=3, extra={"k": "v"})
        row = conversion_row(WORKSPACE, repo.nodes[NODE], event)
        assert row["provider"] == "stripe"
        assert row["type"] == "purchase"
        assert row["provider_customer_id"] == "cus_1"
        assert row["items_count"] == 3
        assert row["data"] == {"k": "v"}

    def test_item_rows_number_lines_and_default_currency(self) -> None:
        event = make_event(currency="EUR")
        rows = item_rows(WORKSPACE, event, [LineItem(unit_amount_cents=1), LineItem(unit_amount_cents=2, currency="USD")])
        assert [r["line_no"] for r in rows] == [0, 1]
        assert [r["currency"] for r in rows] == ["EUR", "USD"]
