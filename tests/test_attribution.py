"""Unit tests for price-tolerant product attribution."""

from __future__ import annotations

from datetime import datetime, timezone

from attribution import attribute_event, match_items, price_matches
from models import CanonicalEvent, LineItem, ProductMapping, Provider

NOW = datetime(2026, 10, 19, tzinfo=timezone.utc)

PRO = ProductMapping(product_id="prod_pro", price_points_cents=[1000])
PRIMARY = ProductMapping(product_id="prod_main", is_primary=True, price_points_cents=[5000])


def item(amount: int, **kw) -> LineItem:
    return LineItem(quantity=1, unit_amount_cents=amount, **kw)


class TestPriceMatches:
    def test_five_percent_tolerance(self) -> None:
        assert price_matches(1000, 1049, 0.05)
        assert price_matches(1000, 950, 0.05)
        assert not price_matches(1000, 1051, 0.05)

    def test_one_cent_floor(self) -> None:
        assert price_matches(10, 11, 0.05)
        assert not price_matches(10, 12, 0.05)


class TestMatchItems:
    def test_within_tolerance(self) -> None:
        [matched] = match_items([item(1049)], [PRO], "USD")
        assert matched.product_ref == "prod_pro"

    def test_outside_tolerance_falls_back_to_primary(self) -> None:
        [matched] = match_items([item(1051)], [PRO, PRIMARY], "USD")
        assert matched.product_ref == "prod_main"

    def test_outside_tolerance_without_primary(self) -> None:
        [matched] = match_items([item(1051)], [PRO], "USD")
        assert matched.product_ref is None

    def test_first_mapping_wins(self) -> None:
        other = ProductMapping(product_id="prod_other", price_points_cents=[1010])
        [matched] = match_items([item(1005)], [other, PRO], "USD")
        assert matched.product_ref == "prod_other"

    def test_primary_can_match_by_price(self) -> None:
        [matched] = match_items([item(5000)], [PRO, PRIMARY], "USD")
        assert matched.product_ref == "prod_main"

    def test_zero_amount_only_reaches_primary(self) -> None:
        zero = ProductMapping(product_id="prod_free", price_points_cents=[0])
        assert match_items([item(0)], [zero], "USD")[0].product_ref is None
        assert match_items([item(0)], [zero, PRIMARY], "USD")[0].product_ref == "prod_main"

    def test_mapping_without_price_points(self) -> None:
        bare = ProductMapping(product_id="prod_bare")
        assert match_items([item(1000)], [bare], "USD")[0].product_ref is None

    def test_currency_defaults_and_order_kept(self) -> None:
        items = [item(1000, name="a"), item(1, name="b", currency="EUR")]
        matched = match_items(items, [PRO], "GBP")
        assert [m.name for m in matched] == ["a", "b"]
        assert [m.currency for m in matched] == ["GBP", "EUR"]

    def test_originals_untouched(self) -> None:
        original = item(1000)
        match_items([original], [PRO], "USD")
        assert original.product_ref is None


class TestAttributeEvent:
    def _event(self, items=()) -> CanonicalEvent:
        return CanonicalEvent(
            provider=Provider.STRIPE,
            provider_event_id="evt",
            occurred_at=NOW,
            currency="EUR",
            total_cents=4321,
            items=list(items),
        )

    def test_no_items_synthesizes_primary_item(self) -> None:
        [synth] = attribute_event(self._event(), [PRO, PRIMARY])
        assert synth.product_ref == "prod_main"
        assert synth.quantity == 1
        assert synth.unit_amount_cents == 4321
        assert synth.currency == "EUR"
        assert synth.is_bump is False

    def test_no_items_no_primary(self) -> None:
        assert attribute_event(self._event(), [PRO]) == []
        assert attribute_event(self._event(), []) == []

    def test_unmatched_items_do_not_trigger_fallback(self) -> None:
        matched = attribute_event(self._event([item(1)]), [PRO])
        assert len(matched) == 1
        assert matched[0].product_ref is None
        assert matched[0].unit_amount_cents == 1
