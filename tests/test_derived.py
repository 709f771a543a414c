"""
Tests for client tiers, order totals, sale validation and client lookup.
"""

from datetime import datetime, timedelta, timezone

import pytest

from estampa_fina.derived import (
    ClientTier,
    ValidationError,
    build_items,
    client_status,
    count_completed_orders,
    match_clients,
    normalize_payment,
    order_total,
    recompute_total,
    validate_sale,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class TestClientStatus:
    """Tier thresholds are strict: more than 10 / more than 5."""

    def test_premium(self):
        assert client_status(NOW - timedelta(days=400), 11, now=NOW) is ClientTier.PREMIUM

    def test_vip(self):
        assert client_status(NOW - timedelta(days=400), 6, now=NOW) is ClientTier.VIP

    def test_ten_orders_is_vip_not_premium(self):
        assert client_status(NOW - timedelta(days=400), 10, now=NOW) is ClientTier.VIP

    def test_five_orders_is_not_vip(self):
        assert client_status(NOW - timedelta(days=400), 5, now=NOW) is ClientTier.REGULAR

    def test_new_client(self):
        assert client_status((NOW - timedelta(days=2)).isoformat(), 0, now=NOW) is ClientTier.NEW

    def test_regular_client(self):
        assert client_status((NOW - timedelta(days=30)).isoformat(), 0, now=NOW) is ClientTier.REGULAR

    def test_order_count_beats_age(self):
        assert client_status(NOW - timedelta(days=1), 7, now=NOW) is ClientTier.VIP

    def test_missing_created_at_is_regular(self):
        assert client_status(None, 0, now=NOW) is ClientTier.REGULAR
        assert client_status("", 0, now=NOW) is ClientTier.REGULAR

    def test_count_completed_orders(self):
        orders = [
            {"clientId": "c1", "status": "Completed"},
            {"clientId": "c1", "status": "Cancelled"},
            {"clientId": "c2", "status": "Completed"},
            {"clientId": "c1", "status": "Completed"},
            {"status": "Completed"},
        ]
        assert count_completed_orders(orders, "c1") == 2


class TestTotals:
    def test_total_from_items(self):
        items = [{"salePrice": 10, "quantity": 2}, {"salePrice": 5, "quantity": 3}]
        assert order_total(items) == 35

    def test_supplied_total_is_ignored(self):
        record = {
            "items": [{"salePrice": 10, "quantity": 2}, {"salePrice": 5, "quantity": 3}],
            "totalValue": 999,
        }
        assert recompute_total(record)["totalValue"] == 35
        assert record["totalValue"] == 999

    def test_missing_fields_count_as_zero(self):
        assert order_total([{"quantity": 3}, {"salePrice": 4}]) == 0
        assert recompute_total({})["totalValue"] == 0

    def test_rounding(self):
        assert order_total([{"salePrice": 0.1, "quantity": 3}]) == 0.3


class TestBuildItems:
    PRODUCTS = {
        "p1": {"id": "p1", "name": "Camiseta", "salePrice": 49.9},
        "p2": {"id": "p2", "name": "Boné", "salePrice": 30},
    }

    def test_snapshot_from_catalogue(self):
        items = build_items(self.PRODUCTS, ["p1", "p2"], ["2", "1"])
        assert items == [
            {"productId": "p1", "name": "Camiseta", "quantity": 2, "salePrice": 49.9},
            {"productId": "p2", "name": "Boné", "quantity": 1, "salePrice": 30.0},
        ]

    def test_blank_and_unknown_rows_skipped(self):
        items = build_items(self.PRODUCTS, ["", "nope", "p2"], ["1", "1", "3"])
        assert [it["productId"] for it in items] == ["p2"]

    def test_bad_quantity_becomes_one(self):
        items = build_items(self.PRODUCTS, ["p1", "p2"], ["abc", "-4"])
        assert [it["quantity"] for it in items] == [1, 1]


class TestPayment:
    def test_installments_only_for_credit_card(self):
        assert normalize_payment("Pix", 4) == {"installments": 1}
        assert normalize_payment("Cartão de Crédito", 4) == {"installments": 4}

    def test_installments_clamped(self):
        assert normalize_payment("Cartão de Crédito", 12) == {"installments": 6}
        assert normalize_payment("Cartão de Crédito", 0) == {"installments": 1}
        assert normalize_payment("Cartão de Crédito", "x") == {"installments": 1}


class TestValidateSale:
    ITEMS = [{"productId": "p1", "quantity": 1, "salePrice": 10}]

    def test_requires_client(self):
        with pytest.raises(ValidationError):
            validate_sale("", self.ITEMS, "Pix")

    def test_requires_items(self):
        with pytest.raises(ValidationError):
            validate_sale("c1", [], "Pix")

    def test_requires_known_payment_method(self):
        with pytest.raises(ValidationError):
            validate_sale("c1", self.ITEMS, "Cheque")

    def test_quote_has_no_payment_method(self):
        validate_sale("c1", self.ITEMS)


class TestMatchClients:
    CLIENTS = [
        {"id": "c1", "name": "Ana Souza", "email": "ana@exemplo.com", "phone": "11999990000", "cpf": "123.456.789-00"},
        {"id": "c2", "name": "Bruno", "email": "", "phone": "", "cpf": ""},
        {"id": "c3", "name": "Carla", "email": None},
    ]

    def ids(self, term):
        return [c["id"] for c in match_clients(self.CLIENTS, term)]

    def test_name_is_case_insensitive(self):
        assert self.ids("souza") == ["c1"]

    def test_email_and_phone(self):
        assert self.ids("ANA@EX") == ["c1"]
        assert self.ids("9999") == ["c1"]

    def test_cpf_ignores_punctuation(self):
        assert self.ids("12345678900") == ["c1"]
        assert self.ids("456.789") == ["c1"]

    def test_short_term_matches_nothing(self):
        assert self.ids("a") == []
        assert self.ids("  ") == []

    def test_punctuation_only_term_does_not_match_every_cpf(self):
        assert self.ids("..") == []
