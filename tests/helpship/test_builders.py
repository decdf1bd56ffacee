"""
Tests for the Helpship request body builders and the shared total computation.
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest

from ordersync.helpship.builders import (
    HELPSHIP_STATUS_ON_HOLD,
    build_address_update,
    build_order_lines,
    build_order_payload,
    format_order_name,
    split_address,
    split_name,
)
from ordersync.totals import compute_order_total, upsell_quantity


def order_like(**overrides):
    values = dict(
        id="order-1",
        order_number=5,
        full_name="Ion Popescu",
        phone="0722123456",
        county="Cluj",
        city="Cluj-Napoca",
        address="Strada Memorandumului 28",
        postal_code="400114",
        product_sku="SKU1",
        product_name="Perna ortopedica",
        product_quantity=1,
        subtotal=Decimal("100.00"),
        shipping_cost=Decimal("10.00"),
        total=Decimal("110.00"),
        upsells=[],
        order_note=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


# ==============================================================================
# Totals
# ==============================================================================

class TestOrderTotal:

    def test_total_includes_upsells(self):
        """100 subtotal + 10 shipping + 2 x 20 upsell = 150, whatever the stored total says."""
        order = order_like(upsells=[{"product_sku": "UP1", "price": 20, "quantity": 2}])

        assert compute_order_total(order) == Decimal("150.00")

    def test_stored_total_is_ignored(self):
        order = order_like(total=Decimal("1.00"))

        assert compute_order_total(order) == Decimal("110.00")

    @pytest.mark.parametrize("upsell,expected", [
        ({"quantity": 3}, 3),
        ({"quantity": 0}, 1),
        ({}, 1),
        ({"quantity": "2"}, 2),
        ({"quantity": "many"}, 1),
    ])
    def test_upsell_quantity(self, upsell, expected):
        assert upsell_quantity(upsell) == expected

    def test_string_prices(self):
        order = order_like(subtotal="99.90", shipping_cost=None, upsells=[{"price": "0.10"}])

        assert compute_order_total(order) == Decimal("100.00")


# ==============================================================================
# Name / address helpers
# ==============================================================================

class TestSplitting:

    @pytest.mark.parametrize("full_name,expected", [
        ("Ion Popescu", ("Ion", "Popescu")),
        ("Maria Elena Ionescu", ("Maria", "Elena Ionescu")),
        ("Madonna", ("Madonna", None)),
        ("", (None, None)),
        (None, (None, None)),
    ])
    def test_split_name(self, full_name, expected):
        assert split_name(full_name) == expected

    @pytest.mark.parametrize("address,expected", [
        ("Strada Memorandumului 28", ("Strada Memorandumului", "28")),
        ("Str. Lunga 12 bl. A ap. 4", ("Str. Lunga", "12 bl. A ap. 4")),
        ("Sat Valea Lunga", ("Sat Valea Lunga", "")),
        ("  ", ("", "")),
    ])
    def test_split_address(self, address, expected):
        assert split_address(address) == expected

    def test_order_name_padding(self):
        assert format_order_name("VLR", 5) == "VLR-00005"
        assert format_order_name(None, 123456) == "VLR-123456"


# ==============================================================================
# Payloads
# ==============================================================================

class TestOrderPayload:

    def test_payload_fields(self):
        order = order_like(upsells=[{"product_sku": "UP1", "price": 20, "quantity": 2}])

        payload = build_order_payload(order, "VLR", "7", upsell_names={"UP1": "Husa"})

        assert payload["externalId"] == "order-1"
        assert payload["name"] == "VLR-00005"
        assert payload["totalPrice"] == 150.0
        assert payload["shippingPrice"] == 10.0
        assert payload["currency"] == "RON"
        assert payload["paymentProcessing"] == "Manual"
        assert payload["paymentStatus"] == "Pending"
        assert payload["packagingType"] == "Envelope"
        assert payload["status"] == HELPSHIP_STATUS_ON_HOLD
        assert payload["statusName"] == "OnHold"
        address = payload["mailingAddress"]
        assert (address["street"], address["number"]) == ("Strada Memorandumului", "28")
        assert address["countryId"] == "7"
        assert (payload["firstName"], payload["lastName"]) == ("Ion", "Popescu")

    def test_hold_note_is_not_sent_as_customer_note(self):
        """The internal hold note stays local; Helpship gets a null customer note."""
        payload = build_order_payload(order_like(order_note="call after 18:00"), "VLR", None)

        assert payload["customerNote"] is None
        assert payload["shopOwnerNote"] is None

    def test_payload_without_hold(self):
        payload = build_order_payload(order_like(), "VLR", None, on_hold=False)

        assert "status" not in payload
        assert "statusName" not in payload

    def test_order_lines(self):
        order = order_like(
            product_quantity=2,
            upsells=[
                {"productSku": "UP1", "price": 20, "quantity": 2, "title": "Husa extra"},
                {"price": 5, "title": "Ambalaj cadou"},
            ],
        )

        lines = build_order_lines(order, {"UP1": "Husa premium"})

        assert lines[0] == {"name": "Perna ortopedica", "quantity": 2, "price": 50.0, "vatPercentage": 0,
                            "externalSku": "SKU1"}
        assert lines[1]["name"] == "Husa premium"
        assert lines[1]["externalSku"] == "UP1"
        assert lines[2] == {"name": "Ambalaj cadou", "quantity": 1, "price": 5.0, "vatPercentage": 0}

    def test_address_update(self):
        update = build_address_update(order_like(address="Bulevardul Eroilor 5", postal_code=""), "7")

        assert update["street"] == "Bulevardul Eroilor"
        assert update["number"] == "5"
        assert update["zip"] is None
        assert update["countryId"] == "7"
