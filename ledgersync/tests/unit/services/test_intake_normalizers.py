"""
Tests for the order and booking normalizers.
"""

import copy
from decimal import Decimal

import pytest

from ledgersync.core.errors import EventValidationError
from ledgersync.core.models import DiscountType
from ledgersync.services.intake import (
    BookingNormalizer,
    OrderNormalizer,
    is_cancelled,
    summarize_order,
    validate_booking,
    validate_order,
)
from ledgersync.services.intake.parsing import parse_count, parse_price


def make_order_payload(**overrides):
    payload = {
        "id": 4321,
        "number": "4321",
        "status": "completed",
        "currency": "USD",
        "date_created": "2025-06-01T10:00:00",
        "payment_method": "stripe",
        "transaction_id": "ch_123",
        "total": "1750.00",
        "billing": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "company": "",
            "email": "Ada@Example.com ",
            "phone": " 555-0100 ",
        },
        "line_items": [
            {"name": "Building Strong Teams", "sku": "BST-001", "quantity": 1, "price": 1750, "subtotal": "1750.00", "total": "1750.00"},
        ],
        "coupon_lines": [],
    }
    payload.update(overrides)
    return payload


def make_booking_payload(**overrides):
    payload = {
        "source": "scheduler",
        "bookingId": "fd971df7",
        "firstName": "test",
        "lastName": "USER",
        "email": "Test@Example.com",
        "phone": "+14802064580 ",
        "additionalTeamMembers": "3",
        "appointmentType": "60 Minute Phase 1 - Leader Only",
        "price": "$ 1,750.00",
        "startDate": "2025-12-31T07:00:00-07:00",
        "bookingStatus": "upcoming",
        "bookingRef": "GJPA-YYBP-QMUT",
    }
    payload.update(overrides)
    return payload


class TestOrderNormalizer:
    """Test cases for OrderNormalizer"""

    def test_normalizes_paid_order(self, settings, catalog):
        """Test normalization of a paid order"""
        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(make_order_payload())

        assert order.order_id == "4321"
        assert order.customer.email == "ada@example.com"
        assert order.customer.display_name == "Ada Lovelace"
        assert order.customer.phone == "555-0100"
        assert order.subtotal == Decimal("1750.00")
        assert not order.is_paylater
        assert order.discount is None
        item = order.line_items[0]
        assert item.matched and item.item_ref == "10"
        assert item.standard_price == Decimal("1750.00")

    def test_company_is_preferred_display_name(self, settings, catalog):
        """Test company name is preferred as display name"""
        payload = make_order_payload()
        payload["billing"]["company"] = "Analytical Engines Ltd"

        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(payload)

        assert order.customer.display_name == "Analytical Engines Ltd"

    @pytest.mark.parametrize("payload", [
        {},
        {"id": 1, "billing": {}},
        {"billing": {"email": "a@b.co"}},
    ])
    def test_missing_identity_fields_raise(self, settings, catalog, payload):
        """Test missing identity fields raise a validation error"""
        with pytest.raises(EventValidationError):
            OrderNormalizer(catalog=catalog, settings=settings).normalize(payload)

    def test_paylater_coupon_code(self, settings, catalog):
        """Test paylater coupon code marks the order as paylater"""
        payload = make_order_payload(
            total="0.00",
            coupon_lines=[{"code": "PayLater", "discount": "1750.00"}],
        )
        payload["line_items"][0].update({"price": 0, "total": "0.00"})

        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(payload)

        assert order.is_paylater
        assert order.paylater_reason == "coupon:paylater"
        assert order.line_items[0].subtotal == Decimal("1750.00")

    def test_paylater_when_discount_covers_subtotal(self, settings, catalog):
        """Test discount covering the subtotal marks the order as paylater"""
        payload = make_order_payload(coupon_lines=[{"code": "FRIENDS", "discount": "1740.00"}])

        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(payload)

        assert order.is_paylater
        assert order.paylater_reason == "discount_covers_subtotal"

    def test_regular_coupon_becomes_fixed_discount(self, settings, catalog):
        """Test regular coupon becomes a fixed discount"""
        payload = make_order_payload(
            total="1575.00",
            coupon_lines=[{"code": "SAVE10", "discount": "175.00"}, {"code": "EXTRA", "discount": "5.00"}],
        )

        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(payload)

        assert not order.is_paylater
        assert order.discount.code == "SAVE10"
        assert order.discount.amount == Decimal("175.00")
        assert order.discount.discount_type == DiscountType.FIXED
        assert len(order.coupons) == 2

    def test_normalization_is_idempotent(self, settings, catalog):
        """Test normalizing twice gives the same result"""
        normalizer = OrderNormalizer(catalog=catalog, settings=settings)
        payload = make_order_payload()

        assert normalizer.normalize(copy.deepcopy(payload)) == normalizer.normalize(copy.deepcopy(payload))

    def test_validate_order_flags_unmapped_lines(self, settings, catalog):
        """Test order validation flags unmapped lines"""
        payload = make_order_payload()
        payload["line_items"].append({"name": "Gift Card", "quantity": 1, "total": "25.00"})
        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(payload)

        errors = validate_order(order)

        assert errors == ["Line item 2 (Gift Card) has no catalog mapping"]

    def test_validate_order_requires_line_items(self, settings, catalog):
        """Test order validation requires line items"""
        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(make_order_payload(line_items=[]))

        assert "Order must have at least one line item" in validate_order(order)

    def test_summarize_order(self, settings, catalog):
        """Test order summary fields"""
        order = OrderNormalizer(catalog=catalog, settings=settings).normalize(make_order_payload())

        summary = summarize_order(order)

        assert summary["order_id"] == "4321"
        assert summary["line_items"][0]["mapped"] is True


class TestBookingNormalizer:
    """Test cases for BookingNormalizer"""

    def test_normalizes_booking(self):
        """Test normalization of a booking"""
        booking = BookingNormalizer().normalize(make_booking_payload())

        assert booking.first_name == "Test"
        assert booking.last_name == "User"
        assert booking.email == "test@example.com"
        assert booking.phone == "+14802064580"
        assert booking.extras_count == 3
        assert booking.base_price == Decimal("1750.00")
        assert booking.status == "UPCOMING"
        assert booking.is_phase1 and not booking.is_phase2
        assert booking.customer.display_name == "Test User"

    @pytest.mark.parametrize("raw, expected", [("", 0), (None, 0), ("-2", 0), ("abc", 0), ("2", 2), (4, 4)])
    def test_extras_parsing_is_tolerant(self, raw, expected):
        """Test extras count parsing tolerates malformed values"""
        booking = BookingNormalizer().normalize(make_booking_payload(additionalTeamMembers=raw))
        assert booking.extras_count == expected
        assert parse_count(raw) == expected

    def test_missing_required_fields(self):
        """Test missing required booking fields raise"""
        with pytest.raises(EventValidationError) as exc_info:
            BookingNormalizer().normalize(make_booking_payload(lastName="", email=None))

        assert "lastName" in exc_info.value.errors[0]
        assert "email" in exc_info.value.errors[0]

    def test_cancelled_detection(self):
        """Test cancelled booking detection"""
        booking = BookingNormalizer().normalize(make_booking_payload(bookingStatus="Cancelled"))
        assert is_cancelled(booking)

    def test_validate_booking_email_syntax(self):
        """Test booking validation checks email syntax"""
        booking = BookingNormalizer().normalize(make_booking_payload(email="not-an-email"))
        assert validate_booking(booking) == ["Invalid or missing email address"]

    def test_normalization_is_idempotent(self):
        """Test normalizing twice gives the same result"""
        normalizer = BookingNormalizer()
        assert normalizer.normalize(make_booking_payload()) == normalizer.normalize(make_booking_payload())


class TestPriceParsing:
    """Test cases for price parsing"""

    @pytest.mark.parametrize("text, expected", [
        ("$ 1,750.00", Decimal("1750.00")),
        ("$1750", Decimal("1750")),
        ("1.750,00 €", Decimal("1750.00")),
        ("99.5", Decimal("99.5")),
        ("free", Decimal("0.00")),
        (None, Decimal("0.00")),
    ])
    def test_parse_price(self, text, expected):
        """Test price parsing from display text"""
        assert parse_price(text) == expected
