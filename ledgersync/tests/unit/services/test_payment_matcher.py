"""
Tests for the payment matcher.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ledgersync.core.config import PaymentConfig, Settings
from ledgersync.core.models import DiscountType
from ledgersync.services.payments import (
    PaymentMatcher,
    extract_charge_details,
    extract_session_details,
    parse_reference,
)
from ledgersync.tests.conftest import NOW, FakeProcessor


def make_session(email="buyer@example.com", **overrides):
    session = {
        "id": "cs_test_1",
        "amount_total": 157500,
        "amount_subtotal": 175000,
        "customer_details": {"email": email, "name": "Buyer"},
        "description": "Workshop [ref:GJPA-YYBP-QMUT]",
        "total_details": {
            "breakdown": {
                "discounts": [
                    {"amount": 17500, "discount": {"coupon": {"id": "c1", "name": "TEAM10", "percent_off": 10}}}
                ]
            }
        },
    }
    session.update(overrides)
    return session


def make_charge(email="buyer@example.com", **overrides):
    charge = {
        "id": "ch_1",
        "amount": 175000,
        "billing_details": {"email": email, "name": "Buyer"},
        "description": "Booking [ref:AAAA-BBBB-CCCC]",
    }
    charge.update(overrides)
    return charge


class TestReferenceParsing:
    """Test cases for booking reference parsing"""

    @pytest.mark.parametrize("text, expected", [
        ("Paid [ref:GJPA-YYBP-QMUT] thanks", "GJPA-YYBP-QMUT"),
        ("[ref:abc123]", "abc123"),
        ("no reference here", None),
        ("[ref:]", None),
        (None, None),
    ])
    def test_parse_reference(self, text, expected):
        """Test booking reference parsing"""
        assert parse_reference(text) == expected


class TestExtraction:
    """Test cases for session and charge extraction"""

    def test_session_with_percent_coupon(self):
        """Test session with a percent coupon"""
        result = extract_session_details(make_session())

        assert result.found
        assert result.amount_paid == Decimal("1575.00")
        assert result.subtotal == Decimal("1750.00")
        assert result.discount_amount == Decimal("175.00")
        assert result.discount_type == DiscountType.PERCENT
        assert result.percent_off == Decimal("10")
        assert result.coupon_code == "TEAM10"
        assert result.reference == "GJPA-YYBP-QMUT"
        assert result.transaction_id == "cs_test_1"

    def test_session_without_breakdown_derives_discount(self):
        """Test discount is derived when the session has no breakdown"""
        session = make_session(total_details={}, amount_total=150000, amount_subtotal=175000)

        result = extract_session_details(session)

        assert result.discount_amount == Decimal("250.00")
        assert result.discount_type is None

    def test_fixed_coupon(self):
        """Test session with a fixed coupon"""
        session = make_session()
        session["total_details"]["breakdown"]["discounts"][0]["discount"]["coupon"] = {
            "id": "c2", "amount_off": 17500,
        }

        result = extract_session_details(session)

        assert result.discount_type == DiscountType.FIXED
        assert result.coupon_code == "c2"
        assert not result.is_percent_discount

    def test_charge_has_no_discount_detail(self):
        """Test charge carries no discount detail"""
        result = extract_charge_details(make_charge())

        assert result.amount_paid == result.subtotal == Decimal("1750.00")
        assert result.discount_amount == Decimal("0.00")
        assert result.reference == "AAAA-BBBB-CCCC"
        assert result.transaction_id == "ch_1"


class TestPaymentMatcher:
    """Test cases for PaymentMatcher"""

    @pytest.mark.asyncio
    async def test_prefers_session_over_charge(self, settings, clock):
        """Test checkout session is preferred over a charge"""
        processor = FakeProcessor(sessions=[make_session()], charges=[make_charge()])
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        result = await matcher.find_payment("BUYER@example.com")

        assert result.session_id == "cs_test_1"
        assert [call[0] for call in processor.calls] == ["list_checkout_sessions"]

    @pytest.mark.asyncio
    async def test_falls_back_to_charges(self, settings, clock):
        """Test lookup falls back to charges"""
        processor = FakeProcessor(
            sessions=[make_session(email="someone@else.com")],
            charges=[make_charge()],
        )
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        result = await matcher.find_payment("buyer@example.com")

        assert result.found
        assert result.charge_id == "ch_1"

    @pytest.mark.asyncio
    async def test_matching_is_email_only(self, settings, clock):
        """Test matching uses the email only"""
        # Amount is irrelevant to matching
        processor = FakeProcessor(sessions=[make_session(amount_total=1, amount_subtotal=1, total_details={})])
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        result = await matcher.find_payment("buyer@example.com")

        assert result.found
        assert result.amount_paid == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_not_found(self, settings, clock):
        """Test no matching payment"""
        matcher = PaymentMatcher(FakeProcessor(), settings=settings, clock=clock)

        result = await matcher.find_payment("buyer@example.com")

        assert not result.found
        assert result.error is None

    @pytest.mark.asyncio
    async def test_processor_error_returns_not_found(self, settings, clock):
        """Test processor error returns not found"""
        matcher = PaymentMatcher(FakeProcessor(error=ConnectionError("timeout")), settings=settings, clock=clock)

        result = await matcher.find_payment("buyer@example.com")

        assert not result.found
        assert "timeout" in result.error

    @pytest.mark.asyncio
    async def test_unconfigured_processor_returns_not_found(self, settings):
        """Test missing processor returns not found"""
        result = await PaymentMatcher(None, settings=settings).find_payment("buyer@example.com")
        assert not result.found

    @pytest.mark.asyncio
    async def test_disabled_processor_is_not_called(self):
        """Test disabled processor is not called"""
        processor = FakeProcessor(sessions=[make_session()])
        matcher = PaymentMatcher(processor, settings=Settings(payment=PaymentConfig(payment_processor_enabled=False)))

        result = await matcher.find_payment("buyer@example.com")

        assert not result.found
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_lookback_window_and_limits(self, settings, clock):
        """Test lookback window and listing limits"""
        processor = FakeProcessor()
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        await matcher.find_payment("buyer@example.com", lookback=timedelta(minutes=5))

        assert processor.calls[0] == ("list_checkout_sessions", NOW - timedelta(minutes=5), 10)
        assert processor.calls[1] == ("list_charges", NOW - timedelta(minutes=5), 20)

    @pytest.mark.asyncio
    async def test_description_enriched_from_payment_intent(self, settings, clock):
        """Test description is enriched from the payment intent"""
        session = make_session(description=None, payment_intent="pi_1", total_details={})
        processor = FakeProcessor(sessions=[session], descriptions={"pi_1": "Booking [ref:ZZZZ-1111]"})
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        result = await matcher.find_payment("buyer@example.com")

        assert result.description == "Booking [ref:ZZZZ-1111]"
        assert result.reference == "ZZZZ-1111"

    @pytest.mark.asyncio
    async def test_enrichment_failure_is_not_fatal(self, settings, clock):
        """Test description enrichment failure is non-fatal"""
        session = make_session(description=None, payment_intent="pi_1", total_details={})
        processor = FakeProcessor(sessions=[session], descriptions={"pi_1": RuntimeError("boom")})
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        result = await matcher.find_payment("buyer@example.com")

        assert result.found
        assert result.reference is None

    @pytest.mark.asyncio
    async def test_coupon_session_skips_payment_intent_lookup(self, settings, clock):
        """Test coupon session does not look up the payment intent"""
        session = make_session(description=None, payment_intent="pi_1")
        processor = FakeProcessor(sessions=[session], descriptions={"pi_1": "Booking [ref:ZZZZ-1111]"})
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        result = await matcher.find_payment("buyer@example.com")

        assert result.coupon_code == "TEAM10"
        assert result.description is None
        assert "get_payment_description" not in [call[0] for call in processor.calls]

    @pytest.mark.asyncio
    async def test_zero_lookback_is_honoured(self, settings, clock):
        """Test zero lookback is not replaced by the default"""
        processor = FakeProcessor()
        matcher = PaymentMatcher(processor, settings=settings, clock=clock)

        await matcher.find_payment("buyer@example.com", lookback=timedelta(0))

        assert processor.calls[0] == ("list_checkout_sessions", NOW, 10)
        assert processor.calls[1] == ("list_charges", NOW, 20)
