"""
Payment matcher for LedgerSync.

Finds the processor transaction belonging to a customer email within a
lookback window and extracts amount, discount, coupon and reference
metadata from it.

Matching is email-only (case-insensitive). Checkout sessions are searched
first because they expose subtotal and discount breakdown; charges are the
fallback and only carry the final amount and a free-text description.

The matcher never raises: an unconfigured or unreachable processor yields
the same ``found=False`` result as "no payment", since a missing payment is
what routes a booking to the paylater flow.
"""

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

import structlog

from ledgersync.core.collaborators import PaymentProcessor
from ledgersync.core.config import Settings, get_settings
from ledgersync.core.models import DiscountType, MatchedPayment, cents_to_decimal

logger = structlog.get_logger(__name__)

REFERENCE_PATTERN = re.compile(r"\[ref:([A-Za-z0-9-]+)\]")


def parse_reference(description: Optional[str]) -> Optional[str]:
    """Extract the ``[ref:XXXX-XXXX-XXXX]`` token from free text"""
    if not description:
        return None
    match = REFERENCE_PATTERN.search(description)
    return match.group(1) if match else None


def _get(record: Optional[Mapping[str, Any]], *path: str) -> Any:
    value: Any = record
    for key in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _same_email(candidate: Optional[str], email: str) -> bool:
    return bool(candidate) and candidate.strip().lower() == email.strip().lower()


def extract_session_details(session: Mapping[str, Any]) -> MatchedPayment:
    """Build a MatchedPayment from a checkout-session record"""
    amount_paid = int(session.get("amount_total") or 0)
    subtotal = int(session.get("amount_subtotal") or 0)

    result = MatchedPayment(
        found=True,
        amount_paid_cents=amount_paid,
        subtotal_cents=subtotal,
        session_id=session.get("id"),
        customer_email=_get(session, "customer_details", "email") or session.get("customer_email"),
        customer_name=_get(session, "customer_details", "name"),
        description=session.get("description"),
    )

    # Derived discount when no breakdown is exposed
    if subtotal > amount_paid:
        result.discount_cents = subtotal - amount_paid

    discounts = _get(session, "total_details", "breakdown", "discounts") or []
    if discounts:
        primary = discounts[0]
        result.discount_cents = int(primary.get("amount") or 0) or result.discount_cents

        coupon = _get(primary, "discount", "coupon")
        if coupon:
            result.coupon_code = coupon.get("name") or coupon.get("id")
            if coupon.get("percent_off"):
                result.discount_type = DiscountType.PERCENT
                result.percent_off = Decimal(str(coupon["percent_off"]))
            elif coupon.get("amount_off"):
                result.discount_type = DiscountType.FIXED

    result.reference = parse_reference(result.description)
    return result


def extract_charge_details(charge: Mapping[str, Any]) -> MatchedPayment:
    """Build a MatchedPayment from a charge record (no discount detail available)"""
    amount = int(charge.get("amount") or 0)
    description = charge.get("description")

    return MatchedPayment(
        found=True,
        amount_paid_cents=amount,
        subtotal_cents=amount,
        charge_id=charge.get("id"),
        description=description,
        reference=parse_reference(description),
        customer_email=_get(charge, "billing_details", "email") or charge.get("receipt_email"),
        customer_name=_get(charge, "billing_details", "name"),
    )


class PaymentMatcher:
    """Email-only payment lookup against the processor's recent history"""

    def __init__(
        self,
        processor: Optional[PaymentProcessor],
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self.processor = processor if self.settings.payment.payment_processor_enabled else None
        self.session_limit = self.settings.payment.payment_session_limit
        self.charge_limit = self.settings.payment.payment_charge_limit
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logger.bind(component="payment_matcher")

    @property
    def default_lookback(self) -> timedelta:
        return timedelta(minutes=self.settings.payment.payment_lookback_minutes)

    async def find_payment(self, email: str, lookback: Optional[timedelta] = None) -> MatchedPayment:
        """
        Find the most recent payment for an email.

        Args:
            email: Customer email, compared case-insensitively
            lookback: Search window ending now (defaults to configured minutes)

        Returns:
            MatchedPayment; ``found=False`` when nothing matches or the
            processor is unavailable
        """
        if lookback is None:
            lookback = self.default_lookback

        if self.processor is None:
            self._logger.warning("payment_processor_unconfigured", email=email)
            return MatchedPayment.not_found(error="payment processor not configured")

        since = self.clock() - lookback
        self._logger.info(
            "payment_search_started",
            email=email,
            lookback_minutes=lookback.total_seconds() / 60,
        )

        try:
            sessions = await self.processor.list_checkout_sessions(since, self.session_limit)
            for session in sessions:
                session_email = _get(session, "customer_details", "email") or session.get("customer_email")
                if _same_email(session_email, email):
                    result = extract_session_details(session)
                    await self._enrich_description(result, session)
                    self._log_match(result, "checkout_session")
                    return result

            charges = await self.processor.list_charges(since, self.charge_limit)
            for charge in charges:
                charge_email = _get(charge, "billing_details", "email") or charge.get("receipt_email")
                if _same_email(charge_email, email):
                    result = extract_charge_details(charge)
                    self._log_match(result, "charge")
                    return result

        except Exception as e:
            self._logger.warning("payment_lookup_failed", email=email, error=str(e))
            return MatchedPayment.not_found(error=str(e))

        self._logger.info(
            "payment_not_found",
            email=email,
            sessions_scanned=len(sessions),
            charges_scanned=len(charges),
        )
        return MatchedPayment.not_found()

    async def _enrich_description(self, result: MatchedPayment, session: Mapping[str, Any]) -> None:
        """Fill description/reference from the payment intent of a coupon-less session; failures are non-fatal"""
        payment_intent = session.get("payment_intent")
        if result.coupon_code or result.description or not payment_intent:
            return
        if isinstance(payment_intent, Mapping):
            payment_intent = payment_intent.get("id")

        try:
            result.description = await self.processor.get_payment_description(payment_intent)
        except Exception as e:
            self._logger.info(
                "payment_description_unavailable",
                payment_intent=payment_intent,
                error=str(e),
            )
            return
        result.reference = parse_reference(result.description)

    def _log_match(self, result: MatchedPayment, record_type: str) -> None:
        self._logger.info(
            "payment_match_found",
            record_type=record_type,
            transaction_id=result.transaction_id,
            subtotal=str(result.subtotal),
            discount=str(result.discount_amount),
            discount_type=result.discount_type.value if result.discount_type else None,
            percent_off=str(result.percent_off) if result.percent_off is not None else None,
            coupon_code=result.coupon_code,
            amount_paid=str(cents_to_decimal(result.amount_paid_cents)),
            reference=result.reference,
        )
