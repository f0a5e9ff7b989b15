"""
Billing flow engine for LedgerSync.

Decides which accounting documents a booking or order produces, with which
lines, prices and discount treatment, and in which order. The engine is pure:
it emits ``BillingPlan`` values and never talks to the ledger.

Booking flows (evaluated top-to-bottom, first match wins):

    payment found?  extras > 0?  discount > 0?  flow
    no              any          any            PAYLATER
    yes             yes          any            PARTIAL_PAYMENT
    yes             no           yes            PAID_WITH_DISCOUNT
    yes             no           no             SIMPLE_PAID

Orders reduce to INVOICE (paylater, NET terms at catalog standard prices)
or SALES_RECEIPT (paid).

Fixed-amount discounts apply to the base line only. Percentage discounts
also produce a discount line for extras.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

import structlog

from ledgersync.core.config import Settings, get_settings
from ledgersync.core.errors import BillingConfigurationError
from ledgersync.core.models import (
    ZERO,
    BillingFlow,
    BillingPlan,
    Booking,
    DocumentKind,
    DocumentLine,
    DocumentRequest,
    MatchedPayment,
    Order,
    round_currency,
)
from ledgersync.services.catalog import BASE_KEY, EXTRAS_KEY, Catalog, build_catalog

logger = structlog.get_logger(__name__)

DEFAULT_COUPON_LABEL = "DISCOUNT"


def select_booking_flow(has_payment: bool, extras_count: int, discount_amount: Decimal) -> BillingFlow:
    """Pure flow selection for bookings"""
    if not has_payment:
        return BillingFlow.PAYLATER
    if extras_count > 0:
        return BillingFlow.PARTIAL_PAYMENT
    if discount_amount > 0:
        return BillingFlow.PAID_WITH_DISCOUNT
    return BillingFlow.SIMPLE_PAID


def select_order_flow(is_paylater: bool) -> BillingFlow:
    """Pure flow selection for e-commerce orders"""
    return BillingFlow.INVOICE if is_paylater else BillingFlow.SALES_RECEIPT


def _format_percent(value: Decimal) -> str:
    return format(value.normalize(), "f")


@dataclass(frozen=True)
class LedgerItems:
    """Ledger references the engine writes into document lines"""
    base_ref: Optional[str] = None
    extras_ref: Optional[str] = None
    discount_ref: Optional[str] = None
    deposit_account_ref: Optional[str] = None
    payment_method_ref: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerItems":
        ledger = settings.ledger
        return cls(
            base_ref=ledger.ledger_item_base,
            extras_ref=ledger.ledger_item_extras,
            discount_ref=ledger.ledger_item_discount,
            deposit_account_ref=ledger.ledger_deposit_account,
            payment_method_ref=ledger.ledger_payment_method,
        )


@dataclass(frozen=True)
class StandardPrices:
    """Standard unit prices for the base package and one extra"""
    base: Decimal
    extras: Decimal


class BillingFlowEngine:
    """Builds billing plans for bookings and orders"""

    def __init__(
        self,
        items: LedgerItems,
        catalog: Catalog,
        net_terms_days: int = 30,
    ):
        self.items = items
        self.catalog = catalog
        self.net_terms_days = net_terms_days
        self._logger = logger.bind(component="billing_flow_engine")

        base_entry = catalog.get(BASE_KEY)
        extras_entry = catalog.get(EXTRAS_KEY)
        self.base_label = base_entry.item_name if base_entry else "Base package"
        self.extras_label = extras_entry.item_name if extras_entry else "Additional member"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, catalog: Optional[Catalog] = None) -> "BillingFlowEngine":
        settings = settings or get_settings()
        return cls(
            items=LedgerItems.from_settings(settings),
            catalog=catalog or build_catalog(settings),
            net_terms_days=settings.ledger.ledger_net_terms_days,
        )

    def due_date(self, billing_date: date) -> date:
        return billing_date + timedelta(days=self.net_terms_days)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def plan_booking(
        self,
        booking: Booking,
        payment: MatchedPayment,
        prices: StandardPrices,
        billing_date: date,
    ) -> BillingPlan:
        """
        Build the billing plan for a booking.

        Args:
            booking: Normalized booking (status already checked by the caller)
            payment: Result of the payment lookup
            prices: Standard prices for base and extras
            billing_date: Date the due date is computed from

        Returns:
            BillingPlan with one document, or Invoice followed by Payment
        """
        flow = select_booking_flow(
            payment.found,
            booking.extras_count,
            payment.discount_amount if payment.found else ZERO,
        )
        self._logger.info(
            "booking_flow_selected",
            flow=flow.value,
            booking_ref=booking.booking_ref,
            extras_count=booking.extras_count,
            payment_found=payment.found,
        )

        if flow == BillingFlow.PAYLATER:
            return self._plan_paylater_booking(booking, prices, billing_date)
        if flow == BillingFlow.PARTIAL_PAYMENT:
            return self._plan_partial_payment(booking, payment, prices, billing_date)
        if flow == BillingFlow.PAID_WITH_DISCOUNT:
            return self._plan_paid_with_discount(booking, payment)
        return self._plan_simple_paid(booking, payment)

    def _plan_paylater_booking(self, booking: Booking, prices: StandardPrices, billing_date: date) -> BillingPlan:
        lines = [self._base_line(prices.base)]
        if booking.extras_count > 0:
            lines.append(self._extras_line(booking.extras_count, prices.extras))

        ref = booking.booking_ref or "N/A"
        invoice = DocumentRequest(
            kind=DocumentKind.INVOICE,
            lines=lines,
            due_date=self.due_date(billing_date),
            memo=f"Booking: {ref}",
            customer_memo=f"Booking ref: {ref} - Thank you for your booking!",
            bill_email=booking.email,
        )
        return BillingPlan(
            flow=BillingFlow.PAYLATER,
            documents=[invoice],
            send_invoice=True,
            send_to=booking.email,
            balance_due=invoice.total,
        )

    def _plan_simple_paid(self, booking: Booking, payment: MatchedPayment) -> BillingPlan:
        receipt = self._sales_receipt(
            booking,
            payment,
            [self._base_line(payment.amount_paid)],
        )
        return BillingPlan(flow=BillingFlow.SIMPLE_PAID, documents=[receipt])

    def _plan_paid_with_discount(self, booking: Booking, payment: MatchedPayment) -> BillingPlan:
        warnings: List[str] = []
        base_price = self._pre_discount_price(payment, warnings)
        code = self._coupon_label(payment)

        lines = [
            self._base_line(base_price),
            self._discount_line(payment.discount_amount, f"Discount ({code})"),
        ]
        receipt = self._sales_receipt(booking, payment, lines)
        return BillingPlan(
            flow=BillingFlow.PAID_WITH_DISCOUNT,
            documents=[receipt],
            warnings=warnings,
        )

    def _plan_partial_payment(
        self,
        booking: Booking,
        payment: MatchedPayment,
        prices: StandardPrices,
        billing_date: date,
    ) -> BillingPlan:
        warnings: List[str] = []
        code = self._coupon_label(payment)
        base_price = self._pre_discount_price(payment, warnings)

        lines = [self._base_line(base_price)]
        if payment.discount_amount > 0:
            lines.append(self._discount_line(payment.discount_amount, f"Discount ({code})"))

        extras_line = self._extras_line(booking.extras_count, prices.extras)
        lines.append(extras_line)

        # Fixed discounts are base-only; percentage discounts reach extras too
        if payment.is_percent_discount:
            extras_discount = round_currency(extras_line.amount * payment.percent_off / 100)
            if extras_discount > 0:
                pct = _format_percent(payment.percent_off)
                lines.append(
                    self._discount_line(extras_discount, f"Discount on extras ({code} {pct}%)")
                )

        ref = booking.booking_ref or "N/A"
        invoice = DocumentRequest(
            kind=DocumentKind.INVOICE,
            lines=lines,
            due_date=self.due_date(billing_date),
            memo=self._private_note(booking, payment),
            customer_memo=(
                f"Booking ref: {ref} - Thank you for your booking! "
                "This invoice reflects the balance due for additional members."
            ),
            bill_email=booking.email,
        )
        payment_doc = DocumentRequest(
            kind=DocumentKind.PAYMENT,
            amount=payment.amount_paid,
            memo=f"Processor payment - {payment.transaction_id or 'N/A'}",
            payment_method_ref=self.items.payment_method_ref,
        )

        balance_due = invoice.total - payment.amount_paid
        return BillingPlan(
            flow=BillingFlow.PARTIAL_PAYMENT,
            documents=[invoice, payment_doc],
            send_invoice=balance_due > 0,
            send_to=booking.email,
            balance_due=balance_due,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def plan_order(self, order: Order, billing_date: date) -> BillingPlan:
        """
        Build the billing plan for an e-commerce order.

        Paylater orders are invoiced at catalog standard prices regardless of
        the store-side coupon that deferred payment. Paid orders with a
        discount list pre-discount lines plus one negative discount line.
        """
        flow = select_order_flow(order.is_paylater)
        self._logger.info(
            "order_flow_selected",
            flow=flow.value,
            order_id=order.order_id,
            paylater_reason=order.paylater_reason,
        )
        if flow == BillingFlow.INVOICE:
            return self._plan_paylater_order(order, billing_date)
        return self._plan_paid_order(order)

    def _plan_paylater_order(self, order: Order, billing_date: date) -> BillingPlan:
        warnings: List[str] = []
        lines: List[DocumentLine] = []

        for item in order.line_items:
            if item.matched:
                unit_price = item.standard_price
            else:
                unit_price = item.unit_price
                warnings.append(
                    f"'{item.name}' has no catalog mapping; invoiced at order price {unit_price}"
                )
            lines.append(
                DocumentLine.priced(
                    item.name,
                    item.item_ref,
                    item.quantity,
                    unit_price,
                    item_name=item.item_name,
                )
            )

        start = order.ordered_at.date() if order.ordered_at else billing_date
        invoice = DocumentRequest(
            kind=DocumentKind.INVOICE,
            lines=lines,
            due_date=self.due_date(start),
            memo=f"Order #{order.order_number}",
            customer_memo="Thank you for your business!",
            bill_email=order.customer.email,
        )
        self._warn(warnings, order_id=order.order_id)
        return BillingPlan(
            flow=BillingFlow.INVOICE,
            documents=[invoice],
            send_invoice=True,
            send_to=order.customer.email,
            balance_due=invoice.total,
            warnings=warnings,
        )

    def _plan_paid_order(self, order: Order) -> BillingPlan:
        warnings: List[str] = []
        lines: List[DocumentLine] = []
        discount_amount = self._order_discount_amount(order)

        for item in order.line_items:
            if not item.matched:
                warnings.append(f"'{item.name}' has no catalog mapping")
            if discount_amount > 0:
                unit_price = round_currency(item.subtotal / item.quantity)
                amount = item.subtotal
            else:
                unit_price = item.unit_price
                amount = item.total
            amount = round_currency(amount)
            quantity = item.quantity
            if quantity * unit_price != amount:
                # Uneven split: one unit at the line amount
                quantity, unit_price = 1, amount
            lines.append(
                DocumentLine(
                    description=item.name,
                    item_ref=item.item_ref,
                    quantity=quantity,
                    unit_price=unit_price,
                    amount=amount,
                    item_name=item.item_name,
                )
            )

        if discount_amount > 0:
            code = (order.discount.code or DEFAULT_COUPON_LABEL).upper()
            lines.append(self._discount_line(discount_amount, f"Discount ({code})"))

        memo = f"Order #{order.order_number}"
        if order.transaction_id:
            memo += f" | Transaction: {order.transaction_id}"

        receipt = DocumentRequest(
            kind=DocumentKind.SALES_RECEIPT,
            lines=lines,
            memo=memo,
            bill_email=order.customer.email,
            deposit_account_ref=self.items.deposit_account_ref,
            payment_method_ref=self.items.payment_method_ref,
        )
        self._warn(warnings, order_id=order.order_id)
        return BillingPlan(flow=BillingFlow.SALES_RECEIPT, documents=[receipt], warnings=warnings)

    @staticmethod
    def _order_discount_amount(order: Order) -> Decimal:
        discount = order.discount
        if discount is None:
            return ZERO
        if discount.amount is not None:
            return round_currency(discount.amount)
        pre_discount = sum((item.subtotal for item in order.line_items), ZERO)
        return round_currency(pre_discount * discount.percentage / 100)

    # ------------------------------------------------------------------
    # Line and memo helpers
    # ------------------------------------------------------------------

    def _base_line(self, unit_price: Decimal) -> DocumentLine:
        return DocumentLine.priced(self.base_label, self.items.base_ref, 1, unit_price, item_name=self.base_label)

    def _extras_line(self, count: int, unit_price: Decimal) -> DocumentLine:
        return DocumentLine.priced(
            f"{self.extras_label}s ({count})",
            self.items.extras_ref,
            count,
            unit_price,
            item_name=self.extras_label,
        )

    def _discount_line(self, amount: Decimal, description: str) -> DocumentLine:
        """Negative adjustment line; refuses to drop the adjustment silently"""
        if not self.items.discount_ref:
            self._logger.error("discount_item_unconfigured", discount=str(amount), description=description)
            raise BillingConfigurationError(
                f"No ledger discount item configured; cannot record {description} of {amount}"
            )
        return DocumentLine.priced(description, self.items.discount_ref, 1, -amount, item_name="Discount")

    def _pre_discount_price(self, payment: MatchedPayment, warnings: List[str]) -> Decimal:
        """Subtotal such that subtotal - discount equals the amount actually paid"""
        subtotal = payment.subtotal
        expected = payment.amount_paid + payment.discount_amount
        if subtotal != expected:
            message = (
                f"Processor subtotal {subtotal} does not equal paid {payment.amount_paid} "
                f"plus discount {payment.discount_amount}; using {expected}"
            )
            warnings.append(message)
            self._logger.warning(
                "payment_totals_inconsistent",
                subtotal=str(subtotal),
                amount_paid=str(payment.amount_paid),
                discount=str(payment.discount_amount),
                transaction_id=payment.transaction_id,
            )
            return expected
        return subtotal

    @staticmethod
    def _coupon_label(payment: MatchedPayment) -> str:
        return (payment.coupon_code or DEFAULT_COUPON_LABEL).upper()

    def _sales_receipt(self, booking: Booking, payment: MatchedPayment, lines: List[DocumentLine]) -> DocumentRequest:
        return DocumentRequest(
            kind=DocumentKind.SALES_RECEIPT,
            lines=lines,
            memo=self._private_note(booking, payment),
            customer_memo=self._customer_memo(booking),
            bill_email=booking.email,
            deposit_account_ref=self.items.deposit_account_ref,
            payment_method_ref=self.items.payment_method_ref,
        )

    @staticmethod
    def _private_note(booking: Booking, payment: MatchedPayment) -> str:
        parts = [f"Booking: {booking.booking_ref or 'N/A'}"]
        if payment.description:
            parts.append(payment.description)
        if payment.session_id:
            parts.append(f"Session: {payment.session_id}")
        elif payment.charge_id:
            parts.append(f"Charge: {payment.charge_id}")
        return " | ".join(parts)

    @staticmethod
    def _customer_memo(booking: Booking) -> str:
        if booking.booking_ref:
            return f"Booking ref: {booking.booking_ref} - Thank you for your booking!"
        return "Thank you for your booking!"

    def _warn(self, warnings: List[str], **context) -> None:
        for message in warnings:
            self._logger.warning("billing_plan_warning", message=message, **context)
