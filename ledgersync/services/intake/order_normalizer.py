"""
E-commerce order normalizer for LedgerSync.

Transforms a raw order webhook payload into a canonical ``Order``:
customer identity, catalog-mapped line items, coupon lines and the
paid/deferred payment classification.

Paylater classification is a best-effort heuristic with two independent
signals, evaluated in order (first match wins):
- a recognized deferred-payment coupon code
- coupon discounts covering at least the configured share of the subtotal
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog

from ledgersync.core.config import Settings, get_settings
from ledgersync.core.errors import EventValidationError
from ledgersync.core.models import (
    ZERO,
    Address,
    CouponLine,
    Customer,
    Discount,
    LineItem,
    Order,
    round_currency,
)
from ledgersync.services.catalog import Catalog, build_catalog
from ledgersync.services.intake.parsing import parse_timestamp, to_decimal

logger = structlog.get_logger(__name__)

SOURCE = "ecommerce"


class OrderNormalizer:
    """Converts raw order events into canonical orders"""

    def __init__(self, catalog: Optional[Catalog] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.catalog = catalog or build_catalog(self.settings)
        self.paylater_codes = set(self.settings.order.paylater_codes)
        self.paylater_threshold: Decimal = self.settings.order.order_paylater_threshold
        self._logger = logger.bind(component="order_normalizer")

    def normalize(self, payload: Mapping[str, Any]) -> Order:
        """
        Normalize an order payload.

        Args:
            payload: Raw order webhook body

        Returns:
            Order: canonical order value

        Raises:
            EventValidationError: order id or billing email missing
        """
        if not payload or not payload.get("id"):
            raise EventValidationError(["missing order ID"], source=SOURCE)

        billing = payload.get("billing") or {}
        if not billing.get("email"):
            raise EventValidationError(["missing billing email"], source=SOURCE)

        customer = self._build_customer(billing)
        line_items = [self._build_line_item(item) for item in payload.get("line_items") or []]
        coupons = [
            CouponLine(code=str(c.get("code") or ""), discount=to_decimal(c.get("discount")))
            for c in payload.get("coupon_lines") or []
        ]

        subtotal = sum((item.subtotal for item in line_items), ZERO)
        raw_total = payload.get("total")
        total = to_decimal(raw_total) if raw_total not in (None, "") else subtotal

        is_paylater, reason = self.detect_paylater(payload, coupons, subtotal)

        order = Order(
            order_id=str(payload["id"]),
            order_number=str(payload.get("number") or payload["id"]),
            status=str(payload.get("status") or ""),
            customer=customer,
            line_items=line_items,
            subtotal=subtotal,
            total=total,
            currency=payload.get("currency") or "USD",
            is_paylater=is_paylater,
            paylater_reason=reason,
            ordered_at=parse_timestamp(payload.get("date_created")),
            paid_at=parse_timestamp(payload.get("date_paid")),
            payment_method=payload.get("payment_method") or "unknown",
            transaction_id=payload.get("transaction_id") or None,
            coupons=coupons,
            discount=self._primary_discount(coupons),
            raw=dict(payload),
        )

        self._logger.info(
            "order_normalized",
            order_id=order.order_id,
            customer_email=customer.email,
            line_items=len(line_items),
            total=str(order.total),
            is_paylater=is_paylater,
            paylater_reason=reason,
        )
        return order

    def detect_paylater(
        self,
        payload: Mapping[str, Any],
        coupons: List[CouponLine],
        computed_subtotal: Decimal,
    ) -> Tuple[bool, Optional[str]]:
        """Classify an order as deferred-payment; returns (is_paylater, reason)"""
        for coupon in coupons:
            code = coupon.code.lower().strip()
            if code in self.paylater_codes:
                return True, f"coupon:{code}"

        raw_subtotal = payload.get("subtotal")
        subtotal = to_decimal(raw_subtotal) if raw_subtotal not in (None, "") else computed_subtotal
        discount_total = sum((c.discount for c in coupons), ZERO)

        if subtotal > 0 and discount_total > 0 and discount_total >= subtotal * self.paylater_threshold:
            return True, "discount_covers_subtotal"

        return False, None

    def _build_customer(self, billing: Mapping[str, Any]) -> Customer:
        first_name = (billing.get("first_name") or "").strip()
        last_name = (billing.get("last_name") or "").strip()
        company = (billing.get("company") or "").strip()

        return Customer(
            email=billing["email"].strip().lower(),
            display_name=company or f"{first_name} {last_name}".strip(),
            first_name=first_name,
            last_name=last_name,
            company=company,
            phone=(billing.get("phone") or "").strip(),
            address=Address(
                line1=billing.get("address_1") or "",
                line2=billing.get("address_2") or "",
                city=billing.get("city") or "",
                state=billing.get("state") or "",
                postal_code=billing.get("postcode") or "",
                country=billing.get("country") or "US",
            ),
        )

    def _build_line_item(self, item: Mapping[str, Any]) -> LineItem:
        quantity = self._quantity(item.get("quantity"))
        total = to_decimal(item.get("total"))
        raw_subtotal = item.get("subtotal")
        subtotal = to_decimal(raw_subtotal) if raw_subtotal not in (None, "") else total

        raw_price = item.get("price")
        if raw_price not in (None, ""):
            unit_price = to_decimal(raw_price)
        else:
            unit_price = round_currency(total / quantity)

        mapping = self.catalog.map_to_ledger_item(item.get("name"), item.get("sku"))

        return LineItem(
            name=item.get("name") or "",
            sku=item.get("sku") or None,
            quantity=quantity,
            unit_price=unit_price,
            total=total,
            subtotal=subtotal,
            item_ref=mapping.item_ref,
            item_name=mapping.item_name,
            standard_price=mapping.standard_price,
            matched=mapping.matched,
        )

    @staticmethod
    def _quantity(value: Any) -> int:
        try:
            quantity = int(str(value).strip())
        except (TypeError, ValueError):
            return 1
        return quantity if quantity > 0 else 1

    def _primary_discount(self, coupons: List[CouponLine]) -> Optional[Discount]:
        """First coupon line drives pricing; the rest are kept for audit only"""
        if not coupons:
            return None
        primary = coupons[0]
        if len(coupons) > 1:
            self._logger.warning(
                "multiple_coupon_lines",
                codes=[c.code for c in coupons],
                primary=primary.code,
            )
        if primary.discount <= 0:
            return None
        return Discount(code=primary.code, amount=primary.discount)


def validate_order(order: Order) -> List[str]:
    """Return human-readable problems that block ledger processing (empty = valid)"""
    errors: List[str] = []

    if not order.customer.email:
        errors.append("Customer email is required")

    if not order.customer.display_name:
        errors.append("Customer name or company is required")

    if not order.line_items:
        errors.append("Order must have at least one line item")

    for index, item in enumerate(order.line_items, start=1):
        if not item.matched:
            errors.append(f"Line item {index} ({item.name}) has no catalog mapping")
        elif not item.item_ref:
            errors.append(f"Line item {index} ({item.name}) has no ledger item reference")

    return errors


def summarize_order(order: Order) -> Dict[str, Any]:
    """Compact view of an order for lookups and debugging"""
    return {
        "order_id": order.order_id,
        "order_number": order.order_number,
        "status": order.status,
        "customer": order.customer.display_name,
        "email": order.customer.email,
        "total": str(order.total),
        "currency": order.currency,
        "is_paylater": order.is_paylater,
        "paylater_reason": order.paylater_reason,
        "coupons": [{"code": c.code, "discount": str(c.discount)} for c in order.coupons],
        "line_items": [
            {
                "name": item.name,
                "sku": item.sku,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "total": str(item.total),
                "mapped": item.matched,
            }
            for item in order.line_items
        ],
    }
