"""
Canonical domain values shared by the LedgerSync services.

Money is always ``Decimal``. Processor amounts arrive as integer minor units
(cents) and are converted only at line-item boundaries through
``cents_to_decimal``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_currency(value: Decimal) -> Decimal:
    """Round to currency minor-unit precision using round-half-up"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


def decimal_to_cents(amount: Decimal) -> int:
    return int(round_currency(amount) * 100)


class BillingFlow(str, Enum):
    """Billing flow classification"""
    # Bookings
    PAYLATER = "paylater"
    SIMPLE_PAID = "simple_paid"
    PAID_WITH_DISCOUNT = "paid_with_discount"
    PARTIAL_PAYMENT = "partial_payment"
    # E-commerce orders
    INVOICE = "invoice"
    SALES_RECEIPT = "sales_receipt"


class DocumentKind(str, Enum):
    """Ledger document types"""
    INVOICE = "Invoice"
    SALES_RECEIPT = "SalesReceipt"
    PAYMENT = "Payment"


class DiscountType(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"


class DiscountScope(str, Enum):
    BASE = "base"
    EXTRAS = "extras"


@dataclass
class Address:
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "US"


@dataclass
class Customer:
    """Customer identity; email is the matching key"""
    email: str
    display_name: str
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    phone: str = ""
    address: Optional[Address] = None


@dataclass
class LineItem:
    """Normalized order line item"""
    name: str
    sku: Optional[str]
    quantity: int
    unit_price: Decimal
    total: Decimal
    subtotal: Decimal
    item_ref: Optional[str] = None
    item_name: Optional[str] = None
    standard_price: Decimal = ZERO
    matched: bool = False
    is_discount: bool = False


@dataclass
class CouponLine:
    """Coupon applied on the store side, retained for audit"""
    code: str
    discount: Decimal


@dataclass
class Discount:
    """Primary discount; carries a fixed amount XOR a percentage"""
    code: str
    amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    scope: DiscountScope = DiscountScope.BASE

    def __post_init__(self):
        if (self.amount is None) == (self.percentage is None):
            raise ValueError("Discount needs exactly one of amount or percentage")
        if self.percentage is not None and not (0 <= self.percentage <= 100):
            raise ValueError(f"Discount percentage out of range: {self.percentage}")

    @property
    def discount_type(self) -> DiscountType:
        return DiscountType.PERCENT if self.percentage is not None else DiscountType.FIXED


@dataclass
class Order:
    """Canonical e-commerce order"""
    order_id: str
    order_number: str
    status: str
    customer: Customer
    line_items: List[LineItem]
    subtotal: Decimal
    total: Decimal
    currency: str
    is_paylater: bool
    paylater_reason: Optional[str] = None
    ordered_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    payment_method: str = "unknown"
    transaction_id: Optional[str] = None
    coupons: List[CouponLine] = field(default_factory=list)
    discount: Optional[Discount] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass
class Booking:
    """Canonical scheduling booking"""
    booking_id: Optional[str]
    booking_ref: Optional[str]
    status: str
    first_name: str
    last_name: str
    email: str
    phone: str
    appointment_type: str
    extras_count: int
    base_price: Decimal
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    booked_at: Optional[datetime] = None
    time_zone: str = "America/New_York"
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def customer(self) -> Customer:
        return Customer(
            email=self.email,
            display_name=self.full_name,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
        )

    @property
    def is_phase1(self) -> bool:
        label = self.appointment_type.lower()
        return "phase 1" in label or "phase1" in label

    @property
    def is_phase2(self) -> bool:
        label = self.appointment_type.lower()
        return "phase 2" in label or "phase2" in label


@dataclass
class MatchedPayment:
    """Result of a payment-processor lookup; amounts in integer cents"""
    found: bool
    amount_paid_cents: int = 0
    subtotal_cents: int = 0
    discount_cents: int = 0
    discount_type: Optional[DiscountType] = None
    percent_off: Optional[Decimal] = None
    coupon_code: Optional[str] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    session_id: Optional[str] = None
    charge_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def not_found(cls, error: Optional[str] = None) -> "MatchedPayment":
        return cls(found=False, error=error)

    @property
    def amount_paid(self) -> Decimal:
        return cents_to_decimal(self.amount_paid_cents)

    @property
    def subtotal(self) -> Decimal:
        return cents_to_decimal(self.subtotal_cents)

    @property
    def discount_amount(self) -> Decimal:
        return cents_to_decimal(self.discount_cents)

    @property
    def transaction_id(self) -> Optional[str]:
        return self.session_id or self.charge_id

    @property
    def is_percent_discount(self) -> bool:
        return self.discount_type == DiscountType.PERCENT and bool(self.percent_off)


@dataclass(frozen=True)
class DocumentLine:
    """One ledger line; negative amounts carry discounts"""
    description: str
    item_ref: Optional[str]
    quantity: int
    unit_price: Decimal
    amount: Decimal
    item_name: Optional[str] = None

    @classmethod
    def priced(
        cls,
        description: str,
        item_ref: Optional[str],
        quantity: int,
        unit_price: Decimal,
        item_name: Optional[str] = None,
    ) -> "DocumentLine":
        unit_price = round_currency(unit_price)
        return cls(
            description=description,
            item_ref=item_ref,
            quantity=quantity,
            unit_price=unit_price,
            amount=round_currency(unit_price * quantity),
            item_name=item_name,
        )


@dataclass
class DocumentRequest:
    """Ledger-agnostic intent to create one accounting document"""
    kind: DocumentKind
    lines: List[DocumentLine] = field(default_factory=list)
    customer_ref: Optional[str] = None
    due_date: Optional[date] = None
    memo: str = ""
    customer_memo: Optional[str] = None
    linked_document_ref: Optional[str] = None
    amount: Optional[Decimal] = None
    bill_email: Optional[str] = None
    deposit_account_ref: Optional[str] = None
    payment_method_ref: Optional[str] = None

    @property
    def total(self) -> Decimal:
        if self.kind == DocumentKind.PAYMENT:
            return self.amount if self.amount is not None else ZERO
        return sum((line.amount for line in self.lines), ZERO)


@dataclass
class BillingPlan:
    """Ordered document requests produced for one order or booking"""
    flow: BillingFlow
    documents: List[DocumentRequest]
    send_invoice: bool = False
    send_to: Optional[str] = None
    balance_due: Decimal = ZERO
    warnings: List[str] = field(default_factory=list)

    @property
    def invoice(self) -> Optional[DocumentRequest]:
        for doc in self.documents:
            if doc.kind == DocumentKind.INVOICE:
                return doc
        return None

    @property
    def payment(self) -> Optional[DocumentRequest]:
        for doc in self.documents:
            if doc.kind == DocumentKind.PAYMENT:
                return doc
        return None

    @property
    def primary(self) -> DocumentRequest:
        return self.documents[0]
