"""
Narrow contracts for the external systems LedgerSync talks to.

Concrete clients (OAuth, REST plumbing, token caches) live outside this
package and are injected; everything here is typed against these protocols.
All entity references are opaque strings.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from ledgersync.core.models import Customer, DocumentRequest


@dataclass
class LedgerCustomer:
    """Customer record as the ledger knows it"""
    id: str
    display_name: str
    email: Optional[str] = None


@dataclass
class LedgerDocument:
    """Document created in the ledger"""
    id: str
    doc_number: Optional[str] = None
    total: Optional[Decimal] = None
    due_date: Optional[date] = None


@runtime_checkable
class Ledger(Protocol):
    """Accounting back-end (customers, invoices, receipts, payments)"""

    async def find_customer_by_email(self, email: str) -> Optional[LedgerCustomer]: ...

    async def find_customer_by_name(self, display_name: str) -> Optional[LedgerCustomer]: ...

    async def create_customer(self, customer: Customer) -> LedgerCustomer:
        """Create a customer; raises DuplicateNameError on a display-name clash"""
        ...

    async def create_invoice(self, request: DocumentRequest) -> LedgerDocument: ...

    async def create_sales_receipt(self, request: DocumentRequest) -> LedgerDocument: ...

    async def create_payment(self, request: DocumentRequest) -> LedgerDocument: ...

    async def send_invoice(self, invoice_id: str, email: str) -> None: ...

    async def get_item_price(self, item_ref: str) -> Optional[Decimal]: ...


@runtime_checkable
class PaymentProcessor(Protocol):
    """Payment processor with searchable transaction history.

    Records are processor-native mappings (checkout sessions and charges)
    with amounts in integer minor units.
    """

    async def list_checkout_sessions(
        self, since: datetime, limit: int
    ) -> List[Mapping[str, Any]]: ...

    async def list_charges(self, since: datetime, limit: int) -> List[Mapping[str, Any]]: ...

    async def get_payment_description(self, payment_intent_id: str) -> Optional[str]:
        """Free-text description of a payment intent or its first charge"""
        ...


@runtime_checkable
class UsageSource(Protocol):
    """SaaS activity feed used for monthly usage billing"""

    async def get_account_activity(
        self, account_id: str, start_date: date, end_date: date
    ) -> List[Mapping[str, Any]]:
        """Per-resource usage totals: ``{"code", "name", "total"}``"""
        ...

    async def get_resource_details(self, resource_id: str) -> Mapping[str, Any]:
        """``{"created_at", "cc_to", "reportviews", "activity_report_options"}``"""
        ...


@runtime_checkable
class FailureRecorder(Protocol):
    """Sink for failed webhook events awaiting review or retry"""

    async def record_failure(
        self,
        source: str,
        payload: Mapping[str, Any],
        error: str,
        context: Dict[str, Any],
    ) -> Optional[str]: ...
