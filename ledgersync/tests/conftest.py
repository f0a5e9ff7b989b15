"""
Shared fixtures: in-memory collaborators and explicit settings.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import pytest

from ledgersync.core.collaborators import LedgerCustomer, LedgerDocument
from ledgersync.core.config import (
    AppConfig,
    LedgerConfig,
    PaymentConfig,
    Settings,
    UsageConfig,
)
from ledgersync.core.errors import DuplicateNameError
from ledgersync.core.models import Customer, DocumentRequest
from ledgersync.services.catalog import build_catalog

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeLedger:
    """Ledger double recording every call in order"""

    def __init__(self):
        self.customers: Dict[str, LedgerCustomer] = {}
        self.taken_names: set = set()
        self.duplicate_on_create: List[str] = []
        self.fail_on: set = set()
        self.prices: Dict[str, Optional[Decimal]] = {}
        self.calls: List[tuple] = []
        self.documents: Dict[str, DocumentRequest] = {}
        self.sent: List[tuple] = []
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RuntimeError(f"{operation} unavailable")

    def add_customer(self, email: str, display_name: str) -> LedgerCustomer:
        customer = LedgerCustomer(id=self._next_id("CUST"), display_name=display_name, email=email)
        self.customers[email.lower()] = customer
        self.taken_names.add(display_name)
        return customer

    async def find_customer_by_email(self, email: str) -> Optional[LedgerCustomer]:
        self.calls.append(("find_customer_by_email", email))
        self._check("find_customer_by_email")
        return self.customers.get(email.lower())

    async def find_customer_by_name(self, display_name: str) -> Optional[LedgerCustomer]:
        self.calls.append(("find_customer_by_name", display_name))
        self._check("find_customer_by_name")
        for customer in self.customers.values():
            if customer.display_name == display_name:
                return customer
        return None

    async def create_customer(self, customer: Customer) -> LedgerCustomer:
        self.calls.append(("create_customer", customer.display_name))
        self._check("create_customer")
        if self.duplicate_on_create:
            self.duplicate_on_create.pop(0)
            raise DuplicateNameError(customer.display_name)
        if customer.display_name in self.taken_names:
            raise DuplicateNameError(customer.display_name)
        return self.add_customer(customer.email, customer.display_name)

    async def _create(self, operation: str, prefix: str, request: DocumentRequest) -> LedgerDocument:
        self.calls.append((operation, request))
        self._check(operation)
        doc_id = self._next_id(prefix)
        self.documents[doc_id] = request
        return LedgerDocument(id=doc_id, doc_number=f"{prefix}{self._counter:04d}", total=request.total, due_date=request.due_date)

    async def create_invoice(self, request: DocumentRequest) -> LedgerDocument:
        return await self._create("create_invoice", "INV", request)

    async def create_sales_receipt(self, request: DocumentRequest) -> LedgerDocument:
        return await self._create("create_sales_receipt", "SR", request)

    async def create_payment(self, request: DocumentRequest) -> LedgerDocument:
        return await self._create("create_payment", "PMT", request)

    async def send_invoice(self, invoice_id: str, email: str) -> None:
        self.calls.append(("send_invoice", invoice_id))
        self._check("send_invoice")
        self.sent.append((invoice_id, email))

    async def get_item_price(self, item_ref: str) -> Optional[Decimal]:
        self.calls.append(("get_item_price", item_ref))
        self._check("get_item_price")
        return self.prices.get(item_ref)

    def operations(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeProcessor:
    """Payment processor double with canned sessions and charges"""

    def __init__(self, sessions=None, charges=None, descriptions=None, error: Optional[Exception] = None):
        self.sessions: List[Mapping[str, Any]] = list(sessions or [])
        self.charges: List[Mapping[str, Any]] = list(charges or [])
        self.descriptions: Dict[str, Any] = dict(descriptions or {})
        self.error = error
        self.calls: List[tuple] = []

    async def list_checkout_sessions(self, since: datetime, limit: int) -> List[Mapping[str, Any]]:
        self.calls.append(("list_checkout_sessions", since, limit))
        if self.error:
            raise self.error
        return self.sessions[:limit]

    async def list_charges(self, since: datetime, limit: int) -> List[Mapping[str, Any]]:
        self.calls.append(("list_charges", since, limit))
        if self.error:
            raise self.error
        return self.charges[:limit]

    async def get_payment_description(self, payment_intent_id: str) -> Optional[str]:
        self.calls.append(("get_payment_description", payment_intent_id))
        description = self.descriptions.get(payment_intent_id)
        if isinstance(description, Exception):
            raise description
        return description


class FakeUsageSource:
    """Usage feed double; detail values that are exceptions are raised"""

    def __init__(self, activity=None, details=None, error: Optional[Exception] = None):
        self.activity: List[Mapping[str, Any]] = list(activity or [])
        self.details: Dict[str, Any] = dict(details or {})
        self.error = error
        self.detail_calls: List[str] = []

    async def get_account_activity(self, account_id: str, start_date: date, end_date: date):
        if self.error:
            raise self.error
        return self.activity

    async def get_resource_details(self, resource_id: str) -> Mapping[str, Any]:
        self.detail_calls.append(resource_id)
        detail = self.details[resource_id]
        if isinstance(detail, Exception):
            raise detail
        return detail


class FakeRecorder:
    def __init__(self):
        self.failures: List[Dict[str, Any]] = []

    async def record_failure(self, source, payload, error, context):
        self.failures.append({"source": source, "payload": payload, "error": error, "context": context})
        return f"FAIL-{len(self.failures)}"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app=AppConfig(app_env="testing", app_log_json=False),
        ledger=LedgerConfig(
            ledger_item_base="10",
            ledger_item_extras="11",
            ledger_item_discount="12",
            ledger_deposit_account="35",
            ledger_payment_method="4",
            ledger_net_terms_days=30,
            ledger_item_full_usage="23",
            ledger_item_interview_usage="24",
            ledger_full_usage_price=Decimal("45.00"),
            ledger_interview_usage_price=Decimal("25.00"),
        ),
        payment=PaymentConfig(payment_processor_enabled=True, payment_lookback_minutes=30),
        usage=UsageConfig(
            usage_account_id="ACME",
            usage_admin_emails="admin@example.org",
        ),
    )


@pytest.fixture
def catalog(settings):
    return build_catalog(settings)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def clock():
    return lambda: NOW
