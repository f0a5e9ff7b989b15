"""
Document dispatcher for LedgerSync.

Turns a ``BillingPlan`` into ledger calls:

1. Resolve the customer (email lookup, then create with display-name
   disambiguation).
2. Create documents strictly in plan order. A Payment is linked to the id
   the ledger assigned to the preceding Invoice, so it is never attempted
   when the Invoice could not be created.
3. Send the invoice when the plan asks for it. Delivery failures are
   reported as a ``SendOutcome`` and never undo document creation.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import List, Optional

import structlog

from ledgersync.core.collaborators import Ledger, LedgerCustomer, LedgerDocument
from ledgersync.core.errors import DuplicateNameError, ExternalCallError
from ledgersync.core.models import BillingPlan, Customer, DocumentKind, DocumentRequest, ZERO

logger = structlog.get_logger(__name__)


class SendStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SendOutcome:
    """Result of an invoice delivery attempt"""
    status: SendStatus
    reason: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status == SendStatus.SENT

    @classmethod
    def skipped(cls, reason: str) -> "SendOutcome":
        return cls(SendStatus.SKIPPED, reason)


@dataclass
class CreatedDocument:
    kind: DocumentKind
    document: LedgerDocument
    amount: Decimal


@dataclass
class DispatchResult:
    """Documents created for one plan, in creation order"""
    customer: LedgerCustomer
    documents: List[CreatedDocument] = field(default_factory=list)
    send: SendOutcome = field(default_factory=lambda: SendOutcome.skipped("not requested"))
    balance_due: Decimal = ZERO

    @property
    def invoice(self) -> Optional[LedgerDocument]:
        return self._first(DocumentKind.INVOICE)

    @property
    def sales_receipt(self) -> Optional[LedgerDocument]:
        return self._first(DocumentKind.SALES_RECEIPT)

    @property
    def payment(self) -> Optional[LedgerDocument]:
        return self._first(DocumentKind.PAYMENT)

    def _first(self, kind: DocumentKind) -> Optional[LedgerDocument]:
        for created in self.documents:
            if created.kind == kind:
                return created.document
        return None


def disambiguated_name(customer: Customer) -> str:
    return f"{customer.display_name} ({customer.email})"


class DocumentDispatcher:
    """Creates customers and documents in the ledger for a billing plan"""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self._logger = logger.bind(component="document_dispatcher")

    async def find_or_create_customer(self, customer: Customer) -> LedgerCustomer:
        """
        Resolve a ledger customer by email, creating one if needed.

        A display name already used by a different customer is disambiguated
        with the contact email. Creation is retried once after a duplicate
        name error; a second failure is fatal.

        Raises:
            ExternalCallError: lookup or creation failed
        """
        try:
            existing = await self.ledger.find_customer_by_email(customer.email)
        except Exception as e:
            self._logger.error("customer_lookup_failed", email=customer.email, error=str(e), exc_info=True)
            raise ExternalCallError("find_customer_by_email", e, {"email": customer.email})

        if existing is not None:
            self._logger.info("customer_found", customer_id=existing.id, email=customer.email)
            return existing

        candidate = customer
        try:
            clash = await self.ledger.find_customer_by_name(customer.display_name)
        except Exception as e:
            self._logger.error("customer_lookup_failed", display_name=customer.display_name, error=str(e), exc_info=True)
            raise ExternalCallError("find_customer_by_name", e, {"display_name": customer.display_name})

        if clash is not None:
            candidate = replace(customer, display_name=disambiguated_name(customer))
            self._logger.info(
                "customer_name_disambiguated",
                display_name=customer.display_name,
                new_display_name=candidate.display_name,
            )

        try:
            created = await self.ledger.create_customer(candidate)
        except DuplicateNameError:
            if candidate.display_name == customer.display_name:
                candidate = replace(customer, display_name=disambiguated_name(customer))
            self._logger.warning("customer_name_collision_retry", display_name=candidate.display_name)
            try:
                created = await self.ledger.create_customer(candidate)
            except Exception as e:
                self._logger.error("customer_create_failed", email=customer.email, error=str(e), exc_info=True)
                raise ExternalCallError("create_customer", e, {"email": customer.email, "retried": True})
        except Exception as e:
            self._logger.error("customer_create_failed", email=customer.email, error=str(e), exc_info=True)
            raise ExternalCallError("create_customer", e, {"email": customer.email})

        self._logger.info("customer_created", customer_id=created.id, display_name=candidate.display_name)
        return created

    async def dispatch(self, plan: BillingPlan, customer: Customer) -> DispatchResult:
        """
        Create every document in the plan, then send the invoice if requested.

        Raises:
            ExternalCallError: customer resolution or a document creation failed
        """
        ledger_customer = await self.find_or_create_customer(customer)
        result = DispatchResult(customer=ledger_customer, balance_due=plan.balance_due)

        invoice: Optional[LedgerDocument] = None
        for request in plan.documents:
            request = replace(request, customer_ref=ledger_customer.id)
            if request.kind == DocumentKind.PAYMENT:
                request = replace(request, linked_document_ref=invoice.id if invoice else None)

            document = await self._create(request)
            result.documents.append(CreatedDocument(request.kind, document, request.total))
            if request.kind == DocumentKind.INVOICE:
                invoice = document

        if plan.send_invoice and invoice is not None:
            result.send = await self.send_invoice(invoice, plan.send_to or customer.email)
        elif plan.send_invoice:
            result.send = SendOutcome.skipped("no invoice created")

        self._logger.info(
            "plan_dispatched",
            flow=plan.flow.value,
            customer_id=ledger_customer.id,
            documents=[created.document.id for created in result.documents],
            balance_due=str(plan.balance_due),
            send_status=result.send.status.value,
        )
        return result

    async def send_invoice(self, invoice: LedgerDocument, email: Optional[str]) -> SendOutcome:
        """Deliver an invoice; never raises"""
        if not email:
            self._logger.warning("invoice_send_skipped", invoice_id=invoice.id, reason="no email")
            return SendOutcome.skipped("no email")

        try:
            await self.ledger.send_invoice(invoice.id, email)
        except Exception as e:
            self._logger.warning("invoice_send_failed", invoice_id=invoice.id, email=email, error=str(e))
            return SendOutcome(SendStatus.FAILED, str(e))

        self._logger.info("invoice_sent", invoice_id=invoice.id, email=email)
        return SendOutcome(SendStatus.SENT)

    async def _create(self, request: DocumentRequest) -> LedgerDocument:
        if request.kind == DocumentKind.PAYMENT and not request.linked_document_ref:
            raise ExternalCallError("create_payment", context={"reason": "no invoice to link"})

        create = {
            DocumentKind.INVOICE: self.ledger.create_invoice,
            DocumentKind.SALES_RECEIPT: self.ledger.create_sales_receipt,
            DocumentKind.PAYMENT: self.ledger.create_payment,
        }[request.kind]
        operation = f"create_{request.kind.name.lower()}"

        try:
            document = await create(request)
        except Exception as e:
            self._logger.error(
                "document_create_failed",
                kind=request.kind.value,
                customer_ref=request.customer_ref,
                total=str(request.total),
                error=str(e),
                exc_info=True,
            )
            raise ExternalCallError(operation, e, {"kind": request.kind.value, "total": str(request.total)})

        self._logger.info(
            "document_created",
            kind=request.kind.value,
            document_id=document.id,
            doc_number=document.doc_number,
            total=str(request.total),
            linked_document_ref=request.linked_document_ref,
        )
        return document
