"""
Webhook processing pipelines for LedgerSync.

Each inbound event runs as one independent computation:

    normalize -> status precondition -> validate -> (payment match)
              -> plan -> dispatch

``EventSkipped`` marks business conditions that were already handled and is
re-raised untouched; every other failure is handed to the failure recorder
(unless the event is itself a retry) and then re-raised to the caller.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import structlog

from ledgersync.core.collaborators import FailureRecorder, Ledger
from ledgersync.core.config import Settings, get_settings
from ledgersync.core.errors import EventSkipped, EventValidationError, ExternalCallError
from ledgersync.core.models import BillingFlow, BillingPlan
from ledgersync.services.billing.dispatcher import DispatchResult, DocumentDispatcher
from ledgersync.services.billing.flow_engine import BillingFlowEngine, StandardPrices
from ledgersync.services.catalog import BASE_KEY, EXTRAS_KEY
from ledgersync.services.intake import (
    BookingNormalizer,
    OrderNormalizer,
    is_cancelled,
    validate_booking,
    validate_order,
)
from ledgersync.services.intake.booking_normalizer import SOURCE as BOOKING_SOURCE
from ledgersync.services.intake.order_normalizer import SOURCE as ORDER_SOURCE
from ledgersync.services.payments import PaymentMatcher

logger = structlog.get_logger(__name__)


@dataclass
class ProcessingResult:
    """Summary returned to the (external) webhook handler"""
    source: str
    event_id: Optional[str]
    flow: BillingFlow
    customer_id: str
    documents: List[Dict[str, Any]] = field(default_factory=list)
    balance_due: Decimal = Decimal("0.00")
    invoice_sent: bool = False
    send_status: str = "skipped"
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_dispatch(
        cls,
        source: str,
        event_id: Optional[str],
        plan: BillingPlan,
        dispatched: DispatchResult,
    ) -> "ProcessingResult":
        return cls(
            source=source,
            event_id=event_id,
            flow=plan.flow,
            customer_id=dispatched.customer.id,
            documents=[
                {
                    "kind": created.kind.value,
                    "id": created.document.id,
                    "doc_number": created.document.doc_number,
                    "amount": str(created.amount),
                }
                for created in dispatched.documents
            ],
            balance_due=plan.balance_due,
            invoice_sent=dispatched.send.sent,
            send_status=dispatched.send.status.value,
            warnings=list(plan.warnings),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "event_id": self.event_id,
            "flow": self.flow.value,
            "customer_id": self.customer_id,
            "documents": self.documents,
            "balance_due": str(self.balance_due),
            "invoice_sent": self.invoice_sent,
            "send_status": self.send_status,
            "warnings": self.warnings,
        }


class EventProcessor:
    """Shared failure handling for the webhook pipelines"""

    source = "event"

    def __init__(
        self,
        ledger: Ledger,
        engine: Optional[BillingFlowEngine] = None,
        recorder: Optional[FailureRecorder] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.ledger = ledger
        self.engine = engine or BillingFlowEngine.from_settings(self.settings)
        self.dispatcher = DocumentDispatcher(ledger)
        self.recorder = recorder
        self._logger = logger.bind(component=f"{self.source}_processor")

    async def process(
        self,
        payload: Mapping[str, Any],
        is_retry: bool = False,
        billing_date: Optional[date] = None,
    ) -> ProcessingResult:
        """
        Process one inbound event end to end.

        Args:
            payload: Raw webhook body
            is_retry: Event is being replayed from the failure log
            billing_date: Processing date used where the event carries none

        Raises:
            EventSkipped: the event must not be billed
            EventValidationError: the event failed validation
            ExternalCallError: a critical ledger call failed
        """
        billing_date = billing_date or date.today()
        try:
            result = await self._process(payload, billing_date)
        except EventSkipped as e:
            self._logger.info("event_skipped", reason=e.reason, is_retry=is_retry)
            raise
        except Exception as e:
            self._logger.error(
                "event_processing_failed",
                error=str(e),
                error_type=type(e).__name__,
                is_retry=is_retry,
                exc_info=True,
            )
            if not is_retry:
                await self._record_failure(payload, e)
            raise

        self._logger.info(
            "event_processed",
            event_id=result.event_id,
            flow=result.flow.value,
            documents=len(result.documents),
            balance_due=str(result.balance_due),
            is_retry=is_retry,
        )
        return result

    async def _process(self, payload: Mapping[str, Any], billing_date: date) -> ProcessingResult:
        raise NotImplementedError

    async def _record_failure(self, payload: Mapping[str, Any], error: Exception) -> None:
        if self.recorder is None:
            return

        context: Dict[str, Any] = {"error_type": type(error).__name__}
        if isinstance(error, ExternalCallError):
            context["operation"] = error.operation
            context.update(error.context)
        if isinstance(error, EventValidationError):
            context["validation_errors"] = error.errors

        try:
            failure_id = await self.recorder.record_failure(self.source, dict(payload or {}), str(error), context)
        except Exception as e:
            # The original error is re-raised by the caller either way
            self._logger.warning("failure_record_failed", error=str(e))
            return
        self._logger.info("failure_recorded", failure_id=failure_id)


class BookingProcessor(EventProcessor):
    """Scheduling webhook pipeline"""

    source = BOOKING_SOURCE

    def __init__(
        self,
        ledger: Ledger,
        matcher: PaymentMatcher,
        engine: Optional[BillingFlowEngine] = None,
        recorder: Optional[FailureRecorder] = None,
        settings: Optional[Settings] = None,
        normalizer: Optional[BookingNormalizer] = None,
    ):
        super().__init__(ledger, engine=engine, recorder=recorder, settings=settings)
        self.matcher = matcher
        self.normalizer = normalizer or BookingNormalizer()

    async def _process(self, payload: Mapping[str, Any], billing_date: date) -> ProcessingResult:
        booking = self.normalizer.normalize(payload)

        if is_cancelled(booking):
            raise EventSkipped(f"Booking {booking.booking_ref or booking.booking_id} is cancelled")

        errors = validate_booking(booking)
        if errors:
            raise EventValidationError(errors, source=self.source)

        payment = await self.matcher.find_payment(booking.email)
        prices = await self.standard_prices()
        start = booking.booked_at.date() if booking.booked_at else billing_date

        plan = self.engine.plan_booking(booking, payment, prices, start)
        dispatched = await self.dispatcher.dispatch(plan, booking.customer)
        return ProcessingResult.from_dispatch(self.source, booking.booking_ref, plan, dispatched)

    async def standard_prices(self) -> StandardPrices:
        """Ledger item prices, falling back to the catalog's configured prices"""
        return StandardPrices(
            base=await self._item_price(BASE_KEY),
            extras=await self._item_price(EXTRAS_KEY),
        )

    async def _item_price(self, key: str) -> Decimal:
        entry = self.engine.catalog.get(key)
        fallback = entry.standard_price if entry else Decimal("0.00")
        item_ref = entry.item_ref if entry else None
        if not item_ref:
            return fallback

        try:
            price = await self.ledger.get_item_price(item_ref)
        except Exception as e:
            self._logger.warning("item_price_lookup_failed", item_ref=item_ref, error=str(e))
            return fallback

        if not price or price <= 0:
            self._logger.warning(
                "item_price_fallback",
                item_ref=item_ref,
                catalog_price=str(fallback),
            )
            return fallback
        return price


class OrderProcessor(EventProcessor):
    """E-commerce order webhook pipeline"""

    source = ORDER_SOURCE

    def __init__(
        self,
        ledger: Ledger,
        engine: Optional[BillingFlowEngine] = None,
        recorder: Optional[FailureRecorder] = None,
        settings: Optional[Settings] = None,
        normalizer: Optional[OrderNormalizer] = None,
    ):
        super().__init__(ledger, engine=engine, recorder=recorder, settings=settings)
        self.normalizer = normalizer or OrderNormalizer(catalog=self.engine.catalog, settings=self.settings)
        self.billable_status = self.settings.order.order_billable_status.lower()

    async def _process(self, payload: Mapping[str, Any], billing_date: date) -> ProcessingResult:
        order = self.normalizer.normalize(payload)

        if order.status.lower() != self.billable_status:
            raise EventSkipped(f"Order {order.order_id} status '{order.status}' is not billable")

        errors = validate_order(order)
        if errors:
            raise EventValidationError(errors, source=self.source)

        plan = self.engine.plan_order(order, billing_date)
        dispatched = await self.dispatcher.dispatch(plan, order.customer)
        return ProcessingResult.from_dispatch(self.source, order.order_id, plan, dispatched)
