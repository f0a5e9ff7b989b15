"""
Monthly usage invoicing run.

Dry-run mode (the default) only analyses the period. Live mode also creates
one invoice per owner; a failure for one owner is recorded and the run moves
on to the next.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog

from ledgersync.core.collaborators import Ledger, UsageSource
from ledgersync.core.config import Settings, get_settings
from ledgersync.core.errors import BillingConfigurationError
from ledgersync.core.models import BillingFlow, BillingPlan, Customer
from ledgersync.services.billing.dispatcher import DocumentDispatcher
from ledgersync.services.usage.aggregator import (
    BillingPeriod,
    OwnerUsage,
    UsageAggregation,
    UsagePricing,
    UsageRules,
    UsageType,
    build_usage_invoice,
    compute_billable_by_owner,
    load_usage_records,
)

logger = structlog.get_logger(__name__)


@dataclass
class OwnerInvoiceResult:
    email: str
    display_name: str
    status: str
    invoice_id: Optional[str] = None
    doc_number: Optional[str] = None
    total: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "display_name": self.display_name,
            "status": self.status,
            "invoice_id": self.invoice_id,
            "doc_number": self.doc_number,
            "total": self.total,
            "error": self.error,
        }


@dataclass
class UsageReport:
    """Outcome of one monthly run"""
    live: bool
    period: BillingPeriod
    aggregation: UsageAggregation
    resources_with_activity: int = 0
    invoices: List[OwnerInvoiceResult] = field(default_factory=list)
    duration_seconds: float = 0.0
    message: Optional[str] = None

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "resources_with_activity": self.resources_with_activity,
            "resources_processed": len(self.aggregation.processed),
            "resources_skipped": len(self.aggregation.skipped),
            "resources_errored": len(self.aggregation.errors),
            "total_full": self.aggregation.total_for(UsageType.FULL),
            "total_interview": self.aggregation.total_for(UsageType.INTERVIEW),
            "unique_owners": len(self.aggregation.owners),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": "live" if self.live else "dry-run",
            "billing_month": self.period.label,
            "date_range": {"start": self.period.start.isoformat(), "end": self.period.end.isoformat()},
            "duration": f"{self.duration_seconds:.2f}s",
            "message": self.message,
            "summary": self.summary,
            "owners": [owner.to_dict() for owner in self.aggregation.owners.values()],
            "details": {
                "processed": [p.to_dict() for p in self.aggregation.processed],
                "skipped": [s.to_dict() for s in self.aggregation.skipped],
                "errors": [e.to_dict() for e in self.aggregation.errors],
            },
            "invoices": [i.to_dict() for i in self.invoices] if self.live else "DRY RUN - No invoices created",
        }


def _split_name(display_name: str) -> List[str]:
    parts = display_name.split(" ", 1)
    return [parts[0], parts[1] if len(parts) > 1 else ""]


class MonthlyUsageInvoicer:
    """Monthly usage billing for the configured SaaS account"""

    def __init__(
        self,
        source: UsageSource,
        ledger: Ledger,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self.source = source
        self.dispatcher = DocumentDispatcher(ledger)
        self.account_id = self.settings.usage.usage_account_id
        self.rules = UsageRules.from_settings(self.settings)
        self.pricing = UsagePricing.from_settings(self.settings)
        self.net_terms_days = self.settings.ledger.ledger_net_terms_days
        self.clock = clock or datetime.now
        self._logger = logger.bind(component="monthly_usage_invoicer")

    async def run(self, period: Optional[BillingPeriod] = None, live: bool = False) -> UsageReport:
        """
        Analyse a billing period and, in live mode, create the invoices.

        Args:
            period: Period to bill (defaults to the previous calendar month)
            live: Create ledger invoices; otherwise analyse only

        Raises:
            ExternalCallError: the activity report could not be fetched
            BillingConfigurationError: live mode without usage item references
        """
        started = self.clock()
        period = period or BillingPeriod.previous_month(started.date())
        self._logger.info("usage_run_started", period=period.label, live=live, account_id=self.account_id)

        records = await load_usage_records(self.source, self.account_id, period, self.rules)
        aggregation = compute_billable_by_owner(records, period.start, period.end, self.rules)
        report = UsageReport(
            live=live,
            period=period,
            aggregation=aggregation,
            resources_with_activity=len(records),
        )

        if not records:
            report.message = "No activity found"
        elif live and aggregation.owners:
            self._check_pricing(aggregation)
            due_date = started.date() + timedelta(days=self.net_terms_days)
            for owner in aggregation.owners.values():
                report.invoices.append(await self._invoice_owner(owner, period, due_date))

        report.duration_seconds = (self.clock() - started).total_seconds()
        self._logger.info("usage_run_completed", period=period.label, live=live, **report.summary)
        return report

    def _check_pricing(self, aggregation: UsageAggregation) -> None:
        missing = []
        if aggregation.total_for(UsageType.FULL) > 0 and not self.pricing.full_item_ref:
            missing.append("full usage item")
        if aggregation.total_for(UsageType.INTERVIEW) > 0 and not self.pricing.interview_item_ref:
            missing.append("interview usage item")
        if missing:
            raise BillingConfigurationError(f"Missing ledger references: {', '.join(missing)}")

    async def _invoice_owner(self, owner: OwnerUsage, period: BillingPeriod, due_date: date) -> OwnerInvoiceResult:
        first_name, last_name = _split_name(owner.display_name)
        customer = Customer(
            email=owner.email,
            display_name=owner.display_name or owner.email,
            first_name=first_name,
            last_name=last_name,
        )
        request = build_usage_invoice(owner, period, self.pricing, due_date)
        plan = BillingPlan(flow=BillingFlow.INVOICE, documents=[request], balance_due=request.total)

        try:
            dispatched = await self.dispatcher.dispatch(plan, customer)
        except Exception as e:
            self._logger.error("usage_invoice_failed", email=owner.email, error=str(e))
            return OwnerInvoiceResult(owner.email, owner.display_name, "failed", error=str(e))

        invoice = dispatched.invoice
        return OwnerInvoiceResult(
            email=owner.email,
            display_name=owner.display_name,
            status="created",
            invoice_id=invoice.id if invoice else None,
            doc_number=invoice.doc_number if invoice else None,
            total=str(request.total),
        )
