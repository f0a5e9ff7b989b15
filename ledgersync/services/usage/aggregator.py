"""
Usage billing aggregator for LedgerSync.

Converts a SaaS activity report into per-owner billable quantities.

Per resource:
- names containing an exclusion keyword are skipped (reported, not dropped)
- resources without limit settings, or with a hard usage limit, are skipped
- the type identifier decides the variant: a secondary segment after the
  delimiter marks an Interview resource, otherwise Full
- Full resources created inside the period are billed above their initial
  allocation; older Full resources and every Interview resource are billed
  for their whole usage
- the owner is the first non-administrative address of the CC field; a
  resource without one is an error for that resource only

Aggregation sums billable quantities per owner and type. Resource names are
sorted before they are joined so memo output is reproducible.
"""

import calendar
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from ledgersync.core.collaborators import UsageSource
from ledgersync.core.config import Settings, get_settings
from ledgersync.core.errors import ExternalCallError
from ledgersync.core.models import DocumentKind, DocumentLine, DocumentRequest
from ledgersync.services.intake.parsing import parse_count, parse_timestamp

logger = structlog.get_logger(__name__)

_CC_SEPARATORS = re.compile(r"[,\r\n]+")


class UsageType(str, Enum):
    FULL = "full"
    INTERVIEW = "interview"


@dataclass(frozen=True)
class BillingPeriod:
    """Inclusive calendar date range being billed"""
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Billing period ends before it starts: {self.start} > {self.end}")

    @classmethod
    def from_month(cls, month: str) -> "BillingPeriod":
        """Parse ``YYYY-MM`` into the full calendar month"""
        try:
            year_text, month_text = month.strip().split("-")
            year, month_number = int(year_text), int(month_text)
            last_day = calendar.monthrange(year, month_number)[1]
        except (ValueError, AttributeError, calendar.IllegalMonthError) as e:
            raise ValueError(f"Invalid billing month '{month}', expected YYYY-MM") from e
        return cls(date(year, month_number, 1), date(year, month_number, last_day))

    @classmethod
    def previous_month(cls, today: date) -> "BillingPeriod":
        last_of_previous = today.replace(day=1) - timedelta(days=1)
        return cls.from_month(last_of_previous.strftime("%Y-%m"))

    @property
    def label(self) -> str:
        if self == BillingPeriod.from_month(self.start.strftime("%Y-%m")):
            return self.start.strftime("%Y-%m")
        return f"{self.start.isoformat()} to {self.end.isoformat()}"

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class UsageRules:
    """Classification rules for activity records"""
    exclusion_keywords: Tuple[str, ...] = ("test", "marketing")
    admin_emails: Tuple[str, ...] = ()
    type_delimiter: str = "/"
    limit_record_type: int = 3
    hard_limit_flag: str = "H"
    name_suffixes: Tuple[str, ...] = (" Interview Assessment",)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "UsageRules":
        usage = (settings or get_settings()).usage
        return cls(
            exclusion_keywords=tuple(usage.exclusion_keywords),
            admin_emails=tuple(usage.admin_emails),
            type_delimiter=usage.usage_type_delimiter,
            limit_record_type=usage.usage_limit_record_type,
            hard_limit_flag=usage.usage_hard_limit_flag,
            name_suffixes=tuple(usage.name_suffixes),
        )

    def is_excluded(self, name: str) -> bool:
        lowered = (name or "").lower()
        return any(keyword in lowered for keyword in self.exclusion_keywords)

    def display_name(self, resource_name: str) -> str:
        name = resource_name or ""
        for suffix in self.name_suffixes:
            name = name.replace(suffix, "")
        return name.strip()


@dataclass
class UsageRecord:
    """One resource from the activity report plus its detail record"""
    code: str
    name: str
    total: int
    details: Optional[Mapping[str, Any]] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class BillableResult:
    billable: int
    calculation: str


@dataclass
class ProcessedResource:
    code: str
    name: str
    owner_email: str
    usage_type: UsageType
    type_identifier: str
    total: int
    allocation: int
    billable: int
    created_at: Optional[datetime]
    created_in_period: bool
    calculation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "owner_email": self.owner_email,
            "usage_type": self.usage_type.value,
            "type_identifier": self.type_identifier,
            "total": self.total,
            "allocation": self.allocation,
            "billable": self.billable,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_in_period": self.created_in_period,
            "calculation": self.calculation,
        }


@dataclass
class ResourceIssue:
    """A resource that was skipped or failed"""
    code: str
    name: str
    reason: str
    total: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "name": self.name, "reason": self.reason, "total": self.total}


@dataclass
class OwnerUsage:
    """Billable totals for one owner"""
    email: str
    display_name: str
    full_total: int = 0
    interview_total: int = 0
    resource_names: List[str] = field(default_factory=list)
    display_code: str = field(default="", repr=False)

    def add(self, resource: ProcessedResource) -> None:
        if resource.usage_type == UsageType.INTERVIEW:
            self.interview_total += resource.billable
        else:
            self.full_total += resource.billable
        self.resource_names.append(resource.name)

    @property
    def sorted_resource_names(self) -> List[str]:
        return sorted(self.resource_names)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "display_name": self.display_name,
            "full_total": self.full_total,
            "interview_total": self.interview_total,
            "resources": self.sorted_resource_names,
        }


@dataclass
class UsageAggregation:
    owners: Dict[str, OwnerUsage] = field(default_factory=dict)
    processed: List[ProcessedResource] = field(default_factory=list)
    skipped: List[ResourceIssue] = field(default_factory=list)
    errors: List[ResourceIssue] = field(default_factory=list)

    def total_for(self, usage_type: UsageType) -> int:
        return sum(p.billable for p in self.processed if p.usage_type == usage_type)


def parse_owner_email(cc_field: Optional[str], admin_emails: Iterable[str] = ()) -> Optional[str]:
    """First non-administrative address in a comma/newline separated CC field"""
    if not cc_field:
        return None
    admins = {email.lower() for email in admin_emails}
    for candidate in _CC_SEPARATORS.split(cc_field):
        email = candidate.strip().lower()
        if email and "@" in email and email not in admins:
            return email
    return None


def resource_type(type_identifier: Optional[str], delimiter: str = "/") -> UsageType:
    """A secondary segment after the delimiter marks the Interview variant"""
    if type_identifier and delimiter in type_identifier:
        return UsageType.INTERVIEW
    return UsageType.FULL


def calculate_billable(
    total: int,
    allocation: int,
    created_in_period: bool,
    usage_type: UsageType,
) -> BillableResult:
    if usage_type == UsageType.INTERVIEW:
        return BillableResult(total, f"Interview: {total} total, no allocation")
    if created_in_period:
        billable = max(0, total - allocation)
        return BillableResult(
            billable, f"Created this period: {total} - {allocation} allocation = {billable}"
        )
    return BillableResult(total, f"Existing resource: {total} total, allocation already used")


def _type_identifier(details: Mapping[str, Any]) -> str:
    views = details.get("reportviews") or []
    if not views:
        return ""
    first = views[0]
    if isinstance(first, Mapping):
        return str(first.get("id") or "")
    return str(first)


def _limit_settings(details: Mapping[str, Any], record_type: int) -> Optional[Mapping[str, Any]]:
    for option in details.get("activity_report_options") or []:
        if parse_count(option.get("record_type")) == record_type:
            return option
    return None


def _classify(
    record: UsageRecord,
    period: BillingPeriod,
    rules: UsageRules,
    result: UsageAggregation,
) -> Optional[ProcessedResource]:
    """Billable resource for a record, or None once it is filed as skipped or errored"""
    if rules.is_excluded(record.name):
        result.skipped.append(ResourceIssue(record.code, record.name, "Excluded by name", record.total))
        return None

    if record.error is not None or record.details is None:
        result.errors.append(
            ResourceIssue(record.code, record.name, record.error or "Resource details unavailable", record.total)
        )
        return None

    details = record.details
    if not isinstance(details, Mapping):
        raise TypeError(f"expected a mapping, got {type(details).__name__}")

    limits = _limit_settings(details, rules.limit_record_type)
    if limits is None:
        result.skipped.append(ResourceIssue(record.code, record.name, "No limit settings found", record.total))
        return None

    if str(limits.get("limit") or "").upper() == rules.hard_limit_flag.upper():
        result.skipped.append(
            ResourceIssue(record.code, record.name, f"Hard limit ({rules.hard_limit_flag})", record.total)
        )
        return None

    type_identifier = _type_identifier(details)
    usage_type = resource_type(type_identifier, rules.type_delimiter)
    created_at = parse_timestamp(details.get("created_at"))
    created_in_period = bool(created_at) and period.contains(created_at.date())
    allocation = parse_count(limits.get("option_value"))

    billable = calculate_billable(record.total, allocation, created_in_period, usage_type)
    if billable.billable <= 0:
        result.skipped.append(ResourceIssue(record.code, record.name, "No billable usage", record.total))
        return None

    owner_email = parse_owner_email(details.get("cc_to"), rules.admin_emails)
    if not owner_email:
        result.errors.append(
            ResourceIssue(record.code, record.name, "Could not determine owner email", record.total)
        )
        return None

    return ProcessedResource(
        code=record.code,
        name=record.name,
        owner_email=owner_email,
        usage_type=usage_type,
        type_identifier=type_identifier,
        total=record.total,
        allocation=allocation if created_in_period and usage_type == UsageType.FULL else 0,
        billable=billable.billable,
        created_at=created_at,
        created_in_period=created_in_period,
        calculation=billable.calculation,
    )


def compute_billable_by_owner(
    records: Sequence[UsageRecord],
    period_start: date,
    period_end: date,
    rules: Optional[UsageRules] = None,
) -> UsageAggregation:
    """
    Classify every activity record and aggregate billable units per owner.

    Pure: every record must already carry its detail mapping (or the error
    raised while fetching it). A record whose details cannot be interpreted
    is filed as an error and the rest of the batch continues.
    """
    rules = rules or UsageRules()
    period = BillingPeriod(period_start, period_end)
    result = UsageAggregation()

    for record in records:
        try:
            processed = _classify(record, period, rules, result)
        except Exception as e:
            logger.warning("usage_resource_invalid", code=record.code, name=record.name, error=str(e))
            result.errors.append(
                ResourceIssue(record.code, record.name, f"Invalid resource details: {e}", record.total)
            )
            continue
        if processed is None:
            continue
        result.processed.append(processed)

        display_name = rules.display_name(record.name)
        owner = result.owners.get(processed.owner_email)
        if owner is None:
            owner = OwnerUsage(email=processed.owner_email, display_name=display_name, display_code=record.code)
            result.owners[processed.owner_email] = owner
        elif record.code < owner.display_code:
            # Named after the resource with the smallest code
            owner.display_name = display_name
            owner.display_code = record.code
        owner.add(processed)

    result.owners = dict(sorted(result.owners.items()))
    logger.info(
        "usage_aggregated",
        period=period.label,
        processed=len(result.processed),
        skipped=len(result.skipped),
        errors=len(result.errors),
        owners=len(result.owners),
    )
    return result


async def load_usage_records(
    source: UsageSource,
    account_id: str,
    period: BillingPeriod,
    rules: Optional[UsageRules] = None,
) -> List[UsageRecord]:
    """
    Fetch the activity report and the detail record of every resource.

    Excluded resources are not fetched. A failed detail fetch is kept on the
    record as an error so the rest of the batch continues.

    Raises:
        ExternalCallError: the activity report itself could not be fetched
    """
    rules = rules or UsageRules()
    try:
        activity = await source.get_account_activity(account_id, period.start, period.end)
    except Exception as e:
        logger.error("usage_activity_fetch_failed", account_id=account_id, error=str(e), exc_info=True)
        raise ExternalCallError("get_account_activity", e, {"account_id": account_id, "period": period.label})

    records: List[UsageRecord] = []
    for entry in activity or []:
        record = UsageRecord(
            code=str(entry.get("code") or ""),
            name=str(entry.get("name") or ""),
            total=parse_count(entry.get("total")),
        )
        records.append(record)
        if rules.is_excluded(record.name):
            continue

        try:
            record.details = await source.get_resource_details(record.code)
        except Exception as e:
            logger.warning("usage_resource_fetch_failed", code=record.code, error=str(e))
            record.error = str(e)

    logger.info("usage_records_loaded", account_id=account_id, period=period.label, records=len(records))
    return records


@dataclass(frozen=True)
class UsagePricing:
    """Ledger items and unit prices for the two usage variants"""
    full_item_ref: Optional[str]
    interview_item_ref: Optional[str]
    full_price: Decimal
    interview_price: Decimal
    full_label: str = "Full Assessment"
    interview_label: str = "Interview Assessment"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "UsagePricing":
        settings = settings or get_settings()
        return cls(
            full_item_ref=settings.ledger.ledger_item_full_usage,
            interview_item_ref=settings.ledger.ledger_item_interview_usage,
            full_price=settings.ledger.ledger_full_usage_price,
            interview_price=settings.ledger.ledger_interview_usage_price,
            full_label=settings.usage.usage_full_label,
            interview_label=settings.usage.usage_interview_label,
        )


def build_usage_invoice(
    owner: OwnerUsage,
    period: BillingPeriod,
    pricing: UsagePricing,
    due_date: date,
) -> DocumentRequest:
    """One invoice line per usage type with a nonzero billable quantity"""
    lines: List[DocumentLine] = []
    if owner.full_total > 0:
        lines.append(
            DocumentLine.priced(
                f"{pricing.full_label} ({period.label})",
                pricing.full_item_ref,
                owner.full_total,
                pricing.full_price,
                item_name=pricing.full_label,
            )
        )
    if owner.interview_total > 0:
        lines.append(
            DocumentLine.priced(
                f"{pricing.interview_label} ({period.label})",
                pricing.interview_item_ref,
                owner.interview_total,
                pricing.interview_price,
                item_name=pricing.interview_label,
            )
        )

    return DocumentRequest(
        kind=DocumentKind.INVOICE,
        lines=lines,
        due_date=due_date,
        memo=f"Usage for {period.label}: {', '.join(owner.sorted_resource_names)}",
        bill_email=owner.email,
    )
