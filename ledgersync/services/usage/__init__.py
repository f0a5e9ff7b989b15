"""
Monthly usage billing: activity aggregation and invoice runs.
"""

from .aggregator import (
    BillableResult,
    BillingPeriod,
    OwnerUsage,
    ProcessedResource,
    ResourceIssue,
    UsageAggregation,
    UsagePricing,
    UsageRecord,
    UsageRules,
    UsageType,
    build_usage_invoice,
    calculate_billable,
    compute_billable_by_owner,
    load_usage_records,
    parse_owner_email,
    resource_type,
)
from .monthly import MonthlyUsageInvoicer, OwnerInvoiceResult, UsageReport

__all__ = [
    "BillableResult",
    "BillingPeriod",
    "MonthlyUsageInvoicer",
    "OwnerInvoiceResult",
    "OwnerUsage",
    "ProcessedResource",
    "ResourceIssue",
    "UsageAggregation",
    "UsagePricing",
    "UsageRecord",
    "UsageReport",
    "UsageRules",
    "UsageType",
    "build_usage_invoice",
    "calculate_billable",
    "compute_billable_by_owner",
    "load_usage_records",
    "parse_owner_email",
    "resource_type",
]
