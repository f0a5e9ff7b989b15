"""
Error taxonomy for LedgerSync.

Business conditions that were already handled (a pending order, a cancelled
booking) raise ``EventSkipped`` and are kept apart from real failures so they
never reach alerting or retry paths.
"""

from typing import Any, Dict, List, Optional


class LedgerSyncError(Exception):
    """Base class for all LedgerSync errors"""


class EventValidationError(LedgerSyncError):
    """Raised when an inbound event is missing required identity fields"""

    def __init__(self, errors: List[str], source: Optional[str] = None):
        self.errors = list(errors)
        self.source = source
        prefix = f"Invalid {source} event" if source else "Invalid event"
        super().__init__(f"{prefix}: {'; '.join(self.errors)}")


class EventSkipped(LedgerSyncError):
    """Raised for events that must not be billed (wrong status, cancelled)"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ExternalCallError(LedgerSyncError):
    """Raised when a critical-path collaborator call fails"""

    def __init__(
        self,
        operation: str,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.cause = cause
        self.context = context or {}
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")


class DuplicateNameError(LedgerSyncError):
    """Raised by a ledger collaborator when a customer display name is taken"""

    def __init__(self, display_name: str):
        self.display_name = display_name
        super().__init__(f"Customer display name already exists: {display_name}")


class BillingConfigurationError(LedgerSyncError):
    """Raised when configuration is missing for a document that must be exact"""
