"""
Billing: flow selection, document dispatch and the webhook pipelines.

Main Components:
- BillingFlowEngine: pure plan construction for bookings and orders
- DocumentDispatcher: customer resolution and sequential document creation
- BookingProcessor / OrderProcessor: end-to-end event processing
"""

from .dispatcher import (
    CreatedDocument,
    DispatchResult,
    DocumentDispatcher,
    SendOutcome,
    SendStatus,
)
from .flow_engine import (
    BillingFlowEngine,
    LedgerItems,
    StandardPrices,
    select_booking_flow,
    select_order_flow,
)
from .pipeline import BookingProcessor, OrderProcessor, ProcessingResult

__all__ = [
    "BillingFlowEngine",
    "BookingProcessor",
    "CreatedDocument",
    "DispatchResult",
    "DocumentDispatcher",
    "LedgerItems",
    "OrderProcessor",
    "ProcessingResult",
    "SendOutcome",
    "SendStatus",
    "StandardPrices",
    "select_booking_flow",
    "select_order_flow",
]
