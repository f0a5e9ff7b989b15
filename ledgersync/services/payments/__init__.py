"""
Payment-processor matching for bookings and orders.
"""

from .matcher import (
    PaymentMatcher,
    extract_charge_details,
    extract_session_details,
    parse_reference,
)

__all__ = [
    "PaymentMatcher",
    "extract_charge_details",
    "extract_session_details",
    "parse_reference",
]
