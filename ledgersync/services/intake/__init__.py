"""
Intake normalization for inbound order and booking events.

Main Components:
- OrderNormalizer: e-commerce order payloads to canonical Order values
- BookingNormalizer: scheduling payloads to canonical Booking values
- validate_order / validate_booking: processing preconditions
"""

from .booking_normalizer import BookingNormalizer, is_cancelled, validate_booking
from .order_normalizer import OrderNormalizer, summarize_order, validate_order

__all__ = [
    "BookingNormalizer",
    "OrderNormalizer",
    "is_cancelled",
    "summarize_order",
    "validate_booking",
    "validate_order",
]
