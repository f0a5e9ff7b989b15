"""
Scheduling booking normalizer for LedgerSync.

Expected payload shape::

    {
      "source": "scheduler",
      "bookingId": "fd971df7-7b65-435e-a568-629b7e0d858c",
      "firstName": "Test",
      "lastName": "User",
      "email": "test@example.com",
      "phone": "+14802064580",
      "additionalTeamMembers": "3",
      "appointmentType": "60 Minute Phase 1 - Leader Only",
      "price": "$ 1,750.00",
      "startDate": "2025-12-31T07:00:00-07:00",
      "endDate": "2025-12-31T08:00:00-07:00",
      "timeZone": "US/Mountain",
      "bookingStatus": "UPCOMING",
      "bookingRef": "GJPA-YYBP-QMUT"
    }
"""

from typing import Any, List, Mapping, Optional

import structlog

from ledgersync.core.errors import EventValidationError
from ledgersync.core.models import Booking
from ledgersync.services.intake.parsing import (
    is_valid_email,
    normalize_name,
    parse_count,
    parse_price,
    parse_timestamp,
)

logger = structlog.get_logger(__name__)

SOURCE = "booking"
CANCELLED_STATUSES = {"CANCELLED", "CANCELED"}
REQUIRED_FIELDS = ("firstName", "lastName", "email")


class BookingNormalizer:
    """Converts raw scheduling events into canonical bookings"""

    def __init__(self, expected_source: Optional[str] = None):
        self.expected_source = expected_source
        self._logger = logger.bind(component="booking_normalizer")

    def normalize(self, payload: Mapping[str, Any]) -> Booking:
        """
        Normalize a booking payload.

        Raises:
            EventValidationError: a required identity field is missing
        """
        payload = payload or {}

        if self.expected_source and payload.get("source") != self.expected_source:
            self._logger.warning(
                "unexpected_booking_source",
                source=payload.get("source"),
                expected=self.expected_source,
            )

        missing = [name for name in REQUIRED_FIELDS if not payload.get(name)]
        if missing:
            raise EventValidationError(
                [f"Missing required fields: {', '.join(missing)}"], source=SOURCE
            )

        extras_raw = payload.get("additionalTeamMembers", payload.get("extrasCount"))

        booking = Booking(
            booking_id=payload.get("bookingId") or None,
            booking_ref=payload.get("bookingRef") or None,
            status=str(payload.get("bookingStatus") or "UPCOMING").upper(),
            first_name=normalize_name(payload.get("firstName")),
            last_name=normalize_name(payload.get("lastName")),
            email=str(payload["email"]).strip().lower(),
            phone=str(payload.get("phone") or "").strip(),
            appointment_type=payload.get("appointmentType") or "",
            extras_count=parse_count(extras_raw),
            base_price=parse_price(payload.get("price")),
            start_date=parse_timestamp(payload.get("startDate")),
            end_date=parse_timestamp(payload.get("endDate")),
            booked_at=parse_timestamp(payload.get("createdAt") or payload.get("bookedAt")),
            time_zone=payload.get("timeZone") or "America/New_York",
            raw=dict(payload),
        )

        self._logger.info(
            "booking_normalized",
            booking_ref=booking.booking_ref,
            email=booking.email,
            extras_count=booking.extras_count,
            base_price=str(booking.base_price),
            status=booking.status,
        )
        return booking


def is_cancelled(booking: Booking) -> bool:
    return booking.status.upper() in CANCELLED_STATUSES


def validate_booking(booking: Booking) -> List[str]:
    """Return validation errors for a booking (empty = valid)"""
    errors: List[str] = []

    if not is_valid_email(booking.email):
        errors.append("Invalid or missing email address")

    if not booking.first_name:
        errors.append("Missing first name")

    if not booking.last_name:
        errors.append("Missing last name")

    return errors
