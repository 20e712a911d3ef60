from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from cleanops.absences import AbsenceLedger
from cleanops.availability import AvailabilityStore
from cleanops.constants import (
    BOOKING_CANCELLED,
    REASON_DUPLICATE,
    REASON_NOT_WORKING,
    REASON_OVERLAP,
    REASON_TIME_OFF,
)
from cleanops.domain import booking_window, windows_overlap
from cleanops.models import BookingRecord, ValidationResult

logger = logging.getLogger(__name__)


class ConflictChecker:
    """Advisory pre-submission checks for one employee slot.

    Works on rows already fetched from the store; nothing here is a
    transactional guarantee against a concurrent writer.
    """

    def __init__(
        self,
        availability: AvailabilityStore,
        ledger: AbsenceLedger,
        bookings: Iterable[BookingRecord],
    ) -> None:
        self.availability = availability
        self.ledger = ledger
        self.bookings = list(bookings)

    def check_candidate(
        self,
        employee_id: str,
        value_date: date,
        start_time: str,
        duration_minutes: int,
        exclude_booking_id: str | None = None,
        client_id: str | None = None,
    ) -> ValidationResult:
        """First failing check wins: time off, then day off, then overlap.

        An overlap always rejects with the overlap message. When
        ``client_id`` matches the client of the overlapped booking the
        duplicate-booking sentence is appended to it.
        """
        if self.ledger.is_blocked(employee_id, value_date):
            return ValidationResult(ok=False, reason=REASON_TIME_OFF)
        if not self.availability.is_available(employee_id, value_date):
            return ValidationResult(ok=False, reason=REASON_NOT_WORKING)

        candidate = booking_window(start_time, duration_minutes)
        for existing in self._active_bookings(employee_id, value_date, exclude_booking_id):
            if not windows_overlap(candidate, booking_window(existing.start_time, existing.duration_minutes)):
                continue
            logger.debug(
                "Candidate %s %s %s overlaps booking %s",
                employee_id,
                value_date,
                start_time,
                existing.booking_id,
            )
            if client_id and existing.client_id == client_id:
                return ValidationResult(ok=False, reason=REASON_DUPLICATE)
            return ValidationResult(ok=False, reason=REASON_OVERLAP)
        return ValidationResult(ok=True)

    def list_unavailable_employees(
        self,
        value_date: date,
        start_time: str,
        duration_minutes: int,
        exclude_booking_id: str | None = None,
        employee_ids: Iterable[str] | None = None,
    ) -> set[str]:
        candidates = set(employee_ids) if employee_ids is not None else self.known_employees(value_date)
        return {
            employee_id
            for employee_id in candidates
            if not self.check_candidate(
                employee_id,
                value_date,
                start_time,
                duration_minutes,
                exclude_booking_id=exclude_booking_id,
            ).ok
        }

    def known_employees(self, value_date: date) -> set[str]:
        on_date = {item.employee_id for item in self.bookings if item.date == value_date}
        return self.availability.employee_ids() | self.ledger.employee_ids() | on_date

    def _active_bookings(
        self,
        employee_id: str,
        value_date: date,
        exclude_booking_id: str | None,
    ) -> list[BookingRecord]:
        return [
            item
            for item in self.bookings
            if item.employee_id == employee_id
            and item.date == value_date
            and item.status != BOOKING_CANCELLED
            and item.booking_id != exclude_booking_id
        ]
