"""Off-request ledger: which employees are blocked by approved time off."""

from __future__ import annotations

from datetime import date
from typing import Iterable

from cleanops.constants import (
    DURATION_DAY_OFF,
    DURATION_FULL_MONTH,
    DURATION_NON_CONSECUTIVE,
    STATUS_APPROVED,
    STATUS_PENDING,
)
from cleanops.domain import month_bounds
from cleanops.models import AbsenceCreate, AbsenceRecord


def covers(record: AbsenceRecord, value_date: date) -> bool:
    # non-consecutive requests only cover the days actually picked
    if record.duration_type == DURATION_NON_CONSECUTIVE and record.selected_dates:
        return value_date in record.selected_dates
    return record.start_date <= value_date <= record.end_date


def resolve_request_dates(payload: AbsenceCreate) -> tuple[date, date, list[date]]:
    """Turn a self-service request into ``(start_date, end_date, selected_dates)``.

    Raises ``ValueError`` when the request does not have the dates its
    duration type needs.
    """
    if payload.duration_type == DURATION_NON_CONSECUTIVE:
        if not payload.selected_dates:
            raise ValueError("Select at least one date")
        selected = sorted(set(payload.selected_dates))
        return selected[0], selected[-1], selected

    if payload.start_date is None:
        raise ValueError("start_date is required")

    if payload.duration_type == DURATION_DAY_OFF:
        return payload.start_date, payload.start_date, []
    if payload.duration_type == DURATION_FULL_MONTH:
        first, last = month_bounds(payload.start_date)
        return first, last, []

    if payload.end_date is None:
        raise ValueError("end_date is required")
    if payload.end_date < payload.start_date:
        raise ValueError("end_date must not be before start_date")
    return payload.start_date, payload.end_date, []


def can_decide(record: AbsenceRecord) -> bool:
    return record.status == STATUS_PENDING


class AbsenceLedger:
    def __init__(self, records: Iterable[AbsenceRecord]) -> None:
        self._approved: dict[str, list[AbsenceRecord]] = {}
        for record in records:
            if record.status != STATUS_APPROVED:
                continue
            self._approved.setdefault(record.employee_id, []).append(record)

    def employee_ids(self) -> set[str]:
        return set(self._approved)

    def is_blocked(self, employee_id: str, value_date: date) -> bool:
        return any(covers(record, value_date) for record in self._approved.get(employee_id, []))

    def blocked_employees(self, value_date: date) -> set[str]:
        return {
            employee_id
            for employee_id in self._approved
            if self.is_blocked(employee_id, value_date)
        }
