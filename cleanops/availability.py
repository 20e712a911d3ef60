"""Weekly availability patterns with date-specific overrides."""

from __future__ import annotations

from datetime import date
from typing import Iterable

from cleanops.constants import DEFAULT_OPEN_AVAILABILITY
from cleanops.domain import weekday_name
from cleanops.models import EmployeeAvailability


class AvailabilityStore:
    def __init__(self, records: Iterable[EmployeeAvailability]) -> None:
        self._by_employee = {record.employee_id: record for record in records}

    def __contains__(self, employee_id: str) -> bool:
        return employee_id in self._by_employee

    def employee_ids(self) -> set[str]:
        return set(self._by_employee)

    def get(self, employee_id: str) -> EmployeeAvailability | None:
        return self._by_employee.get(employee_id)

    def is_available(self, employee_id: str, value_date: date) -> bool:
        """Monthly override, then exception, then weekly pattern.

        Employees with no record are available every day.
        """
        record = self._by_employee.get(employee_id)
        if record is None:
            return DEFAULT_OPEN_AVAILABILITY
        if value_date in record.monthly_availability:
            return record.monthly_availability[value_date]
        if value_date in record.exceptions:
            return False
        return weekday_name(value_date) in record.available_days
