from __future__ import annotations

from datetime import date, datetime

import pytest
from filelock import FileLock
from openpyxl import load_workbook

from cleanops.models import AbsenceRecord, BookingRecord, EmployeeAvailability
from cleanops.repository import ExcelRepository
from cleanops.services import SchedulingService

TODAY = date(2024, 12, 1)
MONDAY = date(2024, 12, 9)
WEDNESDAY = date(2024, 12, 11)
SATURDAY = date(2024, 12, 14)


@pytest.fixture()
def repo(tmp_path):
    repo = ExcelRepository()
    repo.data_file = tmp_path / "schedule.xlsx"
    repo.backup_dir = tmp_path / "backups"
    repo.lock = FileLock(str(tmp_path / "schedule.lock"), timeout=5)
    repo.init_storage()
    return repo


@pytest.fixture()
def service(repo):
    return SchedulingService(repo=repo, today=lambda: TODAY)


def make_availability(employee_id: str = "emp-1", **overrides) -> EmployeeAvailability:
    values = {
        "employee_id": employee_id,
        "available_days": {"monday", "tuesday", "wednesday", "thursday", "friday"},
        "start_time": "08:00",
        "end_time": "17:00",
    }
    values.update(overrides)
    return EmployeeAvailability(**values)


def make_absence(
    employee_id: str = "emp-1",
    start_date: date = date(2024, 12, 10),
    end_date: date = date(2024, 12, 12),
    status: str = "approved",
    **overrides,
) -> AbsenceRecord:
    values = {
        "absence_id": f"abs-{employee_id}-{start_date.isoformat()}-{status}",
        "employee_id": employee_id,
        "start_date": start_date,
        "end_date": end_date,
        "status": status,
        "created_at": datetime(2024, 12, 1, 9, 0),
    }
    values.update(overrides)
    return AbsenceRecord(**values)


def make_booking(
    booking_id: str = "job-1",
    employee_id: str = "emp-1",
    value_date: date = MONDAY,
    start_time: str = "09:00",
    duration_minutes: int = 120,
    **overrides,
) -> BookingRecord:
    values = {
        "booking_id": booking_id,
        "client_id": "client-1",
        "employee_id": employee_id,
        "date": value_date,
        "start_time": start_time,
        "duration_minutes": duration_minutes,
        "created_at": datetime(2024, 12, 1, 9, 0),
        "updated_at": datetime(2024, 12, 1, 9, 0),
    }
    values.update(overrides)
    return BookingRecord(**values)


def overwrite_cell(repo: ExcelRepository, sheet: str, cell: str, value: object) -> None:
    wb = load_workbook(repo.data_file)
    try:
        wb[sheet][cell] = value
        wb.save(repo.data_file)
    finally:
        wb.close()
