from __future__ import annotations

import json
import logging
import shutil
import uuid
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable, TypeVar

from filelock import FileLock, Timeout
from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from cleanops.config import settings
from cleanops.constants import (
    ABSENCES_HEADERS,
    AVAILABILITY_HEADERS,
    BOOKINGS_HEADERS,
    CONTRACTS_HEADERS,
    CONTRACT_ACTIVE,
)
from cleanops.domain import utcnow
from cleanops.models import AbsenceRecord, BookingRecord, ContractRecord, EmployeeAvailability

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreUnavailableError(RuntimeError):
    """The workbook could not be opened, parsed or locked."""


@dataclass
class Tables:
    availability: list[dict[str, Any]]
    absences: list[dict[str, Any]]
    bookings: list[dict[str, Any]]
    contracts: list[dict[str, Any]]


@dataclass
class ScheduleSnapshot:
    """Everything a validation pass for one date needs, read in one go."""

    availability: list[EmployeeAvailability]
    absences: list[AbsenceRecord]
    bookings: list[BookingRecord]
    contracts: list[ContractRecord]


class ExcelRepository:
    def __init__(self) -> None:
        self.data_file = settings.data_file
        self.backup_dir = settings.backup_dir
        self.lock = FileLock(str(settings.lock_file), timeout=settings.lock_timeout_seconds)

    def init_storage(self) -> None:
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        Path(self.lock.lock_file).parent.mkdir(parents=True, exist_ok=True)
        if self.data_file.exists():
            return

        wb = Workbook()
        default = wb.active
        wb.remove(default)
        for sheet_name, headers in self._sheet_headers().items():
            ws = wb.create_sheet(sheet_name)
            ws.append(headers)
        wb.save(self.data_file)
        logger.info("Initialised schedule workbook at %s", self.data_file)

    def snapshot(self, value_date: date | None = None) -> ScheduleSnapshot:
        tables = self._read_tables()
        bookings = self._records(tables.bookings, "booking_id", self._booking_from_row)
        if value_date is not None:
            bookings = [item for item in bookings if item.date == value_date]
        return ScheduleSnapshot(
            availability=self._records(tables.availability, "employee_id", self._availability_from_row),
            absences=self._records(tables.absences, "absence_id", self._absence_from_row),
            bookings=bookings,
            contracts=self._records(tables.contracts, "contract_id", self._contract_from_row),
        )

    # availability

    def list_availability(self) -> list[EmployeeAvailability]:
        tables = self._read_tables()
        return self._records(tables.availability, "employee_id", self._availability_from_row)

    def get_availability(self, employee_id: str) -> EmployeeAvailability | None:
        for item in self.list_availability():
            if item.employee_id == employee_id:
                return item
        return None

    def upsert_availability(self, record: EmployeeAvailability) -> EmployeeAvailability:
        row = self._availability_to_row(record.model_copy(update={"updated_at": utcnow()}))

        def mutate(tables: Tables) -> dict[str, Any]:
            for existing in tables.availability:
                if existing.get("employee_id") == record.employee_id:
                    existing.update(row)
                    return existing
            tables.availability.append(row)
            return row

        return self._record(self._write_tables(mutate), self._availability_from_row)

    def delete_availability(self, employee_id: str) -> bool:
        def mutate(tables: Tables) -> bool:
            initial = len(tables.availability)
            tables.availability = [
                row for row in tables.availability if row.get("employee_id") != employee_id
            ]
            return len(tables.availability) != initial

        return bool(self._write_tables(mutate))

    # absences

    def list_absences(
        self,
        employee_id: str | None = None,
        status: str | None = None,
    ) -> list[AbsenceRecord]:
        tables = self._read_tables()
        rows: list[AbsenceRecord] = []
        for row in tables.absences:
            if not row.get("absence_id"):
                continue
            if employee_id and row.get("employee_id") != employee_id:
                continue
            if status and row.get("status") != status:
                continue
            rows.append(self._record(row, self._absence_from_row))
        return rows

    def get_absence(self, absence_id: str) -> AbsenceRecord | None:
        for item in self.list_absences():
            if item.absence_id == absence_id:
                return item
        return None

    def create_absence(
        self,
        employee_id: str,
        start_date: date,
        end_date: date,
        reason: str,
        duration_type: str,
        selected_dates: list[date],
    ) -> AbsenceRecord:
        row = {
            "absence_id": uuid.uuid4().hex,
            "employee_id": employee_id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "reason": reason,
            "duration_type": duration_type,
            "selected_dates": json.dumps([item.isoformat() for item in selected_dates]),
            "status": "pending",
            "created_at": utcnow().isoformat(),
            "approved_at": None,
            "approved_by": None,
        }

        def mutate(tables: Tables) -> dict[str, Any]:
            tables.absences.append(row)
            return row

        return self._record(self._write_tables(mutate), self._absence_from_row)

    def decide_absence(
        self,
        absence_id: str,
        expected_status: str,
        status: str,
        approved_by: str | None,
    ) -> AbsenceRecord | None:
        now = utcnow().isoformat()

        def mutate(tables: Tables) -> dict[str, Any] | None:
            for row in tables.absences:
                if row.get("absence_id") != absence_id:
                    continue
                if row.get("status") != expected_status:
                    raise ValueError(f"Absence request is already {row.get('status')}")
                row["status"] = status
                row["approved_at"] = now
                row["approved_by"] = approved_by
                return row
            return None

        row = self._write_tables(mutate)
        if not row:
            return None
        return self._record(row, self._absence_from_row)

    # bookings

    def list_bookings(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        employee_id: str | None = None,
    ) -> list[BookingRecord]:
        tables = self._read_tables()
        rows: list[BookingRecord] = []
        for row in tables.bookings:
            if not row.get("booking_id"):
                continue
            item = self._record(row, self._booking_from_row)
            if start_date and item.date < start_date:
                continue
            if end_date and item.date > end_date:
                continue
            if employee_id and item.employee_id != employee_id:
                continue
            rows.append(item)
        return rows

    def get_booking(self, booking_id: str) -> BookingRecord | None:
        for item in self.list_bookings():
            if item.booking_id == booking_id:
                return item
        return None

    def create_booking(
        self,
        client_id: str,
        employee_id: str,
        value_date: date,
        start_time: str,
        duration_minutes: int,
        service_type: str,
        notes: str = "",
    ) -> BookingRecord:
        now = utcnow().isoformat()
        row = {
            "booking_id": uuid.uuid4().hex,
            "client_id": client_id,
            "employee_id": employee_id,
            "date": value_date.isoformat(),
            "start_time": start_time,
            "duration_minutes": duration_minutes,
            "status": "scheduled",
            "service_type": service_type,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
        }

        def mutate(tables: Tables) -> dict[str, Any]:
            tables.bookings.append(row)
            return row

        return self._record(self._write_tables(mutate), self._booking_from_row)

    def update_booking(self, booking_id: str, changes: dict[str, Any]) -> BookingRecord | None:
        now = utcnow().isoformat()
        payload = {
            key: value.isoformat() if isinstance(value, (date, datetime)) else value
            for key, value in changes.items()
        }

        def mutate(tables: Tables) -> dict[str, Any] | None:
            for row in tables.bookings:
                if row.get("booking_id") == booking_id:
                    row.update(payload)
                    row["updated_at"] = now
                    return row
            return None

        row = self._write_tables(mutate)
        if not row:
            return None
        return self._record(row, self._booking_from_row)

    # contracts

    def list_contracts(self, client_id: str | None = None) -> list[ContractRecord]:
        tables = self._read_tables()
        rows = [row for row in tables.contracts if not client_id or row.get("client_id") == client_id]
        return self._records(rows, "contract_id", self._contract_from_row)

    def upsert_contract(
        self,
        client_id: str,
        contract_number: str,
        status: str,
        start_date: date | None = None,
        end_date: date | None = None,
        contract_id: str | None = None,
    ) -> ContractRecord:
        fields = {
            "client_id": client_id,
            "contract_number": contract_number,
            "status": status,
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
        }

        def mutate(tables: Tables) -> dict[str, Any]:
            if status == CONTRACT_ACTIVE:
                for row in tables.contracts:
                    if (
                        row.get("client_id") == client_id
                        and row.get("status") == CONTRACT_ACTIVE
                        and row.get("contract_id") != contract_id
                    ):
                        raise ValueError(
                            f"Client {client_id} already has active contract {row.get('contract_number')}"
                        )
            if contract_id:
                for row in tables.contracts:
                    if row.get("contract_id") == contract_id:
                        row.update(fields)
                        return row
            new_row = {
                "contract_id": contract_id or uuid.uuid4().hex,
                **fields,
                "created_at": utcnow().isoformat(),
            }
            tables.contracts.append(new_row)
            return new_row

        return self._record(self._write_tables(mutate), self._contract_from_row)

    # row mapping

    def _record(self, row: dict[str, Any], mapper: Callable[[dict[str, Any]], T]) -> T:
        try:
            return mapper(row)
        except (KeyError, ValueError) as exc:
            logger.error("Malformed row in %s: %s", self.data_file, exc)
            raise StoreUnavailableError(f"Malformed row in {self.data_file}: {exc}") from exc

    def _records(
        self,
        rows: list[dict[str, Any]],
        key: str,
        mapper: Callable[[dict[str, Any]], T],
    ) -> list[T]:
        return [self._record(row, mapper) for row in rows if row.get(key)]

    def _availability_from_row(self, row: dict[str, Any]) -> EmployeeAvailability:
        return EmployeeAvailability(
            employee_id=row["employee_id"],
            available_days=str(row.get("available_days") or ""),
            start_time=str(row.get("start_time") or "08:00"),
            end_time=str(row.get("end_time") or "17:00"),
            exceptions=self._load_json(row.get("exceptions"), {}),
            monthly_availability=self._load_json(row.get("monthly_availability"), {}),
            updated_at=self._parse_datetime(row["updated_at"]) if row.get("updated_at") else None,
        )

    def _availability_to_row(self, record: EmployeeAvailability) -> dict[str, Any]:
        return {
            "employee_id": record.employee_id,
            "available_days": ",".join(record.sorted_days()),
            "start_time": record.start_time,
            "end_time": record.end_time,
            "exceptions": json.dumps(
                {key.isoformat(): value for key, value in sorted(record.exceptions.items())}
            ),
            "monthly_availability": json.dumps(
                {key.isoformat(): value for key, value in sorted(record.monthly_availability.items())}
            ),
            "updated_at": record.updated_at.isoformat() if record.updated_at else None,
        }

    def _absence_from_row(self, row: dict[str, Any]) -> AbsenceRecord:
        return AbsenceRecord(
            absence_id=row["absence_id"],
            employee_id=row["employee_id"],
            start_date=self._parse_date(row["start_date"]),
            end_date=self._parse_date(row["end_date"]),
            reason=row.get("reason") or "",
            duration_type=row.get("duration_type") or "multi_day_off",
            selected_dates=self._load_json(row.get("selected_dates"), []),
            status=row.get("status") or "pending",
            created_at=self._parse_datetime(row["created_at"]),
            approved_at=self._parse_datetime(row["approved_at"]) if row.get("approved_at") else None,
            approved_by=row.get("approved_by") or None,
        )

    def _booking_from_row(self, row: dict[str, Any]) -> BookingRecord:
        duration = row.get("duration_minutes")
        return BookingRecord(
            booking_id=row["booking_id"],
            client_id=row["client_id"],
            employee_id=row["employee_id"],
            date=self._parse_date(row["date"]),
            start_time=str(row["start_time"]),
            duration_minutes=int(duration) if duration else settings.default_duration_minutes,
            status=row.get("status") or "scheduled",
            service_type=row.get("service_type") or "cleaning",
            notes=row.get("notes") or "",
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
            completed_at=self._parse_datetime(row["completed_at"]) if row.get("completed_at") else None,
        )

    def _contract_from_row(self, row: dict[str, Any]) -> ContractRecord:
        return ContractRecord(
            contract_id=row["contract_id"],
            client_id=row["client_id"],
            contract_number=str(row.get("contract_number") or ""),
            status=row.get("status") or "draft",
            start_date=self._parse_date(row["start_date"]) if row.get("start_date") else None,
            end_date=self._parse_date(row["end_date"]) if row.get("end_date") else None,
            created_at=self._parse_datetime(row["created_at"]),
        )

    # workbook io

    def _sheet_headers(self) -> dict[str, list[str]]:
        return {
            "availability": AVAILABILITY_HEADERS,
            "absences": ABSENCES_HEADERS,
            "bookings": BOOKINGS_HEADERS,
            "contracts": CONTRACTS_HEADERS,
        }

    def _load_tables(self, wb: Workbook) -> Tables:
        return Tables(
            availability=self._read_sheet(wb, "availability", AVAILABILITY_HEADERS),
            absences=self._read_sheet(wb, "absences", ABSENCES_HEADERS),
            bookings=self._read_sheet(wb, "bookings", BOOKINGS_HEADERS),
            contracts=self._read_sheet(wb, "contracts", CONTRACTS_HEADERS),
        )

    def _read_tables(self) -> Tables:
        try:
            self.init_storage()
            wb = load_workbook(self.data_file)
        except (OSError, InvalidFileException, zipfile.BadZipFile) as exc:
            logger.error("Failed to open %s: %s", self.data_file, exc)
            raise StoreUnavailableError(f"Cannot read {self.data_file}") from exc
        try:
            return self._load_tables(wb)
        except KeyError as exc:
            raise StoreUnavailableError(f"Missing sheet in {self.data_file}: {exc}") from exc
        finally:
            wb.close()

    def _write_tables(self, mutator: Callable[[Tables], Any]) -> Any:
        self.init_storage()
        try:
            with self.lock:
                return self._mutate_workbook(mutator)
        except Timeout as exc:
            raise StoreUnavailableError(f"Timed out waiting for {self.lock.lock_file}") from exc

    def _mutate_workbook(self, mutator: Callable[[Tables], Any]) -> Any:
        try:
            wb = load_workbook(self.data_file)
        except (OSError, InvalidFileException, zipfile.BadZipFile) as exc:
            raise StoreUnavailableError(f"Cannot read {self.data_file}") from exc
        try:
            tables = self._load_tables(wb)
            result = mutator(tables)
            for sheet_name, headers in self._sheet_headers().items():
                self._write_sheet(wb, sheet_name, headers, getattr(tables, sheet_name))
            self._persist_workbook(wb)
            return result
        finally:
            wb.close()

    def _persist_workbook(self, workbook: Workbook) -> None:
        with NamedTemporaryFile(suffix=".xlsx", delete=False) as tmp:
            temp_path = Path(tmp.name)
        try:
            workbook.save(temp_path)
            if self.data_file.exists():
                stamp = utcnow().strftime("%Y%m%d%H%M%S%f")
                backup_path = self.backup_dir / f"schedule-{stamp}.xlsx"
                shutil.copy2(self.data_file, backup_path)
            shutil.move(str(temp_path), self.data_file)
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _read_sheet(self, workbook: Workbook, name: str, headers: list[str]) -> list[dict[str, Any]]:
        ws = workbook[name]
        rows: list[dict[str, Any]] = []
        for row in ws.iter_rows(min_row=2, values_only=True):
            if all(item is None for item in row):
                continue
            payload: dict[str, Any] = {}
            for index, header in enumerate(headers):
                payload[header] = row[index] if index < len(row) else None
            rows.append(payload)
        return rows

    def _write_sheet(
        self,
        workbook: Workbook,
        name: str,
        headers: list[str],
        rows: list[dict[str, Any]],
    ) -> None:
        if name not in workbook.sheetnames:
            workbook.create_sheet(name)
        ws = workbook[name]
        ws.delete_rows(1, ws.max_row)
        ws.append(headers)
        for row in rows:
            ws.append([row.get(header) for header in headers])

    def _load_json(self, raw: Any, default: Any) -> Any:
        if raw is None or raw == "":
            return default
        if isinstance(raw, (dict, list)):
            return raw
        return json.loads(str(raw))

    def _parse_date(self, raw: Any) -> date:
        if isinstance(raw, date) and not isinstance(raw, datetime):
            return raw
        if isinstance(raw, datetime):
            return raw.date()
        return date.fromisoformat(str(raw))

    def _parse_datetime(self, raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        return datetime.fromisoformat(str(raw))
