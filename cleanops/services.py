from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from fastapi import HTTPException

from cleanops.absences import AbsenceLedger, can_decide, resolve_request_dates
from cleanops.availability import AvailabilityStore
from cleanops.conflicts import ConflictChecker
from cleanops.constants import (
    BILLABLE_SERVICES,
    BOOKING_COMPLETED,
    BOOKING_TRANSITIONS,
    EDITABLE_BOOKING_STATUSES,
    REASON_STORE_UNAVAILABLE,
    STATUS_PENDING,
)
from cleanops.contracts import ContractGate
from cleanops.domain import utcnow
from cleanops.models import (
    AbsenceCreate,
    AbsenceDecision,
    AbsenceRecord,
    AvailabilityCheck,
    AvailabilityUpsert,
    BookingDraft,
    BookingRecord,
    BookingUpdate,
    CandidateQuery,
    ContractRecord,
    ContractUpsert,
    EmployeeAvailability,
    ValidationResult,
)
from cleanops.repository import ExcelRepository, ScheduleSnapshot, StoreUnavailableError

logger = logging.getLogger(__name__)

DRAFT_EDITING = "editing"
DRAFT_VALIDATING = "validating"
DRAFT_REJECTED = "rejected"
DRAFT_ACCEPTED = "accepted"


def _today() -> date:
    return utcnow().date()


@dataclass
class BookingOutcome:
    state: str
    reason: str | None = None
    booking: BookingRecord | None = None
    store_error: bool = False

    @property
    def accepted(self) -> bool:
        return self.state == DRAFT_ACCEPTED


class DraftSession:
    """Live state of one booking form.

    Every relevant input change bumps a request token; results computed for
    an older token are dropped so a slow lookup never overwrites a newer one.
    """

    def __init__(self, exclude_booking_id: str | None = None) -> None:
        self.exclude_booking_id = exclude_booking_id
        self.state = DRAFT_EDITING
        self.unavailable_employees: set[str] = set()
        self.last_reason: str | None = None
        self._lock = threading.Lock()
        self._token = 0
        self._key: tuple | None = None

    @property
    def latest_token(self) -> int:
        return self._token

    def change(self, value_date: date, start_time: str, duration_minutes: int) -> int | None:
        """Register an input change; ``None`` means nothing relevant changed."""
        key = (value_date, start_time, duration_minutes)
        with self._lock:
            if key == self._key:
                return None
            self._key = key
            self._token += 1
            self.state = DRAFT_EDITING
            return self._token

    def apply(self, token: int, unavailable: set[str]) -> bool:
        with self._lock:
            if token != self._token:
                logger.debug("Discarding stale availability result %s (latest %s)", token, self._token)
                return False
            self.unavailable_employees = set(unavailable)
            return True


@dataclass
class SchedulingService:
    repo: ExcelRepository
    today: Callable[[], date] = field(default=_today)

    # availability

    def list_availability(self) -> list[EmployeeAvailability]:
        return self.repo.list_availability()

    def get_availability_or_404(self, employee_id: str) -> EmployeeAvailability:
        record = self.repo.get_availability(employee_id)
        if not record:
            raise HTTPException(status_code=404, detail="Availability not found")
        return record

    def upsert_availability(self, employee_id: str, payload: AvailabilityUpsert) -> EmployeeAvailability:
        try:
            record = EmployeeAvailability(employee_id=employee_id, **payload.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        saved = self.repo.upsert_availability(record)
        logger.info("Availability saved for employee %s: %s", employee_id, ",".join(saved.sorted_days()))
        return saved

    def delete_availability(self, employee_id: str) -> None:
        if not self.repo.delete_availability(employee_id):
            raise HTTPException(status_code=404, detail="Availability not found")

    def check_employee_day(self, employee_id: str, value_date: date) -> AvailabilityCheck:
        snapshot = self._snapshot_or_503(value_date)
        return AvailabilityCheck(
            employee_id=employee_id,
            date=value_date,
            available=AvailabilityStore(snapshot.availability).is_available(employee_id, value_date),
            blocked=AbsenceLedger(snapshot.absences).is_blocked(employee_id, value_date),
        )

    # absences

    def list_absences(self, employee_id: str | None = None, status: str | None = None) -> list[AbsenceRecord]:
        return self.repo.list_absences(employee_id=employee_id, status=status)

    def submit_absence(self, payload: AbsenceCreate) -> AbsenceRecord:
        try:
            start_date, end_date, selected = resolve_request_dates(payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        record = self.repo.create_absence(
            employee_id=payload.employee_id,
            start_date=start_date,
            end_date=end_date,
            reason=payload.reason,
            duration_type=payload.duration_type,
            selected_dates=selected,
        )
        logger.info(
            "Absence %s requested by %s for %s..%s",
            record.absence_id,
            record.employee_id,
            record.start_date,
            record.end_date,
        )
        return record

    def decide_absence(self, absence_id: str, decision: AbsenceDecision) -> AbsenceRecord:
        existing = self.repo.get_absence(absence_id)
        if not existing:
            raise HTTPException(status_code=404, detail="Absence request not found")
        if not can_decide(existing):
            raise HTTPException(status_code=409, detail=f"Absence request is already {existing.status}")
        try:
            updated = self.repo.decide_absence(
                absence_id,
                expected_status=STATUS_PENDING,
                status=decision.status,
                approved_by=decision.approved_by,
            )
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not updated:
            raise HTTPException(status_code=404, detail="Absence request not found")
        logger.info("Absence %s %s by %s", absence_id, decision.status, decision.approved_by)
        return updated

    # contracts

    def list_contracts(self, client_id: str | None = None) -> list[ContractRecord]:
        return self.repo.list_contracts(client_id=client_id)

    def upsert_contract(self, payload: ContractUpsert) -> ContractRecord:
        try:
            record = self.repo.upsert_contract(
                client_id=payload.client_id,
                contract_number=payload.contract_number,
                status=payload.status,
                start_date=payload.start_date,
                end_date=payload.end_date,
                contract_id=payload.contract_id,
            )
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        logger.info("Contract %s saved for client %s (%s)", record.contract_id, record.client_id, record.status)
        return record

    def can_schedule_for_client(self, client_id: str, on_date: date | None = None) -> ValidationResult:
        try:
            contracts = self.repo.list_contracts(client_id=client_id)
        except StoreUnavailableError:
            logger.exception("Contract lookup failed for client %s", client_id)
            return ValidationResult(ok=False, reason=REASON_STORE_UNAVAILABLE)
        return ContractGate(contracts, self.today()).can_schedule_for_client(client_id, on_date)

    # booking form

    def open_draft(self, exclude_booking_id: str | None = None) -> DraftSession:
        return DraftSession(exclude_booking_id=exclude_booking_id)

    def check_candidate(self, query: CandidateQuery) -> ValidationResult:
        if not query.employee_id:
            raise HTTPException(status_code=400, detail="employee_id is required")
        try:
            snapshot = self.repo.snapshot(query.date)
        except StoreUnavailableError:
            logger.exception("Could not load schedule for %s", query.date)
            return ValidationResult(ok=False, reason=REASON_STORE_UNAVAILABLE)
        return self._checker(snapshot).check_candidate(
            query.employee_id,
            query.date,
            query.start_time,
            query.duration_minutes,
            exclude_booking_id=query.exclude_booking_id,
            client_id=query.client_id,
        )

    def list_unavailable_employees(self, query: CandidateQuery) -> set[str]:
        snapshot = self._snapshot_or_503(query.date)
        return self._checker(snapshot).list_unavailable_employees(
            query.date,
            query.start_time,
            query.duration_minutes,
            exclude_booking_id=query.exclude_booking_id,
            employee_ids=query.employee_ids,
        )

    def refresh_unavailable(
        self,
        session: DraftSession,
        token: int,
        value_date: date,
        start_time: str,
        duration_minutes: int,
    ) -> bool:
        """Recompute greyed-out employees for ``token``; ``False`` if the result went stale."""
        unavailable = self.list_unavailable_employees(
            CandidateQuery(
                date=value_date,
                start_time=start_time,
                duration_minutes=duration_minutes,
                exclude_booking_id=session.exclude_booking_id,
            )
        )
        return session.apply(token, unavailable)

    def validate_draft(self, draft: BookingDraft, exclude_booking_id: str | None = None) -> ValidationResult:
        try:
            snapshot = self.repo.snapshot(draft.date)
        except StoreUnavailableError:
            logger.exception("Could not load schedule for %s", draft.date)
            return ValidationResult(ok=False, reason=REASON_STORE_UNAVAILABLE)

        verdict = self._checker(snapshot).check_candidate(
            draft.employee_id,
            draft.date,
            draft.start_time,
            draft.duration_minutes,
            exclude_booking_id=exclude_booking_id,
            client_id=draft.client_id,
        )
        if not verdict.ok:
            return verdict
        if draft.service_type not in BILLABLE_SERVICES:
            return verdict
        return ContractGate(snapshot.contracts, self.today()).can_schedule_for_client(
            draft.client_id, draft.date
        )

    def submit_booking(self, draft: BookingDraft, session: DraftSession | None = None) -> BookingOutcome:
        if session is not None:
            session.state = DRAFT_VALIDATING
        verdict = self.validate_draft(draft)
        if not verdict.ok:
            return self._reject(verdict.reason, session)
        try:
            booking = self.repo.create_booking(
                client_id=draft.client_id,
                employee_id=draft.employee_id,
                value_date=draft.date,
                start_time=draft.start_time,
                duration_minutes=draft.duration_minutes,
                service_type=draft.service_type,
                notes=draft.notes,
            )
        except StoreUnavailableError:
            logger.exception("Could not save booking for employee %s", draft.employee_id)
            return self._reject(REASON_STORE_UNAVAILABLE, session)
        logger.info(
            "Booking %s created: employee %s, client %s, %s %s for %s min",
            booking.booking_id,
            booking.employee_id,
            booking.client_id,
            booking.date,
            booking.start_time,
            booking.duration_minutes,
        )
        return self._accept(booking, session)

    def update_booking(
        self,
        booking_id: str,
        changes: BookingUpdate,
        session: DraftSession | None = None,
    ) -> BookingOutcome:
        try:
            existing = self.repo.get_booking(booking_id)
        except StoreUnavailableError:
            logger.exception("Could not load booking %s", booking_id)
            return self._reject(REASON_STORE_UNAVAILABLE, session)
        if not existing:
            raise HTTPException(status_code=404, detail="Booking not found")
        if existing.status not in EDITABLE_BOOKING_STATUSES:
            raise HTTPException(status_code=409, detail=f"Cannot edit a {existing.status} booking")

        updates = changes.model_dump(exclude_none=True)
        current = existing.model_dump(
            include={
                "client_id",
                "employee_id",
                "date",
                "start_time",
                "duration_minutes",
                "service_type",
                "notes",
            }
        )
        try:
            draft = BookingDraft(**{**current, **updates})
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if session is not None:
            session.state = DRAFT_VALIDATING
        verdict = self.validate_draft(draft, exclude_booking_id=booking_id)
        if not verdict.ok:
            return self._reject(verdict.reason, session)
        try:
            updated = self.repo.update_booking(booking_id, updates)
        except StoreUnavailableError:
            logger.exception("Could not update booking %s", booking_id)
            return self._reject(REASON_STORE_UNAVAILABLE, session)
        if not updated:
            raise HTTPException(status_code=404, detail="Booking not found")
        logger.info("Booking %s updated: %s", booking_id, ", ".join(sorted(updates)) or "no changes")
        return self._accept(updated, session)

    def change_status(self, booking_id: str, action: str) -> BookingRecord:
        if action not in BOOKING_TRANSITIONS:
            raise HTTPException(status_code=400, detail=f"Unknown action: {action}")
        existing = self.get_booking_or_404(booking_id)
        allowed, target = BOOKING_TRANSITIONS[action]
        if existing.status not in allowed:
            raise HTTPException(
                status_code=409,
                detail=f"Cannot {action} a booking that is {existing.status}",
            )
        changes: dict[str, object] = {"status": target}
        if target == BOOKING_COMPLETED:
            changes["completed_at"] = utcnow()
        try:
            updated = self.repo.update_booking(booking_id, changes)
        except StoreUnavailableError as exc:
            logger.exception("Could not %s booking %s", action, booking_id)
            raise HTTPException(status_code=503, detail=REASON_STORE_UNAVAILABLE) from exc
        if not updated:
            raise HTTPException(status_code=404, detail="Booking not found")
        logger.info("Booking %s moved %s -> %s", booking_id, existing.status, target)
        return updated

    def get_booking_or_404(self, booking_id: str) -> BookingRecord:
        try:
            booking = self.repo.get_booking(booking_id)
        except StoreUnavailableError as exc:
            logger.exception("Could not load booking %s", booking_id)
            raise HTTPException(status_code=503, detail=REASON_STORE_UNAVAILABLE) from exc
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        return booking

    def list_bookings(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        employee_id: str | None = None,
    ) -> list[BookingRecord]:
        return self.repo.list_bookings(start_date=start_date, end_date=end_date, employee_id=employee_id)

    def _checker(self, snapshot: ScheduleSnapshot) -> ConflictChecker:
        return ConflictChecker(
            AvailabilityStore(snapshot.availability),
            AbsenceLedger(snapshot.absences),
            snapshot.bookings,
        )

    def _snapshot_or_503(self, value_date: date) -> ScheduleSnapshot:
        try:
            return self.repo.snapshot(value_date)
        except StoreUnavailableError as exc:
            logger.exception("Could not load schedule for %s", value_date)
            raise HTTPException(status_code=503, detail=REASON_STORE_UNAVAILABLE) from exc

    def _reject(self, reason: str | None, session: DraftSession | None) -> BookingOutcome:
        logger.warning("Booking rejected: %s", reason)
        if session is not None:
            session.state = DRAFT_EDITING
            session.last_reason = reason
        return BookingOutcome(
            state=DRAFT_REJECTED,
            reason=reason,
            store_error=reason == REASON_STORE_UNAVAILABLE,
        )

    def _accept(self, booking: BookingRecord, session: DraftSession | None) -> BookingOutcome:
        if session is not None:
            session.state = DRAFT_ACCEPTED
            session.last_reason = None
        return BookingOutcome(state=DRAFT_ACCEPTED, booking=booking)
