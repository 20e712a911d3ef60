from __future__ import annotations

from datetime import date

import pytest
from fastapi import HTTPException
from openpyxl import load_workbook

from cleanops.constants import (
    REASON_NO_CONTRACT,
    REASON_NOT_WORKING,
    REASON_OVERLAP,
    REASON_STORE_UNAVAILABLE,
    REASON_TIME_OFF,
)
from cleanops.models import (
    AbsenceCreate,
    AbsenceDecision,
    AvailabilityUpsert,
    BookingDraft,
    BookingUpdate,
    CandidateQuery,
    ContractUpsert,
)
from cleanops.repository import StoreUnavailableError
from cleanops.services import DRAFT_ACCEPTED, DRAFT_EDITING
from tests.conftest import MONDAY, SATURDAY, WEDNESDAY, overwrite_cell


@pytest.fixture()
def scheduled(service):
    service.upsert_availability(
        "emp-1",
        AvailabilityUpsert(
            available_days={"monday", "tuesday", "wednesday", "thursday", "friday"},
            start_time="08:00",
            end_time="17:00",
        ),
    )
    service.upsert_contract(ContractUpsert(client_id="client-1", contract_number="CT-0001"))
    return service


def _draft(**overrides) -> BookingDraft:
    values = {
        "client_id": "client-1",
        "employee_id": "emp-1",
        "date": MONDAY,
        "start_time": "09:00",
        "duration_minutes": 120,
        "service_type": "cleaning",
    }
    values.update(overrides)
    return BookingDraft(**values)


def test_reject_non_working_day(scheduled):
    outcome = scheduled.submit_booking(_draft(date=SATURDAY))
    assert not outcome.accepted
    assert outcome.reason == REASON_NOT_WORKING
    assert scheduled.list_bookings() == []


def test_reject_approved_time_off(scheduled):
    absence = scheduled.submit_absence(
        AbsenceCreate(
            employee_id="emp-1",
            duration_type="multi_day_off",
            start_date=date(2024, 12, 10),
            end_date=date(2024, 12, 12),
        )
    )
    assert scheduled.submit_booking(_draft(date=WEDNESDAY)).accepted

    scheduled.decide_absence(absence.absence_id, AbsenceDecision(status="approved", approved_by="admin"))
    outcome = scheduled.submit_booking(_draft(date=WEDNESDAY, start_time="14:00", duration_minutes=60))
    assert outcome.reason == REASON_TIME_OFF


def test_back_to_back_accepted_overlap_rejected(scheduled):
    assert scheduled.submit_booking(_draft()).accepted
    back_to_back = _draft(client_id="client-2", service_type="visit", start_time="11:00", duration_minutes=60)
    assert scheduled.submit_booking(back_to_back).accepted

    outcome = scheduled.submit_booking(
        _draft(client_id="client-2", service_type="visit", start_time="10:00", duration_minutes=120)
    )
    assert outcome.reason == REASON_OVERLAP
    assert len(scheduled.list_bookings(employee_id="emp-1")) == 2


def test_cleaning_without_contract_rejected_visit_allowed(scheduled):
    outcome = scheduled.submit_booking(_draft(client_id="client-9"))
    assert outcome.reason == REASON_NO_CONTRACT

    visit = scheduled.submit_booking(_draft(client_id="client-9", service_type="visit"))
    assert visit.accepted
    assert visit.booking.status == "scheduled"
    assert visit.booking.service_type == "visit"


def test_resubmitting_unchanged_booking_does_not_conflict_with_itself(scheduled):
    booking = scheduled.submit_booking(_draft()).booking
    outcome = scheduled.update_booking(booking.booking_id, BookingUpdate(notes="Bring ladder"))
    assert outcome.accepted
    assert outcome.booking.notes == "Bring ladder"
    assert outcome.booking.start_time == "09:00"


def test_moving_booking_onto_another_is_rejected(scheduled):
    first = scheduled.submit_booking(_draft()).booking
    second = scheduled.submit_booking(_draft(start_time="13:00", duration_minutes=60)).booking

    outcome = scheduled.update_booking(second.booking_id, BookingUpdate(start_time="10:00"))
    assert not outcome.accepted
    assert scheduled.get_booking_or_404(second.booking_id).start_time == "13:00"
    assert scheduled.get_booking_or_404(first.booking_id).start_time == "09:00"


def test_update_unknown_booking_is_404(scheduled):
    with pytest.raises(HTTPException) as exc:
        scheduled.update_booking("missing", BookingUpdate(notes="x"))
    assert exc.value.status_code == 404


def test_status_transitions(scheduled):
    booking = scheduled.submit_booking(_draft()).booking
    started = scheduled.change_status(booking.booking_id, "start")
    assert started.status == "in-progress"

    completed = scheduled.change_status(booking.booking_id, "complete")
    assert completed.status == "completed"
    assert completed.completed_at is not None

    with pytest.raises(HTTPException) as exc:
        scheduled.change_status(booking.booking_id, "complete")
    assert exc.value.status_code == 409

    with pytest.raises(HTTPException) as exc:
        scheduled.update_booking(booking.booking_id, BookingUpdate(notes="late edit"))
    assert exc.value.status_code == 409


def test_cancelled_booking_frees_the_slot(scheduled):
    booking = scheduled.submit_booking(_draft()).booking
    scheduled.change_status(booking.booking_id, "cancel")
    assert scheduled.submit_booking(_draft(start_time="10:00")).accepted


def test_draft_session_tracks_state_and_reason(scheduled):
    session = scheduled.open_draft()
    assert session.state == DRAFT_EDITING

    rejected = scheduled.submit_booking(_draft(date=SATURDAY), session=session)
    assert not rejected.accepted
    assert session.state == DRAFT_EDITING
    assert session.last_reason == REASON_NOT_WORKING

    accepted = scheduled.submit_booking(_draft(), session=session)
    assert accepted.accepted
    assert session.state == DRAFT_ACCEPTED
    assert session.last_reason is None


def test_stale_unavailable_result_is_discarded(scheduled):
    scheduled.submit_booking(_draft())
    session = scheduled.open_draft()

    first = session.change(MONDAY, "10:00", 60)
    second = session.change(MONDAY, "14:00", 60)
    assert second > first
    assert session.change(MONDAY, "14:00", 60) is None

    assert scheduled.refresh_unavailable(session, second, MONDAY, "14:00", 60)
    assert session.unavailable_employees == set()

    # the slower, older lookup lands last and must not win
    assert not scheduled.refresh_unavailable(session, first, MONDAY, "10:00", 60)
    assert session.unavailable_employees == set()

    third = session.change(MONDAY, "10:00", 60)
    assert scheduled.refresh_unavailable(session, third, MONDAY, "10:00", 60)
    assert session.unavailable_employees == {"emp-1"}


def test_editing_session_excludes_its_own_booking(scheduled):
    booking = scheduled.submit_booking(_draft()).booking
    session = scheduled.open_draft(exclude_booking_id=booking.booking_id)
    token = session.change(MONDAY, "09:00", 120)
    assert scheduled.refresh_unavailable(session, token, MONDAY, "09:00", 120)
    assert session.unavailable_employees == set()


def test_check_candidate_query(scheduled):
    query = CandidateQuery(employee_id="emp-1", date=SATURDAY, start_time="09:00", duration_minutes="2h")
    result = scheduled.check_candidate(query)
    assert not result.ok
    assert result.reason == REASON_NOT_WORKING


def test_unreadable_store_fails_closed(scheduled, repo):
    repo.data_file.write_bytes(b"not a workbook")

    outcome = scheduled.submit_booking(_draft())
    assert not outcome.accepted
    assert outcome.reason == REASON_STORE_UNAVAILABLE
    assert outcome.store_error

    query = CandidateQuery(employee_id="emp-1", date=MONDAY, start_time="09:00", duration_minutes=60)
    assert scheduled.check_candidate(query).reason == REASON_STORE_UNAVAILABLE

    with pytest.raises(HTTPException) as exc:
        scheduled.list_unavailable_employees(query)
    assert exc.value.status_code == 503


def test_backup_created_on_write(scheduled, repo):
    scheduled.submit_booking(_draft())
    backups = list(repo.backup_dir.glob("*.xlsx"))
    assert backups


def test_blank_employee_on_update_is_rejected(scheduled):
    booking = scheduled.submit_booking(_draft()).booking
    with pytest.raises(ValueError):
        BookingUpdate(employee_id="")

    with pytest.raises(HTTPException) as exc:
        scheduled.update_booking(booking.booking_id, BookingUpdate.model_construct(employee_id=""))
    assert exc.value.status_code == 400
    assert scheduled.get_booking_or_404(booking.booking_id).employee_id == "emp-1"


def test_malformed_booking_row_fails_closed(scheduled, repo):
    booking = scheduled.submit_booking(_draft()).booking
    overwrite_cell(repo, "bookings", "D2", "not-a-date")

    with pytest.raises(StoreUnavailableError):
        scheduled.list_bookings()

    outcome = scheduled.update_booking(booking.booking_id, BookingUpdate(notes="x"))
    assert not outcome.accepted
    assert outcome.store_error
    assert outcome.reason == REASON_STORE_UNAVAILABLE

    for call in (
        lambda: scheduled.get_booking_or_404(booking.booking_id),
        lambda: scheduled.change_status(booking.booking_id, "start"),
    ):
        with pytest.raises(HTTPException) as exc:
            call()
        assert exc.value.status_code == 503

    assert scheduled.submit_booking(_draft(start_time="14:00")).store_error


def test_status_change_write_failure_is_503(scheduled, repo, monkeypatch):
    booking = scheduled.submit_booking(_draft()).booking

    def locked(*args, **kwargs):
        raise StoreUnavailableError("Timed out waiting for lock")

    monkeypatch.setattr(repo, "update_booking", locked)
    with pytest.raises(HTTPException) as exc:
        scheduled.change_status(booking.booking_id, "start")
    assert exc.value.status_code == 503


def test_workbook_has_one_sheet_per_record_type(repo):
    wb = load_workbook(repo.data_file)
    try:
        assert wb.sheetnames == ["availability", "absences", "bookings", "contracts"]
    finally:
        wb.close()
