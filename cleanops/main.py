from __future__ import annotations

from datetime import date

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from cleanops.config import configure_logging
from cleanops.constants import REASON_STORE_UNAVAILABLE
from cleanops.deps import repo, service
from cleanops.models import (
    AbsenceCreate,
    AbsenceDecision,
    AbsenceRecord,
    AvailabilityCheck,
    AvailabilityUpsert,
    BookingAction,
    BookingDraft,
    BookingRecord,
    BookingUpdate,
    CandidateQuery,
    ContractRecord,
    ContractUpsert,
    EmployeeAvailability,
    UnavailableEmployees,
    ValidationResult,
)
from cleanops.repository import StoreUnavailableError
from cleanops.services import BookingOutcome

app = FastAPI(title="CleanOps Scheduling API", version="0.1.0")


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    repo.init_storage()


@app.exception_handler(StoreUnavailableError)
def store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": REASON_STORE_UNAVAILABLE})


def _booking_or_error(outcome: BookingOutcome) -> BookingRecord:
    if outcome.accepted and outcome.booking is not None:
        return outcome.booking
    status_code = 503 if outcome.store_error else 409
    raise HTTPException(status_code=status_code, detail=outcome.reason)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/availability", response_model=list[EmployeeAvailability])
def list_availability() -> list[EmployeeAvailability]:
    return service.list_availability()


@app.get("/api/availability/{employee_id}", response_model=EmployeeAvailability)
def get_availability(employee_id: str) -> EmployeeAvailability:
    return service.get_availability_or_404(employee_id)


@app.put("/api/availability/{employee_id}", response_model=EmployeeAvailability)
def put_availability(employee_id: str, payload: AvailabilityUpsert) -> EmployeeAvailability:
    return service.upsert_availability(employee_id, payload)


@app.delete("/api/availability/{employee_id}")
def delete_availability(employee_id: str) -> dict[str, str]:
    service.delete_availability(employee_id)
    return {"status": "ok"}


@app.get("/api/availability/{employee_id}/check", response_model=AvailabilityCheck)
def check_availability(employee_id: str, value_date: date = Query(alias="date")) -> AvailabilityCheck:
    return service.check_employee_day(employee_id, value_date)


@app.post("/api/absences", response_model=AbsenceRecord)
def submit_absence(payload: AbsenceCreate) -> AbsenceRecord:
    return service.submit_absence(payload)


@app.get("/api/absences", response_model=list[AbsenceRecord])
def list_absences(
    employee_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
) -> list[AbsenceRecord]:
    return service.list_absences(employee_id=employee_id, status=status)


@app.post("/api/absences/{absence_id}/decision", response_model=AbsenceRecord)
def decide_absence(absence_id: str, payload: AbsenceDecision) -> AbsenceRecord:
    return service.decide_absence(absence_id, payload)


@app.put("/api/contracts", response_model=ContractRecord)
def put_contract(payload: ContractUpsert) -> ContractRecord:
    return service.upsert_contract(payload)


@app.get("/api/contracts", response_model=list[ContractRecord])
def list_contracts(client_id: str | None = Query(default=None)) -> list[ContractRecord]:
    return service.list_contracts(client_id=client_id)


@app.get("/api/contracts/eligibility/{client_id}", response_model=ValidationResult)
def contract_eligibility(
    client_id: str,
    value_date: date | None = Query(default=None, alias="date"),
) -> ValidationResult:
    return service.can_schedule_for_client(client_id, value_date)


@app.post("/api/bookings/check", response_model=ValidationResult)
def check_booking(payload: CandidateQuery) -> ValidationResult:
    return service.check_candidate(payload)


@app.post("/api/bookings/unavailable", response_model=UnavailableEmployees)
def unavailable_employees(payload: CandidateQuery) -> UnavailableEmployees:
    employee_ids = service.list_unavailable_employees(payload)
    return UnavailableEmployees(date=payload.date, employee_ids=sorted(employee_ids))


@app.get("/api/bookings", response_model=list[BookingRecord])
def list_bookings(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    employee_id: str | None = Query(default=None),
) -> list[BookingRecord]:
    return service.list_bookings(start_date=start_date, end_date=end_date, employee_id=employee_id)


@app.post("/api/bookings", response_model=BookingRecord)
def create_booking(payload: BookingDraft) -> BookingRecord:
    return _booking_or_error(service.submit_booking(payload))


@app.patch("/api/bookings/{booking_id}", response_model=BookingRecord)
def patch_booking(booking_id: str, payload: BookingUpdate) -> BookingRecord:
    return _booking_or_error(service.update_booking(booking_id, payload))


@app.post("/api/bookings/{booking_id}/{action}", response_model=BookingRecord)
def booking_action(booking_id: str, action: BookingAction) -> BookingRecord:
    return service.change_status(booking_id, action)
