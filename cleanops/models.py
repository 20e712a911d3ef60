from __future__ import annotations

from datetime import date as DateType, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from cleanops.constants import WEEKDAYS
from cleanops.domain import normalize_time, parse_duration_minutes, time_to_minutes

DayOfWeek = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
AbsenceStatus = Literal["pending", "approved", "rejected"]
AbsenceDecisionStatus = Literal["approved", "rejected"]
DurationType = Literal["day_off", "multi_day_off", "non_consecutive_days", "full_month_block"]
BookingStatus = Literal["scheduled", "in-progress", "completed", "cancelled"]
ServiceType = Literal["cleaning", "visit"]
ContractStatus = Literal["active", "expired", "cancelled", "draft"]
BookingAction = Literal["start", "complete", "cancel"]


class _TimeOfDayMixin(BaseModel):
    @field_validator("start_time", "end_time", mode="before", check_fields=False)
    @classmethod
    def _normalize_time(cls, value: object) -> object:
        if value is None:
            return value
        return normalize_time(str(value))


class EmployeeAvailability(_TimeOfDayMixin):
    employee_id: str
    available_days: set[DayOfWeek] = Field(default_factory=set)
    start_time: str = "08:00"
    end_time: str = "17:00"
    exceptions: dict[DateType, str] = Field(default_factory=dict)
    monthly_availability: dict[DateType, bool] = Field(default_factory=dict)
    updated_at: datetime | None = None

    @field_validator("available_days", mode="before")
    @classmethod
    def _lower_days(cls, value: object) -> object:
        if isinstance(value, str):
            value = [item for item in value.split(",") if item.strip()]
        if isinstance(value, (list, set, tuple)):
            return {str(item).strip().lower() for item in value}
        return value

    @model_validator(mode="after")
    def _check_window(self) -> "EmployeeAvailability":
        if time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError("start_time must be before end_time")
        return self

    def sorted_days(self) -> list[str]:
        return [day for day in WEEKDAYS if day in self.available_days]


class AvailabilityUpsert(_TimeOfDayMixin):
    available_days: set[DayOfWeek] = Field(default_factory=set)
    start_time: str = "08:00"
    end_time: str = "17:00"
    exceptions: dict[DateType, str] = Field(default_factory=dict)
    monthly_availability: dict[DateType, bool] = Field(default_factory=dict)


class AbsenceRecord(BaseModel):
    absence_id: str
    employee_id: str
    start_date: DateType
    end_date: DateType
    reason: str = ""
    duration_type: DurationType = "multi_day_off"
    selected_dates: list[DateType] = Field(default_factory=list)
    status: AbsenceStatus = "pending"
    created_at: datetime
    approved_at: datetime | None = None
    approved_by: str | None = None


class AbsenceCreate(BaseModel):
    employee_id: str = Field(min_length=1)
    duration_type: DurationType = "day_off"
    start_date: DateType | None = None
    end_date: DateType | None = None
    selected_dates: list[DateType] = Field(default_factory=list)
    reason: str = ""


class AbsenceDecision(BaseModel):
    status: AbsenceDecisionStatus
    approved_by: str | None = None


class BookingRecord(_TimeOfDayMixin):
    booking_id: str
    client_id: str
    employee_id: str
    date: DateType
    start_time: str
    duration_minutes: int
    status: BookingStatus = "scheduled"
    service_type: ServiceType = "cleaning"
    notes: str = ""
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class BookingDraft(_TimeOfDayMixin):
    """Booking form contents; presence of every field is checked here."""

    client_id: str = Field(min_length=1)
    employee_id: str = Field(min_length=1)
    date: DateType
    start_time: str
    duration_minutes: int
    service_type: ServiceType = "cleaning"
    notes: str = ""

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _parse_duration(cls, value: object) -> int:
        return parse_duration_minutes(value)


class BookingUpdate(_TimeOfDayMixin):
    client_id: str | None = Field(default=None, min_length=1)
    employee_id: str | None = Field(default=None, min_length=1)
    date: DateType | None = None
    start_time: str | None = None
    duration_minutes: int | None = None
    service_type: ServiceType | None = None
    notes: str | None = None

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _parse_duration(cls, value: object) -> int | None:
        if value is None:
            return None
        return parse_duration_minutes(value)


class CandidateQuery(_TimeOfDayMixin):
    employee_id: str | None = None
    client_id: str | None = None
    date: DateType
    start_time: str
    duration_minutes: int
    exclude_booking_id: str | None = None
    employee_ids: list[str] | None = None

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _parse_duration(cls, value: object) -> int:
        return parse_duration_minutes(value)


class ContractRecord(BaseModel):
    contract_id: str
    client_id: str
    contract_number: str
    status: ContractStatus = "active"
    start_date: DateType | None = None
    end_date: DateType | None = None
    created_at: datetime


class ContractUpsert(BaseModel):
    contract_id: str | None = None
    client_id: str = Field(min_length=1)
    contract_number: str = Field(min_length=1)
    status: ContractStatus = "active"
    start_date: DateType | None = None
    end_date: DateType | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "ContractUpsert":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ValidationResult(BaseModel):
    ok: bool
    reason: str | None = None


class AvailabilityCheck(BaseModel):
    employee_id: str
    date: DateType
    available: bool
    blocked: bool


class UnavailableEmployees(BaseModel):
    date: DateType
    employee_ids: list[str]
