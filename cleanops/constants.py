from __future__ import annotations

WEEKDAYS = [
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
]  # index matches date.weekday()

# An employee without an availability record can be booked on any day.
DEFAULT_OPEN_AVAILABILITY = True

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
ABSENCE_STATUSES = {STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED}

DURATION_DAY_OFF = "day_off"
DURATION_MULTI_DAY = "multi_day_off"
DURATION_NON_CONSECUTIVE = "non_consecutive_days"
DURATION_FULL_MONTH = "full_month_block"

BOOKING_SCHEDULED = "scheduled"
BOOKING_IN_PROGRESS = "in-progress"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"
EDITABLE_BOOKING_STATUSES = {BOOKING_SCHEDULED, BOOKING_IN_PROGRESS}

SERVICE_CLEANING = "cleaning"
SERVICE_VISIT = "visit"
BILLABLE_SERVICES = {SERVICE_CLEANING}

CONTRACT_ACTIVE = "active"

# action -> (allowed source statuses, target status)
BOOKING_TRANSITIONS = {
    "start": ({BOOKING_SCHEDULED}, BOOKING_IN_PROGRESS),
    "complete": ({BOOKING_SCHEDULED, BOOKING_IN_PROGRESS}, BOOKING_COMPLETED),
    "cancel": ({BOOKING_SCHEDULED, BOOKING_IN_PROGRESS}, BOOKING_CANCELLED),
}

REASON_TIME_OFF = "Employee has approved time off on this date."
REASON_NOT_WORKING = "Employee is not scheduled to work this day."
REASON_OVERLAP = "Booking overlaps with an existing booking for this employee."
REASON_DUPLICATE = (
    REASON_OVERLAP + " A booking already exists for this client with this employee at this time."
)
REASON_NO_CONTRACT = (
    "Client has no active contract. Create a contract before scheduling cleanings."
)
REASON_CONTRACT_EXPIRED = (
    "This client's contract has expired. Renew the contract before scheduling new jobs."
)
REASON_STORE_UNAVAILABLE = "Could not validate the booking right now. Please try again."

AVAILABILITY_HEADERS = [
    "employee_id",
    "available_days",
    "start_time",
    "end_time",
    "exceptions",
    "monthly_availability",
    "updated_at",
]
ABSENCES_HEADERS = [
    "absence_id",
    "employee_id",
    "start_date",
    "end_date",
    "reason",
    "duration_type",
    "selected_dates",
    "status",
    "created_at",
    "approved_at",
    "approved_by",
]
BOOKINGS_HEADERS = [
    "booking_id",
    "client_id",
    "employee_id",
    "date",
    "start_time",
    "duration_minutes",
    "status",
    "service_type",
    "notes",
    "created_at",
    "updated_at",
    "completed_at",
]
CONTRACTS_HEADERS = [
    "contract_id",
    "client_id",
    "contract_number",
    "status",
    "start_date",
    "end_date",
    "created_at",
]
