from __future__ import annotations

from datetime import date, timedelta

import pytest
from pydantic import ValidationError

from cleanops.availability import AvailabilityStore
from cleanops.models import EmployeeAvailability
from tests.conftest import MONDAY, SATURDAY, WEDNESDAY, make_availability


def test_weekday_outside_pattern_is_unavailable():
    store = AvailabilityStore([make_availability()])
    assert store.is_available("emp-1", MONDAY)
    assert not store.is_available("emp-1", SATURDAY)
    assert not store.is_available("emp-1", SATURDAY + timedelta(days=1))


def test_every_day_of_a_weekday_pattern():
    store = AvailabilityStore([make_availability(available_days={"tuesday", "thursday"})])
    week = [MONDAY + timedelta(days=offset) for offset in range(7)]
    assert [store.is_available("emp-1", day) for day in week] == [
        False,
        True,
        False,
        True,
        False,
        False,
        False,
    ]


def test_exception_blocks_a_working_day():
    store = AvailabilityStore([make_availability(exceptions={WEDNESDAY: "Dentist"})])
    assert not store.is_available("emp-1", WEDNESDAY)
    assert store.is_available("emp-1", MONDAY)


def test_monthly_override_wins_over_exception_and_pattern():
    record = make_availability(
        exceptions={WEDNESDAY: "Dentist"},
        monthly_availability={WEDNESDAY: True, SATURDAY: True, MONDAY: False},
    )
    store = AvailabilityStore([record])
    assert store.is_available("emp-1", WEDNESDAY)
    assert store.is_available("emp-1", SATURDAY)
    assert not store.is_available("emp-1", MONDAY)


def test_missing_record_defaults_to_available():
    store = AvailabilityStore([make_availability()])
    assert "emp-2" not in store
    assert store.is_available("emp-2", SATURDAY)


def test_days_accept_comma_separated_strings():
    record = EmployeeAvailability(employee_id="emp-1", available_days="Monday, friday")
    assert record.sorted_days() == ["monday", "friday"]


def test_start_must_precede_end():
    with pytest.raises(ValidationError):
        make_availability(start_time="17:00", end_time="08:00")


def test_stored_times_are_trimmed_to_minutes():
    record = make_availability(start_time="07:30:00", end_time="16:00:00")
    assert (record.start_time, record.end_time) == ("07:30", "16:00")


def test_repository_upsert_keeps_one_record_per_employee(repo):
    repo.upsert_availability(make_availability())
    repo.upsert_availability(
        make_availability(
            available_days={"saturday"},
            exceptions={date(2024, 12, 21): "Holiday"},
            monthly_availability={date(2024, 12, 28): False},
        )
    )

    records = repo.list_availability()
    assert len(records) == 1
    saved = records[0]
    assert saved.available_days == {"saturday"}
    assert saved.exceptions == {date(2024, 12, 21): "Holiday"}
    assert saved.monthly_availability == {date(2024, 12, 28): False}
    assert saved.updated_at is not None
