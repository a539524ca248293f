"""Seed reference data for the demonstration booking provider.

Every builder returns freshly constructed (immutable) resources, so calling
them twice yields equal catalogs. Slot times are relative to ``today``.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Callable, List

from connector.resources import (
    HealthcareService,
    Location,
    Organization,
    Practitioner,
    PractitionerRole,
    Schedule,
    Slot,
    SlotStatus,
)

ORGANIZATION_ID = "A91545"
PRACTITIONER_ID = "ABCD123456"
ROLE_CODE = "R0260"
SERVICE_ONE_ID = "918999198999"
SERVICE_TWO_ID = "118111118111"

SLOTS_PER_SCHEDULE = 20
SLOT_LENGTH = timedelta(minutes=15)
FIRST_SLOT_TIME = time(9, 0)


def make_organizations() -> List[Organization]:
    return [Organization(id=ORGANIZATION_ID, name="Our Provider Organisation", ods_code=ORGANIZATION_ID)]


def make_practitioners() -> List[Practitioner]:
    return [
        Practitioner(
            id=PRACTITIONER_ID,
            family="Webber",
            given=("Libbie",),
            prefix=("Dr",),
            sds_user_id=PRACTITIONER_ID,
            sds_role_profile_id=ROLE_CODE,
        )
    ]


def make_practitioner_roles() -> List[PractitionerRole]:
    return [PractitionerRole(id=ROLE_CODE, code=ROLE_CODE, display="General Medical Practitioner")]


def make_locations() -> List[Location]:
    return [Location(id="loc1111", name="Location One"), Location(id="loc2222", name="Location Two")]


def make_healthcare_services() -> List[HealthcareService]:
    provider = f"Organization/{ORGANIZATION_ID}"
    return [
        HealthcareService(
            id=SERVICE_ONE_ID,
            name="Service One",
            provider_ref=provider,
            location_refs=("Location/loc1111",),
            local_identifier="357",
        ),
        HealthcareService(
            id=SERVICE_TWO_ID,
            name="Service Two",
            provider_ref=provider,
            location_refs=("Location/loc2222",),
            local_identifier="457",
        ),
    ]


def make_schedules() -> List[Schedule]:
    practitioner = f"Practitioner/{PRACTITIONER_ID}"
    return [
        Schedule(
            id="sched1111",
            actor_refs=(f"HealthcareService/{SERVICE_ONE_ID}", practitioner),
            local_identifier="1015432",
        ),
        Schedule(
            id="sched2222",
            actor_refs=(f"HealthcareService/{SERVICE_TWO_ID}", practitioner),
            local_identifier="6543189",
        ),
    ]


def _slot_run(schedule_id: str, first_number: int, day: date) -> List[Slot]:
    start = datetime.combine(day, FIRST_SLOT_TIME)
    slots = []
    for offset in range(SLOTS_PER_SCHEDULE):
        slot_start = start + offset * SLOT_LENGTH
        slots.append(
            Slot(
                id=f"slot{first_number + offset:03d}",
                schedule_ref=f"Schedule/{schedule_id}",
                start=slot_start,
                end=slot_start + SLOT_LENGTH,
                status=SlotStatus.FREE,
            )
        )
    return slots


def make_slots(today: Callable[[], date] = date.today) -> List[Slot]:
    """Twenty free 15 minute slots per schedule, from 09:00 tomorrow (local time)."""

    tomorrow = today() + timedelta(days=1)
    return _slot_run("sched1111", 1, tomorrow) + _slot_run("sched2222", 51, tomorrow)


__all__ = [
    "ORGANIZATION_ID",
    "PRACTITIONER_ID",
    "SERVICE_ONE_ID",
    "SERVICE_TWO_ID",
    "make_healthcare_services",
    "make_locations",
    "make_organizations",
    "make_practitioner_roles",
    "make_practitioners",
    "make_schedules",
    "make_slots",
]
