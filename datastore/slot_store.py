"""In-memory store for the booking catalog, slots and booked appointments."""
from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from connector.fhir import resource_to_fhir
from connector.resources import (
    Appointment,
    HealthcareService,
    Location,
    Organization,
    Practitioner,
    PractitionerRole,
    Schedule,
    Slot,
    SlotStatus,
    split_reference,
)

from . import catalog

logger = logging.getLogger(__name__)

R = TypeVar("R")


class StoreError(str, Enum):
    """Why a booking could not be made."""

    NOT_FOUND = "not-found"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class BookingOutcome:
    appointment_id: Optional[str] = None
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.appointment_id is not None


def coerce_slot_status(status: Union[SlotStatus, str, None]) -> Optional[SlotStatus]:
    """Accept a :class:`SlotStatus` or its code; anything else is a caller error."""

    if status is None or isinstance(status, SlotStatus):
        return status
    if isinstance(status, str):
        try:
            return SlotStatus(status.strip().lower())
        except ValueError:
            pass
    raise ValueError(f"Unknown slot status: {status!r}")


def _resolve_id(reference: str, resource_type: str) -> Optional[str]:
    ref_type, ref_id = split_reference(reference or "")
    if ref_type is not None and ref_type != resource_type:
        return None
    return ref_id or None


class SlotStore:
    """Owns the reference catalog and the Free -> Busy lifecycle of slots.

    A single lock guards every read and write, so a booking is never seen half
    applied. Returned appointments are copies; slots are immutable snapshots.
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today
        self._lock = threading.Lock()
        self._organizations: Dict[str, Organization] = {}
        self._practitioners: Dict[str, Practitioner] = {}
        self._roles: Dict[str, PractitionerRole] = {}
        self._locations: Dict[str, Location] = {}
        self._services: Dict[str, HealthcareService] = {}
        self._schedules: Dict[str, Schedule] = {}
        self._slots: Dict[str, Slot] = {}
        self._appointments: Dict[str, Appointment] = {}
        self.initialize()

    def initialize(self) -> None:
        """(Re)load the seed catalog and drop every stored appointment."""

        with self._lock:
            self._organizations = {item.id: item for item in catalog.make_organizations()}
            self._practitioners = {item.id: item for item in catalog.make_practitioners()}
            self._roles = {item.id: item for item in catalog.make_practitioner_roles()}
            self._locations = {item.id: item for item in catalog.make_locations()}
            self._services = {item.id: item for item in catalog.make_healthcare_services()}
            self._schedules = {item.id: item for item in catalog.make_schedules()}
            self._slots = {item.id: item for item in catalog.make_slots(self._today)}
            self._appointments = {}
        logger.info(
            "Store initialised with %d schedules and %d slots",
            len(self._schedules),
            len(self._slots),
        )

    def reset(self) -> None:
        logger.info("Resetting store")
        self.initialize()

    def _find_slot(self, reference: str) -> Optional[Slot]:
        slot_id = _resolve_id(reference, "Slot")
        return self._slots.get(slot_id) if slot_id else None

    def find_slot(self, reference: str) -> Optional[Slot]:
        """Look up a slot by ``slot003``, ``Slot/slot003`` or ``/Slot/slot003``."""

        with self._lock:
            return self._find_slot(reference)

    def list_slots(self, status: Union[SlotStatus, str, None] = None) -> List[Slot]:
        wanted = coerce_slot_status(status)
        with self._lock:
            return [slot for slot in self._slots.values() if wanted is None or slot.status is wanted]

    def list_free_slots(self) -> List[Slot]:
        return self.list_slots(SlotStatus.FREE)

    def list_slots_by_healthcare_service(
        self, service_id: str, status: Union[SlotStatus, str, None] = None
    ) -> List[Slot]:
        """Slots on every schedule whose actors include the given service."""

        wanted = coerce_slot_status(status)
        with self._lock:
            schedule_ids = {
                schedule.id
                for schedule in self._schedules.values()
                if any(split_reference(actor) == ("HealthcareService", service_id) for actor in schedule.actor_refs)
            }
            return [
                slot
                for slot in self._slots.values()
                if split_reference(slot.schedule_ref)[1] in schedule_ids
                and (wanted is None or slot.status is wanted)
            ]

    def book_slot(self, slot_reference: str, appointment: Appointment) -> BookingOutcome:
        """Atomically mark the slot Busy and store a copy of ``appointment``.

        The stored copy carries a newly generated id; the caller's object is
        left untouched.
        """

        with self._lock:
            slot = self._find_slot(slot_reference)
            if slot is None:
                logger.warning("Booking failed, slot %s not found", slot_reference)
                return BookingOutcome(error=StoreError.NOT_FOUND)
            if slot.status is not SlotStatus.FREE:
                logger.warning("Booking failed, slot %s is already busy", slot.id)
                return BookingOutcome(error=StoreError.CONFLICT)

            appointment_id = str(uuid.uuid4())
            stored = copy.deepcopy(appointment)
            stored.id = appointment_id
            self._slots[slot.id] = replace(slot, status=SlotStatus.BUSY)
            self._appointments[appointment_id] = stored

        logger.info("Booked slot %s as Appointment/%s", slot.id, appointment_id)
        return BookingOutcome(appointment_id=appointment_id)

    def get_appointment(self, reference: str) -> Optional[Appointment]:
        appointment_id = _resolve_id(reference, "Appointment")
        with self._lock:
            stored = self._appointments.get(appointment_id) if appointment_id else None
            return copy.deepcopy(stored) if stored is not None else None

    def list_appointments(self) -> List[Appointment]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._appointments.values()]

    def appointment_count(self) -> int:
        with self._lock:
            return len(self._appointments)

    def _get(self, table: Dict[str, R], reference: str, resource_type: str) -> Optional[R]:
        resource_id = _resolve_id(reference, resource_type)
        with self._lock:
            return table.get(resource_id) if resource_id else None

    def get_schedule(self, reference: str) -> Optional[Schedule]:
        return self._get(self._schedules, reference, "Schedule")

    def get_healthcare_service(self, reference: str) -> Optional[HealthcareService]:
        return self._get(self._services, reference, "HealthcareService")

    def get_practitioner(self, reference: str) -> Optional[Practitioner]:
        return self._get(self._practitioners, reference, "Practitioner")

    def get_practitioner_role(self, reference: str) -> Optional[PractitionerRole]:
        return self._get(self._roles, reference, "PractitionerRole")

    def get_organization(self, reference: str) -> Optional[Organization]:
        return self._get(self._organizations, reference, "Organization")

    def get_location(self, reference: str) -> Optional[Location]:
        return self._get(self._locations, reference, "Location")

    def catalog_snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """FHIR JSON of every catalog resource and slot, keyed by resource type."""

        with self._lock:
            tables = {
                "Organization": list(self._organizations.values()),
                "Practitioner": list(self._practitioners.values()),
                "PractitionerRole": list(self._roles.values()),
                "Location": list(self._locations.values()),
                "HealthcareService": list(self._services.values()),
                "Schedule": list(self._schedules.values()),
                "Slot": list(self._slots.values()),
            }
        return {name: [resource_to_fhir(item) for item in items] for name, items in tables.items()}


__all__ = ["BookingOutcome", "SlotStore", "StoreError", "coerce_slot_status"]
