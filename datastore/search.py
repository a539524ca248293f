"""Slot search with start-time filtering and ``_include`` expansion."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union

from connector.resources import HealthcareService, Schedule, Slot, SlotStatus, split_reference

from .slot_store import SlotStore

logger = logging.getLogger(__name__)

INCLUDE_SCHEDULE = "Slot:schedule"
INCLUDE_SERVICE = "Schedule:actor:HealthcareService"
INCLUDE_PRACTITIONER = "Schedule:actor:Practitioner"
INCLUDE_ROLE = "Schedule:actor:PractitionerRole"
INCLUDE_PROVIDER = "HealthcareService.providedBy"
INCLUDE_LOCATION = "HealthcareService.location"

SUPPORTED_INCLUDES = (
    INCLUDE_SCHEDULE,
    INCLUDE_SERVICE,
    INCLUDE_PRACTITIONER,
    INCLUDE_ROLE,
    INCLUDE_PROVIDER,
    INCLUDE_LOCATION,
)


@dataclass
class SlotSearchResult:
    slots: List[Slot] = field(default_factory=list)
    included: List[object] = field(default_factory=list)


class _Included:
    """Ordered collection of included resources, unique by (type, id)."""

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], object] = {}

    def add(self, resource: Optional[object]) -> None:
        if resource is None:
            return
        key = (type(resource).__name__, resource.id)  # type: ignore[attr-defined]
        self._items.setdefault(key, resource)

    def values(self) -> List[object]:
        return list(self._items.values())


def _in_range(slot: Slot, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and slot.start < start:
        return False
    if end is not None and slot.start > end:
        return False
    return True


def _actors(schedule: Schedule, resource_type: str) -> List[str]:
    return [ref for ref in schedule.actor_refs if split_reference(ref)[0] == resource_type]


def search_slots(
    store: SlotStore,
    service_id: str,
    status: Union[SlotStatus, str, None] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    includes: Iterable[str] = (),
) -> SlotSearchResult:
    """Find the slots of a healthcare service and the resources they point at.

    ``start`` and ``end`` are inclusive bounds on the slot start time.
    """

    slots = [slot for slot in store.list_slots_by_healthcare_service(service_id, status) if _in_range(slot, start, end)]

    wanted = set()
    for include in includes:
        if include in SUPPORTED_INCLUDES:
            wanted.add(include)
        else:
            logger.warning("Ignoring unsupported _include %s", include)

    included = _Included()
    schedules = []
    for slot in slots:
        schedule = store.get_schedule(slot.schedule_ref)
        if schedule is not None and schedule not in schedules:
            schedules.append(schedule)

    services: List[HealthcareService] = []
    for schedule in schedules:
        if INCLUDE_SCHEDULE in wanted:
            included.add(schedule)
        for ref in _actors(schedule, "HealthcareService"):
            service = store.get_healthcare_service(ref)
            if service is not None and service not in services:
                services.append(service)

    # Roles are reached through the practitioner's SDS role profile id.
    for schedule in schedules:
        for ref in _actors(schedule, "Practitioner"):
            practitioner = store.get_practitioner(ref)
            if practitioner is None:
                continue
            if INCLUDE_PRACTITIONER in wanted:
                included.add(practitioner)
            if INCLUDE_ROLE in wanted and practitioner.sds_role_profile_id:
                included.add(store.get_practitioner_role(practitioner.sds_role_profile_id))

    for service in services:
        if INCLUDE_SERVICE in wanted:
            included.add(service)
        if INCLUDE_PROVIDER in wanted:
            included.add(store.get_organization(service.provider_ref))
        if INCLUDE_LOCATION in wanted:
            for ref in service.location_refs:
                included.add(store.get_location(ref))

    result = SlotSearchResult(slots=slots, included=included.values())
    logger.debug("Slot search for %s matched %d slot(s)", service_id, len(result.slots))
    return result


__all__ = ["SUPPORTED_INCLUDES", "SlotSearchResult", "search_slots"]
