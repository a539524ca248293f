"""Booking workflow: validate an appointment, apply the policy, then book."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from checkers.appointment import AppointmentValidator
from checkers.faults import Fault, Severity, has_severity
from connector.profile_client import OfflineProfileValidator, RemoteProfileClient
from connector.resources import Appointment
from datastore.slot_store import SlotStore, StoreError

logger = logging.getLogger(__name__)


def _env_severity(name: str, default: Severity) -> Severity:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return Severity.parse(raw)
    except ValueError:
        logger.error("Invalid %s=%r, using default %s", name, raw, default.name)
        return default


DEFAULT_REJECT_SEVERITY = _env_severity("BOOKING_REJECT_SEVERITY", Severity.CRITICAL)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class BookingStatus(str, Enum):
    BOOKED = "booked"
    REJECTED = "rejected"
    NOT_FOUND = "not-found"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class BookingResult:
    """Outcome of :meth:`BookingWorkflow.book`."""

    status: BookingStatus
    appointment_id: Optional[str] = None
    faults: List[Fault] = field(default_factory=list)

    @property
    def booked(self) -> bool:
        return self.status is BookingStatus.BOOKED


_STORE_ERRORS = {
    StoreError.NOT_FOUND: BookingStatus.NOT_FOUND,
    StoreError.CONFLICT: BookingStatus.CONFLICT,
}


def build_default_validator(remote_enabled: Optional[bool] = None) -> AppointmentValidator:
    """Validator wired to the remote conformance service unless switched off."""

    if remote_enabled is None:
        remote_enabled = _env_flag("PROFILE_VALIDATION_ENABLED", "true")
    if remote_enabled:
        return AppointmentValidator(RemoteProfileClient())
    logger.info("Remote profile validation disabled")
    return AppointmentValidator(OfflineProfileValidator())


class BookingWorkflow:
    """Couples the appointment checks to the slot store.

    Any fault at or above ``reject_at`` blocks the booking and leaves the
    store untouched. Lesser faults are returned with a successful booking.
    """

    def __init__(
        self,
        store: SlotStore,
        validator: AppointmentValidator,
        reject_at: Severity = DEFAULT_REJECT_SEVERITY,
    ) -> None:
        self._store = store
        self._validator = validator
        self.reject_at = reject_at

    @property
    def store(self) -> SlotStore:
        return self._store

    def validate(self, appointment: Appointment) -> List[Fault]:
        return self._validator.validate(appointment)

    def book(self, appointment: Appointment) -> BookingResult:
        faults = self.validate(appointment)
        if has_severity(faults, self.reject_at):
            logger.warning(
                "Booking rejected with %d fault(s) at or above %s",
                sum(1 for fault in faults if fault.severity >= self.reject_at),
                self.reject_at.name,
            )
            return BookingResult(status=BookingStatus.REJECTED, faults=faults)

        slot_reference = next((ref for ref in appointment.slot_refs if ref), None)
        if slot_reference is None:
            return BookingResult(status=BookingStatus.NOT_FOUND, faults=faults)

        outcome = self._store.book_slot(slot_reference, appointment)
        if not outcome.ok:
            return BookingResult(status=_STORE_ERRORS[outcome.error], faults=faults)
        return BookingResult(status=BookingStatus.BOOKED, appointment_id=outcome.appointment_id, faults=faults)


__all__ = ["BookingResult", "BookingStatus", "BookingWorkflow", "build_default_validator"]
