"""Resource models, FHIR JSON mapping and the remote conformance client."""

from .fhir import FhirParseError, appointment_from_fhir, appointment_to_fhir, resource_to_fhir
from .profile_client import (
    OfflineProfileValidator,
    ProfileClientError,
    ProfileIssue,
    ProfileServiceError,
    RemoteProfileClient,
)
from .resources import MISSING, Appointment, Patient, Slot, SlotStatus

__all__ = [
    "Appointment",
    "FhirParseError",
    "MISSING",
    "OfflineProfileValidator",
    "Patient",
    "ProfileClientError",
    "ProfileIssue",
    "ProfileServiceError",
    "RemoteProfileClient",
    "Slot",
    "SlotStatus",
    "appointment_from_fhir",
    "appointment_to_fhir",
    "resource_to_fhir",
]
