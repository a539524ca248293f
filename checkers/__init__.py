"""Business-rule checkers for booking requests."""

from .appointment import AppointmentValidator, RemoteProfileValidator
from .faults import Fault, Severity, has_severity, highest_severity
from .patient import PatientValidator

__all__ = [
    "AppointmentValidator",
    "Fault",
    "PatientValidator",
    "RemoteProfileValidator",
    "Severity",
    "has_severity",
    "highest_severity",
]
