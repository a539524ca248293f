"""Business rules for an Appointment submitted to the booking API.

:class:`AppointmentValidator` runs every rule in :data:`APPOINTMENT_RULES`,
then asks the remote conformance service for its opinion, then checks the
contained Patient and DocumentReference resources. Nothing short-circuits:
the caller receives the complete list of faults and decides what to do.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple

import requests

from connector.profile_client import ProfileClientError, ProfileIssue
from connector.resources import (
    MISSING,
    NHS_NUMBER_SYSTEM,
    PROFILE_ROOT,
    Appointment,
    AppointmentStatus,
    DocumentReference,
    IdentifierUse,
    Patient,
    local_reference_id,
)

from .faults import Fault, Rule, Severity, run_rules
from .patient import NHS_NUMBER_PATTERN, PatientValidator

logger = logging.getLogger(__name__)

APPOINTMENT_PROFILE = PROFILE_ROOT + "CareConnect-Appointment-1"
ACCEPTED_LANGUAGES = ("en", "en-GB")
# Bookings created before the service went live are treated as suspect.
EARLIEST_CREATED = datetime(2018, 12, 9, tzinfo=timezone.utc)
DOCUMENT_IDENTIFIER_SYSTEM = "https://tools.ietf.org/html/rfc4122"
DOCUMENT_IDENTIFIER_MIN_LENGTH = 5
DOCUMENT_IDENTIFIER_MAX_LENGTH = 36
VALIDATOR_HINT = "use: https://data.developer.nhs.uk/ccri/term/validate"

# Remote issue severity -> (fault severity, label). "warning" ranks above "error".
REMOTE_SEVERITY_MAP: Dict[str, Tuple[Severity, str]] = {
    "error": (Severity.MAJOR, "ERROR"),
    "fatal": (Severity.CRITICAL, "FATAL"),
    "warning": (Severity.CRITICAL, "WARNING"),
}

NO_PARTICIPANT = "Appointment has no Participant (Patient!)."


class RemoteProfileValidator(Protocol):
    """Anything able to run a remote conformance check on an appointment."""

    def validate(self, appointment: Appointment) -> Sequence[ProfileIssue]:
        """Return the issues found for ``appointment``."""


def _contained_ids(appointment: Appointment) -> Set[str]:
    return {resource.id for resource in appointment.contained if resource.id}


def _check_caller_id(appointment: Appointment) -> List[Fault]:
    if appointment.id:
        return [
            Fault(
                "Appointment has an ID - if POST this is incorrect (ID will be set by server).",
                Severity.MINOR,
            )
        ]
    return []


def _check_profile(appointment: Appointment) -> List[Fault]:
    profiles = appointment.profile_uris
    if not profiles:
        return [Fault("Appointment does not declare a profile.", Severity.MAJOR)]

    faults: List[Fault] = []
    found = False
    for profile in profiles:
        if profile is None:
            faults.append(Fault("Appointment has a null profile.", Severity.MAJOR))
        elif profile == APPOINTMENT_PROFILE:
            found = True
        else:
            faults.append(Fault("Appointment has OTHER profile(s).", Severity.TRIVIAL))
    if not found:
        faults.append(Fault("Appointment does NOT have correct profile.", Severity.CRITICAL))
    return faults


def _check_language(appointment: Appointment) -> List[Fault]:
    language = appointment.language
    if language is MISSING:
        return []
    if language is None:
        return [Fault("Appointment has a language of 'null'", Severity.MAJOR)]
    if language not in ACCEPTED_LANGUAGES:
        return [Fault("Appointment language not 'en' / 'en-GB'", Severity.MAJOR)]
    return []


def _check_status(appointment: Appointment) -> List[Fault]:
    status = appointment.status
    if status is MISSING or status is None:
        return [Fault("Appointment does not have a 'Status'", Severity.MAJOR)]
    if status is not AppointmentStatus.BOOKED:
        return [Fault("Appointment must have a status of Booked", Severity.MAJOR)]
    return []


def _check_slot(appointment: Appointment) -> List[Fault]:
    slots = appointment.slot_refs
    if not slots:
        return [Fault("Appointment does not reference a Slot", Severity.CRITICAL)]
    if len(slots) > 1:
        return [Fault("Appointment references multiple Slots", Severity.MAJOR)]
    reference = slots[0]
    if reference is None:
        return [Fault("Reference value of Slot is null", Severity.MAJOR)]
    if "Slot/" not in reference:
        return [Fault("Slot reference doesn't contain 'Slot/' so invalid.", Severity.CRITICAL)]
    return []


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _check_created(appointment: Appointment) -> List[Fault]:
    created = appointment.created
    if created is MISSING:
        return [Fault("Appointment has no 'created' date", Severity.MAJOR)]
    if created is None:
        return [Fault("Appointment created date is set to null", Severity.MAJOR)]
    created = _as_utc(created)
    if created > datetime.now(timezone.utc):
        return [Fault("Appointment created date is in the future", Severity.MAJOR)]
    if created < EARLIEST_CREATED:
        return [Fault("Appointment created date appears to be in the past.", Severity.MAJOR)]
    return []


def _check_participants(appointment: Appointment) -> List[Fault]:
    participants = appointment.participants
    faults: List[Fault] = []
    if not participants:
        faults.append(Fault("Appointment has no participants, therefore no Patient?", Severity.MINOR))
    elif len(participants) > 1:
        faults.append(Fault("Appointment has multiple participants, may be confusing?", Severity.MINOR))

    for participant in participants:
        actor = participant.actor
        if actor is None:
            faults.append(Fault("Participant actor is null", Severity.MAJOR))
            continue
        identifier = actor.identifier
        if identifier is None or identifier.use is not IdentifierUse.OFFICIAL:
            faults.append(
                Fault(
                    "Appointment has a participant | actor | Identifier with Use other than OFFICIAL",
                    Severity.MAJOR,
                )
            )
        elif identifier.system != NHS_NUMBER_SYSTEM:
            faults.append(
                Fault(
                    "Appointment has a participant | actor | Identifier with System other than "
                    + NHS_NUMBER_SYSTEM,
                    Severity.MAJOR,
                )
            )
        elif not NHS_NUMBER_PATTERN.fullmatch(identifier.value or ""):
            faults.append(Fault("Participant identifier does not seem to be an NHS Number?", Severity.MAJOR))

    if not any(participant.actor_ref for participant in participants):
        faults.append(Fault(NO_PARTICIPANT, Severity.CRITICAL))
    return faults


def _check_supporting_info(appointment: Appointment) -> List[Fault]:
    references = appointment.supporting_info_refs
    if not references:
        return [
            Fault(
                "Appointment doesn't have a supportingInformation (pointing to a contained "
                "DocumentReference resource).",
                Severity.MAJOR,
            )
        ]
    if len(references) > 1:
        return [Fault("Multiple supportingInformation references, causing confusion.", Severity.MINOR)]
    if local_reference_id(references[0]) not in _contained_ids(appointment):
        return [
            Fault("SupportingInformation does not point to contained DocumentReference resource", Severity.MINOR)
        ]
    return []


def _check_patient_link(appointment: Appointment) -> List[Fault]:
    contained = _contained_ids(appointment)
    for participant in appointment.participants:
        if local_reference_id(participant.actor_ref) in contained:
            return []
    return [Fault("No linked Participant Patient in Contained resources.", Severity.MAJOR)]


def _check_document_reference(document: DocumentReference) -> List[Fault]:
    identifiers = document.identifiers
    if not identifiers:
        return [Fault("Contained DocumentReference has no Identifier (to point to CDA)", Severity.MAJOR)]
    if len(identifiers) > 1:
        return [Fault("Contained DocumentReference has multiple identifiers, risks confusion.", Severity.MINOR)]

    identifier = identifiers[0]
    faults: List[Fault] = []
    if identifier.system is None:
        faults.append(Fault("Contained DocumentReference has an identifier with no System defined.", Severity.MAJOR))
    elif identifier.system == "":
        faults.append(Fault("Contained DocumentReference has an identifier with an empty System.", Severity.MAJOR))
    elif identifier.system != DOCUMENT_IDENTIFIER_SYSTEM:
        faults.append(
            Fault(
                f"Contained DocumentReference has an Identifier with System not set to "
                f"'{DOCUMENT_IDENTIFIER_SYSTEM}'.",
                Severity.MAJOR,
            )
        )

    value = identifier.value
    if value is None:
        faults.append(Fault("Contained DocumentReference has an identifier with no Value defined.", Severity.MAJOR))
    elif value == "":
        faults.append(Fault("Contained DocumentReference has an identifier with an empty Value.", Severity.MAJOR))
    else:
        if len(value) < DOCUMENT_IDENTIFIER_MIN_LENGTH:
            faults.append(
                Fault(
                    f"Contained DocumentReference has an identifier with a short "
                    f"(< {DOCUMENT_IDENTIFIER_MIN_LENGTH}) Value.",
                    Severity.MAJOR,
                )
            )
        if len(value) > DOCUMENT_IDENTIFIER_MAX_LENGTH:
            faults.append(
                Fault(
                    f"Contained DocumentReference has an identifier with a long "
                    f"(> {DOCUMENT_IDENTIFIER_MAX_LENGTH}) Value.",
                    Severity.MAJOR,
                )
            )
    return faults


APPOINTMENT_RULES: Tuple[Rule[Appointment], ...] = (
    Rule("caller-id", _check_caller_id),
    Rule("profile", _check_profile),
    Rule("language", _check_language),
    Rule("status", _check_status),
    Rule("slot", _check_slot),
    Rule("created", _check_created),
    Rule("participants", _check_participants),
    Rule("supporting-information", _check_supporting_info),
    Rule("patient-link", _check_patient_link),
)


def remote_issue_to_fault(issue: ProfileIssue) -> Optional[Fault]:
    """Map one conformance issue onto a fault; informational issues map to None."""

    mapped = REMOTE_SEVERITY_MAP.get(issue.severity.lower())
    if mapped is None:
        return None
    severity, label = mapped
    detail = f" ({issue.detail})" if issue.detail else ""
    return Fault(f"{label} received when validating the resource{detail}, {VALIDATOR_HINT}", severity)


class AppointmentValidator:
    """Runs the full set of booking checks against an Appointment."""

    def __init__(
        self,
        profile_validator: RemoteProfileValidator,
        patient_validator: Optional[PatientValidator] = None,
        rules: Tuple[Rule[Appointment], ...] = APPOINTMENT_RULES,
    ) -> None:
        self._profile_validator = profile_validator
        self._patient_validator = patient_validator or PatientValidator()
        self._rules: Tuple[Rule[Appointment], ...] = rules + (
            Rule("remote-profile", self._check_remote_profile),
            Rule("contained", self._check_contained),
        )

    def validate(self, appointment: Appointment) -> List[Fault]:
        """Return every fault found in ``appointment`` (empty when it is clean)."""

        faults = run_rules(self._rules, appointment)
        logger.info("Appointment checked, %d fault(s) found", len(faults))
        return faults

    def _check_remote_profile(self, appointment: Appointment) -> List[Fault]:
        try:
            issues = self._profile_validator.validate(appointment)
        except (ProfileClientError, requests.RequestException, OSError) as exc:
            logger.error("Remote profile validation failed: %s", exc)
            return [
                Fault(f"Profile validation service unreachable, resource not checked remotely ({exc})", Severity.MAJOR)
            ]

        faults: List[Fault] = []
        for issue in issues:
            fault = remote_issue_to_fault(issue)
            if fault is not None:
                faults.append(fault)
        return faults

    def _check_contained(self, appointment: Appointment) -> List[Fault]:
        contained = appointment.contained
        if not contained:
            return [
                Fault("Appointment has no contained resources", Severity.CRITICAL),
                Fault("Appointment has no contained DocumentReference.", Severity.CRITICAL),
                Fault("Appointment has no contained Patient.", Severity.CRITICAL),
            ]

        faults: List[Fault] = []
        if len(contained) < 2:
            faults.append(
                Fault(
                    "Appointment expected to have 2 contained resources (Patient and DocumentReference).",
                    Severity.MAJOR,
                )
            )
        elif len(contained) > 2:
            faults.append(
                Fault(f"Appointment has more than 2 (actually {len(contained)}) contained resources?", Severity.MINOR)
            )

        has_document = False
        has_patient = False
        for resource in contained:
            if isinstance(resource, DocumentReference):
                has_document = True
                faults.extend(_check_document_reference(resource))
            elif isinstance(resource, Patient):
                has_patient = True
                faults.extend(self._patient_validator.validate(resource))
            else:
                faults.append(Fault("One of the contained resources is not of the expected types.", Severity.MAJOR))

        if not has_document:
            faults.append(Fault("Appointment has no contained DocumentReference.", Severity.CRITICAL))
        if not has_patient:
            faults.append(Fault("Appointment has no contained Patient.", Severity.CRITICAL))
        return faults


__all__ = [
    "APPOINTMENT_PROFILE",
    "APPOINTMENT_RULES",
    "AppointmentValidator",
    "REMOTE_SEVERITY_MAP",
    "RemoteProfileValidator",
    "remote_issue_to_fault",
]
