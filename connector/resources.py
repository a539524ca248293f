"""Resource models shared by the checkers, the slot store and the HTTP layer.

The classes mirror the parts of the CareConnect (FHIR STU3) resources that the
booking rules look at. They are deliberately plain dataclasses: parsing and
rendering FHIR JSON lives in :mod:`connector.fhir`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import ClassVar, List, Optional, Tuple, Union

PROFILE_ROOT = "https://fhir.hl7.org.uk/STU3/StructureDefinition/"
NHS_NUMBER_SYSTEM = "https://fhir.nhs.uk/Id/nhs-number"


class _Missing:
    """Marker for an element that was absent, as opposed to present but null."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"

    def __copy__(self) -> "_Missing":
        return self

    def __deepcopy__(self, memo: dict) -> "_Missing":
        return self


MISSING = _Missing()


class AppointmentStatus(str, Enum):
    PROPOSED = "proposed"
    PENDING = "pending"
    BOOKED = "booked"
    ARRIVED = "arrived"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    NOSHOW = "noshow"
    ENTERED_IN_ERROR = "entered-in-error"


class IdentifierUse(str, Enum):
    USUAL = "usual"
    OFFICIAL = "official"
    TEMP = "temp"
    SECONDARY = "secondary"


class NameUse(str, Enum):
    USUAL = "usual"
    OFFICIAL = "official"
    TEMP = "temp"
    NICKNAME = "nickname"
    ANONYMOUS = "anonymous"
    OLD = "old"
    MAIDEN = "maiden"


class ContactPointSystem(str, Enum):
    PHONE = "phone"
    FAX = "fax"
    EMAIL = "email"
    PAGER = "pager"
    URL = "url"
    SMS = "sms"
    OTHER = "other"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNKNOWN = "unknown"


class AddressUse(str, Enum):
    HOME = "home"
    WORK = "work"
    TEMP = "temp"
    OLD = "old"


class SlotStatus(str, Enum):
    FREE = "free"
    BUSY = "busy"


@dataclass
class Coding:
    system: Optional[str] = None
    code: Optional[str] = None
    display: Optional[str] = None


@dataclass
class Extension:
    """An extension whose value is a CodeableConcept."""

    url: Optional[str] = None
    codings: List[Coding] = field(default_factory=list)


@dataclass
class Identifier:
    use: Optional[IdentifierUse] = None
    system: Optional[str] = None
    value: Optional[str] = None
    extensions: List[Extension] = field(default_factory=list)


@dataclass
class Reference:
    reference: Optional[str] = None
    identifier: Optional[Identifier] = None


@dataclass
class HumanName:
    use: Optional[NameUse] = None
    family: Optional[str] = None
    given: List[Optional[str]] = field(default_factory=list)
    prefix: List[str] = field(default_factory=list)
    text: Optional[str] = None


@dataclass
class ContactPoint:
    system: Optional[ContactPointSystem] = None
    value: Optional[str] = None
    use: Optional[str] = None


@dataclass
class Address:
    use: Optional[AddressUse] = None
    lines: List[str] = field(default_factory=list)
    city: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass
class Patient:
    """A Patient carried inside an Appointment's ``contained`` list."""

    resource_type: ClassVar[str] = "Patient"

    id: Optional[str] = None
    profile_uris: List[Optional[str]] = field(default_factory=list)
    identifiers: List[Identifier] = field(default_factory=list)
    names: List[HumanName] = field(default_factory=list)
    telecoms: List[ContactPoint] = field(default_factory=list)
    gender: Optional[Gender] = None
    birth_date: Optional[date] = None
    addresses: List[Address] = field(default_factory=list)


@dataclass
class DocumentReference:
    """Contained pointer to the clinical document that goes with a booking."""

    resource_type: ClassVar[str] = "DocumentReference"

    id: Optional[str] = None
    identifiers: List[Identifier] = field(default_factory=list)


@dataclass
class ContainedResource:
    """Any other contained resource; only its type and id are kept."""

    resource_type: str
    id: Optional[str] = None


Contained = Union[Patient, DocumentReference, ContainedResource]


@dataclass
class Participant:
    actor: Optional[Reference] = None
    status: Optional[str] = None

    @property
    def actor_ref(self) -> Optional[str]:
        return self.actor.reference if self.actor else None


@dataclass
class Appointment:
    """Candidate (or stored) appointment.

    ``status``, ``language`` and ``created`` default to :data:`MISSING` so the
    checkers can tell an absent element from one explicitly set to null.
    """

    id: Optional[str] = None
    status: Union[AppointmentStatus, None, _Missing] = MISSING
    language: Union[str, None, _Missing] = MISSING
    created: Union[datetime, None, _Missing] = MISSING
    slot_refs: List[Optional[str]] = field(default_factory=list)
    participants: List[Participant] = field(default_factory=list)
    supporting_info_refs: List[Optional[str]] = field(default_factory=list)
    contained: List[Contained] = field(default_factory=list)
    profile_uris: List[Optional[str]] = field(default_factory=list)
    description: Optional[str] = None


@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    ods_code: str


@dataclass(frozen=True)
class Practitioner:
    id: str
    family: str
    given: Tuple[str, ...] = ()
    prefix: Tuple[str, ...] = ()
    sds_user_id: Optional[str] = None
    sds_role_profile_id: Optional[str] = None


@dataclass(frozen=True)
class PractitionerRole:
    id: str
    code: str
    display: str


@dataclass(frozen=True)
class Location:
    id: str
    name: str


@dataclass(frozen=True)
class HealthcareService:
    id: str
    name: str
    provider_ref: str
    location_refs: Tuple[str, ...] = ()
    local_identifier: Optional[str] = None


@dataclass(frozen=True)
class Schedule:
    id: str
    actor_refs: Tuple[str, ...] = ()
    local_identifier: Optional[str] = None


@dataclass(frozen=True)
class Slot:
    id: str
    schedule_ref: str
    start: datetime
    end: datetime
    status: SlotStatus = SlotStatus.FREE


def split_reference(reference: str) -> Tuple[Optional[str], str]:
    """Split ``Type/id`` (with or without a leading slash) into its parts.

    A bare id comes back with a type of ``None``.
    """

    parts = [part for part in reference.strip().split("/") if part]
    if not parts:
        return None, ""
    if len(parts) == 1:
        return None, parts[0]
    return parts[-2], parts[-1]


def local_reference_id(reference: Optional[str]) -> Optional[str]:
    """Return the id a ``#id`` style reference points at."""

    if reference is None:
        return None
    reference = reference.strip()
    return reference[1:] if reference.startswith("#") else reference


__all__ = [
    "Address",
    "AddressUse",
    "Appointment",
    "AppointmentStatus",
    "Coding",
    "ContactPoint",
    "ContactPointSystem",
    "Contained",
    "ContainedResource",
    "DocumentReference",
    "Extension",
    "Gender",
    "HealthcareService",
    "HumanName",
    "Identifier",
    "IdentifierUse",
    "Location",
    "MISSING",
    "NHS_NUMBER_SYSTEM",
    "NameUse",
    "Organization",
    "PROFILE_ROOT",
    "Participant",
    "Patient",
    "Practitioner",
    "PractitionerRole",
    "Reference",
    "Schedule",
    "Slot",
    "SlotStatus",
    "local_reference_id",
    "split_reference",
]
