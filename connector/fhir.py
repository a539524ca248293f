"""Conversion between FHIR STU3 JSON and the resource dataclasses.

Parsing is lenient about content (bad values are left for the checkers to
report) but strict about structure: anything that cannot be represented at
all raises :class:`FhirParseError`.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar, Union

from .resources import (
    MISSING,
    PROFILE_ROOT,
    Address,
    AddressUse,
    Appointment,
    AppointmentStatus,
    Coding,
    ContactPoint,
    ContactPointSystem,
    Contained,
    ContainedResource,
    DocumentReference,
    Extension,
    Gender,
    HealthcareService,
    HumanName,
    Identifier,
    IdentifierUse,
    Location,
    NameUse,
    Organization,
    Participant,
    Patient,
    Practitioner,
    PractitionerRole,
    Reference,
    Schedule,
    Slot,
)

logger = logging.getLogger(__name__)

ODS_ORGANIZATION_SYSTEM = "https://fhir.nhs.uk/Id/ods-organization-code"
SDS_USER_SYSTEM = "https://fhir.nhs.uk/Id/sds-user-id"
SDS_ROLE_PROFILE_SYSTEM = "https://fhir.nhs.uk/Id/sds-role-profile-id"
JOB_ROLE_SYSTEM = "https://fhir.hl7.org.uk/STU3/CodeSystem/CareConnect-SDSJobRoleName-1"
SERVICE_IDENTIFIER_SYSTEM = "https://system.supplier.co.uk/My/Services"
SCHEDULE_IDENTIFIER_SYSTEM = "https://system.supplier.co.uk/MyDiary/Numbering"

E = TypeVar("E", bound=Enum)
JsonDict = Dict[str, Any]
CatalogResource = Union[Organization, Practitioner, PractitionerRole, Location, HealthcareService, Schedule, Slot]


class FhirParseError(ValueError):
    """Raised when a payload cannot be mapped onto the resource model."""


def _profile(name: str) -> JsonDict:
    return {"profile": [PROFILE_ROOT + name]}


def _require_dict(value: Any, what: str) -> JsonDict:
    if not isinstance(value, dict):
        raise FhirParseError(f"{what} must be a JSON object")
    return value


def _list(data: JsonDict, key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise FhirParseError(f"'{key}' must be a JSON array")
    return value


def _string(data: JsonDict, key: str, what: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise FhirParseError(f"{what}.{key} must be a string, got {value!r}")
    return value


def _strings(data: JsonDict, key: str, what: str) -> List[Optional[str]]:
    values = _list(data, key)
    for value in values:
        if value is not None and not isinstance(value, str):
            raise FhirParseError(f"{what}.{key} items must be strings, got {value!r}")
    return list(values)


def _enum(enum_cls: Type[E], value: Any, what: str) -> Optional[E]:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise FhirParseError(f"Unknown {what} code: {value!r}") from exc


def _parse_datetime(value: Any) -> datetime:
    if not isinstance(value, str):
        raise FhirParseError(f"Expected a dateTime string, got {value!r}")
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise FhirParseError(f"Invalid dateTime: {value!r}") from exc


def _parse_date(value: Any) -> date:
    if not isinstance(value, str):
        raise FhirParseError(f"Expected a date string, got {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise FhirParseError(f"Invalid date: {value!r}") from exc


def _profiles(data: JsonDict) -> List[Optional[str]]:
    meta = data.get("meta")
    if not isinstance(meta, dict):
        return []
    return _strings(meta, "profile", "meta")


def _reference_value(entry: Any) -> Optional[str]:
    if entry is None:
        return None
    return _string(_require_dict(entry, "Reference"), "reference", "Reference")


def _coding_from_fhir(data: Any) -> Coding:
    data = _require_dict(data, "Coding")
    return Coding(
        system=_string(data, "system", "Coding"),
        code=_string(data, "code", "Coding"),
        display=_string(data, "display", "Coding"),
    )


def _extension_from_fhir(data: Any) -> Extension:
    data = _require_dict(data, "Extension")
    concept = data.get("valueCodeableConcept") or {}
    codings = [_coding_from_fhir(item) for item in _list(_require_dict(concept, "CodeableConcept"), "coding")]
    return Extension(url=_string(data, "url", "Extension"), codings=codings)


def _identifier_from_fhir(data: Any) -> Identifier:
    data = _require_dict(data, "Identifier")
    return Identifier(
        use=_enum(IdentifierUse, data.get("use"), "identifier use"),
        system=_string(data, "system", "Identifier"),
        value=_string(data, "value", "Identifier"),
        extensions=[_extension_from_fhir(item) for item in _list(data, "extension")],
    )


def _name_from_fhir(data: Any) -> HumanName:
    data = _require_dict(data, "HumanName")
    return HumanName(
        use=_enum(NameUse, data.get("use"), "name use"),
        family=_string(data, "family", "HumanName"),
        given=_strings(data, "given", "HumanName"),
        prefix=_strings(data, "prefix", "HumanName"),
        text=_string(data, "text", "HumanName"),
    )


def _telecom_from_fhir(data: Any) -> ContactPoint:
    data = _require_dict(data, "ContactPoint")
    return ContactPoint(
        system=_enum(ContactPointSystem, data.get("system"), "contact system"),
        value=_string(data, "value", "ContactPoint"),
        use=_string(data, "use", "ContactPoint"),
    )


def _address_from_fhir(data: Any) -> Address:
    data = _require_dict(data, "Address")
    return Address(
        use=_enum(AddressUse, data.get("use"), "address use"),
        lines=_strings(data, "line", "Address"),
        city=_string(data, "city", "Address"),
        postal_code=_string(data, "postalCode", "Address"),
    )


def patient_from_fhir(data: Any) -> Patient:
    data = _require_dict(data, "Patient")
    birth_date = data.get("birthDate")
    return Patient(
        id=_string(data, "id", "Patient"),
        profile_uris=_profiles(data),
        identifiers=[_identifier_from_fhir(item) for item in _list(data, "identifier")],
        names=[_name_from_fhir(item) for item in _list(data, "name")],
        telecoms=[_telecom_from_fhir(item) for item in _list(data, "telecom")],
        gender=_enum(Gender, data.get("gender"), "gender"),
        birth_date=_parse_date(birth_date) if birth_date is not None else None,
        addresses=[_address_from_fhir(item) for item in _list(data, "address")],
    )


def document_reference_from_fhir(data: Any) -> DocumentReference:
    data = _require_dict(data, "DocumentReference")
    return DocumentReference(
        id=_string(data, "id", "DocumentReference"),
        identifiers=[_identifier_from_fhir(item) for item in _list(data, "identifier")],
    )


def _contained_from_fhir(data: Any) -> Contained:
    data = _require_dict(data, "Contained resource")
    resource_type = data.get("resourceType")
    if resource_type == Patient.resource_type:
        return patient_from_fhir(data)
    if resource_type == DocumentReference.resource_type:
        return document_reference_from_fhir(data)
    if not isinstance(resource_type, str) or not resource_type:
        raise FhirParseError("Contained resource has no resourceType")
    return ContainedResource(resource_type=resource_type, id=_string(data, "id", resource_type))


def _participant_from_fhir(data: Any) -> Participant:
    data = _require_dict(data, "Appointment.participant")
    actor_data = data.get("actor")
    actor = None
    if actor_data is not None:
        actor_data = _require_dict(actor_data, "Appointment.participant.actor")
        identifier = actor_data.get("identifier")
        actor = Reference(
            reference=_string(actor_data, "reference", "Appointment.participant.actor"),
            identifier=_identifier_from_fhir(identifier) if identifier is not None else None,
        )
    return Participant(actor=actor, status=_string(data, "status", "Appointment.participant"))


def appointment_from_fhir(data: Any) -> Appointment:
    """Build an :class:`Appointment` from its FHIR JSON form."""

    data = _require_dict(data, "Appointment")
    if data.get("resourceType") != "Appointment":
        raise FhirParseError(f"Expected resourceType 'Appointment', got {data.get('resourceType')!r}")

    appointment = Appointment(
        id=_string(data, "id", "Appointment"),
        slot_refs=[_reference_value(item) for item in _list(data, "slot")],
        participants=[_participant_from_fhir(item) for item in _list(data, "participant")],
        supporting_info_refs=[_reference_value(item) for item in _list(data, "supportingInformation")],
        contained=[_contained_from_fhir(item) for item in _list(data, "contained")],
        profile_uris=_profiles(data),
        description=_string(data, "description", "Appointment"),
    )
    if "status" in data:
        appointment.status = _enum(AppointmentStatus, data["status"], "appointment status")
    if "language" in data:
        appointment.language = _string(data, "language", "Appointment")
    if "created" in data:
        created = data["created"]
        appointment.created = _parse_datetime(created) if created is not None else None
    logger.debug("Parsed Appointment with %d contained resource(s)", len(appointment.contained))
    return appointment


def _compact(data: JsonDict) -> JsonDict:
    return {key: value for key, value in data.items() if value not in (None, [], {})}


def _enum_value(value: Optional[Enum]) -> Optional[str]:
    return value.value if value is not None else None


def _identifier_to_fhir(identifier: Identifier) -> JsonDict:
    extensions = [
        _compact(
            {
                "url": extension.url,
                "valueCodeableConcept": {
                    "coding": [
                        _compact({"system": coding.system, "code": coding.code, "display": coding.display})
                        for coding in extension.codings
                    ]
                },
            }
        )
        for extension in identifier.extensions
    ]
    return _compact(
        {
            "extension": extensions,
            "use": _enum_value(identifier.use),
            "system": identifier.system,
            "value": identifier.value,
        }
    )


def _meta(profiles: Iterable[Optional[str]]) -> Optional[JsonDict]:
    profiles = list(profiles)
    return {"profile": profiles} if profiles else None


def patient_to_fhir(patient: Patient) -> JsonDict:
    return _compact(
        {
            "resourceType": Patient.resource_type,
            "id": patient.id,
            "meta": _meta(patient.profile_uris),
            "identifier": [_identifier_to_fhir(item) for item in patient.identifiers],
            "name": [
                _compact(
                    {
                        "use": _enum_value(name.use),
                        "text": name.text,
                        "family": name.family,
                        "given": name.given,
                        "prefix": name.prefix,
                    }
                )
                for name in patient.names
            ],
            "telecom": [
                _compact({"system": _enum_value(item.system), "value": item.value, "use": item.use})
                for item in patient.telecoms
            ],
            "gender": _enum_value(patient.gender),
            "birthDate": patient.birth_date.isoformat() if patient.birth_date else None,
            "address": [
                _compact(
                    {
                        "use": _enum_value(item.use),
                        "line": item.lines,
                        "city": item.city,
                        "postalCode": item.postal_code,
                    }
                )
                for item in patient.addresses
            ],
        }
    )


def document_reference_to_fhir(document: DocumentReference) -> JsonDict:
    return _compact(
        {
            "resourceType": DocumentReference.resource_type,
            "id": document.id,
            "identifier": [_identifier_to_fhir(item) for item in document.identifiers],
        }
    )


def _contained_to_fhir(resource: Contained) -> JsonDict:
    if isinstance(resource, Patient):
        return patient_to_fhir(resource)
    if isinstance(resource, DocumentReference):
        return document_reference_to_fhir(resource)
    return _compact({"resourceType": resource.resource_type, "id": resource.id})


def _participant_to_fhir(participant: Participant) -> JsonDict:
    actor = participant.actor
    actor_data = None
    if actor is not None:
        actor_data = {"reference": actor.reference}
        if actor.identifier is not None:
            actor_data["identifier"] = _identifier_to_fhir(actor.identifier)
    return _compact({"actor": actor_data, "status": participant.status})


def appointment_to_fhir(appointment: Appointment) -> JsonDict:
    """Render an :class:`Appointment` as FHIR JSON.

    ``status``, ``language`` and ``created`` are written as ``null`` when they
    were explicitly null and left out when they were absent.
    """

    data = _compact(
        {
            "resourceType": "Appointment",
            "id": appointment.id,
            "meta": _meta(appointment.profile_uris),
            "contained": [_contained_to_fhir(item) for item in appointment.contained],
            "description": appointment.description,
            "slot": [{"reference": ref} for ref in appointment.slot_refs],
            "participant": [_participant_to_fhir(item) for item in appointment.participants],
            "supportingInformation": [{"reference": ref} for ref in appointment.supporting_info_refs],
        }
    )
    if appointment.status is not MISSING:
        data["status"] = _enum_value(appointment.status)
    if appointment.language is not MISSING:
        data["language"] = appointment.language
    if appointment.created is not MISSING:
        data["created"] = appointment.created.isoformat() if appointment.created else None
    return data


def organization_to_fhir(organization: Organization) -> JsonDict:
    return {
        "resourceType": "Organization",
        "id": organization.id,
        "meta": _profile("CareConnect-Organization-1"),
        "identifier": [{"system": ODS_ORGANIZATION_SYSTEM, "value": organization.ods_code}],
        "name": organization.name,
    }


def practitioner_to_fhir(practitioner: Practitioner) -> JsonDict:
    identifiers = []
    if practitioner.sds_user_id:
        identifiers.append({"system": SDS_USER_SYSTEM, "value": practitioner.sds_user_id})
    if practitioner.sds_role_profile_id:
        identifiers.append({"system": SDS_ROLE_PROFILE_SYSTEM, "value": practitioner.sds_role_profile_id})
    name = _compact(
        {"family": practitioner.family, "given": list(practitioner.given), "prefix": list(practitioner.prefix)}
    )
    return _compact(
        {
            "resourceType": "Practitioner",
            "id": practitioner.id,
            "meta": _profile("CareConnect-Practitioner-1"),
            "identifier": identifiers,
            "name": [name],
        }
    )


def practitioner_role_to_fhir(role: PractitionerRole) -> JsonDict:
    return {
        "resourceType": "PractitionerRole",
        "id": role.id,
        "meta": _profile("CareConnect-PractitionerRole-1"),
        "code": [{"coding": [{"system": JOB_ROLE_SYSTEM, "code": role.code, "display": role.display}]}],
    }


def location_to_fhir(location: Location) -> JsonDict:
    return {
        "resourceType": "Location",
        "id": location.id,
        "meta": _profile("CareConnect-Location-1"),
        "name": location.name,
    }


def healthcare_service_to_fhir(service: HealthcareService) -> JsonDict:
    identifiers = []
    if service.local_identifier:
        identifiers.append({"system": SERVICE_IDENTIFIER_SYSTEM, "value": service.local_identifier})
    return _compact(
        {
            "resourceType": "HealthcareService",
            "id": service.id,
            "meta": _profile("CareConnect-HealthcareService-1"),
            "identifier": identifiers,
            "name": service.name,
            "providedBy": {"reference": service.provider_ref},
            "location": [{"reference": ref} for ref in service.location_refs],
        }
    )


def schedule_to_fhir(schedule: Schedule) -> JsonDict:
    identifiers = []
    if schedule.local_identifier:
        identifiers.append({"system": SCHEDULE_IDENTIFIER_SYSTEM, "value": schedule.local_identifier})
    return _compact(
        {
            "resourceType": "Schedule",
            "id": schedule.id,
            "meta": _profile("CareConnect-Schedule-1"),
            "identifier": identifiers,
            "actor": [{"reference": ref} for ref in schedule.actor_refs],
        }
    )


def slot_to_fhir(slot: Slot) -> JsonDict:
    return {
        "resourceType": "Slot",
        "id": slot.id,
        "meta": _profile("CareConnect-Slot-1"),
        "schedule": {"reference": slot.schedule_ref},
        "status": slot.status.value,
        "start": slot.start.isoformat(),
        "end": slot.end.isoformat(),
    }


_RENDERERS = {
    Organization: organization_to_fhir,
    Practitioner: practitioner_to_fhir,
    PractitionerRole: practitioner_role_to_fhir,
    Location: location_to_fhir,
    HealthcareService: healthcare_service_to_fhir,
    Schedule: schedule_to_fhir,
    Slot: slot_to_fhir,
    Appointment: appointment_to_fhir,
}


def resource_to_fhir(resource: Union[CatalogResource, Appointment]) -> JsonDict:
    """Render any stored resource as FHIR JSON."""

    renderer = _RENDERERS.get(type(resource))
    if renderer is None:
        raise TypeError(f"No FHIR rendering for {type(resource).__name__}")
    return renderer(resource)


def make_bundle(resources: Iterable[JsonDict], *, included: Iterable[JsonDict] = (), base_url: str = "") -> JsonDict:
    """Wrap rendered resources in a ``searchset`` Bundle.

    ``included`` resources are added with search mode ``include`` and do not
    count towards ``total``.
    """

    entries: List[JsonDict] = []
    matches = 0
    for mode, group in (("match", resources), ("include", included)):
        for resource in group:
            if mode == "match":
                matches += 1
            entry: JsonDict = {"resource": resource, "search": {"mode": mode}}
            if base_url:
                entry["fullUrl"] = f"{base_url.rstrip('/')}/{resource['resourceType']}/{resource['id']}"
            entries.append(entry)
    return {"resourceType": "Bundle", "type": "searchset", "total": matches, "entry": entries}


def make_operation_outcome(issues: Iterable[Any], *, severity: str = "error", code: str = "processing") -> JsonDict:
    """Build an OperationOutcome with one issue per message.

    Each item in ``issues`` is rendered with ``str()``, so faults can be passed
    directly.
    """

    return {
        "resourceType": "OperationOutcome",
        "issue": [{"severity": severity, "code": code, "diagnostics": str(issue)} for issue in issues],
    }


__all__ = [
    "FhirParseError",
    "appointment_from_fhir",
    "appointment_to_fhir",
    "document_reference_from_fhir",
    "healthcare_service_to_fhir",
    "location_to_fhir",
    "make_bundle",
    "make_operation_outcome",
    "organization_to_fhir",
    "patient_from_fhir",
    "patient_to_fhir",
    "practitioner_role_to_fhir",
    "practitioner_to_fhir",
    "resource_to_fhir",
    "schedule_to_fhir",
    "slot_to_fhir",
]
