"""Business rules for the Patient resource contained in a booking request.

The rules follow the CareConnect-Patient-1 profile as used by the booking
API: a local id, exactly one verified NHS Number, an official name, a UK
phone number, a plausible date of birth and a UK postal address.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import List, Optional, Tuple

from connector.resources import (
    NHS_NUMBER_SYSTEM,
    PROFILE_ROOT,
    AddressUse,
    ContactPointSystem,
    Gender,
    Identifier,
    IdentifierUse,
    NameUse,
    Patient,
)

from .faults import Fault, Rule, Severity, run_rules

logger = logging.getLogger(__name__)

PATIENT_PROFILE = PROFILE_ROOT + "CareConnect-Patient-1"
VERIFICATION_EXTENSION = PROFILE_ROOT + "Extension-CareConnect-NHSNumberVerificationStatus-1"
VERIFICATION_VALUE_SET = "https://fhir.hl7.org.uk/STU3/ValueSet/CareConnect-NHSNumberVerificationStatus-1"
VERIFIED_CODE = "01"
VERIFIED_DISPLAY = "Number present and verified"

EARLIEST_BIRTH_DATE = date(1900, 1, 1)
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 12

NHS_NUMBER_PATTERN = re.compile(r"\d{10}")
UK_PHONE_PATTERN = re.compile(
    r"((\+44\s?\(0\)\s?\d{2,4})|(\+44\s?(01|02|03|07|08)\d{2,3})|(\+44\s?(1|2|3|7|8)\d{2,3})"
    r"|(\(\+44\)\s?\d{3,4})|(\(\d{5}\))|((01|02|03|07|08)\d{2,3})|(\d{5}))"
    r"(\s|-|.)(((\d{3,4})(\s|-)(\d{3,4}))|((\d{6,7})))"
)
EMAIL_PATTERN = re.compile(
    r"""(?:[a-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[a-z0-9!#$%&'*+/=?^_`{|}~-]+)*"""
    r"""|"(?:[\x01-\x08\x0b\x0c\x0e-\x1f\x21\x23-\x5b\x5d-\x7f]|\\[\x01-\x09\x0b\x0c\x0e-\x7f])*")"""
    r"""@(?:(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z0-9](?:[a-z0-9-]*[a-z0-9])?"""
    r"""|\[(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"""
    r"""(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?|[a-z0-9-]*[a-z0-9]:"""
    r"""(?:[\x01-\x08\x0b\x0c\x0e-\x1f\x21-\x5a\x53-\x7f]|\\[\x01-\x09\x0b\x0c\x0e-\x7f])+)\])""",
    re.IGNORECASE,
)
UK_POSTCODE_PATTERN = re.compile(
    r"([Gg][Ii][Rr] 0[Aa]{2})|((([A-Za-z][0-9]{1,2})|(([A-Za-z][A-Ha-hJ-Yj-y][0-9]{1,2})"
    r"|(([A-Za-z][0-9][A-Za-z])|([A-Za-z][A-Ha-hJ-Yj-y][0-9][A-Za-z]?))))\s?[0-9][A-Za-z]{2})"
)


def _check_id(patient: Patient) -> List[Fault]:
    if patient.id is None:
        return [Fault("Patient resource has no ID", Severity.CRITICAL)]
    if patient.id == "":
        return [Fault("Patient resource ID is set to an empty String", Severity.CRITICAL)]
    if "/" in patient.id:
        return [Fault("Patient resource ID contains / should be a local only identifier.", Severity.MAJOR)]
    return []


def _check_profile(patient: Patient) -> List[Fault]:
    if not patient.profile_uris:
        return [Fault("Patient resource does not declare a profile.", Severity.MAJOR)]
    faults: List[Fault] = []
    if PATIENT_PROFILE not in patient.profile_uris:
        faults.append(Fault(f"Patient resource does not claim to conform to: {PATIENT_PROFILE}", Severity.MAJOR))
    if len(patient.profile_uris) > 1:
        faults.append(Fault("Patient resource claims to conform to multiple profiles.", Severity.MINOR))
    return faults


def _check_nhs_number(identifier: Identifier) -> Tuple[List[Fault], bool]:
    """Check an official identifier carrying the NHS Number system.

    Returns the faults found and whether the identifier counts as a verified
    NHS Number.
    """

    faults: List[Fault] = []
    verified = False

    if len(identifier.extensions) != 1:
        faults.append(Fault("NHS Number Identifier should carry exactly one verification Extension.", Severity.MINOR))
    else:
        extension = identifier.extensions[0]
        if extension.url != VERIFICATION_EXTENSION:
            faults.append(Fault("Extension has incorrect URL", Severity.MAJOR))
        coding = extension.codings[0] if extension.codings else None
        if coding is None:
            faults.append(Fault("Patient NHS Number verification status has no coding", Severity.MINOR))
        else:
            if coding.code != VERIFIED_CODE:
                faults.append(Fault("Patient NHS Number is not Verified", Severity.MINOR))
            if coding.display != VERIFIED_DISPLAY:
                faults.append(Fault("Patient NHS Number verification display is unexpected", Severity.MINOR))
            if coding.system != VERIFICATION_VALUE_SET:
                faults.append(Fault("Patient NHS Number verification system is unexpected", Severity.MINOR))
            verified = extension.url == VERIFICATION_EXTENSION and coding.code == VERIFIED_CODE

    value = identifier.value
    if value is None:
        faults.append(
            Fault(
                "Patient has an Identifier with a 'Use' set to OFFICIAL 'System' is set correct, "
                "but value set to null.",
                Severity.MAJOR,
            )
        )
        return faults, False
    if value == "":
        faults.append(
            Fault(
                "Patient has an Identifier with a 'Use' set to OFFICIAL 'System' is set correct, "
                "but value is empty.",
                Severity.MAJOR,
            )
        )
        return faults, False
    if not NHS_NUMBER_PATTERN.fullmatch(value):
        faults.append(
            Fault(
                "Patient has an Identifier with a 'Use' set to OFFICIAL 'System' is set correct, "
                "but value doesn't seem to be 10 digits.",
                Severity.MAJOR,
            )
        )
        return faults, False
    return faults, verified


def _check_identifiers(patient: Patient) -> List[Fault]:
    identifiers = patient.identifiers
    if not identifiers:
        return [Fault("Patient resource has no Identifiers", Severity.CRITICAL)]

    faults: List[Fault] = []
    if len(identifiers) > 1:
        faults.append(
            Fault("Patient resource has more than one Identifier, could lead to confusion.", Severity.TRIVIAL)
        )

    verified_count = 0
    for identifier in identifiers:
        if identifier.use is None:
            faults.append(Fault("Patient has an Identifier with a 'Use' set to null?", Severity.MAJOR))
            continue
        if identifier.use is not IdentifierUse.OFFICIAL:
            continue
        if identifier.system is None:
            faults.append(
                Fault("Patient has an Identifier with a 'Use' set to OFFICIAL and 'System' set to null.", Severity.MAJOR)
            )
        elif identifier.system == "":
            faults.append(
                Fault(
                    "Patient has an Identifier with a 'Use' set to OFFICIAL and 'System' set to an empty string.",
                    Severity.MAJOR,
                )
            )
        elif identifier.system == NHS_NUMBER_SYSTEM:
            found, verified = _check_nhs_number(identifier)
            faults.extend(found)
            if verified:
                verified_count += 1

    if verified_count > 1:
        faults.append(Fault("Patient seems to have multiple NHS Numbers in Identifiers.", Severity.CRITICAL))
    elif verified_count == 0:
        faults.append(Fault("Patient has no verified NHS Number in Identifiers.", Severity.CRITICAL))
    return faults


def _length_faults(value: str, label: str) -> List[Fault]:
    faults: List[Fault] = []
    if len(value) < NAME_MIN_LENGTH:
        faults.append(Fault(f"Patient has {label} < {NAME_MIN_LENGTH} characters.", Severity.MINOR))
    if len(value) > NAME_MAX_LENGTH:
        faults.append(Fault(f"Patient has {label} > {NAME_MAX_LENGTH} characters.", Severity.MINOR))
    return faults


def _check_names(patient: Patient) -> List[Fault]:
    names = patient.names
    if not names:
        return [
            Fault("Patient has no Name.", Severity.CRITICAL),
            Fault("Patient has NO official name set.", Severity.CRITICAL),
        ]

    faults: List[Fault] = []
    if len(names) > 1:
        faults.append(Fault("Patient has multiple Names defined, leading to potential confusion.", Severity.MINOR))

    official_count = 0
    for name in names:
        official = name.use is NameUse.OFFICIAL
        if name.use is None:
            faults.append(Fault("Patient has a Name with no 'Use' defined for it.", Severity.MAJOR))
        elif official:
            official_count += 1

        label = "an official name with Family name" if official else "a name with Family name"
        if name.family is None:
            faults.append(Fault(f"Patient has {label} of null.", Severity.CRITICAL if official else Severity.MINOR))
        elif name.family == "":
            faults.append(
                Fault(
                    f"Patient has {'an official' if official else 'a'} name with empty Family name.",
                    Severity.CRITICAL if official else Severity.MINOR,
                )
            )
        else:
            faults.extend(_length_faults(name.family, label))

        for given in name.given:
            if given is None:
                faults.append(Fault("Patient has a given name of null.", Severity.MAJOR))
            elif given == "":
                faults.append(Fault("Patient has an empty given name.", Severity.MAJOR))
            else:
                faults.extend(_length_faults(given, "a given name of"))

    if official_count == 0:
        faults.append(Fault("Patient has NO official name set.", Severity.CRITICAL))
    return faults


def _check_telecoms(patient: Patient) -> List[Fault]:
    faults: List[Fault] = []
    phone_count = 0
    for contact in patient.telecoms:
        if contact.system is None:
            faults.append(Fault("Patient has a contact with no System set.", Severity.MAJOR))
        elif contact.system is ContactPointSystem.PHONE:
            phone_count += 1

        if not contact.value:
            faults.append(Fault("Patient has a contact with no Value set.", Severity.MAJOR))
        elif contact.system in (ContactPointSystem.PHONE, ContactPointSystem.SMS):
            if not UK_PHONE_PATTERN.fullmatch(contact.value):
                faults.append(
                    Fault("Patient has a phone contact but Value does not seem to be a UK phone number.", Severity.MAJOR)
                )
        elif contact.system is ContactPointSystem.EMAIL:
            if not EMAIL_PATTERN.fullmatch(contact.value):
                faults.append(
                    Fault(
                        "Patient has an email contact but Value does not seem to be a valid email address.",
                        Severity.MAJOR,
                    )
                )

    if phone_count == 0:
        faults.append(Fault("Patient has no telephone Contacts.", Severity.MAJOR))
    return faults


def _check_gender(patient: Patient) -> List[Fault]:
    if patient.gender is None:
        return [Fault("Patient has no Gender set.", Severity.MAJOR)]
    if patient.gender in (Gender.OTHER, Gender.UNKNOWN):
        return [Fault("Patient has unexpected Gender set, ensure this was intended.", Severity.MINOR)]
    return []


def _check_birth_date(patient: Patient) -> List[Fault]:
    birth_date = patient.birth_date
    if birth_date is None:
        return [Fault("Patient has null DOB.", Severity.MAJOR)]
    faults: List[Fault] = []
    if birth_date > date.today():
        faults.append(Fault("Patient has DOB in the future.", Severity.CRITICAL))
    if birth_date < EARLIEST_BIRTH_DATE:
        faults.append(Fault("Patient has DOB before 1900.", Severity.MAJOR))
    return faults


def _check_addresses(patient: Patient) -> List[Fault]:
    addresses = patient.addresses
    if not addresses:
        return [Fault("Patient has no Address.", Severity.MAJOR)]

    faults: List[Fault] = []
    several = len(addresses) > 1
    if several:
        faults.append(Fault("Patient has multiple Addresses.", Severity.MINOR))

    for address in addresses:
        if address.use is None:
            if several:
                faults.append(Fault("Patient has multiple Addresses and Use not specified.", Severity.MAJOR))
            else:
                faults.append(Fault("Patient Address Use not specified.", Severity.MINOR))
        elif address.use in (AddressUse.OLD, AddressUse.TEMP):
            if several:
                faults.append(
                    Fault("Patient has multiple Addresses including one or more ambiguous ones.", Severity.MAJOR)
                )
            else:
                faults.append(Fault("Patient Address Use value was unexpected - check.", Severity.MINOR))

        postcode: Optional[str] = address.postal_code
        if not postcode:
            faults.append(Fault("Patient Address has no Postcode.", Severity.CRITICAL))
        elif not UK_POSTCODE_PATTERN.fullmatch(postcode):
            faults.append(Fault("Patient Address Postcode does not appear to be correct.", Severity.MAJOR))
    return faults


PATIENT_RULES: Tuple[Rule[Patient], ...] = (
    Rule("id", _check_id),
    Rule("profile", _check_profile),
    Rule("identifiers", _check_identifiers),
    Rule("names", _check_names),
    Rule("telecom", _check_telecoms),
    Rule("gender", _check_gender),
    Rule("birth-date", _check_birth_date),
    Rule("address", _check_addresses),
)


class PatientValidator:
    """Checks a contained Patient against the booking business rules."""

    def __init__(self, rules: Tuple[Rule[Patient], ...] = PATIENT_RULES) -> None:
        self._rules = rules

    def validate(self, patient: Patient) -> List[Fault]:
        """Return every fault found in ``patient`` (empty when it is clean)."""

        faults = run_rules(self._rules, patient)
        logger.debug("Patient %s checked, %d fault(s)", patient.id, len(faults))
        return faults


__all__ = ["PATIENT_PROFILE", "PATIENT_RULES", "PatientValidator"]
