import unittest
from datetime import date, datetime, timezone

from connector.fhir import (
    FhirParseError,
    appointment_from_fhir,
    appointment_to_fhir,
    make_bundle,
    make_operation_outcome,
    resource_to_fhir,
)
from connector.resources import (
    MISSING,
    AppointmentStatus,
    ContainedResource,
    DocumentReference,
    Gender,
    IdentifierUse,
    Patient,
)
from datastore import catalog
from tests.resource_maker import make_appointment


def _appointment_json(**overrides):
    payload = {
        "resourceType": "Appointment",
        "meta": {"profile": ["https://fhir.hl7.org.uk/STU3/StructureDefinition/CareConnect-Appointment-1"]},
        "status": "booked",
        "created": "2019-03-01T10:00:00+00:00",
        "slot": [{"reference": "Slot/slot003"}],
        "participant": [
            {
                "actor": {
                    "reference": "#P1",
                    "identifier": {"use": "official", "system": "https://fhir.nhs.uk/Id/nhs-number", "value": "1234512345"},
                }
            }
        ],
        "supportingInformation": [{"reference": "#D1"}],
        "contained": [
            {
                "resourceType": "Patient",
                "id": "P1",
                "gender": "female",
                "birthDate": "1970-01-02",
                "identifier": [
                    {
                        "use": "official",
                        "system": "https://fhir.nhs.uk/Id/nhs-number",
                        "value": "1231231234",
                        "extension": [
                            {
                                "url": "https://example.org/ext",
                                "valueCodeableConcept": {"coding": [{"code": "01"}]},
                            }
                        ],
                    }
                ],
                "address": [{"use": "home", "postalCode": "LS1 4HR", "line": ["1 Road"]}],
            },
            {"resourceType": "DocumentReference", "id": "D1", "identifier": [{"value": "abcdef"}]},
            {"resourceType": "Observation", "id": "O1"},
        ],
    }
    payload.update(overrides)
    return payload


class AppointmentParsingTests(unittest.TestCase):
    def test_parses_full_appointment(self) -> None:
        appointment = appointment_from_fhir(_appointment_json())

        self.assertIs(appointment.status, AppointmentStatus.BOOKED)
        self.assertIs(appointment.language, MISSING)
        self.assertEqual(appointment.created, datetime(2019, 3, 1, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(appointment.slot_refs, ["Slot/slot003"])
        self.assertEqual(appointment.participants[0].actor_ref, "#P1")
        self.assertIs(appointment.participants[0].actor.identifier.use, IdentifierUse.OFFICIAL)
        self.assertEqual(appointment.supporting_info_refs, ["#D1"])

        patient, document, other = appointment.contained
        self.assertIsInstance(patient, Patient)
        self.assertIs(patient.gender, Gender.FEMALE)
        self.assertEqual(patient.birth_date, date(1970, 1, 2))
        self.assertEqual(patient.identifiers[0].extensions[0].codings[0].code, "01")
        self.assertEqual(patient.addresses[0].postal_code, "LS1 4HR")
        self.assertIsInstance(document, DocumentReference)
        self.assertEqual(document.identifiers[0].value, "abcdef")
        self.assertEqual(other, ContainedResource(resource_type="Observation", id="O1"))

    def test_null_and_absent_elements_are_distinguished(self) -> None:
        payload = _appointment_json(status=None, language=None)
        del payload["created"]

        appointment = appointment_from_fhir(payload)

        self.assertIsNone(appointment.status)
        self.assertIsNone(appointment.language)
        self.assertIs(appointment.created, MISSING)

    def test_structural_errors_raise(self) -> None:
        bad_payloads = [
            ["not", "an", "object"],
            {"resourceType": "Patient"},
            _appointment_json(status="nonsense"),
            _appointment_json(created="yesterday"),
            _appointment_json(slot={"reference": "Slot/slot003"}),
        ]
        for payload in bad_payloads:
            with self.subTest(payload=payload):
                with self.assertRaises(FhirParseError):
                    appointment_from_fhir(payload)

    def test_non_string_elements_raise(self) -> None:
        def set_slot_reference(payload):
            payload["slot"][0]["reference"] = 5

        def set_contained_id(payload):
            payload["contained"][0]["id"] = 5

        def set_family(payload):
            payload["contained"][0]["name"][0]["family"] = 5

        def set_given_item(payload):
            payload["contained"][0]["name"][0]["given"] = ["Fred", 7]

        def set_address_line(payload):
            payload["contained"][0]["address"][0]["line"] = [{"street": "High"}]

        def set_profile_item(payload):
            payload["meta"]["profile"] = [42]

        def set_identifier_value(payload):
            payload["contained"][1]["identifier"][0]["value"] = 12345

        def set_actor_reference(payload):
            payload["participant"][0]["actor"]["reference"] = ["#P1"]

        def set_supporting_reference(payload):
            payload["supportingInformation"][0]["reference"] = True

        def set_language(payload):
            payload["language"] = 1

        for mutate in (
            set_slot_reference,
            set_contained_id,
            set_family,
            set_given_item,
            set_address_line,
            set_profile_item,
            set_identifier_value,
            set_actor_reference,
            set_supporting_reference,
            set_language,
        ):
            with self.subTest(case=mutate.__name__):
                payload = appointment_to_fhir(make_appointment())
                mutate(payload)
                with self.assertRaises(FhirParseError):
                    appointment_from_fhir(payload)

    def test_null_string_elements_are_kept_for_the_checkers(self) -> None:
        payload = appointment_to_fhir(make_appointment())
        payload["slot"][0]["reference"] = None
        payload["contained"][0]["name"][0]["given"] = [None]

        appointment = appointment_from_fhir(payload)

        self.assertEqual(appointment.slot_refs, [None])
        self.assertEqual(appointment.contained[0].names[0].given, [None])

    def test_rendered_appointment_parses_back(self) -> None:
        original = make_appointment()

        parsed = appointment_from_fhir(appointment_to_fhir(original))

        self.assertEqual(parsed, original)

    def test_absent_status_is_not_rendered(self) -> None:
        appointment = make_appointment()
        appointment.status = MISSING
        appointment.language = None

        rendered = appointment_to_fhir(appointment)

        self.assertNotIn("status", rendered)
        self.assertIsNone(rendered["language"])


class CatalogRenderingTests(unittest.TestCase):
    def test_catalog_resources_carry_profiles_and_identifiers(self) -> None:
        organization = resource_to_fhir(catalog.make_organizations()[0])
        self.assertEqual(
            organization["identifier"],
            [{"system": "https://fhir.nhs.uk/Id/ods-organization-code", "value": "A91545"}],
        )
        self.assertTrue(organization["meta"]["profile"][0].endswith("CareConnect-Organization-1"))

        practitioner = resource_to_fhir(catalog.make_practitioners()[0])
        self.assertEqual(practitioner["name"], [{"family": "Webber", "given": ["Libbie"], "prefix": ["Dr"]}])
        self.assertEqual(len(practitioner["identifier"]), 2)

        service = resource_to_fhir(catalog.make_healthcare_services()[1])
        self.assertEqual(service["location"], [{"reference": "Location/loc2222"}])
        self.assertEqual(service["identifier"][0]["value"], "457")

        slot = resource_to_fhir(catalog.make_slots(lambda: date(2030, 1, 14))[0])
        self.assertEqual(slot["status"], "free")
        self.assertEqual(slot["start"], "2030-01-15T09:00:00")
        self.assertEqual(slot["schedule"], {"reference": "Schedule/sched1111"})

    def test_unknown_types_are_rejected(self) -> None:
        with self.assertRaises(TypeError):
            resource_to_fhir(object())


class EnvelopeTests(unittest.TestCase):
    def test_bundle_counts_only_matches(self) -> None:
        bundle = make_bundle(
            [{"resourceType": "Slot", "id": "slot001"}],
            included=[{"resourceType": "Schedule", "id": "sched1111"}],
            base_url="http://localhost/",
        )

        self.assertEqual(bundle["total"], 1)
        self.assertEqual([entry["search"]["mode"] for entry in bundle["entry"]], ["match", "include"])
        self.assertEqual(bundle["entry"][1]["fullUrl"], "http://localhost/Schedule/sched1111")

    def test_operation_outcome_renders_each_issue(self) -> None:
        outcome = make_operation_outcome(["first", "second"], code="invalid")

        self.assertEqual(outcome["resourceType"], "OperationOutcome")
        self.assertEqual([issue["diagnostics"] for issue in outcome["issue"]], ["first", "second"])
        self.assertEqual(outcome["issue"][0]["code"], "invalid")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
