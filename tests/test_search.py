import unittest
from datetime import datetime

from connector.resources import HealthcareService, Location, Organization, Practitioner, PractitionerRole, Schedule
from datastore.search import search_slots
from datastore.slot_store import SlotStore
from tests.resource_maker import FIXED_TODAY, make_appointment


class SlotSearchTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SlotStore(today=lambda: FIXED_TODAY)

    def test_search_without_includes_returns_only_slots(self) -> None:
        result = search_slots(self.store, "918999198999")

        self.assertEqual(len(result.slots), 20)
        self.assertEqual(result.included, [])

    def test_start_bounds_are_inclusive(self) -> None:
        result = search_slots(
            self.store,
            "918999198999",
            start=datetime(2030, 1, 15, 9, 15),
            end=datetime(2030, 1, 15, 10, 0),
        )

        self.assertEqual([slot.id for slot in result.slots], ["slot002", "slot003", "slot004", "slot005"])

    def test_status_filter(self) -> None:
        self.store.book_slot("slot052", make_appointment("Slot/slot052"))

        result = search_slots(self.store, "118111118111", status="busy")

        self.assertEqual([slot.id for slot in result.slots], ["slot052"])

    def test_all_includes_are_resolved_once(self) -> None:
        result = search_slots(
            self.store,
            "918999198999",
            includes=[
                "Slot:schedule",
                "Schedule:actor:HealthcareService",
                "Schedule:actor:Practitioner",
                "Schedule:actor:PractitionerRole",
                "HealthcareService.providedBy",
                "HealthcareService.location",
            ],
        )

        kinds = sorted(type(item).__name__ for item in result.included)
        self.assertEqual(
            kinds,
            ["HealthcareService", "Location", "Organization", "Practitioner", "PractitionerRole", "Schedule"],
        )
        by_type = {type(item): item for item in result.included}
        self.assertEqual(by_type[Schedule].id, "sched1111")
        self.assertEqual(by_type[HealthcareService].id, "918999198999")
        self.assertEqual(by_type[Location].id, "loc1111")
        self.assertEqual(by_type[Organization].id, "A91545")
        self.assertEqual(by_type[Practitioner].id, "ABCD123456")
        self.assertEqual(by_type[PractitionerRole].id, "R0260")

    def test_unknown_includes_are_ignored(self) -> None:
        with self.assertLogs("datastore.search", level="WARNING"):
            result = search_slots(self.store, "918999198999", includes=["Slot:nonsense"])

        self.assertEqual(result.included, [])

    def test_no_matching_slots_includes_nothing(self) -> None:
        result = search_slots(self.store, "does-not-exist", includes=["Slot:schedule"])

        self.assertEqual(result.slots, [])
        self.assertEqual(result.included, [])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
