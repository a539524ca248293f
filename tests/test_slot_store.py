import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

from connector.resources import DocumentReference, Patient, SlotStatus
from datastore.slot_store import SlotStore, StoreError
from tests.resource_maker import FIXED_TODAY, make_appointment


class SlotStoreCatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SlotStore(today=lambda: FIXED_TODAY)

    def test_seeded_catalog(self) -> None:
        self.assertEqual(len(self.store.list_slots()), 40)
        self.assertEqual(len(self.store.list_free_slots()), 40)
        self.assertEqual(self.store.appointment_count(), 0)
        self.assertEqual(self.store.get_organization("A91545").name, "Our Provider Organisation")
        self.assertEqual(self.store.get_practitioner("Practitioner/ABCD123456").family, "Webber")
        self.assertEqual(self.store.get_practitioner_role("R0260").display, "General Medical Practitioner")
        self.assertEqual(self.store.get_location("/Location/loc2222").name, "Location Two")
        self.assertEqual(self.store.get_healthcare_service("918999198999").name, "Service One")
        self.assertEqual(self.store.get_schedule("sched2222").local_identifier, "6543189")

    def test_unknown_references_return_none(self) -> None:
        self.assertIsNone(self.store.get_schedule("nope"))
        self.assertIsNone(self.store.get_location("Organization/loc1111"))
        self.assertIsNone(self.store.find_slot(""))

    def test_slot_times_start_tomorrow_at_nine(self) -> None:
        first = self.store.find_slot("slot001")
        last = self.store.find_slot("slot020")
        tomorrow_nine = datetime(2030, 1, 15, 9, 0)

        self.assertEqual(first.start, tomorrow_nine)
        self.assertEqual(first.end, tomorrow_nine + timedelta(minutes=15))
        self.assertEqual(last.start, tomorrow_nine + timedelta(minutes=15 * 19))
        self.assertEqual(self.store.find_slot("slot051").start, tomorrow_nine)

    def test_find_slot_accepts_reference_forms(self) -> None:
        for reference in ("slot003", "Slot/slot003", "/Slot/slot003"):
            with self.subTest(reference=reference):
                self.assertEqual(self.store.find_slot(reference).id, "slot003")

    def test_slots_by_healthcare_service(self) -> None:
        slots = self.store.list_slots_by_healthcare_service("918999198999")

        self.assertEqual(len(slots), 20)
        self.assertTrue(all(slot.status is SlotStatus.FREE for slot in slots))
        self.assertTrue(all(slot.schedule_ref == "Schedule/sched1111" for slot in slots))
        self.assertEqual(self.store.list_slots_by_healthcare_service("unknown"), [])

    def test_status_filter_rejects_unknown_values(self) -> None:
        with self.assertRaises(ValueError):
            self.store.list_slots_by_healthcare_service("918999198999", "maybe")

    def test_reset_is_idempotent(self) -> None:
        self.store.reset()
        first = self.store.catalog_snapshot()
        self.store.reset()

        self.assertEqual(self.store.catalog_snapshot(), first)
        self.assertEqual(len(first["Slot"]), 40)
        self.assertEqual(len(first["Schedule"]), 2)


class SlotStoreBookingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SlotStore(today=lambda: FIXED_TODAY)
        self.appointment = make_appointment()

    def test_book_slot_marks_slot_busy_and_stores_copy(self) -> None:
        outcome = self.store.book_slot("Slot/slot003", self.appointment)

        self.assertTrue(outcome.ok)
        self.assertEqual(len(outcome.appointment_id), 36)
        self.assertIs(self.store.find_slot("slot003").status, SlotStatus.BUSY)
        self.assertIsNone(self.appointment.id)

        stored = self.store.get_appointment(f"Appointment/{outcome.appointment_id}")
        self.assertEqual(stored.id, outcome.appointment_id)
        self.assertEqual(len(stored.contained), 2)
        self.assertIsInstance(stored.contained[0], Patient)
        self.assertIsInstance(stored.contained[1], DocumentReference)

    def test_caller_supplied_id_is_replaced(self) -> None:
        self.appointment.id = "caller-id"

        outcome = self.store.book_slot("slot003", self.appointment)

        self.assertNotEqual(outcome.appointment_id, "caller-id")
        self.assertIsNone(self.store.get_appointment("caller-id"))

    def test_returned_appointments_are_copies(self) -> None:
        outcome = self.store.book_slot("slot003", self.appointment)

        copy = self.store.get_appointment(outcome.appointment_id)
        copy.contained.clear()

        self.assertEqual(len(self.store.get_appointment(outcome.appointment_id).contained), 2)

    def test_second_booking_conflicts(self) -> None:
        self.store.book_slot("slot003", self.appointment)

        outcome = self.store.book_slot("slot003", make_appointment())

        self.assertFalse(outcome.ok)
        self.assertIs(outcome.error, StoreError.CONFLICT)
        self.assertEqual(self.store.appointment_count(), 1)

    def test_unknown_slot_is_not_found(self) -> None:
        outcome = self.store.book_slot("Slot/slot999", self.appointment)

        self.assertIs(outcome.error, StoreError.NOT_FOUND)
        self.assertEqual(self.store.appointment_count(), 0)

    def test_busy_filter_after_booking(self) -> None:
        self.store.book_slot("Slot/slot005", self.appointment)

        busy = self.store.list_slots_by_healthcare_service("918999198999", "busy")
        free = self.store.list_slots_by_healthcare_service("918999198999", SlotStatus.FREE)

        self.assertEqual([slot.id for slot in busy], ["slot005"])
        self.assertEqual(len(free), 19)
        self.assertEqual(self.store.list_slots_by_healthcare_service("118111118111", "busy"), [])

    def test_reset_clears_appointments(self) -> None:
        self.store.book_slot("slot003", self.appointment)

        self.store.reset()

        self.assertEqual(self.store.appointment_count(), 0)
        self.assertIs(self.store.find_slot("slot003").status, SlotStatus.FREE)

    def test_concurrent_bookings_allow_exactly_one_winner(self) -> None:
        attempts = 100
        barrier = threading.Barrier(attempts)

        def attempt(_: int):
            barrier.wait()
            return self.store.book_slot("Slot/slot010", make_appointment("Slot/slot010"))

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            outcomes = list(pool.map(attempt, range(attempts)))

        winners = [outcome for outcome in outcomes if outcome.ok]
        conflicts = [outcome for outcome in outcomes if outcome.error is StoreError.CONFLICT]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(conflicts), attempts - 1)
        self.assertEqual(self.store.appointment_count(), 1)
        self.assertIs(self.store.find_slot("slot010").status, SlotStatus.BUSY)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
