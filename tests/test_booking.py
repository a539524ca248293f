import unittest
from unittest.mock import patch

from checkers.appointment import AppointmentValidator
from checkers.faults import Severity
from connector.profile_client import OfflineProfileValidator, ProfileIssue, RemoteProfileClient
from connector.resources import AppointmentStatus, SlotStatus
from datastore.slot_store import SlotStore
from orchestrator.booking import BookingStatus, BookingWorkflow, _env_severity, build_default_validator
from tests.resource_maker import FIXED_TODAY, StubProfileValidator, make_appointment


class BookingWorkflowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SlotStore(today=lambda: FIXED_TODAY)
        self.remote = StubProfileValidator()
        self.workflow = BookingWorkflow(self.store, AppointmentValidator(self.remote))

    def test_valid_appointment_is_booked(self) -> None:
        result = self.workflow.book(make_appointment())

        self.assertTrue(result.booked)
        self.assertEqual(result.faults, [])
        self.assertIsNotNone(self.store.get_appointment(result.appointment_id))
        self.assertIs(self.store.find_slot("slot003").status, SlotStatus.BUSY)

    def test_critical_fault_rejects_without_touching_store(self) -> None:
        appointment = make_appointment()
        appointment.contained = []

        result = self.workflow.book(appointment)

        self.assertIs(result.status, BookingStatus.REJECTED)
        self.assertTrue(any(fault.severity is Severity.CRITICAL for fault in result.faults))
        self.assertEqual(self.store.appointment_count(), 0)
        self.assertIs(self.store.find_slot("slot003").status, SlotStatus.FREE)

    def test_lesser_faults_are_returned_with_booking(self) -> None:
        appointment = make_appointment()
        appointment.status = AppointmentStatus.PENDING

        result = self.workflow.book(appointment)

        self.assertTrue(result.booked)
        self.assertEqual([fault.severity for fault in result.faults], [Severity.MAJOR])

    def test_stricter_threshold_rejects_major_faults(self) -> None:
        self.remote.issues = [ProfileIssue(severity="error", detail="bad")]
        workflow = BookingWorkflow(self.store, AppointmentValidator(self.remote), reject_at=Severity.MAJOR)

        result = workflow.book(make_appointment())

        self.assertIs(result.status, BookingStatus.REJECTED)

    def test_unknown_slot_is_not_found(self) -> None:
        result = self.workflow.book(make_appointment("Slot/slot999"))

        self.assertIs(result.status, BookingStatus.NOT_FOUND)
        self.assertEqual(self.store.appointment_count(), 0)

    def test_second_booking_of_same_slot_conflicts(self) -> None:
        self.workflow.book(make_appointment())

        result = self.workflow.book(make_appointment())

        self.assertIs(result.status, BookingStatus.CONFLICT)
        self.assertEqual(self.store.appointment_count(), 1)

    def test_validate_does_not_book(self) -> None:
        faults = self.workflow.validate(make_appointment())

        self.assertEqual(faults, [])
        self.assertEqual(self.store.appointment_count(), 0)


class DefaultValidatorTests(unittest.TestCase):
    def test_remote_validation_can_be_disabled(self) -> None:
        validator = build_default_validator(remote_enabled=False)
        self.assertIsInstance(validator._profile_validator, OfflineProfileValidator)

    def test_environment_flag_controls_remote_validation(self) -> None:
        with patch.dict("os.environ", {"PROFILE_VALIDATION_ENABLED": "false"}):
            self.assertIsInstance(build_default_validator()._profile_validator, OfflineProfileValidator)
        with patch.dict("os.environ", {"PROFILE_VALIDATION_ENABLED": "true"}):
            self.assertIsInstance(build_default_validator()._profile_validator, RemoteProfileClient)


class RejectSeveritySettingTests(unittest.TestCase):
    def test_valid_setting_is_parsed(self) -> None:
        with patch.dict("os.environ", {"BOOKING_REJECT_SEVERITY": " major "}):
            self.assertIs(_env_severity("BOOKING_REJECT_SEVERITY", Severity.CRITICAL), Severity.MAJOR)

    def test_unset_setting_uses_default(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            self.assertIs(_env_severity("BOOKING_REJECT_SEVERITY", Severity.CRITICAL), Severity.CRITICAL)

    def test_unknown_setting_falls_back_and_logs(self) -> None:
        with patch.dict("os.environ", {"BOOKING_REJECT_SEVERITY": "urgent"}):
            with self.assertLogs("orchestrator.booking", level="ERROR") as logs:
                severity = _env_severity("BOOKING_REJECT_SEVERITY", Severity.CRITICAL)

        self.assertIs(severity, Severity.CRITICAL)
        self.assertIn("BOOKING_REJECT_SEVERITY='urgent'", logs.output[0])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
