import sys
import threading
import unittest
from collections import Counter
from datetime import date, datetime
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from school_rentals.SportsRental import RentalTracker
from school_rentals.models.rental_models import Rental, User
from school_rentals.services.errors import ConflictError, NotFoundError
from school_rentals.services.notification_service import (
    NotificationLog,
    ReminderTransport,
    deliver_with_retry,
    send_overdue_reminders,
)
from school_rentals.settings import RentalSettings


MONDAY = date(2025, 1, 6)
AFTER_RECESS = datetime(2025, 1, 6, 12, 0)


class RecordingTransport(ReminderTransport):
    """Fails the first ``failures[recipient]`` sends for each recipient."""

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.calls = Counter()
        self.delivered = []
        self._lock = threading.Lock()

    def send(self, record):
        with self._lock:
            self.calls[record.recipient] += 1
            if self.calls[record.recipient] <= self.failures.get(record.recipient, 0):
                raise ConnectionError(f"smtp unavailable for {record.recipient}")
            self.delivered.append(record.rental_id)


def _user(user_id="U1", email="alice@school.test", name="Alice Smith"):
    return User(id=user_id, email=email, name=name, created_at=datetime(2025, 1, 1, 8, 0))


def _rental(rental_id="RNT-001", user_id="U1"):
    return Rental(
        id=rental_id,
        user_id=user_id,
        equipment_id="1",
        equipment_name="Soccer Ball",
        sport="soccer",
        time_slot="recess",
        date=MONDAY,
        rented_at=datetime(2025, 1, 6, 8, 0),
        due_date=datetime(2025, 1, 6, 11, 30),
    )


class NotificationLogTests(unittest.TestCase):
    def test_reminder_is_recorded_once_per_rental_per_day(self):
        log = NotificationLog()
        first = log.record_reminder_if_absent(_rental(), _user(), MONDAY, AFTER_RECESS)
        again = log.record_reminder_if_absent(_rental(), _user(), MONDAY, datetime(2025, 1, 6, 15, 0))

        self.assertIsNotNone(first)
        self.assertIsNone(again)
        self.assertEqual(len(log.notifications()), 1)

        next_day = log.record_reminder_if_absent(_rental(), _user(), date(2025, 1, 7), datetime(2025, 1, 7, 9, 0))
        self.assertIsNotNone(next_day)
        self.assertEqual(len(log.notifications()), 2)
        self.assertTrue(log.has_reminder("RNT-001", date(2025, 1, 7)))
        self.assertFalse(log.has_reminder("RNT-002", MONDAY))

    def test_reminder_content(self):
        log = NotificationLog(school_name="Test High")
        record = log.record_reminder_if_absent(_rental(), _user(), MONDAY, AFTER_RECESS)

        self.assertEqual(record.recipient, "alice@school.test")
        self.assertEqual(record.subject, "URGENT: Overdue Equipment Return - Soccer Ball")
        self.assertIn("Dear Alice Smith,", record.body)
        self.assertIn("- Rental ID: RNT-001", record.body)
        self.assertIn("- Due Date: 06/01/2025 at 11:30", record.body)
        self.assertTrue(record.body.endswith("Test High"))
        self.assertEqual(record.logged_on, MONDAY)

    def test_clear_log_drops_every_record(self):
        log = NotificationLog()
        log.record_reminder_if_absent(_rental("RNT-001"), _user(), MONDAY, AFTER_RECESS)
        log.record_reminder_if_absent(_rental("RNT-002"), _user(), MONDAY, AFTER_RECESS)
        self.assertEqual(log.clear_log(), 2)
        self.assertEqual(log.notifications(), [])
        self.assertIsNotNone(log.record_reminder_if_absent(_rental("RNT-001"), _user(), MONDAY, AFTER_RECESS))

    def test_notifications_returns_a_copy(self):
        log = NotificationLog()
        log.record_reminder_if_absent(_rental(), _user(), MONDAY, AFTER_RECESS)
        snapshot = log.notifications()
        snapshot.clear()
        self.assertEqual(len(log.notifications()), 1)


class ReminderDeliveryTests(unittest.TestCase):
    def test_delivery_retries_then_succeeds(self):
        record = NotificationLog().record_reminder_if_absent(_rental(), _user(), MONDAY, AFTER_RECESS)
        transport = RecordingTransport({"alice@school.test": 2})

        outcome = deliver_with_retry(transport, record, max_attempts=3)

        self.assertEqual((outcome.status, outcome.attempts), ("sent", 3))
        self.assertIsNone(outcome.error)

    def test_delivery_gives_up_after_max_attempts(self):
        record = NotificationLog().record_reminder_if_absent(_rental(), _user(), MONDAY, AFTER_RECESS)
        transport = RecordingTransport({"alice@school.test": 10})

        outcome = deliver_with_retry(transport, record, max_attempts=2)

        self.assertEqual((outcome.status, outcome.attempts), ("failed", 2))
        self.assertIn("smtp unavailable", outcome.error)
        self.assertEqual(transport.calls["alice@school.test"], 2)

    def test_batch_isolates_failures_and_keeps_input_order(self):
        users = [_user("U1", "alice@school.test", "Alice"), _user("U2", "bob@school.test", "Bob")]
        rentals = [_rental("RNT-001", "U1"), _rental("RNT-002", "U2"), _rental("RNT-003", "U9")]
        log = NotificationLog()
        transport = RecordingTransport({"bob@school.test": 5})

        result = send_overdue_reminders(log, transport, rentals, users, MONDAY, AFTER_RECESS, max_attempts=3)

        self.assertEqual(
            [(outcome.rentalID, outcome.status) for outcome in result.outcomes],
            [("RNT-001", "sent"), ("RNT-002", "failed"), ("RNT-003", "skipped")],
        )
        self.assertEqual(transport.delivered, ["RNT-001"])
        self.assertEqual([record.rental_id for record in log.notifications()], ["RNT-001", "RNT-002"])

        again = send_overdue_reminders(log, transport, rentals[:2], users, MONDAY, AFTER_RECESS)
        self.assertEqual([outcome.status for outcome in again.outcomes], ["duplicate", "duplicate"])
        self.assertEqual(len(log.notifications()), 2)


class TrackerReminderTests(unittest.TestCase):
    def setUp(self):
        self.transport = RecordingTransport()
        settings = RentalSettings(state_path=None, reminder_retry_delay_seconds=0)
        self.tracker = RentalTracker(settings, transport=self.transport, clock=lambda: datetime(2025, 1, 6, 8, 0))
        self.alice = self.tracker.create_user(
            {"email": "alice@school.test", "name": "Alice Smith", "password": "correct-horse"}
        )

    def test_send_overdue_reminders_only_for_overdue_rentals(self):
        overdue = self.tracker.create_rental(self.alice.id, "1", MONDAY, "recess")
        self.tracker.create_rental(self.alice.id, "2", MONDAY, "lunch")

        result = self.tracker.send_overdue_reminders(AFTER_RECESS)

        self.assertEqual([(outcome.rentalID, outcome.status) for outcome in result.outcomes], [(overdue.id, "sent")])
        self.assertEqual(len(self.tracker.notifications()), 1)
        self.assertEqual(self.tracker.get_rental(overdue.id).status, "active")
        self.assertEqual(self.tracker.get_equipment("1").available_quantity, 9)

        repeat = self.tracker.send_overdue_reminders(datetime(2025, 1, 6, 16, 0))
        self.assertEqual(
            [(outcome.rentalID, outcome.status) for outcome in repeat.outcomes],
            [(overdue.id, "duplicate"), ("RNT-002", "sent")],
        )

    def test_record_reminder_for_a_specific_rental(self):
        rental = self.tracker.create_rental(self.alice.id, "1", MONDAY, "recess")
        self.assertIsNotNone(self.tracker.record_reminder_if_absent(rental.id, AFTER_RECESS))
        self.assertIsNone(self.tracker.record_reminder_if_absent(rental.id, AFTER_RECESS))
        with self.assertRaises(NotFoundError):
            self.tracker.record_reminder_if_absent("RNT-404", AFTER_RECESS)
        self.assertEqual(self.tracker.clear_notifications(), 1)

    def test_reminder_requires_an_overdue_rental(self):
        lunch = self.tracker.create_rental(self.alice.id, "2", MONDAY, "lunch")
        with self.assertRaises(ConflictError):
            self.tracker.record_reminder_if_absent(lunch.id, datetime(2025, 1, 6, 9, 0))

        recess = self.tracker.create_rental(self.alice.id, "1", MONDAY, "recess")
        self.tracker.return_rental(recess.id)
        with self.assertRaises(ConflictError):
            self.tracker.record_reminder_if_absent(recess.id, AFTER_RECESS)

        self.assertEqual(self.tracker.notifications(), [])
        self.assertIsNotNone(self.tracker.record_reminder_if_absent(lunch.id, datetime(2025, 1, 6, 13, 30)))


if __name__ == "__main__":
    unittest.main()
