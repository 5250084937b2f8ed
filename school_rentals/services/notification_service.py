from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from typing import Iterable, Optional

from school_rentals.models.rental_models import NotificationRecord, Rental, User
from school_rentals.schemas.rentals import ReminderBatchResult, ReminderOutcome


NOTIFY_LOGGER = logging.getLogger("school_rentals.notifications")

DEFAULT_SCHOOL_NAME = "The Jannali High School"


def build_overdue_email(
    user: User,
    rental: Rental,
    today: date,
    now: datetime,
    school_name: str = DEFAULT_SCHOOL_NAME,
) -> NotificationRecord:
    subject = f"URGENT: Overdue Equipment Return - {rental.equipment_name}"
    body = "\n".join(
        [
            f"Dear {user.name},",
            "",
            "This is a reminder that you have an overdue equipment rental that needs to be returned immediately.",
            "",
            "Rental Details:",
            f"- Equipment: {rental.equipment_name}",
            f"- Rental ID: {rental.id}",
            f"- Due Date: {rental.due_date:%d/%m/%Y} at {rental.due_date:%H:%M}",
            "- Current Status: OVERDUE",
            "",
            "Please return the equipment to the sports office as soon as possible. Continued failure to return "
            "equipment may result in restrictions on future rentals.",
            "",
            "If you have already returned the equipment, please contact the sports office to update your rental status.",
            "",
            "Thank you for your cooperation.",
            "",
            "Best regards,",
            "TJHS Sports Department",
            school_name,
        ]
    )
    return NotificationRecord(
        rental_id=rental.id,
        recipient=user.email,
        recipient_name=user.name,
        equipment_name=rental.equipment_name,
        subject=subject,
        body=body,
        due_date=rental.due_date,
        logged_on=today,
        created_at=now,
    )


class NotificationLog:
    """Append-only log of overdue reminders, deduplicated per rental and day.

    Construct one per process and hand it to whatever records or reads
    reminders. Records are never edited; :meth:`clear_log` drops them all.
    """

    def __init__(self, school_name: str = DEFAULT_SCHOOL_NAME) -> None:
        self.school_name = school_name
        self._records: list[NotificationRecord] = []
        self._lock = threading.Lock()

    def has_reminder(self, rental_id: str, day: date) -> bool:
        with self._lock:
            return self._has_reminder_unlocked(rental_id, day)

    def _has_reminder_unlocked(self, rental_id: str, day: date) -> bool:
        return any(record.rental_id == rental_id and record.logged_on == day for record in self._records)

    def record_reminder_if_absent(
        self,
        rental: Rental,
        user: User,
        today: date,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationRecord]:
        record = build_overdue_email(user, rental, today, now or datetime.now(), self.school_name)
        with self._lock:
            if self._has_reminder_unlocked(rental.id, today):
                return None
            self._records.append(record)
        NOTIFY_LOGGER.info("Reminder logged rental=%s to=%s", rental.id, record.recipient)
        return record

    def notifications(self) -> list[NotificationRecord]:
        with self._lock:
            return list(self._records)

    def clear_log(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records = []
        NOTIFY_LOGGER.info("Notification log cleared records=%s", count)
        return count


class ReminderTransport:
    def send(self, record: NotificationRecord) -> None:
        raise NotImplementedError


class LoggingTransport(ReminderTransport):
    """Stand-in for a mail gateway: reminders are only written to the log."""

    def send(self, record: NotificationRecord) -> None:
        NOTIFY_LOGGER.info(
            "Email notification to=%s subject=%r rental=%s",
            record.recipient,
            record.subject,
            record.rental_id,
        )


def deliver_with_retry(
    transport: ReminderTransport,
    record: NotificationRecord,
    max_attempts: int = 3,
    retry_delay_seconds: float = 0.0,
) -> ReminderOutcome:
    last_error = None
    attempts = max(max_attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            transport.send(record)
        except Exception as exc:
            last_error = str(exc) or exc.__class__.__name__
            NOTIFY_LOGGER.warning(
                "Reminder delivery failed rental=%s attempt=%s/%s error=%s",
                record.rental_id,
                attempt,
                attempts,
                last_error,
            )
            if attempt < attempts and retry_delay_seconds > 0:
                time.sleep(retry_delay_seconds)
            continue
        return ReminderOutcome(rentalID=record.rental_id, recipient=record.recipient, status="sent", attempts=attempt)
    return ReminderOutcome(
        rentalID=record.rental_id,
        recipient=record.recipient,
        status="failed",
        attempts=attempts,
        error=last_error,
    )


def send_overdue_reminders(
    log: NotificationLog,
    transport: ReminderTransport,
    overdue_rentals: Iterable[Rental],
    users: Iterable[User],
    today: date,
    now: Optional[datetime] = None,
    max_attempts: int = 3,
    retry_delay_seconds: float = 0.0,
    workers: int = 4,
) -> ReminderBatchResult:
    users_by_id = {user.id: user for user in users}
    outcomes: list[Optional[ReminderOutcome]] = []
    pending: list[tuple[int, NotificationRecord]] = []

    for rental in overdue_rentals:
        user = users_by_id.get(rental.user_id)
        if user is None or not user.email:
            outcomes.append(ReminderOutcome(rentalID=rental.id, status="skipped", error="No recipient email."))
            continue
        record = log.record_reminder_if_absent(rental, user, today, now)
        if record is None:
            outcomes.append(ReminderOutcome(rentalID=rental.id, recipient=user.email, status="duplicate"))
            continue
        outcomes.append(None)
        pending.append((len(outcomes) - 1, record))

    if pending:
        with ThreadPoolExecutor(max_workers=max(1, min(workers, len(pending)))) as pool:
            futures = [
                (index, pool.submit(deliver_with_retry, transport, record, max_attempts, retry_delay_seconds))
                for index, record in pending
            ]
            for index, future in futures:
                outcomes[index] = future.result()

    result = ReminderBatchResult(outcomes=[item for item in outcomes if item is not None])
    NOTIFY_LOGGER.info(
        "Reminder batch finished sent=%s failed=%s duplicate=%s skipped=%s",
        len(result.with_status("sent")),
        len(result.with_status("failed")),
        len(result.with_status("duplicate")),
        len(result.with_status("skipped")),
    )
    return result
