import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel

from school_rentals.db.state_store import StateStore
from school_rentals.models.rental_models import Equipment, NotificationRecord, Rental, RentalState, User
from school_rentals.schemas.equipment import EquipmentCreate, EquipmentUpdate
from school_rentals.schemas.rentals import (
    BulkReturnRequest,
    BulkReturnResult,
    CreateRentalDto,
    RentalFailure,
    RentalFilter,
    ReminderBatchResult,
)
from school_rentals.schemas.users import AuthLoginRequest, CreateUserDto
from school_rentals.services import equipment_service, report_service, rental_service, user_access_service
from school_rentals.services.errors import ConflictError, NotFoundError, RentalServiceError, parse_payload
from school_rentals.services.notification_service import (
    LoggingTransport,
    NotificationLog,
    ReminderTransport,
    send_overdue_reminders,
)
from school_rentals.settings import RentalSettings


load_dotenv()

APP_LOGGER = logging.getLogger("school_rentals.app")

RecordT = TypeVar("RecordT", bound=BaseModel)


def _detached(record: Optional[RecordT]) -> Optional[RecordT]:
    return record.model_copy() if record is not None else None


def _detached_all(records: Iterable[RecordT]) -> list[RecordT]:
    return [record.model_copy() for record in records]


class RentalTracker:
    """Entry point used by the presentation layer.

    Wires the state store, services and notification log together. Every
    mutating call runs inside :meth:`_transaction`: the snapshot is copied,
    the change applied and saved, and the copy restored if anything fails.
    Entities handed back to callers are copies; change them through the
    tracker, not by assignment.
    """

    def __init__(
        self,
        settings: Optional[RentalSettings] = None,
        *,
        store: Optional[StateStore] = None,
        notification_log: Optional[NotificationLog] = None,
        transport: Optional[ReminderTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings or RentalSettings.from_env()
        self.store = store if store is not None else StateStore(self.settings.state_path)
        self.notification_log = notification_log or NotificationLog(self.settings.school_name)
        self.transport = transport or LoggingTransport()
        self._clock = clock
        self._lock = threading.RLock()
        self.state: RentalState = self.store.load()

        if self.settings.admin_email and self.settings.admin_password:
            with self._transaction() as state:
                user_access_service.provision_admin(
                    state, self.settings.admin_email, self.settings.admin_password, self.now()
                )

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def _transaction(self):
        with self._lock:
            backup = self.state.model_copy(deep=True)
            try:
                yield self.state
                self.store.save(self.state)
            except Exception:
                self.state = backup
                raise

    # ---- users
    def create_user(self, payload: CreateUserDto | dict[str, Any]) -> User:
        dto = parse_payload(CreateUserDto, payload)
        with self._transaction() as state:
            return _detached(user_access_service.create_user(state, dto, self.now()))

    def authenticate(self, email: str, password: str) -> User:
        dto = parse_payload(AuthLoginRequest, {"email": email, "password": password})
        with self._transaction() as state:
            user = user_access_service.authenticate(state, dto.email, dto.password)
            state.current_user = user.model_copy()
            return _detached(user)

    def logout(self) -> None:
        with self._transaction() as state:
            state.current_user = None

    @property
    def current_user(self) -> Optional[User]:
        with self._lock:
            return _detached(self.state.current_user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return _detached(user_access_service.get_user(self.state, user_id))

    def list_users(self) -> list[User]:
        with self._lock:
            return _detached_all(self.state.users)

    # ---- equipment
    def add_equipment(self, payload: EquipmentCreate | dict[str, Any]) -> Equipment:
        dto = parse_payload(EquipmentCreate, payload)
        with self._transaction() as state:
            return _detached(equipment_service.add_equipment(state, dto))

    def update_equipment(self, equipment_id: str, payload: EquipmentUpdate | dict[str, Any]) -> Equipment:
        dto = parse_payload(EquipmentUpdate, payload)
        with self._transaction() as state:
            return _detached(equipment_service.update_equipment(state, equipment_id, dto))

    def delete_equipment(self, equipment_id: str) -> Equipment:
        with self._transaction() as state:
            return equipment_service.delete_equipment(state, equipment_id)

    def get_equipment(self, equipment_id: str) -> Optional[Equipment]:
        with self._lock:
            return _detached(equipment_service.get_equipment(self.state, equipment_id))

    def list_equipment(self) -> list[Equipment]:
        with self._lock:
            return _detached_all(self.state.equipment)

    def list_available_equipment(self) -> list[Equipment]:
        with self._lock:
            return _detached_all(equipment_service.list_available_equipment(self.state))

    def is_equipment_booked(self, equipment_id: str, day: date, time_slot: str) -> bool:
        with self._lock:
            return equipment_service.is_equipment_booked(self.state, equipment_id, day, time_slot)

    def equipment_qr_payload(self, equipment_id: str) -> str:
        with self._lock:
            item = equipment_service.require_equipment(self.state, equipment_id)
            return equipment_service.build_qr_payload(item)

    # ---- rentals
    def create_rental(self, user_id: str, equipment_id: str, day: date | str, time_slot: str) -> Rental:
        dto = parse_payload(
            CreateRentalDto,
            {"userID": user_id, "equipmentID": equipment_id, "date": day, "timeSlot": time_slot},
        )
        with self._transaction() as state:
            return _detached(
                rental_service.create_rental(state, dto, self.now(), self.settings.booking_window_days)
            )

    def return_rental(self, rental_id: str) -> Rental:
        with self._transaction() as state:
            return _detached(rental_service.return_rental(state, rental_id, self.now()))

    def bulk_return(self, rental_ids: BulkReturnRequest | Iterable[str]) -> BulkReturnResult:
        if not isinstance(rental_ids, BulkReturnRequest):
            rental_ids = parse_payload(BulkReturnRequest, {"rentalIDs": list(rental_ids)})
        result = BulkReturnResult()
        for rental_id in rental_ids.rentalIDs:
            try:
                self.return_rental(rental_id)
            except RentalServiceError as exc:
                result.failed.append(RentalFailure(rentalID=rental_id, kind=exc.kind, message=exc.message))
                continue
            result.returned.append(rental_id)
        APP_LOGGER.info("Bulk return returned=%s failed=%s", len(result.returned), len(result.failed))
        return result

    def return_all_overdue(self, now: Optional[datetime] = None) -> BulkReturnResult:
        with self._lock:
            overdue = report_service.overdue_rentals(self.state.rentals, now or self.now())
            rental_ids = [rental.id for rental in overdue]
        return self.bulk_return(rental_ids)

    def get_rental(self, rental_id: str) -> Optional[Rental]:
        with self._lock:
            return _detached(rental_service.get_rental(self.state, rental_id))

    # ---- queries
    def rentals_by_user(self, user_id: str) -> list[Rental]:
        with self._lock:
            return _detached_all(report_service.rentals_by_user(self.state.rentals, user_id))

    def rental_history(self, user_id: str) -> list[Rental]:
        return rental_service.sort_history(self.rentals_by_user(user_id))

    def rentals_by_date(self, day: date) -> list[Rental]:
        with self._lock:
            selected = _detached_all(report_service.rentals_by_date(self.state.rentals, day))
        return rental_service.sort_for_listing(selected)

    def overdue_rentals(self, now: Optional[datetime] = None) -> list[Rental]:
        with self._lock:
            return _detached_all(report_service.overdue_rentals(self.state.rentals, now or self.now()))

    def filter_rentals(self, criteria: RentalFilter | dict[str, Any], now: Optional[datetime] = None) -> list[Rental]:
        criteria = parse_payload(RentalFilter, criteria)
        with self._lock:
            selected = _detached_all(
                report_service.filter_rentals(self.state.rentals, self.state.users, criteria, now or self.now())
            )
        return rental_service.sort_for_listing(selected)

    def utilization(self) -> list[dict]:
        with self._lock:
            return report_service.utilization(self.state.equipment, self.state.rentals)

    def weekly_rollup(self, week: Optional[tuple[date, date]] = None) -> list[dict]:
        with self._lock:
            return report_service.weekly_rollup(
                self.state.rentals, week or report_service.week_range(self.now().date())
            )

    def daily_stats(self, day: date, now: Optional[datetime] = None) -> dict[str, int]:
        with self._lock:
            return report_service.daily_stats(self.state.rentals, day, now or self.now())

    def user_stats(self, user_id: str, now: Optional[datetime] = None) -> dict[str, int]:
        with self._lock:
            return report_service.user_stats(self.state.rentals, user_id, now or self.now())

    def dashboard_stats(self, now: Optional[datetime] = None) -> dict:
        with self._lock:
            return report_service.dashboard_stats(
                self.state.users, self.state.equipment, self.state.rentals, now or self.now()
            )

    def recent_users(self, limit: int = 5) -> list[User]:
        with self._lock:
            return _detached_all(report_service.recent_users(self.state.users, limit))

    def inventory_discrepancies(self) -> list[dict]:
        with self._lock:
            return report_service.inventory_discrepancies(self.state.equipment, self.state.rentals)

    # ---- notifications
    def record_reminder_if_absent(self, rental_id: str, now: Optional[datetime] = None) -> Optional[NotificationRecord]:
        current = now or self.now()
        with self._lock:
            rental = rental_service.get_rental(self.state, rental_id)
            if rental is None:
                raise NotFoundError(f"Rental {rental_id} not found.")
            if not rental_service.is_overdue(rental, current):
                APP_LOGGER.warning(
                    "Reminder rejected rental=%s status=%s reason=not_overdue",
                    rental_id,
                    rental_service.display_status(rental, current),
                )
                raise ConflictError(f"Rental {rental_id} is not overdue.")
            user = user_access_service.get_user(self.state, rental.user_id)
            if user is None:
                raise NotFoundError(f"User {rental.user_id} not found.")
            rental = rental.model_copy()
            user = user.model_copy()
        return self.notification_log.record_reminder_if_absent(rental, user, current.date(), current)

    def send_overdue_reminders(self, now: Optional[datetime] = None) -> ReminderBatchResult:
        current = now or self.now()
        with self._lock:
            overdue = _detached_all(report_service.overdue_rentals(self.state.rentals, current))
            users = _detached_all(self.state.users)
        return send_overdue_reminders(
            self.notification_log,
            self.transport,
            overdue,
            users,
            current.date(),
            current,
            max_attempts=self.settings.reminder_max_attempts,
            retry_delay_seconds=self.settings.reminder_retry_delay_seconds,
            workers=self.settings.reminder_workers,
        )

    def notifications(self) -> list[NotificationRecord]:
        return self.notification_log.notifications()

    def clear_notifications(self) -> int:
        return self.notification_log.clear_log()
