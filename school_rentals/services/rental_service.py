from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from school_rentals.models.rental_models import SLOT_ORDER, TIME_SLOTS, Rental, RentalState, TimeSlotId
from school_rentals.schemas.rentals import CreateRentalDto
from school_rentals.services.equipment_service import (
    decrement_available,
    get_equipment,
    increment_available,
    require_equipment,
)
from school_rentals.services.errors import ConflictError, NotFoundError, ValidationError


RENTAL_LOGGER = logging.getLogger("school_rentals.rentals")


def generate_rental_number(state: RentalState, prefix: str = "RNT") -> str:
    token = (prefix or "RNT").upper()
    next_number = 1
    for rental in state.rentals:
        if not rental.id.startswith(f"{token}-"):
            continue
        raw = rental.id.replace(f"{token}-", "", 1)
        try:
            number = int(raw)
        except ValueError:
            continue
        if number >= next_number:
            next_number = number + 1
    return f"{token}-{next_number:03d}"


def compute_due_date(day: date, time_slot: TimeSlotId) -> datetime:
    return datetime.combine(day, TIME_SLOTS[time_slot].end_time)


def is_overdue(rental: Rental, now: datetime) -> bool:
    return rental.status == "active" and now > rental.due_date


def display_status(rental: Rental, now: datetime) -> str:
    if rental.status == "returned":
        return "returned"
    return "overdue" if is_overdue(rental, now) else "active"


def get_rental(state: RentalState, rental_id: str) -> Optional[Rental]:
    for rental in state.rentals:
        if rental.id == rental_id:
            return rental
    return None


def find_slot_rental(state: RentalState, equipment_id: str, day: date, time_slot: TimeSlotId) -> Optional[Rental]:
    for rental in state.rentals:
        if (
            rental.status == "active"
            and rental.equipment_id == equipment_id
            and rental.date == day
            and rental.time_slot == time_slot
        ):
            return rental
    return None


def _check_booking_window(day: date, today: date, booking_window_days: int) -> None:
    if day < today:
        raise ValidationError(f"Cannot book equipment for a past date ({day.isoformat()}).")
    last_day = today + timedelta(days=booking_window_days)
    if day > last_day:
        raise ValidationError(
            f"Bookings open {booking_window_days} day(s) ahead; {day.isoformat()} is after {last_day.isoformat()}."
        )


def create_rental(
    state: RentalState,
    payload: CreateRentalDto,
    now: datetime,
    booking_window_days: int = 30,
) -> Rental:
    _check_booking_window(payload.date, now.date(), booking_window_days)

    if not any(user.id == payload.userID for user in state.users):
        raise NotFoundError(f"User {payload.userID} not found.")
    equipment = require_equipment(state, payload.equipmentID)
    if equipment.available_quantity <= 0:
        RENTAL_LOGGER.warning("Rental rejected equipment=%s reason=unavailable", equipment.id)
        raise ConflictError(f"{equipment.name} is not available.")
    occupied = find_slot_rental(state, equipment.id, payload.date, payload.timeSlot)
    if occupied is not None:
        RENTAL_LOGGER.warning(
            "Rental rejected equipment=%s date=%s slot=%s reason=slot_occupied by=%s",
            equipment.id,
            payload.date,
            payload.timeSlot,
            occupied.id,
        )
        raise ConflictError(
            f"{equipment.name} is already booked for {TIME_SLOTS[payload.timeSlot].name} on {payload.date.isoformat()}."
        )

    rental = Rental(
        id=generate_rental_number(state),
        user_id=payload.userID,
        equipment_id=equipment.id,
        equipment_name=equipment.name,
        sport=equipment.sport,
        time_slot=payload.timeSlot,
        date=payload.date,
        status="active",
        rented_at=now,
        due_date=compute_due_date(payload.date, payload.timeSlot),
    )
    decrement_available(state, equipment.id)
    state.rentals.append(rental)
    RENTAL_LOGGER.info(
        "Rental created id=%s user=%s equipment=%s date=%s slot=%s",
        rental.id,
        rental.user_id,
        rental.equipment_id,
        rental.date,
        rental.time_slot,
    )
    return rental


def apply_return_updates(state: RentalState, rental: Rental, now: datetime) -> None:
    if get_equipment(state, rental.equipment_id) is None:
        RENTAL_LOGGER.warning(
            "Rental %s returned but equipment %s no longer exists; inventory unchanged",
            rental.id,
            rental.equipment_id,
        )
    else:
        increment_available(state, rental.equipment_id)
    rental.status = "returned"
    rental.returned_at = now


def return_rental(state: RentalState, rental_id: str, now: datetime) -> Rental:
    rental = get_rental(state, rental_id)
    if rental is None:
        raise NotFoundError(f"Rental {rental_id} not found.")
    if rental.status != "active":
        RENTAL_LOGGER.warning("Return rejected rental=%s reason=already_returned", rental_id)
        raise ConflictError(f"Rental {rental_id} was already returned.")

    apply_return_updates(state, rental, now)
    RENTAL_LOGGER.info("Rental returned id=%s equipment=%s", rental.id, rental.equipment_id)
    return rental


def listing_sort_key(rental: Rental) -> tuple:
    return (SLOT_ORDER.get(rental.time_slot, len(SLOT_ORDER)), rental.equipment_name.lower())


def sort_for_listing(rentals: Iterable[Rental]) -> list[Rental]:
    return sorted(rentals, key=listing_sort_key)


def sort_history(rentals: Iterable[Rental]) -> list[Rental]:
    return sorted(rentals, key=lambda rental: rental.rented_at, reverse=True)


def serialize_rental(rental: Rental, now: datetime | None = None) -> dict:
    slot = TIME_SLOTS[rental.time_slot]
    payload = {
        "rentalID": rental.id,
        "userID": rental.user_id,
        "equipmentID": rental.equipment_id,
        "equipmentName": rental.equipment_name,
        "sport": rental.sport,
        "timeSlot": rental.time_slot,
        "timeSlotName": slot.name,
        "timeSlotWindow": f"{slot.start_time:%H:%M} - {slot.end_time:%H:%M}",
        "date": rental.date,
        "status": rental.status,
        "rentedAt": rental.rented_at,
        "dueDate": rental.due_date,
        "returnedAt": rental.returned_at,
    }
    if now is not None:
        payload["displayStatus"] = display_status(rental, now)
    return payload
