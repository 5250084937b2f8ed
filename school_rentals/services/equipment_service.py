from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from school_rentals.models.rental_models import Equipment, RentalState, TimeSlotId
from school_rentals.schemas.equipment import EquipmentCreate, EquipmentUpdate
from school_rentals.services.errors import ConflictError, NotFoundError


INVENTORY_LOGGER = logging.getLogger("school_rentals.inventory")

EQUIPMENT_PREFIX = "EQ-"
QR_PREFIX = "TJHS-RENTAL"


def _parse_seq(equipment_id: str) -> Optional[int]:
    if not equipment_id.startswith(EQUIPMENT_PREFIX):
        return None
    try:
        return int(equipment_id[len(EQUIPMENT_PREFIX):])
    except ValueError:
        return None


def generate_next_equipment_id(state: RentalState) -> str:
    # rentals keep ids of deleted equipment, so they count too
    existing = [item.id for item in state.equipment] + [rental.equipment_id for rental in state.rentals]
    max_seq = 0
    for equipment_id in existing:
        seq = _parse_seq(equipment_id)
        if seq and seq > max_seq:
            max_seq = seq
    return f"{EQUIPMENT_PREFIX}{max_seq + 1:04d}"


def get_equipment(state: RentalState, equipment_id: str) -> Optional[Equipment]:
    for item in state.equipment:
        if item.id == equipment_id:
            return item
    return None


def require_equipment(state: RentalState, equipment_id: str) -> Equipment:
    item = get_equipment(state, equipment_id)
    if item is None:
        raise NotFoundError(f"Equipment {equipment_id} not found.")
    return item


def count_active_rentals(state: RentalState, equipment_id: str) -> int:
    return sum(1 for rental in state.rentals if rental.equipment_id == equipment_id and rental.status == "active")


def add_equipment(state: RentalState, payload: EquipmentCreate) -> Equipment:
    equipment_id = (payload.equipmentID or "").strip() or generate_next_equipment_id(state)
    if get_equipment(state, equipment_id) is not None:
        raise ConflictError(f"Equipment id {equipment_id} already exists.")
    if any(rental.equipment_id == equipment_id for rental in state.rentals):
        INVENTORY_LOGGER.warning("Equipment add rejected id=%s reason=id_referenced_by_rentals", equipment_id)
        raise ConflictError(f"Equipment id {equipment_id} is still referenced by existing rentals.")

    available = payload.availableQuantity if payload.availableQuantity is not None else payload.totalQuantity
    item = Equipment(
        id=equipment_id,
        name=payload.name,
        sport=payload.sport,
        total_quantity=payload.totalQuantity,
        available_quantity=available,
        description=payload.description,
    )
    state.equipment.append(item)
    INVENTORY_LOGGER.info("Equipment added id=%s name=%s total=%s", item.id, item.name, item.total_quantity)
    return item


def update_equipment(state: RentalState, equipment_id: str, payload: EquipmentUpdate) -> Equipment:
    item = require_equipment(state, equipment_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    active = count_active_rentals(state, equipment_id)

    new_total = changes.get("totalQuantity", item.total_quantity)
    if new_total < active:
        raise ConflictError(
            f"Equipment {equipment_id} has {active} active rental(s); totalQuantity cannot drop to {new_total}."
        )
    expected_available = new_total - active
    if "availableQuantity" in changes and changes["availableQuantity"] != expected_available:
        raise ConflictError(
            f"availableQuantity must be {expected_available} for equipment {equipment_id} "
            f"(total {new_total}, active rentals {active})."
        )

    # a total change shifts availability by the same delta, keeping the rented count
    new_available = changes.get("availableQuantity", item.available_quantity + new_total - item.total_quantity)
    if new_available < 0 or new_available > new_total:
        raise ConflictError(
            f"Equipment {equipment_id} would have {new_available} of {new_total} available."
        )

    if "name" in changes:
        item.name = changes["name"]
    if "sport" in changes:
        item.sport = changes["sport"]
    if "description" in changes:
        item.description = changes["description"]
    item.total_quantity = new_total
    item.available_quantity = new_available

    INVENTORY_LOGGER.info("Equipment updated id=%s fields=%s", equipment_id, sorted(changes))
    return item


def delete_equipment(state: RentalState, equipment_id: str) -> Equipment:
    item = require_equipment(state, equipment_id)
    state.equipment = [other for other in state.equipment if other.id != equipment_id]
    active = count_active_rentals(state, equipment_id)
    if active:
        INVENTORY_LOGGER.warning("Equipment %s deleted with %s active rental(s) outstanding", equipment_id, active)
    else:
        INVENTORY_LOGGER.info("Equipment deleted id=%s", equipment_id)
    return item


def decrement_available(state: RentalState, equipment_id: str) -> Equipment:
    item = require_equipment(state, equipment_id)
    if item.available_quantity <= 0:
        raise ConflictError(f"{item.name} is not available.")
    item.available_quantity -= 1
    return item


def increment_available(state: RentalState, equipment_id: str) -> Equipment:
    item = require_equipment(state, equipment_id)
    if item.available_quantity >= item.total_quantity:
        raise ConflictError(f"{item.name} is already fully in stock.")
    item.available_quantity += 1
    return item


def list_available_equipment(state: RentalState) -> list[Equipment]:
    return [item for item in state.equipment if item.available_quantity > 0]


def is_equipment_booked(state: RentalState, equipment_id: str, day: date, time_slot: TimeSlotId) -> bool:
    return any(
        rental.equipment_id == equipment_id
        and rental.date == day
        and rental.time_slot == time_slot
        and rental.status == "active"
        for rental in state.rentals
    )


def build_qr_payload(item: Equipment) -> str:
    return f"{QR_PREFIX}:{item.id}:{item.name}:{item.sport}"


def serialize_equipment(item: Equipment, active_count: int | None = None) -> dict:
    payload = {
        "equipmentID": item.id,
        "name": item.name,
        "sport": item.sport,
        "totalQuantity": item.total_quantity,
        "availableQuantity": item.available_quantity,
        "description": item.description,
        "qrPayload": build_qr_payload(item),
    }
    if active_count is not None:
        payload["activeRentals"] = active_count
    return payload
