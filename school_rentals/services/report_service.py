"""Read-only projections over users, equipment and rentals.

Every function here is a total function over the lists it is given: an
unknown user id or an empty day simply yields empty results. Nothing is
cached, callers recompute on each request.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from school_rentals.models.rental_models import ROLES, Equipment, Rental, User
from school_rentals.schemas.rentals import RentalFilter
from school_rentals.services.rental_service import is_overdue


def rentals_by_user(rentals: Iterable[Rental], user_id: str) -> list[Rental]:
    return [rental for rental in rentals if rental.user_id == user_id]


def rentals_by_date(rentals: Iterable[Rental], day: date) -> list[Rental]:
    return [rental for rental in rentals if rental.date == day]


def overdue_rentals(rentals: Iterable[Rental], now: datetime) -> list[Rental]:
    return [rental for rental in rentals if rental.status == "active" and rental.due_date < now]


def _status_counts(rentals: list[Rental], now: datetime) -> dict[str, int]:
    return {
        "total": len(rentals),
        "active": sum(1 for rental in rentals if rental.status == "active"),
        "returned": sum(1 for rental in rentals if rental.status == "returned"),
        "overdue": sum(1 for rental in rentals if is_overdue(rental, now)),
    }


def daily_stats(rentals: Iterable[Rental], day: date, now: datetime) -> dict[str, int]:
    return _status_counts(rentals_by_date(rentals, day), now)


def user_stats(rentals: Iterable[Rental], user_id: str, now: datetime) -> dict[str, int]:
    return _status_counts(rentals_by_user(rentals, user_id), now)


def utilization(equipment: Iterable[Equipment], rentals: Iterable[Rental]) -> list[dict]:
    counts = Counter(rental.equipment_id for rental in rentals)
    stats = []
    for item in equipment:
        rented_count = counts.get(item.id, 0)
        rate = (rented_count / item.total_quantity) * 100 if item.total_quantity > 0 else 0.0
        stats.append(
            {
                "equipmentID": item.id,
                "name": item.name,
                "sport": item.sport,
                "totalQuantity": item.total_quantity,
                "availableQuantity": item.available_quantity,
                "rentedCount": rented_count,
                "utilizationRate": rate,
            }
        )
    stats.sort(key=lambda entry: entry["rentedCount"], reverse=True)
    return stats


def week_range(day: date) -> tuple[date, date]:
    """Sunday-to-Saturday week containing ``day``."""
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def weekly_rollup(rentals: Iterable[Rental], week: tuple[date, date]) -> list[dict]:
    start, end = week
    if end < start:
        return []
    rentals = list(rentals)
    days = []
    current = start
    while current <= end:
        day_rentals = rentals_by_date(rentals, current)
        days.append(
            {
                "date": current,
                "dayName": f"{current:%a}",
                "rentals": len(day_rentals),
                "active": sum(1 for rental in day_rentals if rental.status == "active"),
                "returned": sum(1 for rental in day_rentals if rental.status == "returned"),
            }
        )
        current += timedelta(days=1)
    return days


def dashboard_stats(
    users: Iterable[User],
    equipment: Iterable[Equipment],
    rentals: Iterable[Rental],
    now: datetime,
) -> dict:
    users = list(users)
    equipment = list(equipment)
    role_counts = Counter(user.role for user in users)
    total_units = sum(item.total_quantity for item in equipment)
    available_units = sum(item.available_quantity for item in equipment)
    return {
        "users": {"total": len(users), **{f"{role}s": role_counts.get(role, 0) for role in ROLES}},
        "rentals": _status_counts(list(rentals), now),
        "equipment": {
            "total": total_units,
            "available": available_units,
            "rented": total_units - available_units,
        },
    }


def recent_users(users: Iterable[User], limit: int = 5) -> list[User]:
    return sorted(users, key=lambda user: user.created_at, reverse=True)[: max(limit, 0)]


def _matches_search(rental: Rental, user: Optional[User], term: str) -> bool:
    lowered = term.lower()
    if lowered in rental.equipment_name.lower() or lowered in rental.sport.lower():
        return True
    if user is None:
        return False
    return lowered in user.name.lower() or bool(user.student_id and term in user.student_id)


def filter_rentals(
    rentals: Iterable[Rental],
    users: Iterable[User],
    criteria: RentalFilter,
    now: datetime,
) -> list[Rental]:
    users_by_id = {user.id: user for user in users}
    selected = []
    for rental in rentals:
        if criteria.day is not None and rental.date != criteria.day:
            continue
        if criteria.status == "overdue":
            if not is_overdue(rental, now):
                continue
        elif criteria.status != "all" and rental.status != criteria.status:
            continue
        term = (criteria.search or "").strip()
        if term and not _matches_search(rental, users_by_id.get(rental.user_id), term):
            continue
        selected.append(rental)
    return selected


def inventory_discrepancies(equipment: Iterable[Equipment], rentals: Iterable[Rental]) -> list[dict]:
    active = Counter(rental.equipment_id for rental in rentals if rental.status == "active")
    problems = []
    for item in equipment:
        rented = active.get(item.id, 0)
        if item.available_quantity + rented != item.total_quantity:
            problems.append(
                {
                    "equipmentID": item.id,
                    "totalQuantity": item.total_quantity,
                    "availableQuantity": item.available_quantity,
                    "activeRentals": rented,
                }
            )
    return problems
