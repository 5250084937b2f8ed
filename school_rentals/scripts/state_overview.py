#!/usr/bin/env python3
"""State file overview and integrity checks for the sports rental tracker."""

from __future__ import annotations

import argparse
import os
import sys
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv

from school_rentals.db.state_store import StateStore
from school_rentals.models.rental_models import RentalState
from school_rentals.services.errors import PersistenceError
from school_rentals.services.report_service import inventory_discrepancies
from school_rentals.settings import DEFAULT_STATE_PATH


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def run_integrity_checks(state: RentalState) -> list[CheckResult]:
    checks: list[CheckResult] = []

    problems = inventory_discrepancies(state.equipment, state.rentals)
    for problem in problems:
        checks.append(
            CheckResult(
                f"equipment:{problem['equipmentID']}:available_matches_active",
                False,
                "total={totalQuantity} available={availableQuantity} active={activeRentals}".format(**problem),
            )
        )
    checks.append(CheckResult("equipment:inventory_balanced", not problems, f"count={len(problems)}"))

    slot_keys = Counter(
        (rental.equipment_id, rental.date, rental.time_slot) for rental in state.rentals if rental.status == "active"
    )
    double_booked = sum(1 for count in slot_keys.values() if count > 1)
    checks.append(CheckResult("rentals:double_booked_slots", double_booked == 0, f"count={double_booked}"))

    user_ids = {user.id for user in state.users}
    orphan_users = sum(1 for rental in state.rentals if rental.user_id not in user_ids)
    checks.append(CheckResult("rentals:orphan_userid", orphan_users == 0, f"count={orphan_users}"))

    rental_ids = Counter(rental.id for rental in state.rentals)
    duplicate_ids = sum(1 for count in rental_ids.values() if count > 1)
    checks.append(CheckResult("rentals:duplicate_id", duplicate_ids == 0, f"count={duplicate_ids}"))

    emails = Counter(user.email.strip().lower() for user in state.users)
    duplicate_emails = sum(1 for count in emails.values() if count > 1)
    checks.append(CheckResult("users:duplicate_email", duplicate_emails == 0, f"count={duplicate_emails}"))

    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_counts(state: RentalState) -> None:
    _print_section("Record Counts")
    print(f"users: {len(state.users)}")
    print(f"equipment: {len(state.equipment)}")
    statuses = Counter(rental.status for rental in state.rentals)
    print(f"rentals: {len(state.rentals)} (active={statuses['active']} returned={statuses['returned']})")
    equipment_ids = {item.id for item in state.equipment}
    retired = sum(1 for rental in state.rentals if rental.equipment_id not in equipment_ids)
    print(f"rentals for deleted equipment: {retired}")


def _print_samples(state: RentalState, sample_size: int) -> None:
    _print_section("Sample Values")
    recent = sorted(state.rentals, key=lambda rental: rental.rented_at, reverse=True)[: max(1, sample_size)]
    print("Rentals (recent):")
    for rental in recent:
        print(f"  - {(rental.id, rental.user_id, rental.equipment_id, rental.date.isoformat(), rental.time_slot, rental.status)}")


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Sports rental state overview")
    parser.add_argument("--state-path", default=os.environ.get("RENTAL_STATE_PATH", DEFAULT_STATE_PATH))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args(argv)

    raw_path = (args.state_path or "").strip()
    if not raw_path:
        print("RENTAL_STATE_PATH is empty. Provide --state-path or export env first.")
        return 2
    path = Path(raw_path)
    if not path.exists():
        print(f"State file {path} does not exist.")
        return 2

    try:
        state = StateStore(path).load()
    except PersistenceError as exc:
        print(f"Could not load state: {exc.message}")
        return 3

    checks = run_integrity_checks(state)
    _print_results("Integrity Checks", checks)
    _print_counts(state)
    _print_samples(state, args.samples)
    return 0 if all(check.ok for check in checks) else 1


if __name__ == "__main__":
    sys.exit(main())
