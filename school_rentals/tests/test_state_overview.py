import io
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import date, datetime
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from school_rentals.SportsRental import RentalTracker
from school_rentals.models.rental_models import RentalState
from school_rentals.scripts.state_overview import main, run_integrity_checks
from school_rentals.settings import RentalSettings


class StateOverviewTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "state.json"
        self.tracker = RentalTracker(RentalSettings(state_path=self.path), clock=lambda: datetime(2025, 1, 6, 8, 0))
        user = self.tracker.create_user({"email": "a@school.test", "name": "A", "password": "long-enough"})
        self.tracker.create_rental(user.id, "1", date(2025, 1, 6), "recess")

    def tearDown(self):
        self._tmp.cleanup()

    def test_clean_state_passes_every_check(self):
        failing = [check.name for check in run_integrity_checks(self.tracker.state) if not check.ok]
        self.assertEqual(failing, [])

    def test_unbalanced_inventory_and_orphans_are_flagged(self):
        state = self.tracker.state.model_copy(deep=True)
        state.equipment[1].available_quantity = 3
        state.users = []
        failing = {check.name for check in run_integrity_checks(state) if not check.ok}
        self.assertIn("equipment:inventory_balanced", failing)
        self.assertIn("equipment:2:available_matches_active", failing)
        self.assertIn("rentals:orphan_userid", failing)

    def test_main_reports_on_the_state_file(self):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(["--state-path", str(self.path), "--samples", "2"])
        self.assertEqual(code, 0)
        self.assertIn("[OK] equipment:inventory_balanced", out.getvalue())
        self.assertIn("rentals: 1 (active=1 returned=0)", out.getvalue())

    def test_main_with_missing_file(self):
        with redirect_stdout(io.StringIO()):
            self.assertEqual(main(["--state-path", str(self.path.with_name("missing.json"))]), 2)

    def test_empty_state_has_no_failures(self):
        self.assertTrue(all(check.ok for check in run_integrity_checks(RentalState())))


if __name__ == "__main__":
    unittest.main()
