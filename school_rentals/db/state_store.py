from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from school_rentals.models.rental_models import RentalState
from school_rentals.services.errors import PersistenceError


STORE_LOGGER = logging.getLogger("school_rentals.store")


class StateStore:
    """Whole-snapshot persistence for :class:`RentalState`.

    The snapshot is written to a temporary file next to the target and then
    swapped in with ``os.replace``, so a crash mid-write leaves the previous
    file untouched. A store without a path keeps everything in memory.
    """

    def __init__(self, path: Optional[Path]) -> None:
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()

    def _ensure_data_dir(self) -> None:
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> RentalState:
        if self.path is None or not self.path.exists():
            STORE_LOGGER.info("No persisted state at %s, starting from defaults", self.path)
            return RentalState()
        with self._lock:
            try:
                raw = self.path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise PersistenceError(f"Could not read state file {self.path}: {exc}") from exc
        try:
            state = RentalState.model_validate_json(raw)
        except ValidationError as exc:
            STORE_LOGGER.error("State file %s is corrupt: %s", self.path, exc)
            raise PersistenceError(f"State file {self.path} is corrupt.") from exc
        STORE_LOGGER.info(
            "Loaded state users=%s equipment=%s rentals=%s",
            len(state.users),
            len(state.equipment),
            len(state.rentals),
        )
        return state

    def save(self, state: RentalState) -> None:
        if self.path is None:
            return
        payload = state.model_dump_json(by_alias=True, indent=2)
        with self._lock:
            tmp_name = None
            try:
                self._ensure_data_dir()
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=str(self.path.parent),
                    prefix=f".{self.path.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as handle:
                    tmp_name = handle.name
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
                tmp_name = None
            except OSError as exc:
                STORE_LOGGER.error("Saving state to %s failed: %s", self.path, exc)
                raise PersistenceError(f"Could not save state to {self.path}.") from exc
            finally:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
