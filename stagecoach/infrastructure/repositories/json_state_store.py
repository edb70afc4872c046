"""
JSON State Store

Architectural Intent:
- File-backed StateStorePort: one human-readable JSON file per plan id
- Atomic replace-on-write: the new version is written to a temporary file in
  the same directory, fsynced, then os.replace()d over the old one, so a
  crash mid-save leaves either the previous or the new file, never a mix
- Records are never deleted automatically; delete() is explicit cleanup

Design Decisions:
- Plan ids are restricted to a safe filename alphabet
- Any OS or decode error surfaces as PersistenceError / StateCorruptionError;
  the store never repairs or discards a bad file on its own
"""

from __future__ import annotations
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from stagecoach.domain.entities.deployment_state import DeploymentState
from stagecoach.domain.errors import PersistenceError, StateCorruptionError
from stagecoach.domain.ports.state_store_port import StateStorePort

logger = logging.getLogger(__name__)

_PLAN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_SUFFIX = ".state.json"


class JsonStateStore(StateStorePort):

    def __init__(self, directory: str | Path = ".stagecoach"):
        self.directory = Path(directory)

    def path_for(self, plan_id: str) -> Path:
        if not _PLAN_ID_RE.match(plan_id):
            raise PersistenceError(f"Invalid plan id for a state file: {plan_id!r}")
        return self.directory / f"{plan_id}{_SUFFIX}"

    def load(self, plan_id: str) -> Optional[DeploymentState]:
        path = self.path_for(plan_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No state file for plan %s at %s", plan_id, path)
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot read state file {path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateCorruptionError(f"State file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StateCorruptionError(f"State file {path} does not hold a JSON object")

        state = DeploymentState.from_dict(data)
        if state.plan_id != plan_id:
            raise StateCorruptionError(
                f"State file {path} belongs to plan {state.plan_id}, expected {plan_id}"
            )
        return state

    def save(self, state: DeploymentState) -> None:
        path = self.path_for(state.plan_id)
        payload = json.dumps(state.to_dict(), indent=2, sort_keys=False)
        tmp_name: Optional[str] = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{state.plan_id}.", suffix=".tmp", dir=self.directory
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
            self._fsync_directory()
        except OSError as e:
            logger.error("Failed to persist state for plan %s: %s", state.plan_id, e)
            raise PersistenceError(f"Cannot write state file {path}: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
        logger.debug(
            "Saved state for plan %s (completed: %s)",
            state.plan_id, ", ".join(state.completed_stage_ids) or "none",
        )

    def _fsync_directory(self) -> None:
        # makes the rename itself durable; not supported on every platform
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self.directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def list_plans(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.name[: -len(_SUFFIX)] for p in self.directory.glob(f"*{_SUFFIX}"))

    def delete(self, plan_id: str) -> bool:
        path = self.path_for(plan_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Cannot delete state file {path}: {e}") from e
        logger.warning("Deleted state file for plan %s", plan_id)
        return True
