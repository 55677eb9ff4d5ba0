"""Run journal: persisted stage, transient resources and leaks per run."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from vmdktransfer.utils.logging import get_logger

logger = get_logger(__name__)


class RunStage(str, Enum):
    INIT = "init"
    SNAPSHOTTING = "snapshotting"
    CLONING = "cloning"
    TRANSFERRING_DISKS = "transferring_disks"
    CLEANING_UP = "cleaning_up"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunState:
    """Persistent state for a single transfer run.

    Stored as JSON in the state directory so operators can find snapshots
    or clones that cleanup failed to remove.
    """
    run_id: str
    source_vm: str
    destination_vm: str
    disk_names: list[str] = field(default_factory=list)
    overwrite: bool = False
    stage: RunStage = RunStage.INIT
    snapshot_name: Optional[str] = None
    clone_name: Optional[str] = None
    records: list[dict[str, Any]] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    leaked: list[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["stage"] = self.stage.value
        for key in ("started_at", "finished_at"):
            if d[key]:
                d[key] = d[key].isoformat()
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "RunState":
        data = dict(data)
        data["stage"] = RunStage(data.get("stage", RunStage.INIT.value))
        for key in ("started_at", "finished_at"):
            if data.get(key) and isinstance(data[key], str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


class RunStateStore:
    """Persists run state to disk as JSON files.

    State files are stored at: {state_dir}/runs/{run_id}.json
    """

    def __init__(self, state_dir: Path | str):
        self.state_dir = Path(state_dir).expanduser() / "runs"
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _state_path(self, run_id: str) -> Path:
        return self.state_dir / f"{run_id}.json"

    def save(self, state: RunState) -> None:
        path = self._state_path(state.run_id)
        with open(path, "w") as f:
            json.dump(state.to_dict(), f, indent=2, default=str)

    def load(self, run_id: str) -> Optional[RunState]:
        path = self._state_path(run_id)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
            return RunState.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to load state for {run_id}: {e}")
            return None

    def list_all(self) -> list[RunState]:
        """All journaled runs, newest first."""
        states = []
        for path in self.state_dir.glob("*.json"):
            state = self.load(path.stem)
            if state:
                states.append(state)
        return sorted(states, key=lambda s: s.started_at or datetime.min, reverse=True)

    def list_leaks(self) -> list[RunState]:
        """Runs whose snapshot or clone could not be removed."""
        return [s for s in self.list_all() if s.leaked]
