"""Best-effort removal of a run's snapshot and clone VM."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from rich.markup import escape

from vmdktransfer.errors import DeletionError
from vmdktransfer.pipeline.tracker import TransientResourceTracker
from vmdktransfer.utils.logging import get_logger
from vmdktransfer.vmware.models import CloneHandle, SnapshotHandle

logger = get_logger(__name__)


@dataclass
class CleanupReport:
    removed: list[str] = field(default_factory=list)
    leaked: list[DeletionError] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.leaked


class CleanupCoordinator:
    """Unwinds a run's compensation stack.

    Each compensation is attempted independently and failures are
    collected, never raised: a leaked snapshot or clone must not hide the
    error that ended the run.
    """

    def __init__(self, api):
        self.api = api

    def unwind(self, tracker: TransientResourceTracker) -> CleanupReport:
        report = CleanupReport()
        entry = tracker.pop()
        while entry is not None:
            try:
                entry.action()
                report.removed.append(f"{entry.kind}:{entry.name}")
            except Exception as e:
                leak = DeletionError(
                    f"Could not delete {entry.kind} '{entry.name}'",
                    resource_kind=entry.kind,
                    resource_name=entry.name,
                    cause=e,
                )
                logger.error(f"[red]✗ {escape(leak.describe())}, remove it manually[/red]")
                report.leaked.append(leak)
            entry = tracker.pop()
        return report

    def cleanup(self, snapshot: Optional[SnapshotHandle] = None,
                clone: Optional[CloneHandle] = None) -> CleanupReport:
        """Delete the clone VM (if any), then the snapshot (if any)."""
        tracker = TransientResourceTracker()
        if snapshot is not None:
            tracker.track_snapshot(snapshot, self.snapshot_remover(snapshot))
        if clone is not None:
            tracker.track_clone(clone, self.clone_remover(clone))
        return self.unwind(tracker)

    def snapshot_remover(self, snapshot: SnapshotHandle):
        return lambda: self.api.delete_snapshot(snapshot)

    def clone_remover(self, clone: CloneHandle):
        return lambda: self.api.delete_vm(clone, permanently=True)
