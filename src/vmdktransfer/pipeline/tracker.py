"""Compensation stack for the transient resources of one run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from vmdktransfer.vmware.models import CloneHandle, SnapshotHandle

SNAPSHOT = "snapshot"
CLONE = "clone"


@dataclass
class Compensation:
    """Undo action pushed once a transient resource exists."""
    kind: str
    handle: Any
    action: Callable[[], None] = field(repr=False)

    @property
    def name(self) -> str:
        return self.handle.name


class TransientResourceTracker:
    """Zero-or-one snapshot and zero-or-one clone, in creation order.

    One tracker per run. Each resource is recorded exactly once, right
    after it has been created, together with the action that removes it.
    ``pop()`` hands compensations back newest first.
    """

    def __init__(self):
        self._stack: list[Compensation] = []
        self._seen: set[str] = set()

    def track_snapshot(self, snapshot: SnapshotHandle, delete: Callable[[], None]) -> None:
        self._push(SNAPSHOT, snapshot, delete)

    def track_clone(self, clone: CloneHandle, delete: Callable[[], None]) -> None:
        self._push(CLONE, clone, delete)

    def _push(self, kind: str, handle, action: Callable[[], None]) -> None:
        if kind in self._seen:
            raise RuntimeError(f"A {kind} is already tracked for this run")
        self._seen.add(kind)
        self._stack.append(Compensation(kind=kind, handle=handle, action=action))

    def pop(self) -> Optional[Compensation]:
        return self._stack.pop() if self._stack else None

    def __len__(self) -> int:
        return len(self._stack)

    def __bool__(self) -> bool:
        return bool(self._stack)
