"""Error taxonomy for the disk transfer workflow.

Every failure carries the stage it happened in, the disk being processed
(when there is one) and the underlying remote exception. ``describe()``
gives the one-line operator-facing form used by the CLI and the run journal.
"""

from __future__ import annotations

from typing import Optional


class TransferWorkflowError(Exception):
    """Base class for all workflow failures."""

    stage = "workflow"

    def __init__(self, message: str, disk: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.disk = disk
        self.cause = cause
        # Filled in by the orchestrator once cleanup has run
        self.leaked: list[DeletionError] = []

    def describe(self) -> str:
        parts = [f"stage={self.stage}"]
        if self.disk:
            parts.append(f"disk='{self.disk}'")
        text = f"{self.message} ({', '.join(parts)})"
        if self.cause is not None:
            text += f": {self.cause}"
        return text

    def __str__(self) -> str:
        return self.describe()


class PreconditionError(TransferWorkflowError):
    """The request cannot run: bad input, missing VM, name collision..."""

    stage = "precondition"


class SnapshotError(TransferWorkflowError):
    stage = "snapshot"


class CloneError(TransferWorkflowError):
    stage = "clone"


class TransferError(TransferWorkflowError):
    """A single disk could not be transferred."""

    stage = "transfer"


class DiskNotFoundError(TransferError):
    stage = "locate"


class DiskExistsConflict(TransferError):
    stage = "conflict"


class OverwriteError(TransferError):
    """Removing a colliding destination disk failed."""

    stage = "overwrite"


class CopyError(TransferError):
    stage = "copy"


class RenameError(TransferError):
    stage = "rename"


class AttachError(TransferError):
    stage = "attach"


class DeletionError(TransferWorkflowError):
    """A transient resource could not be removed during cleanup.

    Never raised out of the workflow; collected into the cleanup report
    and persisted as a leak.
    """

    stage = "cleanup"

    def __init__(self, message: str, resource_kind: str, resource_name: str,
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.resource_kind = resource_kind
        self.resource_name = resource_name
