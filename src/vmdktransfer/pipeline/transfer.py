"""Per-disk transfer: locate, resolve conflicts, copy, rename, attach."""

from __future__ import annotations

from typing import Optional

from rich.markup import escape

from vmdktransfer.errors import (
    AttachError,
    CopyError,
    DiskExistsConflict,
    DiskNotFoundError,
    OverwriteError,
    RenameError,
    TransferError,
)
from vmdktransfer.pipeline.results import TransferRecord
from vmdktransfer.utils.logging import get_logger
from vmdktransfer.vmware.models import CloneHandle, DiskRef, SnapshotHandle, VmRef
from vmdktransfer.vmware.paths import DatastorePath

logger = get_logger(__name__)


def destination_file_name(clone_disk: DiskRef, clone_name: str, destination_vm: str) -> str:
    """Name the copied disk gets on the destination VM.

    The clone's file name with the clone VM name swapped for the
    destination VM name, e.g. ``Clone_of_vm1-<ts>_1.vmdk`` -> ``vm2_1.vmdk``.
    """
    return clone_disk.path.retarget(clone_name, destination_vm).file_name


def find_disk(disks: list[DiskRef], name: str) -> Optional[DiskRef]:
    for disk in disks:
        if disk.name == name:
            return disk
    return None


class DiskTransferEngine:
    """Moves one disk from the clone VM onto the destination VM.

    Failures are raised as the matching ``TransferError`` subclass; nothing
    already done for this disk is undone.
    """

    def __init__(self, api):
        self.api = api

    def transfer(
        self,
        source: VmRef,
        clone: CloneHandle,
        destination: VmRef,
        disk_name: str,
        destination_dir: DatastorePath,
        overwrite: bool = False,
        snapshot: Optional[SnapshotHandle] = None,
    ) -> TransferRecord:
        clone_vm = clone.as_vm()

        source_disk = self._locate(source, disk_name, "source")
        clone_disk = self._locate(clone_vm, disk_name, "clone")

        target_name = destination_file_name(clone_disk, clone.name, destination.name)
        target_path = destination_dir.join(target_name)
        logger.info(f"'{disk_name}': {escape(str(clone_disk.path))} -> {escape(str(target_path))}")

        self._resolve_conflict(destination, disk_name, target_name, overwrite)

        try:
            copied = self.api.copy_disk_file(clone_disk, destination_dir)
        except Exception as e:
            raise CopyError(f"Copy to {destination_dir} failed", disk=disk_name, cause=e) from e

        renamed = copied
        if copied.file_name != target_name:
            try:
                renamed = self.api.rename_disk_file(copied, target_name, vm=destination)
            except Exception as e:
                logger.warning(f"Copied file {escape(str(copied))} left in place after failed rename")
                raise RenameError(f"Rename of {copied} to '{target_name}' failed",
                                  disk=disk_name, cause=e) from e

        try:
            attached = self.api.attach_disk(destination, renamed)
        except Exception as e:
            logger.warning(f"Disk file {escape(str(renamed))} is on the datastore but not attached")
            raise AttachError(f"Attach of {renamed} to '{destination.name}' failed",
                              disk=disk_name, cause=e) from e

        return TransferRecord(
            source_vm=source.name,
            source_disk_name=source_disk.name,
            source_disk_path=source_disk.path.render(),
            snapshot_name=snapshot.name if snapshot else "",
            clone_vm_name=clone.name,
            destination_vm=destination.name,
            destination_disk_name=attached.name,
            destination_disk_path=attached.path.render(),
        )

    def _resolve_conflict(self, destination: VmRef, disk_name: str, target_name: str, overwrite: bool) -> None:
        try:
            current = self.api.list_disks(destination)
        except Exception as e:
            raise TransferError(f"Could not list disks of destination VM '{destination.name}'",
                                disk=disk_name, cause=e) from e
        existing = next((d for d in current if d.path.file_name == target_name), None)
        if existing is None:
            return
        if not overwrite:
            raise DiskExistsConflict(
                f"'{destination.name}' already has '{existing.name}' at {existing.path}", disk=disk_name,
            )

        logger.warning(f"[yellow]Overwriting '{existing.name}' ({escape(str(existing.path))}) on '{destination.name}'[/yellow]")
        try:
            self.api.delete_disk(existing, permanently=True)
        except Exception as e:
            raise OverwriteError(f"Could not remove existing {existing.path}", disk=disk_name, cause=e) from e

    def _locate(self, vm: VmRef, disk_name: str, role: str) -> DiskRef:
        try:
            disks = self.api.list_disks(vm)
        except Exception as e:
            raise DiskNotFoundError(f"Could not list disks of {role} VM '{vm.name}'",
                                    disk=disk_name, cause=e) from e
        disk = find_disk(disks, disk_name)
        if disk is None:
            raise DiskNotFoundError(f"Disk not found on {role} VM '{vm.name}'", disk=disk_name)
        return disk
