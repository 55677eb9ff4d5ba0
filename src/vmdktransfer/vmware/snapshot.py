"""VMware snapshot management for disk transfers."""

from __future__ import annotations

from datetime import datetime

from vmdktransfer.utils.logging import get_logger
from vmdktransfer.vmware.client import VSphereClient
from vmdktransfer.vmware.models import SnapshotHandle, VmRef

logger = get_logger(__name__)


class SnapshotManager:
    """Create and remove the point-in-time snapshot a transfer clones from.

    A quiesce failure is surfaced as-is: remote operations are not retried.
    """

    def __init__(self, client: VSphereClient):
        self.client = client

    def create(
        self,
        vm: VmRef,
        snapshot_name: str,
        description: str = "Snapshot for vmdk-transfer",
        memory: bool = False,
        quiesce: bool = True,
    ) -> SnapshotHandle:
        """Snapshot ``vm`` and return a handle to the new snapshot."""
        logger.info(f"Creating snapshot '{snapshot_name}' for VM '{vm.name}' (quiesce={quiesce})")
        task = vm.obj.CreateSnapshot_Task(
            name=snapshot_name,
            description=description,
            memory=memory,
            quiesce=quiesce,
        )
        snap_ref = self.client.wait_for_task(task)
        if snap_ref is None:
            snap_ref = self.find(vm, snapshot_name)
        logger.info(f"Snapshot '{snapshot_name}' created")
        return SnapshotHandle(name=snapshot_name, vm_name=vm.name, created_at=datetime.now(), obj=snap_ref)

    def delete(self, snapshot: SnapshotHandle) -> None:
        """Remove a snapshot, keeping any child snapshots."""
        task = snapshot.obj.RemoveSnapshot_Task(removeChildren=False)
        self.client.wait_for_task(task)
        logger.info(f"Snapshot '{snapshot.name}' deleted")

    def list_names(self, vm: VmRef) -> list[str]:
        tree = vm.obj.snapshot
        if not tree or not tree.rootSnapshotList:
            return []
        return self._collect_names(tree.rootSnapshotList)

    def find(self, vm: VmRef, name: str):
        tree = vm.obj.snapshot
        if not tree or not tree.rootSnapshotList:
            return None
        return self._find_snapshot(tree.rootSnapshotList, name)

    def _collect_names(self, snapshot_list) -> list[str]:
        names = []
        for snap in snapshot_list:
            names.append(snap.name)
            if snap.childSnapshotList:
                names.extend(self._collect_names(snap.childSnapshotList))
        return names

    def _find_snapshot(self, snapshot_list, name: str):
        for snap in snapshot_list:
            if snap.name == name:
                return snap.snapshot
            if snap.childSnapshotList:
                result = self._find_snapshot(snap.childSnapshotList, name)
                if result:
                    return result
        return None
