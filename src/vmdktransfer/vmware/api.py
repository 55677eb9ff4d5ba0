"""vSphere implementation of the management operations the workflow needs.

The workflow only ever talks to this facade. Tests substitute an in-memory
double exposing the same methods.
"""

from __future__ import annotations

from typing import Optional

from pyVmomi import vim

from vmdktransfer.vmware.client import VSphereClient
from vmdktransfer.vmware.clone import CloneManager
from vmdktransfer.vmware.disks import DiskManager, find_datacenter
from vmdktransfer.vmware.models import CloneHandle, DatastoreRef, DiskRef, SnapshotHandle, VmRef
from vmdktransfer.vmware.paths import DatastorePath
from vmdktransfer.vmware.snapshot import SnapshotManager


class VSphereManagementApi:
    """Blocking vSphere primitives: lookup, snapshot, clone, disk file ops, delete.

    Every method raises on failure (``TaskError`` for failed tasks, pyVmomi
    faults otherwise); nothing is retried here.
    """

    def __init__(self, client: VSphereClient):
        self.client = client
        self.snapshots = SnapshotManager(client)
        self.clones = CloneManager(client)
        self.disks = DiskManager(client)

    # ─── Lookup ──────────────────────────────────────────────────────

    def find_vm(self, name: str) -> Optional[VmRef]:
        vm_obj = self.client.find_by_name(vim.VirtualMachine, name)
        if vm_obj is None:
            return None
        return VmRef(
            name=vm_obj.name,
            moid=vm_obj._moId,
            folder=vm_obj.parent,
            datacenter=find_datacenter(vm_obj),
            obj=vm_obj,
        )

    def list_disks(self, vm: VmRef) -> list[DiskRef]:
        return self.disks.list_disks(vm)

    def list_snapshot_names(self, vm: VmRef) -> list[str]:
        return self.snapshots.list_names(vm)

    def resolve_datastore(self, disk: DiskRef) -> DatastoreRef:
        return self.disks.resolve_datastore(disk)

    # ─── Transient resources ─────────────────────────────────────────

    def create_snapshot(self, vm: VmRef, name: str, quiesce: bool, memory: bool = False) -> SnapshotHandle:
        return self.snapshots.create(vm, name, memory=memory, quiesce=quiesce)

    def clone_vm(
        self,
        vm: VmRef,
        folder,
        name: str,
        datastore: DatastoreRef,
        snapshot: SnapshotHandle,
        power_on: bool = False,
        template: bool = False,
    ) -> CloneHandle:
        return self.clones.clone_from_snapshot(
            vm, folder, name, datastore, snapshot, power_on=power_on, template=template,
        )

    def delete_vm(self, vm: CloneHandle | VmRef, permanently: bool = True) -> None:
        self.clones.delete(vm.obj, vm.name, permanently=permanently)

    def delete_snapshot(self, snapshot: SnapshotHandle) -> None:
        self.snapshots.delete(snapshot)

    # ─── Disk files ──────────────────────────────────────────────────

    def copy_disk_file(self, disk: DiskRef, destination_dir: DatastorePath) -> DatastorePath:
        return self.disks.copy(disk, destination_dir)

    def rename_disk_file(self, path: DatastorePath, new_name: str, vm: Optional[VmRef] = None) -> DatastorePath:
        datacenter = None
        if vm is not None:
            datacenter = vm.datacenter or find_datacenter(vm.obj)
        return self.disks.rename(path, new_name, datacenter=datacenter)

    def attach_disk(self, vm: VmRef, path: DatastorePath) -> DiskRef:
        return self.disks.attach(vm, path)

    def delete_disk(self, disk: DiskRef, permanently: bool = True) -> None:
        self.disks.delete(disk, permanently=permanently)
