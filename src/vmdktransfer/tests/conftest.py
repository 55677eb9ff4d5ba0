"""In-memory stand-in for the vSphere management API."""

from datetime import datetime

import pytest

from vmdktransfer.vmware.models import CloneHandle, DatastoreRef, DiskRef, SnapshotHandle, VmRef
from vmdktransfer.vmware.paths import DatastorePath

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0)
STAMP = "20240101-120000"
CLONE_NAME = f"Clone_of_vm1-{STAMP}"
SNAPSHOT_NAME = f"vm1-CopyVMDK-Script-{STAMP}"


class FakeManagementApi:
    """Tracks VMs, their disks, snapshots and datastore files in dicts.

    ``fail(op, match)`` makes ``op`` raise for calls where ``match(*args)``
    is true (every call when ``match`` is None).
    """

    def __init__(self):
        self.vms: dict[str, VmRef] = {}
        self.disks: dict[str, list[DiskRef]] = {}
        self.snapshots: dict[str, list[str]] = {}
        self.files: dict[str, int] = {}
        self.calls: list[tuple] = []
        self._failures: dict[str, object] = {}

    # ─── setup helpers ───────────────────────────────────────────────

    def add_vm(self, name: str, disks: list[tuple[str, str, int]] = ()) -> VmRef:
        vm = VmRef(name=name, moid=f"vm-{len(self.vms) + 1}", folder="vm-folder")
        self.vms[name] = vm
        self.disks[name] = []
        self.snapshots[name] = []
        for key, (label, raw_path, capacity_kb) in enumerate(disks, 2000):
            path = DatastorePath.parse(raw_path)
            self.disks[name].append(DiskRef(name=label, path=path, datastore=path.datastore,
                                            key=key, capacity_kb=capacity_kb, vm=vm))
            self.files[path.render()] = capacity_kb
        return vm

    def fail(self, op: str, match=None, exc: Exception | None = None) -> None:
        self._failures[op] = (match, exc or RuntimeError(f"{op} failed"))

    def _call(self, op: str, *args):
        self.calls.append((op,) + args)
        if op in self._failures:
            match, exc = self._failures[op]
            if match is None or match(*args):
                raise exc

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    def disk_names(self, vm_name: str) -> list[str]:
        return [d.name for d in self.disks[vm_name]]

    def disk_at(self, vm_name: str, file_name: str):
        return next((d for d in self.disks[vm_name] if d.path.file_name == file_name), None)

    # ─── management API ──────────────────────────────────────────────

    def find_vm(self, name):
        self._call("find_vm", name)
        return self.vms.get(name)

    def list_disks(self, vm):
        self._call("list_disks", vm.name)
        return list(self.disks.get(vm.name, []))

    def list_snapshot_names(self, vm):
        self._call("list_snapshot_names", vm.name)
        return list(self.snapshots.get(vm.name, []))

    def resolve_datastore(self, disk):
        self._call("resolve_datastore", disk.name)
        return DatastoreRef(name=disk.path.datastore)

    def create_snapshot(self, vm, name, quiesce, memory=False):
        self._call("create_snapshot", vm.name, name)
        self.snapshots[vm.name].append(name)
        return SnapshotHandle(name=name, vm_name=vm.name)

    def clone_vm(self, vm, folder, name, datastore, snapshot, power_on=False, template=False):
        self._call("clone_vm", vm.name, name, datastore.name, power_on, template)
        clone = self.add_vm(name)
        for index, disk in enumerate(self.disks[vm.name]):
            file_name = f"{name}.vmdk" if index == 0 else f"{name}_{index}.vmdk"
            path = DatastorePath(datastore.name, name, file_name)
            self.disks[name].append(DiskRef(name=disk.name, path=path, datastore=datastore.name,
                                            key=disk.key, capacity_kb=disk.capacity_kb, vm=clone))
            self.files[path.render()] = disk.capacity_kb
        return CloneHandle(name=name, folder_name=str(folder))

    def copy_disk_file(self, disk, destination_dir):
        self._call("copy_disk_file", disk.name, destination_dir.render())
        target = destination_dir.join(disk.path.file_name)
        if target.render() in self.files:
            raise RuntimeError(f"{target} exists")
        self.files[target.render()] = self.files[disk.path.render()]
        return target

    def rename_disk_file(self, path, new_name, vm=None):
        self._call("rename_disk_file", path.render(), new_name)
        target = path.with_file_name(new_name)
        if target.render() in self.files:
            raise RuntimeError(f"{target} exists")
        self.files[target.render()] = self.files.pop(path.render())
        return target

    def attach_disk(self, vm, path):
        self._call("attach_disk", vm.name, path.render())
        disks = self.disks[vm.name]
        disk = DiskRef(name=f"Hard disk {len(disks) + 1}", path=path, datastore=path.datastore,
                       key=3000 + len(disks), capacity_kb=self.files[path.render()], vm=vm)
        disks.append(disk)
        return disk

    def delete_disk(self, disk, permanently=True):
        self._call("delete_disk", disk.name, disk.path.render())
        self.disks[disk.vm.name] = [d for d in self.disks[disk.vm.name] if d.path != disk.path]
        if permanently:
            self.files.pop(disk.path.render(), None)

    def delete_vm(self, vm, permanently=True):
        self._call("delete_vm", vm.name)
        for disk in self.disks.pop(vm.name, []):
            self.files.pop(disk.path.render(), None)
        self.vms.pop(vm.name, None)

    def delete_snapshot(self, snapshot):
        self._call("delete_snapshot", snapshot.name)
        self.snapshots[snapshot.vm_name].remove(snapshot.name)


@pytest.fixture
def api():
    """vm1 (three disks) and vm2 (one disk) on datastore ds1."""
    fake = FakeManagementApi()
    fake.add_vm("vm1", [
        ("Hard disk 1", "[ds1] vm1/vm1.vmdk", 41943040),
        ("Hard disk 2", "[ds1] vm1/vm1_1.vmdk", 2097152),
        ("Hard disk 3", "[ds1] vm1/vm1_2.vmdk", 1048576),
    ])
    fake.add_vm("vm2", [
        ("Hard disk 1", "[ds1] vm2/vm2.vmdk", 20971520),
    ])
    return fake


@pytest.fixture
def make_api():
    return FakeManagementApi


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
