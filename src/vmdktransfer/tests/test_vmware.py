"""Tests for the pyVmomi-backed managers, without a vCenter."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pyVmomi import vim


def vmdk(key, label, file_name, unit, controller_key=1000, capacity_kb=1048576):
    return vim.vm.device.VirtualDisk(
        key=key,
        controllerKey=controller_key,
        unitNumber=unit,
        capacityInKB=capacity_kb,
        deviceInfo=vim.Description(label=label, summary=""),
        backing=vim.vm.device.VirtualDisk.FlatVer2BackingInfo(fileName=file_name, diskMode="persistent"),
    )


def vm_with(devices, name="vm1"):
    from vmdktransfer.vmware.models import VmRef
    obj = MagicMock()
    obj.name = name
    obj.config.hardware.device = devices
    return VmRef(name=name, moid="vm-1", obj=obj)


def finished(result=None):
    return SimpleNamespace(info=SimpleNamespace(state=vim.TaskInfo.State.success, result=result))


# ═══════════════════════════════════════════════════════════════════
#  Client
# ═══════════════════════════════════════════════════════════════════

class TestWaitForTask:
    def test_returns_result(self):
        from vmdktransfer.vmware.client import VSphereClient
        assert VSphereClient().wait_for_task(finished("new-vm")) == "new-vm"

    def test_failed_task(self):
        from vmdktransfer.vmware.client import TaskError, VSphereClient
        task = SimpleNamespace(info=SimpleNamespace(
            state=vim.TaskInfo.State.error, error=SimpleNamespace(msg="File exists"), result=None,
        ))
        with pytest.raises(TaskError, match="File exists"):
            VSphereClient().wait_for_task(task)

    def test_not_connected(self):
        from vmdktransfer.vmware.client import VSphereClient
        with pytest.raises(ConnectionError):
            VSphereClient().content


# ═══════════════════════════════════════════════════════════════════
#  Disks
# ═══════════════════════════════════════════════════════════════════

class TestDiskManager:
    def test_list_disks(self):
        from vmdktransfer.vmware.disks import DiskManager
        vm = vm_with([
            vim.vm.device.VirtualLsiLogicController(key=1000, busNumber=0),
            vmdk(2000, "Hard disk 1", "[ds1] vm1/vm1.vmdk", 0),
            vim.vm.device.VirtualVmxnet3(key=4000),
            vmdk(2001, "Hard disk 2", "[ds2] vm1/vm1_1.vmdk", 1, capacity_kb=2048),
        ])
        disks = DiskManager(MagicMock()).list_disks(vm)

        assert [d.name for d in disks] == ["Hard disk 1", "Hard disk 2"]
        assert disks[1].path.render() == "[ds2] vm1/vm1_1.vmdk"
        assert disks[1].datastore == "ds2"
        assert disks[1].capacity_kb == 2048
        assert disks[1].vm is vm

    def test_skips_unparseable_backing(self):
        from vmdktransfer.vmware.disks import DiskManager
        vm = vm_with([vmdk(2000, "Hard disk 1", "/vmfs/volumes/raw", 0)])
        assert DiskManager(MagicMock()).list_disks(vm) == []

    def test_free_scsi_slot_skips_unit_seven(self):
        from vmdktransfer.vmware.disks import DiskManager
        devices = [vim.vm.device.VirtualLsiLogicController(key=1000, busNumber=0)]
        devices += [vmdk(2000 + u, f"Hard disk {u + 1}", f"[ds1] vm1/d{u}.vmdk", u) for u in range(7)]
        assert DiskManager(MagicMock())._free_scsi_slot(vm_with(devices)) == (1000, 8)

    def test_no_scsi_controller(self):
        from vmdktransfer.vmware.disks import DiskManager
        with pytest.raises(RuntimeError, match="SCSI"):
            DiskManager(MagicMock())._free_scsi_slot(vm_with([]))

    def test_copy_keeps_file_name(self):
        from vmdktransfer.vmware.disks import DiskManager
        from vmdktransfer.vmware.models import DiskRef, VmRef
        from vmdktransfer.vmware.paths import DatastorePath

        client = MagicMock()
        disk = DiskRef(name="Hard disk 2", path=DatastorePath.parse("[ds1] C/C_1.vmdk"),
                       vm=VmRef(name="C", datacenter="dc"))
        target = DiskManager(client).copy(disk, DatastorePath("ds1", "vm2"))

        assert target.render() == "[ds1] vm2/C_1.vmdk"
        kwargs = client.content.virtualDiskManager.CopyVirtualDisk_Task.call_args.kwargs
        assert kwargs["sourceName"] == "[ds1] C/C_1.vmdk"
        assert kwargs["destName"] == "[ds1] vm2/C_1.vmdk"
        assert kwargs["sourceDatacenter"] == "dc"
        assert kwargs["force"] is False

    def test_rename_in_place(self):
        from vmdktransfer.vmware.disks import DiskManager
        from vmdktransfer.vmware.paths import DatastorePath

        client = MagicMock()
        target = DiskManager(client).rename(DatastorePath.parse("[ds1] vm2/C_1.vmdk"), "vm2_1.vmdk")

        assert target.render() == "[ds1] vm2/vm2_1.vmdk"
        kwargs = client.content.virtualDiskManager.MoveVirtualDisk_Task.call_args.kwargs
        assert kwargs["destName"] == "[ds1] vm2/vm2_1.vmdk"

    def test_delete_destroys_file(self):
        from vmdktransfer.vmware.disks import DiskManager

        device = vmdk(2001, "Hard disk 2", "[ds1] vm2/vm2_1.vmdk", 1)
        vm = vm_with([device], name="vm2")
        disk = DiskManager(MagicMock()).list_disks(vm)[0]
        DiskManager(MagicMock()).delete(disk, permanently=True)

        spec = vm.obj.ReconfigVM_Task.call_args.kwargs["spec"]
        change = spec.deviceChange[0]
        assert change.operation == vim.vm.device.VirtualDeviceSpec.Operation.remove
        assert change.fileOperation == vim.vm.device.VirtualDeviceSpec.FileOperation.destroy
        assert change.device.key == 2001

    def test_attach_uses_next_free_unit(self):
        from vmdktransfer.vmware.disks import DiskManager
        from vmdktransfer.vmware.paths import DatastorePath

        devices = [
            vim.vm.device.VirtualLsiLogicController(key=1000, busNumber=0),
            vmdk(2000, "Hard disk 1", "[ds1] vm2/vm2.vmdk", 0),
        ]
        vm = vm_with(devices, name="vm2")

        def reconfigure(spec):
            added = spec.deviceChange[0].device
            devices.append(vmdk(2001, "Hard disk 2", added.backing.fileName, added.unitNumber))
            return finished()

        vm.obj.ReconfigVM_Task.side_effect = reconfigure
        client = MagicMock()
        client.wait_for_task.side_effect = lambda task: task.info.result

        attached = DiskManager(client).attach(vm, DatastorePath.parse("[ds1] vm2/vm2_1.vmdk"))
        assert attached.name == "Hard disk 2"
        assert attached.path.file_name == "vm2_1.vmdk"
        assert devices[-1].unitNumber == 1


class TestFindDatacenter:
    def test_walks_parents(self):
        from vmdktransfer.vmware.disks import find_datacenter
        dc = vim.Datacenter("datacenter-1")
        vm_obj = SimpleNamespace(parent=SimpleNamespace(parent=SimpleNamespace(parent=dc)))
        assert find_datacenter(vm_obj) is dc

    def test_none_when_detached(self):
        from vmdktransfer.vmware.disks import find_datacenter
        assert find_datacenter(SimpleNamespace(parent=None)) is None


# ═══════════════════════════════════════════════════════════════════
#  Snapshots and clones
# ═══════════════════════════════════════════════════════════════════

class TestSnapshotManager:
    def _tree(self):
        leaf = SimpleNamespace(name="child", snapshot="snap-child", childSnapshotList=[])
        root = SimpleNamespace(name="root", snapshot="snap-root", childSnapshotList=[leaf])
        return SimpleNamespace(rootSnapshotList=[root])

    def test_list_and_find(self):
        from vmdktransfer.vmware.models import VmRef
        from vmdktransfer.vmware.snapshot import SnapshotManager
        vm = VmRef(name="vm1", obj=SimpleNamespace(snapshot=self._tree()))
        manager = SnapshotManager(MagicMock())
        assert manager.list_names(vm) == ["root", "child"]
        assert manager.find(vm, "child") == "snap-child"
        assert manager.find(vm, "missing") is None

    def test_no_snapshots(self):
        from vmdktransfer.vmware.models import VmRef
        from vmdktransfer.vmware.snapshot import SnapshotManager
        vm = VmRef(name="vm1", obj=SimpleNamespace(snapshot=None))
        assert SnapshotManager(MagicMock()).list_names(vm) == []

    def test_create_passes_quiesce(self):
        from vmdktransfer.vmware.snapshot import SnapshotManager
        vm = vm_with([])
        client = MagicMock()
        client.wait_for_task.return_value = "snap-obj"
        handle = SnapshotManager(client).create(vm, "vm1-CopyVMDK-Script-1", quiesce=True)

        kwargs = vm.obj.CreateSnapshot_Task.call_args.kwargs
        assert kwargs["quiesce"] is True
        assert kwargs["memory"] is False
        assert handle.name == "vm1-CopyVMDK-Script-1"
        assert handle.obj == "snap-obj"


class TestCloneManager:
    def test_clone_spec(self):
        from vmdktransfer.vmware.clone import CloneManager
        from vmdktransfer.vmware.models import DatastoreRef, SnapshotHandle

        vm = vm_with([])
        client = MagicMock()
        client.wait_for_task.return_value = "clone-obj"
        folder = SimpleNamespace(name="Prod")
        handle = CloneManager(client).clone_from_snapshot(
            vm, folder, "Clone_of_vm1-1", DatastoreRef("ds1"), SnapshotHandle(name="s", vm_name="vm1"),
        )

        kwargs = vm.obj.CloneVM_Task.call_args.kwargs
        assert kwargs["folder"] is folder
        assert kwargs["name"] == "Clone_of_vm1-1"
        assert kwargs["spec"].powerOn is False
        assert kwargs["spec"].template is False
        assert handle.obj == "clone-obj"
        assert handle.folder_name == "Prod"

    def test_delete_permanently(self):
        from vmdktransfer.vmware.clone import CloneManager
        vm_obj = MagicMock()
        CloneManager(MagicMock()).delete(vm_obj, "Clone_of_vm1-1")
        vm_obj.Destroy_Task.assert_called_once()
        vm_obj.UnregisterVM.assert_not_called()
