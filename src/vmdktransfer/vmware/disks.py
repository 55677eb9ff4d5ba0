"""Virtual disk discovery and file operations."""

from __future__ import annotations

from typing import Optional

from pyVmomi import vim
from rich.markup import escape

from vmdktransfer.utils.logging import get_logger
from vmdktransfer.vmware.client import VSphereClient
from vmdktransfer.vmware.models import DatastoreRef, DiskRef, VmRef
from vmdktransfer.vmware.paths import DatastorePath

logger = get_logger(__name__)

# SCSI unit 7 is reserved for the controller itself
_SCSI_RESERVED_UNIT = 7
_SCSI_MAX_UNITS = 16


def find_datacenter(obj) -> Optional[vim.Datacenter]:
    """Walk up the inventory tree to the owning datacenter."""
    parent = getattr(obj, "parent", None)
    while parent is not None:
        if isinstance(parent, vim.Datacenter):
            return parent
        parent = getattr(parent, "parent", None)
    return None


class DiskManager:
    """List, copy, rename, attach and remove VMDK disks.

    Copy and rename go through the VirtualDiskManager so descriptor and
    extent files move together.
    """

    def __init__(self, client: VSphereClient):
        self.client = client

    @property
    def _disk_manager(self):
        return self.client.content.virtualDiskManager

    def list_disks(self, vm: VmRef) -> list[DiskRef]:
        """Disks attached to ``vm`` in device order."""
        config = vm.obj.config
        if not config or not config.hardware:
            return []

        disks = []
        for device in config.hardware.device:
            if not isinstance(device, vim.vm.device.VirtualDisk):
                continue
            backing = device.backing
            raw_path = getattr(backing, "fileName", "") or ""
            try:
                path = DatastorePath.parse(raw_path)
            except ValueError:
                logger.warning(f"Skipping disk {device.key} on '{vm.name}' with unsupported backing '{escape(raw_path)}'")
                continue
            datastore = getattr(backing, "datastore", None)
            disks.append(DiskRef(
                name=device.deviceInfo.label if device.deviceInfo else f"disk-{device.key}",
                path=path,
                datastore=datastore.name if datastore else path.datastore,
                key=device.key,
                capacity_kb=device.capacityInKB or 0,
                vm=vm,
                device=device,
            ))
        return disks

    def resolve_datastore(self, disk: DiskRef) -> DatastoreRef:
        datastore = getattr(disk.device.backing, "datastore", None) if disk.device is not None else None
        if datastore is None:
            datastore = self.client.find_by_name(vim.Datastore, disk.path.datastore)
        if datastore is None:
            raise ValueError(f"Datastore '{disk.path.datastore}' not found")
        return DatastoreRef(name=datastore.name, obj=datastore)

    def copy(self, disk: DiskRef, destination_dir: DatastorePath) -> DatastorePath:
        """Copy ``disk``'s backing file into ``destination_dir`` under the same name."""
        target = destination_dir.join(disk.path.file_name)
        datacenter = self._datacenter(disk.vm)
        logger.info(f"Copying {escape(str(disk.path))} -> {escape(str(target))}")
        task = self._disk_manager.CopyVirtualDisk_Task(
            sourceName=disk.path.render(),
            sourceDatacenter=datacenter,
            destName=target.render(),
            destDatacenter=datacenter,
            force=False,
        )
        self.client.wait_for_task(task)
        return target

    def rename(self, path: DatastorePath, new_name: str, datacenter=None) -> DatastorePath:
        """Rename a disk file in place (same datastore directory)."""
        target = path.with_file_name(new_name)
        logger.info(f"Renaming {escape(str(path))} -> {escape(str(target))}")
        task = self._disk_manager.MoveVirtualDisk_Task(
            sourceName=path.render(),
            sourceDatacenter=datacenter,
            destName=target.render(),
            destDatacenter=datacenter,
            force=False,
        )
        self.client.wait_for_task(task)
        return target

    def attach(self, vm: VmRef, path: DatastorePath) -> DiskRef:
        """Attach an existing disk file to ``vm`` as a new device."""
        controller_key, unit_number = self._free_scsi_slot(vm)

        backing = vim.vm.device.VirtualDisk.FlatVer2BackingInfo()
        backing.fileName = path.render()
        backing.diskMode = "persistent"

        disk = vim.vm.device.VirtualDisk()
        disk.backing = backing
        disk.controllerKey = controller_key
        disk.unitNumber = unit_number
        # Negative key: vSphere assigns the real one
        disk.key = -1

        device_spec = vim.vm.device.VirtualDeviceSpec()
        device_spec.operation = vim.vm.device.VirtualDeviceSpec.Operation.add
        device_spec.device = disk

        logger.info(f"Attaching {escape(str(path))} to '{vm.name}' (controller {controller_key}, unit {unit_number})")
        self.client.wait_for_task(vm.obj.ReconfigVM_Task(spec=vim.vm.ConfigSpec(deviceChange=[device_spec])))

        for attached in self.list_disks(vm):
            if attached.path == path:
                return attached
        raise RuntimeError(f"Disk {path} not found on '{vm.name}' after reconfigure")

    def delete(self, disk: DiskRef, permanently: bool = True) -> None:
        """Detach ``disk`` from its VM, destroying the file when permanent."""
        device_spec = vim.vm.device.VirtualDeviceSpec()
        device_spec.operation = vim.vm.device.VirtualDeviceSpec.Operation.remove
        device_spec.device = disk.device
        if permanently:
            device_spec.fileOperation = vim.vm.device.VirtualDeviceSpec.FileOperation.destroy

        logger.info(f"Removing disk '{disk.name}' ({escape(str(disk.path))}) from '{disk.vm.name}'"
                    f"{' and deleting its file' if permanently else ''}")
        self.client.wait_for_task(disk.vm.obj.ReconfigVM_Task(spec=vim.vm.ConfigSpec(deviceChange=[device_spec])))

    def _datacenter(self, vm: Optional[VmRef]):
        if vm is None:
            return None
        return vm.datacenter or find_datacenter(vm.obj)

    def _free_scsi_slot(self, vm: VmRef) -> tuple[int, int]:
        devices = vm.obj.config.hardware.device
        controller = next(
            (d for d in devices if isinstance(d, vim.vm.device.VirtualSCSIController)), None
        )
        if controller is None:
            raise RuntimeError(f"VM '{vm.name}' has no SCSI controller")

        used = {
            d.unitNumber for d in devices
            if getattr(d, "controllerKey", None) == controller.key and d.unitNumber is not None
        }
        used.add(_SCSI_RESERVED_UNIT)
        for unit in range(_SCSI_MAX_UNITS):
            if unit not in used:
                return controller.key, unit
        raise RuntimeError(f"No free SCSI unit on controller {controller.key} of '{vm.name}'")
