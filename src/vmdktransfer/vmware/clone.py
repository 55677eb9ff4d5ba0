"""Disposable clone VMs used as scratch space for disk extraction."""

from __future__ import annotations

from pyVmomi import vim

from vmdktransfer.utils.logging import get_logger
from vmdktransfer.vmware.client import VSphereClient
from vmdktransfer.vmware.models import CloneHandle, DatastoreRef, SnapshotHandle, VmRef

logger = get_logger(__name__)


class CloneManager:
    """Clone a VM from a snapshot and destroy the clone afterwards."""

    def __init__(self, client: VSphereClient):
        self.client = client

    def clone_from_snapshot(
        self,
        vm: VmRef,
        folder,
        name: str,
        datastore: DatastoreRef,
        snapshot: SnapshotHandle,
        power_on: bool = False,
        template: bool = False,
    ) -> CloneHandle:
        """Clone ``vm`` as it was at ``snapshot`` into ``folder``.

        The clone is created on ``datastore`` so the disk copy that follows
        stays on the destination storage.
        """
        spec = vim.vm.CloneSpec(
            location=vim.vm.RelocateSpec(datastore=datastore.obj),
            snapshot=snapshot.obj,
            powerOn=power_on,
            template=template,
        )
        logger.info(f"Cloning '{vm.name}' from snapshot '{snapshot.name}' as '{name}' "
                    f"on datastore '{datastore.name}'")
        task = vm.obj.CloneVM_Task(folder=folder, name=name, spec=spec)
        clone_obj = self.client.wait_for_task(task)
        logger.info(f"Clone '{name}' created")
        return CloneHandle(name=name, folder_name=getattr(folder, "name", ""), obj=clone_obj)

    def delete(self, vm_obj, name: str, permanently: bool = True) -> None:
        """Destroy (or merely unregister) a VM."""
        if permanently:
            self.client.wait_for_task(vm_obj.Destroy_Task())
            logger.info(f"VM '{name}' destroyed")
        else:
            vm_obj.UnregisterVM()
            logger.info(f"VM '{name}' unregistered")
