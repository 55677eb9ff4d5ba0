"""References to vSphere objects handed around by the workflow.

Each wraps the underlying pyVmomi managed object in ``obj`` so the
workflow never touches ``vim`` types directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from vmdktransfer.vmware.paths import DatastorePath


@dataclass(frozen=True)
class VmRef:
    """A virtual machine, looked up once per run."""
    name: str
    moid: str = ""
    folder: Any = field(default=None, repr=False, compare=False)
    datacenter: Any = field(default=None, repr=False, compare=False)
    obj: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class DatastoreRef:
    name: str
    obj: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class DiskRef:
    """A virtual disk attached to a VM."""
    name: str                    # device label, e.g. "Hard disk 2"
    path: DatastorePath          # backing file
    datastore: str = ""
    key: int = 0                 # vSphere device key
    capacity_kb: int = 0
    vm: Optional[VmRef] = field(default=None, repr=False, compare=False)
    device: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class SnapshotHandle:
    name: str
    vm_name: str
    created_at: datetime = field(default_factory=datetime.now)
    obj: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class CloneHandle:
    """Disposable VM cloned from a snapshot. Never powered on."""
    name: str
    folder_name: str = ""
    obj: Any = field(default=None, repr=False, compare=False)

    def as_vm(self) -> VmRef:
        folder = getattr(self.obj, "parent", None) if self.obj is not None else None
        return VmRef(
            name=self.name,
            moid=getattr(self.obj, "_moId", "") if self.obj is not None else "",
            folder=folder,
            obj=self.obj,
        )
