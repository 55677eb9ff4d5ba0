"""Structured datastore paths.

vSphere addresses files as ``[datastore] folder/sub/file.vmdk``. Keeping the
three parts separate lets the destination name be derived from the clone's
file name without regex surgery on the raw string.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, replace

_DATASTORE_PATH = re.compile(r"^\[(?P<datastore>[^\]]+)\]\s*(?P<rest>.*)$")


@dataclass(frozen=True)
class DatastorePath:
    """A file (or directory, when ``file_name`` is empty) on a datastore."""
    datastore: str
    folder: str = ""
    file_name: str = ""

    @classmethod
    def parse(cls, raw: str) -> "DatastorePath":
        """Parse ``[ds1] vm2/vm2.vmdk`` into its parts.

        Raises:
            ValueError: If the string is not a datastore path
        """
        match = _DATASTORE_PATH.match(raw.strip()) if raw else None
        if match is None:
            raise ValueError(f"Not a datastore path: '{raw}'")

        rest = match.group("rest").strip().strip("/")
        folder, _, file_name = rest.rpartition("/")
        return cls(datastore=match.group("datastore"), folder=folder, file_name=file_name)

    def render(self) -> str:
        rest = "/".join(p for p in (self.folder, self.file_name) if p)
        return f"[{self.datastore}] {rest}".rstrip()

    @property
    def parent(self) -> "DatastorePath":
        return replace(self, file_name="")

    @property
    def directory(self) -> str:
        return self.parent.render()

    @property
    def stem(self) -> str:
        return posixpath.splitext(self.file_name)[0]

    @property
    def suffix(self) -> str:
        return posixpath.splitext(self.file_name)[1]

    def with_file_name(self, file_name: str) -> "DatastorePath":
        return replace(self, file_name=file_name)

    def join(self, file_name: str) -> "DatastorePath":
        """Place ``file_name`` inside this directory path."""
        if self.file_name:
            raise ValueError(f"{self.render()} is a file, not a directory")
        return replace(self, file_name=file_name)

    def retarget(self, old_prefix: str, new_prefix: str) -> "DatastorePath":
        """Swap the VM-name prefix of the file name.

        ``Clone_of_vm1-20240101-120000_1.vmdk`` retargeted from the clone
        name to ``vm2`` becomes ``vm2_1.vmdk``. A stem that does not start
        with ``old_prefix`` gets ``new_prefix`` prepended instead.
        """
        if not self.file_name:
            raise ValueError(f"{self.render()} has no file name")
        stem = self.stem
        if old_prefix and stem.startswith(old_prefix):
            new_stem = new_prefix + stem[len(old_prefix):]
        else:
            new_stem = f"{new_prefix}_{stem}"
        return self.with_file_name(new_stem + self.suffix)

    def __str__(self) -> str:
        return self.render()
