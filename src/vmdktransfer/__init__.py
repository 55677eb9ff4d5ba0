"""vmdk-transfer — copy virtual disks between VMware VMs via snapshot + clone."""

__version__ = "0.1.0"
