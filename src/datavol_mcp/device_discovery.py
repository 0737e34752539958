"""
Candidate disk discovery and classification.

A candidate disk is any whole disk on the host that is not the VM's boot disk
or a loop device. Each candidate classifies into exactly one bucket: already an
LVM physical volume, blank, or carrying some foreign signature.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional

from .config import DataVolumeConfig
from .lvm_tools import LVMTools

logger = logging.getLogger(__name__)


class DiskClass(Enum):
    """Classification of a candidate disk."""

    PHYSICAL_VOLUME = "physical_volume"
    BLANK = "blank"
    FOREIGN = "foreign"


@dataclass(frozen=True)
class BlockDevice:
    """A whole-disk block device discovered on the host."""

    name: str  # Kernel name (e.g., "vdb")
    path: str  # Device path (e.g., "/dev/vdb")
    size_bytes: int = 0
    is_system: bool = False
    has_signature: Optional[bool] = None  # None = not probed
    is_physical_volume: Optional[bool] = None  # None = not checked

    @property
    def classification(self) -> Optional[DiskClass]:
        """Bucket this disk falls into, or None until it has been classified."""
        if self.is_physical_volume:
            return DiskClass.PHYSICAL_VOLUME
        if self.is_physical_volume is None or self.has_signature is None:
            return None
        if self.has_signature:
            return DiskClass.FOREIGN
        return DiskClass.BLANK

    @property
    def is_blank(self) -> bool:
        return self.classification == DiskClass.BLANK


class DeviceEnumerator:
    """Lists candidate disks on a host."""

    def __init__(self, tools: LVMTools, config: DataVolumeConfig):
        self.tools = tools
        self.config = config

    def _is_system(self, name: str) -> bool:
        return any(name.startswith(prefix) for prefix in self.config.system_device_prefixes)

    def list_disks(self) -> List[BlockDevice]:
        """All physical whole disks, system disks included, sorted by name."""
        disks = []
        for dev in self.tools.list_block_devices():
            name = dev["name"]
            if dev["type"] != "disk" or name.startswith("loop"):
                continue
            disks.append(
                BlockDevice(
                    name=name,
                    path=f"/dev/{name}",
                    size_bytes=dev["size"],
                    is_system=self._is_system(name),
                )
            )
        return sorted(disks, key=lambda d: d.name)

    def list_candidates(self) -> List[BlockDevice]:
        """
        List whole disks eligible for the data volume, sorted by name.

        Returns:
            Candidate BlockDevices (empty if the host has none)
        """
        candidates = [d for d in self.list_disks() if not d.is_system]
        if candidates:
            logger.info(f"Candidate disks: {' '.join(d.path for d in candidates)}")
        else:
            logger.info("No candidate disks found")
        return candidates


class BlanknessClassifier:
    """
    Decides whether a disk is blank.

    The PV check runs first and is authoritative: a PV is never blank, whatever
    the signature probe says. The signature probe then guards against disks
    carrying a foreign filesystem or partition table.
    """

    def __init__(self, tools: LVMTools):
        self.tools = tools

    def classify(self, device: BlockDevice) -> BlockDevice:
        """Return a copy of device with its PV and signature flags filled in."""
        if self.tools.is_registered_physical_volume(device.path):
            return replace(device, is_physical_volume=True)

        has_signature = self.tools.device_has_signature(device.path)
        classified = replace(device, is_physical_volume=False, has_signature=has_signature)
        if has_signature:
            logger.info(f"{device.path} carries a foreign signature, leaving it alone")
        return classified

    def classify_all(self, devices: List[BlockDevice]) -> List[BlockDevice]:
        return [self.classify(d) for d in devices]
