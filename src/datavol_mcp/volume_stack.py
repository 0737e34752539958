"""
Volume-stack inspection: device <-> PV <-> VG <-> LV, and mount point -> device.
"""

import logging
from typing import Iterable, List, Optional, Set

from .device_discovery import BlockDevice
from .host_executor import DataVolumeError
from .lvm_tools import LogicalVolumeRef, LVMTools

logger = logging.getLogger(__name__)


class UnresolvedVolumeError(DataVolumeError):
    """A device could not be mapped to any known logical volume."""

    def __init__(self, device_path: str):
        self.device_path = device_path
        super().__init__(f"Could not locate an LVM logical volume for {device_path}")


class VolumeStackInspector:
    """Read-only queries over the host's LVM structure."""

    def __init__(self, tools: LVMTools):
        self.tools = tools

    def resolve_mount_source(self, mount_point: str) -> Optional[str]:
        """
        Find the device backing a mount point.

        Returns:
            Device path, or None if nothing is mounted there
        """
        source = self.tools.resolve_mount_source(mount_point)
        if source:
            logger.info(f"Device backing {mount_point}: {source}")
        return source

    def resolve_lv_for_device(self, device_path: str) -> LogicalVolumeRef:
        """
        Map a device path to the LV it names.

        Both the canonical /dev/<vg>/<lv> path and the /dev/mapper alias match.

        Raises:
            UnresolvedVolumeError: If no LV matches
        """
        for lv in self.tools.list_all_logical_volumes():
            if lv.matches_device(device_path):
                logger.info(f"Found LV {lv.lv_name} in VG {lv.vg_name} ({lv.lv_path})")
                return lv

        raise UnresolvedVolumeError(device_path)

    def pv_group_of(self, device: str) -> Optional[str]:
        """VG that owns a PV, or None if the device is not a PV in any VG."""
        return self.tools.physical_volume_group(device)

    def lvs_in_group(self, vg_name: str) -> Set[str]:
        return set(self.tools.list_logical_volumes(vg_name))

    def discover_existing_volumes(
        self, candidates: Iterable[BlockDevice]
    ) -> List[LogicalVolumeRef]:
        """
        Collect every LV living in a VG that any candidate disk belongs to.

        A VG reached through several of its PVs is queried and counted once.

        Args:
            candidates: Classified candidate disks

        Returns:
            Deduplicated LVs, sorted by (vg, lv)
        """
        seen_groups: Set[str] = set()
        volumes: Set[LogicalVolumeRef] = set()

        for device in candidates:
            if not device.is_physical_volume:
                continue

            vg_name = self.pv_group_of(device.path)
            if vg_name is None:
                logger.warning(f"{device.path} is a physical volume outside any volume group")
                continue
            if vg_name in seen_groups:
                continue
            seen_groups.add(vg_name)

            for lv_name in self.lvs_in_group(vg_name):
                volumes.add(LogicalVolumeRef(vg_name, lv_name, f"/dev/{vg_name}/{lv_name}"))

        return sorted(volumes)
