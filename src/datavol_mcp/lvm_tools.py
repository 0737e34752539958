"""
Typed capability layer over the host's storage tools.

Wraps lsblk, blkid, findmnt, the LVM2 command set, mkfs/resize2fs, mount and
/etc/fstab. Every method returns parsed values (or raises); callers never see
raw command output. Mutating methods are idempotent: calling one twice leaves
the host in the same state as calling it once.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import SUPPORTED_FS_TYPE
from .host_executor import CommandError, DataVolumeError, HostExecutor

logger = logging.getLogger(__name__)


# blkid exit status when the probe found nothing on the device
BLKID_NOTHING_FOUND = 2

# blkid exit status when the probe found more than one signature
BLKID_AMBIVALENT = 8

# findmnt exit status when nothing matches
FINDMNT_NOT_FOUND = 1


class DeviceProbeError(DataVolumeError):
    """A signature probe could not tell whether a device is blank."""


class MissingFilesystemError(DataVolumeError):
    """A device that must be mounted carries no filesystem UUID."""


def mapper_name(vg_name: str, lv_name: str) -> str:
    """Device-mapper name for an LV (dashes inside names are doubled)."""
    return f"{vg_name.replace('-', '--')}-{lv_name.replace('-', '--')}"


@dataclass(frozen=True, order=True)
class LogicalVolumeRef:
    """A logical volume identified by its group and name."""

    vg_name: str
    lv_name: str
    lv_path: str  # Canonical path (e.g., /dev/data_vg/data_lv)

    @property
    def mapper_path(self) -> str:
        return f"/dev/mapper/{mapper_name(self.vg_name, self.lv_name)}"

    def matches_device(self, device_path: str) -> bool:
        """
        Check whether a device path is one of this LV's spellings.

        Only the dash-doubled /dev/mapper name is an alias. The undoubled
        /dev/mapper/{vg}-{lv} form is not, since it can name a different LV
        when either name contains a dash.
        """
        return device_path in (self.lv_path, self.mapper_path)

    def __str__(self) -> str:
        return self.lv_path


def _lvm_report_rows(stdout: str, section: str) -> List[Dict[str, Any]]:
    """Extract rows from an LVM JSON report (lvs/pvs/vgs --reportformat json)."""
    if not stdout.strip():
        return []
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise DataVolumeError(f"Unparseable LVM {section} report: {e}") from e

    rows = []
    for report in data.get("report", []):
        rows.extend(report.get(section, []))
    return rows


class LVMTools:
    """Storage capabilities of a single host, executed through a HostExecutor."""

    def __init__(self, executor: HostExecutor, fstab_path: str = "/etc/fstab"):
        self.executor = executor
        self.fstab_path = fstab_path

    # ---- Read-only lookups ----

    def list_block_devices(self) -> List[Dict[str, Any]]:
        """
        List top-level block devices.

        Returns:
            List of dicts with name, type and size (bytes)
        """
        result = self.executor.run(
            ["lsblk", "-J", "-d", "-b", "-o", "NAME,TYPE,SIZE"], check=True
        )
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise DataVolumeError(f"Unparseable lsblk output: {e}") from e

        devices = []
        for dev in data.get("blockdevices", []):
            size = dev.get("size")
            devices.append(
                {
                    "name": dev.get("name", ""),
                    "type": dev.get("type", ""),
                    "size": int(size) if size is not None else 0,
                }
            )
        return devices

    def device_has_signature(self, path: str) -> bool:
        """
        Probe a device for any filesystem, RAID, LVM or partition-table signature.

        Args:
            path: Device path

        Returns:
            True if blkid found one or more signatures, False if it found nothing

        Raises:
            DeviceProbeError: If the probe failed for any other reason
        """
        result = self.executor.run(["blkid", "-p", path])
        if result.returncode in (0, BLKID_AMBIVALENT):
            return True
        if result.returncode == BLKID_NOTHING_FOUND:
            return False
        raise DeviceProbeError(
            f"Signature probe of {path} was inconclusive "
            f"(blkid exit {result.returncode}): {result.stderr.strip()}"
        )

    def _physical_volumes(self) -> Dict[str, str]:
        """Map every PV path to its VG name ('' for orphan PVs)."""
        result = self.executor.run(
            ["pvs", "--reportformat", "json", "-o", "pv_name,vg_name"], check=True
        )
        return {
            row.get("pv_name", ""): row.get("vg_name", "")
            for row in _lvm_report_rows(result.stdout, "pv")
        }

    def is_registered_physical_volume(self, path: str) -> bool:
        return path in self._physical_volumes()

    def physical_volume_group(self, path: str) -> Optional[str]:
        """
        Get the VG that owns a PV.

        Returns:
            VG name, or None if the device is not a PV or belongs to no VG
        """
        return self._physical_volumes().get(path) or None

    def list_logical_volumes(self, vg_name: str) -> List[str]:
        result = self.executor.run(
            ["lvs", "--reportformat", "json", "-o", "vg_name,lv_name,lv_path", vg_name],
            check=True,
        )
        return [row["lv_name"] for row in _lvm_report_rows(result.stdout, "lv")]

    def list_all_logical_volumes(self) -> List[LogicalVolumeRef]:
        result = self.executor.run(
            ["lvs", "--reportformat", "json", "-o", "vg_name,lv_name,lv_path"], check=True
        )
        volumes = []
        for row in _lvm_report_rows(result.stdout, "lv"):
            vg = row.get("vg_name", "").strip()
            lv = row.get("lv_name", "").strip()
            path = row.get("lv_path", "").strip() or f"/dev/{vg}/{lv}"
            volumes.append(LogicalVolumeRef(vg, lv, path))
        return volumes

    def resolve_mount_source(self, mount_point: str) -> Optional[str]:
        """
        Get the device mounted exactly at mount_point.

        Returns:
            Source device path, or None if nothing is mounted there
        """
        result = self.executor.run(["findmnt", "-n", "-o", "SOURCE", "--mountpoint", mount_point])
        if result.returncode == FINDMNT_NOT_FOUND:
            return None
        if result.returncode != 0:
            raise CommandError(
                ["findmnt", "--mountpoint", mount_point], result.returncode, result.stderr
            )
        source = result.stdout.strip()
        return source or None

    def group_exists(self, vg_name: str) -> bool:
        result = self.executor.run(["vgs", "--noheadings", "-o", "vg_name", vg_name])
        return result.returncode == 0

    def group_free_extents(self, vg_name: str) -> int:
        result = self.executor.run(
            ["vgs", "--noheadings", "-o", "vg_free_count", vg_name], check=True
        )
        try:
            return int(result.stdout.strip())
        except ValueError as e:
            raise DataVolumeError(
                f"Unexpected free extent count for VG '{vg_name}': {result.stdout.strip()!r}"
            ) from e

    def filesystem_type(self, path: str) -> Optional[str]:
        """
        Get the filesystem type on a device.

        Returns:
            Type string (e.g., "ext4"), or None if no filesystem was detected
        """
        result = self.executor.run(["blkid", "-p", "-s", "TYPE", "-o", "value", path])
        if result.returncode == BLKID_NOTHING_FOUND:
            return None
        if result.returncode != 0:
            raise CommandError(
                ["blkid", "-p", "-s", "TYPE", path], result.returncode, result.stderr
            )
        return result.stdout.strip() or None

    def get_filesystem_uuid(self, path: str) -> str:
        result = self.executor.run(["blkid", "-p", "-s", "UUID", "-o", "value", path])
        uuid = result.stdout.strip() if result.returncode == 0 else ""
        if not uuid:
            raise MissingFilesystemError(f"Unable to get filesystem UUID for {path}")
        return uuid

    def _fstab_mount_points(self) -> List[str]:
        result = self.executor.run(["cat", self.fstab_path])
        if result.returncode != 0:
            logger.warning(f"Could not read {self.fstab_path}: {result.stderr.strip()}")
            return []

        mount_points = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) >= 2:
                mount_points.append(parts[1])
        return mount_points

    def has_mount_entry(self, mount_point: str) -> bool:
        return mount_point in self._fstab_mount_points()

    # ---- Mutating operations ----

    def create_physical_volume(self, path: str) -> bool:
        """
        Initialise a device as an LVM physical volume.

        Returns:
            True if a PV was created, False if the device already was one
        """
        if self.is_registered_physical_volume(path):
            logger.info(f"{path} is already a physical volume")
            return False

        logger.info(f"Creating physical volume on {path}...")
        self.executor.run(["pvcreate", "-ff", "-y", path], check=True)
        return True

    def create_volume_group(self, vg_name: str, path: str) -> bool:
        if self.group_exists(vg_name):
            logger.info(f"Volume group '{vg_name}' already exists")
            return False

        logger.info(f"Creating volume group '{vg_name}' on {path}...")
        self.executor.run(["vgcreate", vg_name, path], check=True)
        return True

    def extend_volume_group(self, vg_name: str, path: str) -> bool:
        """
        Add a PV to a volume group.

        Returns:
            True if the VG was extended, False if the PV was already a member
        """
        current = self.physical_volume_group(path)
        if current == vg_name:
            logger.info(f"{path} already belongs to volume group '{vg_name}'")
            return False

        logger.info(f"Extending volume group '{vg_name}' with {path}...")
        self.executor.run(["vgextend", vg_name, path], check=True)
        return True

    def create_logical_volume_full_free(self, vg_name: str, lv_name: str) -> bool:
        if lv_name in self.list_logical_volumes(vg_name):
            logger.info(f"Logical volume '{vg_name}/{lv_name}' already exists")
            return False

        logger.info(f"Creating logical volume '{vg_name}/{lv_name}' on 100% of free space...")
        self.executor.run(
            ["lvcreate", "-y", "-l", "100%FREE", "-n", lv_name, vg_name], check=True
        )
        return True

    def extend_logical_volume_full_free(self, lv_path: str, vg_name: str) -> bool:
        """
        Grow an LV over all free extents of its VG.

        Args:
            lv_path: LV device path
            vg_name: VG the LV belongs to

        Returns:
            True if the LV grew, False if the VG had no free extents
        """
        free = self.group_free_extents(vg_name)
        if free == 0:
            logger.info(f"Volume group '{vg_name}' has no free extents, {lv_path} not extended")
            return False

        logger.info(f"Extending {lv_path} by {free} free extent(s) of '{vg_name}'...")
        self.executor.run(["lvextend", "-l", "+100%FREE", lv_path], check=True)
        return True

    def format_filesystem(self, path: str) -> bool:
        existing = self.filesystem_type(path)
        if existing == SUPPORTED_FS_TYPE:
            logger.info(f"{path} already carries an {SUPPORTED_FS_TYPE} filesystem")
            return False
        if existing is not None:
            raise DataVolumeError(
                f"Refusing to format {path}: it already carries a {existing} filesystem"
            )

        logger.info(f"Creating {SUPPORTED_FS_TYPE} filesystem on {path}...")
        self.executor.run([f"mkfs.{SUPPORTED_FS_TYPE}", "-F", path], check=True)
        return True

    def grow_filesystem(self, path: str) -> None:
        logger.info(f"Growing {SUPPORTED_FS_TYPE} filesystem on {path}...")
        self.executor.run(["resize2fs", path], check=True)

    def ensure_directory(self, path: str) -> None:
        self.executor.run(["mkdir", "-p", path], check=True)

    def persist_mount_entry(
        self,
        uuid: str,
        mount_point: str,
        fs_type: str = SUPPORTED_FS_TYPE,
        options: str = "defaults",
    ) -> bool:
        """
        Add a UUID-keyed fstab entry for mount_point.

        Returns:
            True if an entry was appended, False if one already named mount_point
        """
        if self.has_mount_entry(mount_point):
            logger.info(f"{self.fstab_path} already contains an entry for {mount_point}")
            return False

        entry = f"UUID={uuid}  {mount_point}  {fs_type}  {options}  0 2\n"
        self.executor.run(["tee", "-a", self.fstab_path], input=entry, check=True)
        logger.info(f"Added {self.fstab_path} entry: {entry.strip()}")
        return True

    def mount(self, mount_point: str) -> bool:
        """
        Mount mount_point from its fstab entry.

        Returns:
            True if it was mounted now, False if it already was
        """
        if self.resolve_mount_source(mount_point) is not None:
            logger.info(f"{mount_point} is already mounted")
            return False

        logger.info(f"Mounting {mount_point}...")
        self.executor.run(["mount", mount_point], check=True)
        return True
