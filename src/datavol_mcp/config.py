"""
Configuration for data volume reconciliation.

Naming conventions (volume group, logical volume, mount point) live here
rather than in the reconcilers so that callers and tests can choose their own.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Tuple

logger = logging.getLogger(__name__)


# The only filesystem we know how to create and grow online
SUPPORTED_FS_TYPE = "ext4"

DEFAULT_MOUNT_POINT = "/data"
DEFAULT_VG_NAME = "data_vg"
DEFAULT_LV_NAME = "data_lv"


@dataclass(frozen=True)
class DataVolumeConfig:
    """Target layout for the data volume on a single host."""

    mount_point: str = DEFAULT_MOUNT_POINT
    vg_name: str = DEFAULT_VG_NAME  # VG created on a fresh host
    lv_name: str = DEFAULT_LV_NAME  # LV created on a fresh host
    fs_type: str = SUPPORTED_FS_TYPE
    mount_options: str = "defaults"
    # Device name prefixes never touched (boot disk of the VM)
    system_device_prefixes: Tuple[str, ...] = field(default=("vda",))
    fstab_path: str = "/etc/fstab"

    def __post_init__(self):
        if self.fs_type != SUPPORTED_FS_TYPE:
            raise ValueError(
                f"Unsupported filesystem type '{self.fs_type}' "
                f"(only {SUPPORTED_FS_TYPE} is supported)"
            )
        if not self.mount_point.startswith("/"):
            raise ValueError(f"Mount point must be an absolute path: {self.mount_point}")
        if not self.vg_name or not self.lv_name:
            raise ValueError("Volume group and logical volume names must not be empty")

    @property
    def lv_path(self) -> str:
        """Canonical device path of the LV created on a fresh host."""
        return f"/dev/{self.vg_name}/{self.lv_name}"

    @classmethod
    def from_env(cls, **overrides) -> "DataVolumeConfig":
        """
        Build a config from DATAVOL_* environment variables.

        Args:
            **overrides: Explicit values that win over the environment

        Returns:
            DataVolumeConfig
        """
        values = {}

        mount_point = os.getenv("DATAVOL_MOUNT_POINT")
        if mount_point:
            values["mount_point"] = mount_point

        vg_name = os.getenv("DATAVOL_VG_NAME")
        if vg_name:
            values["vg_name"] = vg_name

        lv_name = os.getenv("DATAVOL_LV_NAME")
        if lv_name:
            values["lv_name"] = lv_name

        system_devices = os.getenv("DATAVOL_SYSTEM_DEVICES")
        if system_devices:
            prefixes = tuple(p.strip() for p in system_devices.split(",") if p.strip())
            if prefixes:
                values["system_device_prefixes"] = prefixes
            else:
                logger.warning("Empty DATAVOL_SYSTEM_DEVICES environment variable, using default")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
