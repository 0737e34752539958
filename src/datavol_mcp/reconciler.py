"""
Data volume reconcilers.

BootstrapReconciler runs once on a fresh host: it mounts the single existing
logical volume found on the candidate disks, or builds PV -> VG -> LV -> ext4 on
the first blank disk and mounts that.

ExpansionReconciler runs any number of times afterwards: it absorbs every
newly attached blank disk into the VG of the LV mounted at the mount point,
grows the LV over all free extents and grows the filesystem online.

Every step is idempotent, so a run that failed halfway can simply be re-run.
Nothing is rolled back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .config import SUPPORTED_FS_TYPE, DataVolumeConfig
from .device_discovery import BlanknessClassifier, BlockDevice, DeviceEnumerator
from .host_executor import DataVolumeError
from .lvm_tools import LogicalVolumeRef, LVMTools, MissingFilesystemError
from .volume_stack import UnresolvedVolumeError, VolumeStackInspector

logger = logging.getLogger(__name__)


class AmbiguousVolumeError(DataVolumeError):
    """More than one logical volume exists on the candidate disks."""

    def __init__(self, volumes: List[LogicalVolumeRef]):
        self.volumes = list(volumes)
        paths = " ".join(str(v) for v in self.volumes)
        super().__init__(f"More than one LVM LV found ({paths}); refusing to choose a target")


class NoBlankDiskError(DataVolumeError):
    """No existing logical volume and no blank disk to initialise."""


class UnsupportedFilesystemError(DataVolumeError):
    """The target filesystem cannot be grown by this tool."""

    def __init__(self, device_path: str, fs_type: Optional[str]):
        self.device_path = device_path
        self.fs_type = fs_type
        super().__init__(
            f"Filesystem type {fs_type or 'unknown'} on {device_path} not supported; "
            f"the logical volume was extended but the filesystem was not resized"
        )


class ReconcileOutcome(Enum):
    """How a successful reconciliation run ended."""

    MOUNTED_EXISTING = "mounted_existing"
    CREATED = "created"
    EXPANDED = "expanded"
    NOOP = "noop"


@dataclass
class ReconcileResult:
    """Result of a reconciliation run."""

    outcome: ReconcileOutcome
    message: str
    target: Optional[LogicalVolumeRef] = None
    actions: List[str] = field(default_factory=list)  # Mutations actually issued

    @property
    def changed(self) -> bool:
        return bool(self.actions)


class _Reconciler:
    """Shared wiring for both reconcilers."""

    def __init__(self, tools: LVMTools, config: Optional[DataVolumeConfig] = None):
        self.tools = tools
        self.config = config or DataVolumeConfig()
        self.enumerator = DeviceEnumerator(tools, self.config)
        self.classifier = BlanknessClassifier(tools)
        self.inspector = VolumeStackInspector(tools)
        self.actions: List[str] = []

    def _record(self, changed: bool, action: str) -> None:
        if changed:
            self.actions.append(action)

    def _result(self, outcome, message, target=None) -> ReconcileResult:
        logger.info(message)
        return ReconcileResult(outcome, message, target, list(self.actions))

    def _is_orphan_pv(self, device: BlockDevice) -> bool:
        """A PV in no VG: left behind by a run that stopped after pvcreate."""
        return bool(device.is_physical_volume) and self.inspector.pv_group_of(device.path) is None


class BootstrapReconciler(_Reconciler):
    """Make sure exactly one LVM logical volume is mounted at the mount point."""

    def run(self) -> ReconcileResult:
        """
        Reconcile a freshly configured host.

        Returns:
            ReconcileResult (NOOP, MOUNTED_EXISTING or CREATED)

        Raises:
            AmbiguousVolumeError: If more than one LV exists on the candidate disks
            NoBlankDiskError: If there is neither an LV nor a blank disk
            DataVolumeError: If any probe or command fails
        """
        self.actions = []
        mount_point = self.config.mount_point

        candidates = self.enumerator.list_candidates()
        if not candidates:
            return self._result(
                ReconcileOutcome.NOOP, "No non-system physical disks found - nothing to do."
            )

        # Classify every disk before touching anything
        classified = self.classifier.classify_all(candidates)
        existing = self.inspector.discover_existing_volumes(classified)

        if len(existing) > 1:
            logger.error(f"More than one LVM LV found: {' '.join(str(v) for v in existing)}")
            raise AmbiguousVolumeError(existing)

        if len(existing) == 1:
            target = self.inspector.resolve_lv_for_device(existing[0].lv_path)
            logger.info(f"Found existing LV: {target}")
            self._resume_unformatted(target)
            self._ensure_mount(target.lv_path)
            return self._result(
                ReconcileOutcome.MOUNTED_EXISTING,
                f"Mounted existing LV {target} on {mount_point}",
                target,
            )

        blank = self._first_blank(classified)
        if blank is None:
            logger.error("No blank disks available to initialise")
            raise NoBlankDiskError(
                f"No existing LV and no blank disk available to initialise "
                f"(candidates: {' '.join(d.path for d in classified)})"
            )

        target = self._init_chain(blank)
        self._ensure_mount(target.lv_path)
        return self._result(
            ReconcileOutcome.CREATED,
            f"Created LV {target} on {blank.path} and mounted it on {mount_point}",
            target,
        )

    def _first_blank(self, classified: List[BlockDevice]) -> Optional[BlockDevice]:
        """
        First disk the chain can be built on.

        A PV that is still an orphan or that belongs to our own (LV-less) VG
        was left by an interrupted run; it is picked before any blank disk so
        that run resumes on the same disk.
        """
        for device in classified:
            if not device.is_physical_volume:
                continue
            if self.inspector.pv_group_of(device.path) in (None, self.config.vg_name):
                logger.warning(f"Resuming interrupted initialisation of {device.path}")
                return device

        for device in classified:
            if device.is_blank:
                return device
        return None

    def _init_chain(self, blank: BlockDevice) -> LogicalVolumeRef:
        """Build PV -> VG -> LV -> filesystem on a blank disk."""
        vg_name = self.config.vg_name
        lv_name = self.config.lv_name
        logger.info(f"Initialising blank disk {blank.path} as LVM PV")

        self._record(self.tools.create_physical_volume(blank.path), f"pvcreate {blank.path}")

        if self.tools.group_exists(vg_name):
            self._record(
                self.tools.extend_volume_group(vg_name, blank.path),
                f"vgextend {vg_name} {blank.path}",
            )
        else:
            self._record(
                self.tools.create_volume_group(vg_name, blank.path),
                f"vgcreate {vg_name} {blank.path}",
            )

        self._record(
            self.tools.create_logical_volume_full_free(vg_name, lv_name),
            f"lvcreate {vg_name}/{lv_name}",
        )

        target = self.inspector.resolve_lv_for_device(self.config.lv_path)
        self._record(self.tools.format_filesystem(target.lv_path), f"mkfs {target.lv_path}")
        return target

    def _resume_unformatted(self, target: LogicalVolumeRef) -> None:
        """Format our own LV if an earlier run stopped between lvcreate and mkfs."""
        if (target.vg_name, target.lv_name) != (self.config.vg_name, self.config.lv_name):
            return
        if self.tools.filesystem_type(target.lv_path) is not None:
            return

        logger.warning(f"{target} has no filesystem, resuming interrupted initialisation")
        self._record(self.tools.format_filesystem(target.lv_path), f"mkfs {target.lv_path}")

    def _ensure_mount(self, device_path: str) -> None:
        """Create the mount point, persist a UUID fstab entry, and mount."""
        mount_point = self.config.mount_point
        try:
            uuid = self.tools.get_filesystem_uuid(device_path)
        except MissingFilesystemError:
            logger.error(f"Unable to get UUID for {device_path}")
            raise

        self.tools.ensure_directory(mount_point)
        self._record(
            self.tools.persist_mount_entry(
                uuid, mount_point, self.config.fs_type, self.config.mount_options
            ),
            f"fstab UUID={uuid} {mount_point}",
        )
        self._record(self.tools.mount(mount_point), f"mount {mount_point}")


class ExpansionReconciler(_Reconciler):
    """Grow the mounted data volume over every newly attached blank disk."""

    def run(self) -> ReconcileResult:
        """
        Reconcile an already provisioned host.

        Returns:
            ReconcileResult (NOOP or EXPANDED)

        Raises:
            UnresolvedVolumeError: If the mount source is not a known LV
            UnsupportedFilesystemError: If the LV was grown but its filesystem cannot be
            DataVolumeError: If any probe or command fails
        """
        self.actions = []
        mount_point = self.config.mount_point

        source = self.inspector.resolve_mount_source(mount_point)
        if source is None:
            return self._result(
                ReconcileOutcome.NOOP, f"No mount point {mount_point} - nothing to expand."
            )

        try:
            target = self.inspector.resolve_lv_for_device(source)
        except UnresolvedVolumeError:
            logger.error(f"Could not locate an LVM LV for {source}")
            raise

        candidates = self.enumerator.list_candidates()
        if not candidates:
            return self._result(
                ReconcileOutcome.NOOP,
                "No extra physical disks discovered - nothing to do.",
                target,
            )

        classified = self.classifier.classify_all(candidates)
        blanks = [d for d in classified if d.is_blank or self._is_orphan_pv(d)]
        if not blanks:
            return self._result(
                ReconcileOutcome.NOOP, "No blank disks available for expansion.", target
            )

        logger.info(f"Blank disks that will become PVs: {' '.join(d.path for d in blanks)}")
        for disk in blanks:
            self._record(self.tools.create_physical_volume(disk.path), f"pvcreate {disk.path}")
            self._record(
                self.tools.extend_volume_group(target.vg_name, disk.path),
                f"vgextend {target.vg_name} {disk.path}",
            )

        self._record(
            self.tools.extend_logical_volume_full_free(target.lv_path, target.vg_name),
            f"lvextend {target.lv_path}",
        )

        fs_type = self.tools.filesystem_type(target.lv_path)
        if fs_type != SUPPORTED_FS_TYPE:
            logger.error(f"Filesystem type {fs_type} not supported - aborting")
            raise UnsupportedFilesystemError(target.lv_path, fs_type)

        self.tools.grow_filesystem(target.lv_path)
        self.actions.append(f"resize2fs {target.lv_path}")

        return self._result(
            ReconcileOutcome.EXPANDED,
            f"Resize complete - {mount_point} now spans {len(blanks)} more disk(s)",
            target,
        )


def format_reconcile_result(result: ReconcileResult) -> str:
    """Format a reconciliation result for display."""
    lines = [result.message]
    if result.target is not None:
        lines.append(f"Logical volume: {result.target.lv_path}")
        lines.append(f"Volume group: {result.target.vg_name}")
    if result.actions:
        lines.append("")
        lines.append("Changes made:")
        for action in result.actions:
            lines.append(f"  - {action}")
    else:
        lines.append("No changes made.")
    return "\n".join(lines)
