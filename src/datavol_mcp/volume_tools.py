"""
MCP tools for data volume management.

Provides MCP tool definitions and handlers for provisioning, expanding and
inspecting the data volume of a host.
"""

import logging
from typing import Any, Dict, List

from mcp.types import Tool, TextContent

from .config import DataVolumeConfig
from .device_discovery import BlanknessClassifier, DeviceEnumerator
from .host_executor import DataVolumeError, HostExecutor, LocalExecutor, SSHExecutor
from .lvm_tools import LVMTools
from .reconciler import BootstrapReconciler, ExpansionReconciler, format_reconcile_result
from .volume_stack import UnresolvedVolumeError, VolumeStackInspector


logger = logging.getLogger(__name__)


_HOST_PROPERTIES = {
    "host": {
        "type": "string",
        "description": "IP address or hostname of the target VM (omit to act on this machine)",
    },
    "ssh_user": {
        "type": "string",
        "description": "SSH user with password-less sudo (required with host)",
    },
    "ssh_key": {
        "type": "string",
        "description": "Path to the SSH private key (required with host)",
    },
    "mount_point": {
        "type": "string",
        "description": "Data mount point (default: '/data')",
    },
}


# Tool definitions for MCP server
def get_data_volume_tools() -> List[Tool]:
    """Get list of data volume MCP tools."""
    return [
        Tool(
            name="data_volume_provision",
            description=(
                "Ensure a single LVM logical volume is mounted on the data mount point. "
                "Mounts the existing LV if exactly one is found on the extra disks, otherwise "
                "initialises the first blank disk (PV + VG + LV + ext4). Refuses to act if more "
                "than one LV exists."
            ),
            inputSchema={"type": "object", "properties": dict(_HOST_PROPERTIES)},
        ),
        Tool(
            name="data_volume_expand",
            description=(
                "Add every newly attached blank disk to the volume group of the LV mounted on "
                "the data mount point, extend the LV over all free space and grow its ext4 "
                "filesystem online."
            ),
            inputSchema={"type": "object", "properties": dict(_HOST_PROPERTIES)},
        ),
        Tool(
            name="data_volume_inspect",
            description=(
                "Show candidate disks with their classification (physical volume, blank, "
                "foreign) and the LV backing the data mount point. Makes no changes."
            ),
            inputSchema={"type": "object", "properties": dict(_HOST_PROPERTIES)},
        ),
    ]


def _make_executor(arguments: Dict[str, Any]) -> HostExecutor:
    host = arguments.get("host")
    if not host:
        return LocalExecutor()

    ssh_user = arguments.get("ssh_user")
    ssh_key = arguments.get("ssh_key")
    if not ssh_user or not ssh_key:
        raise ValueError("ssh_user and ssh_key are required when host is given")
    return SSHExecutor(ssh_user, host, ssh_key)


def _make_config(arguments: Dict[str, Any]) -> DataVolumeConfig:
    return DataVolumeConfig.from_env(mount_point=arguments.get("mount_point"))


# Tool handlers
async def handle_data_volume_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """
    Handle data volume tool calls.

    Args:
        name: Tool name
        arguments: Tool arguments

    Returns:
        List of TextContent responses
    """
    try:
        if name == "data_volume_provision":
            return await _handle_reconcile(BootstrapReconciler, arguments)
        elif name == "data_volume_expand":
            return await _handle_reconcile(ExpansionReconciler, arguments)
        elif name == "data_volume_inspect":
            return await _handle_data_volume_inspect(arguments)
        else:
            return [TextContent(type="text", text=f"Unknown data volume tool: {name}")]
    except DataVolumeError as e:
        logger.error(f"Data volume tool '{name}' failed: {e}")
        return [TextContent(type="text", text=f"Error: {str(e)}")]
    except Exception as e:
        logger.error(f"Error handling data volume tool '{name}': {e}", exc_info=True)
        return [TextContent(type="text", text=f"Error: {str(e)}")]


async def _handle_reconcile(reconciler_cls, arguments: Dict[str, Any]) -> List[TextContent]:
    """Handle data_volume_provision and data_volume_expand."""
    config = _make_config(arguments)
    target = arguments.get("host") or "localhost"
    logger.info(f"Running {reconciler_cls.__name__} on {target} for {config.mount_point}")

    with _make_executor(arguments) as executor:
        tools = LVMTools(executor, fstab_path=config.fstab_path)
        result = reconciler_cls(tools, config).run()

    return [TextContent(type="text", text=format_reconcile_result(result))]


async def _handle_data_volume_inspect(arguments: Dict[str, Any]) -> List[TextContent]:
    """Handle data_volume_inspect tool."""
    config = _make_config(arguments)
    target = arguments.get("host") or "localhost"

    with _make_executor(arguments) as executor:
        tools = LVMTools(executor, fstab_path=config.fstab_path)
        disks = DeviceEnumerator(tools, config).list_disks()
        system_disks = [d for d in disks if d.is_system]
        classified = BlanknessClassifier(tools).classify_all(
            [d for d in disks if not d.is_system]
        )
        inspector = VolumeStackInspector(tools)
        source = inspector.resolve_mount_source(config.mount_point)
        lv_text = "n/a"
        if source is not None:
            try:
                lv_text = str(inspector.resolve_lv_for_device(source))
            except UnresolvedVolumeError:
                lv_text = "not an LVM logical volume"

    response_text = f"Data Volume Status: {target}\n\n"
    response_text += f"Mount point: {config.mount_point}\n"
    response_text += f"Mounted from: {source or 'not mounted'}\n"
    response_text += f"Logical volume: {lv_text}\n"

    if system_disks:
        response_text += f"System disks (ignored): {' '.join(d.path for d in system_disks)}\n"

    response_text += f"\nCandidate disks: {len(classified)}\n"
    for disk in classified:
        size_gb = disk.size_bytes / (1024**3)
        response_text += f"  - {disk.path} ({size_gb:.1f} GiB): {disk.classification.value}\n"

    return [TextContent(type="text", text=response_text)]
