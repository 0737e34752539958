"""
Tests for the data volume MCP tools.
"""

import asyncio

import pytest
from unittest.mock import patch

from fake_host import FakeHost

from datavol_mcp.host_executor import LocalExecutor, SSHExecutor
from datavol_mcp.volume_tools import (
    _make_executor,
    get_data_volume_tools,
    handle_data_volume_tool,
)


@pytest.fixture
def host():
    return FakeHost()


def call(name, arguments, host):
    """Run a tool handler against FakeHost on this machine."""
    with patch("datavol_mcp.volume_tools.LocalExecutor"), patch(
        "datavol_mcp.volume_tools.LVMTools", return_value=host
    ):
        return asyncio.run(handle_data_volume_tool(name, arguments))


class TestToolDefinitions:
    def test_tool_names(self):
        names = [tool.name for tool in get_data_volume_tools()]
        assert names == ["data_volume_provision", "data_volume_expand", "data_volume_inspect"]

    def test_schemas_share_host_arguments(self):
        for tool in get_data_volume_tools():
            props = tool.inputSchema["properties"]
            assert set(props) == {"host", "ssh_user", "ssh_key", "mount_point"}


class TestMakeExecutor:
    def test_local_without_host(self):
        assert isinstance(_make_executor({}), LocalExecutor)

    def test_ssh_with_host(self):
        executor = _make_executor({"host": "10.0.0.5", "ssh_user": "admin", "ssh_key": "/k"})

        assert isinstance(executor, SSHExecutor)
        assert executor.host == "10.0.0.5"

    def test_host_requires_credentials(self):
        with pytest.raises(ValueError):
            _make_executor({"host": "10.0.0.5"})


class TestHandlers:
    def test_provision(self, host):
        host.add_disk("vdb")

        result = call("data_volume_provision", {}, host)

        assert "Created LV /dev/data_vg/data_lv on /dev/vdb" in result[0].text
        assert host.mounts["/data"] == "/dev/mapper/data_vg-data_lv"

    def test_provision_custom_mount_point(self, host):
        host.add_disk("vdb")

        call("data_volume_provision", {"mount_point": "/srv/data"}, host)

        assert "/srv/data" in host.mounts

    def test_provision_error_is_text(self, host):
        host.add_existing_volume("vdb", "g1", "lv1")
        host.add_existing_volume("vdc", "g2", "lv2")

        result = call("data_volume_provision", {}, host)

        assert result[0].text.startswith("Error: More than one LVM LV found")

    def test_expand(self, host):
        host.add_existing_volume("vdb", "data_vg", "data_lv")
        host.mount_lv("data_vg", "data_lv")
        host.add_disk("vdc")

        result = call("data_volume_expand", {}, host)

        assert "vgextend data_vg /dev/vdc" in result[0].text

    def test_inspect(self, host):
        host.add_existing_volume("vdb", "data_vg", "data_lv")
        host.mount_lv("data_vg", "data_lv")
        host.add_disk("vdc")
        host.add_disk("vdd", signature="xfs")

        text = call("data_volume_inspect", {}, host)[0].text

        assert "Mounted from: /dev/mapper/data_vg-data_lv" in text
        assert "Logical volume: /dev/data_vg/data_lv" in text
        assert "System disks (ignored): /dev/vda" in text
        assert "/dev/vdb (10.0 GiB): physical_volume" in text
        assert "/dev/vdc (10.0 GiB): blank" in text
        assert "/dev/vdd (10.0 GiB): foreign" in text
        assert host.mutations == []

    def test_inspect_raw_mount(self, host):
        host.add_disk("vdb", signature="ext4")
        host.mounts["/data"] = "/dev/vdb"

        text = call("data_volume_inspect", {}, host)[0].text

        assert "Logical volume: not an LVM logical volume" in text

    def test_unknown_tool(self, host):
        result = call("data_volume_shrink", {}, host)
        assert "Unknown data volume tool" in result[0].text

    def test_missing_credentials_is_text(self, host):
        result = call("data_volume_expand", {"host": "10.0.0.5"}, host)
        assert result[0].text.startswith("Error: ssh_user and ssh_key are required")
