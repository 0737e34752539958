"""
End-to-end reconciler tests through the real LVMTools capability layer.

ShellHost answers the commands LVMTools issues (lsblk, blkid, pvs, vgs, lvs,
findmnt, cat) from a small storage state and applies the mutating ones, so the
idempotence guards under test are the ones LVMTools implements.
"""

import json
import uuid as uuid_mod

import pytest

from datavol_mcp.config import DataVolumeConfig
from datavol_mcp.host_executor import CommandError, RunResult
from datavol_mcp.lvm_tools import LVMTools, mapper_name
from datavol_mcp.reconciler import BootstrapReconciler, ExpansionReconciler, ReconcileOutcome

EXTENT_BYTES = 4 * 1024 * 1024
GIB = 1024**3

MUTATING = {
    "pvcreate",
    "vgcreate",
    "vgextend",
    "lvcreate",
    "lvextend",
    "mkfs.ext4",
    "resize2fs",
    "tee",
    "mount",
}


def ok(stdout: str = "") -> RunResult:
    return RunResult(stdout=stdout, stderr="", returncode=0)


def fail(returncode: int, stderr: str = "") -> RunResult:
    return RunResult(stdout="", stderr=stderr, returncode=returncode)


class ShellHost:
    """Executor backed by the storage state of one fake VM."""

    def __init__(self):
        self.disks = {}  # name -> {"size", "signatures"}
        self.pvs = {}  # pv path -> vg name ('' when orphan)
        self.pv_extents = {}
        self.vg_free = {}
        self.lvs = {}  # (vg, lv) -> {"extents", "fs", "uuid", "fs_extents"}
        self.mounts = {}  # mount point -> source
        self.fstab = "UUID=root-uuid  /  ext4  defaults  0 1\n"
        self.directories = set()
        self.calls = []
        self.add_disk("vda", size_gb=20, signatures=["ext4"])

    def add_disk(self, name, size_gb=10, signatures=()):
        self.disks[name] = {"size": size_gb * GIB, "signatures": list(signatures)}
        return f"/dev/{name}"

    def mutations(self):
        return [cmd[0] for cmd in self.calls if cmd[0] in MUTATING]

    def fstab_lines_for(self, mount_point):
        return [line for line in self.fstab.splitlines() if line.split()[1:2] == [mount_point]]

    def _lv_at(self, path):
        for (vg, lv), info in self.lvs.items():
            if path in (f"/dev/{vg}/{lv}", f"/dev/mapper/{mapper_name(vg, lv)}"):
                return (vg, lv), info
        return None, None

    # ---- HostExecutor interface ----

    def run(self, cmd, input=None, check=False):
        self.calls.append(list(cmd))
        handler = getattr(self, "_" + cmd[0].replace(".", "_"), None)
        result = handler(cmd, input) if handler else fail(127, f"{cmd[0]}: not found")
        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr)
        return result

    # ---- Read-only commands ----

    def _lsblk(self, cmd, input):
        devices = [
            {"name": name, "type": "disk", "size": disk["size"]}
            for name, disk in self.disks.items()
        ]
        devices.append({"name": "loop0", "type": "loop", "size": 1024})
        return ok(json.dumps({"blockdevices": devices}))

    def _blkid(self, cmd, input):
        path = cmd[-1]
        if "-s" in cmd:
            _, info = self._lv_at(path)
            if info is None or info["fs"] is None:
                return fail(2)
            key = cmd[cmd.index("-s") + 1]
            return ok((info["fs"] if key == "TYPE" else info["uuid"]) + "\n")

        signatures = self.disks[path.rsplit("/", 1)[-1]]["signatures"]
        if not signatures:
            return fail(2)
        if len(signatures) > 1:
            return fail(8, f"{path}: ambivalent result (probably more filesystems on the device)")
        return ok(f'{path}: TYPE="{signatures[0]}"\n')

    def _pvs(self, cmd, input):
        rows = [{"pv_name": pv, "vg_name": vg} for pv, vg in self.pvs.items()]
        return ok(json.dumps({"report": [{"pv": rows}]}))

    def _lvs(self, cmd, input):
        wanted = cmd[5] if len(cmd) > 5 else None
        if wanted is not None and wanted not in self.vg_free:
            return fail(5, f'Volume group "{wanted}" not found')
        rows = [
            {"vg_name": vg, "lv_name": lv, "lv_path": f"/dev/{vg}/{lv}"}
            for (vg, lv) in self.lvs
            if wanted in (None, vg)
        ]
        return ok(json.dumps({"report": [{"lv": rows}]}))

    def _vgs(self, cmd, input):
        field, vg = cmd[3], cmd[4]
        if vg not in self.vg_free:
            return fail(5, f'Volume group "{vg}" not found')
        if field == "vg_free_count":
            return ok(f"  {self.vg_free[vg]}\n")
        return ok(f"  {vg}\n")

    def _findmnt(self, cmd, input):
        source = self.mounts.get(cmd[-1])
        return ok(source + "\n") if source else fail(1)

    def _cat(self, cmd, input):
        return ok(self.fstab)

    # ---- Mutating commands ----

    def _pvcreate(self, cmd, input):
        path = cmd[-1]
        disk = self.disks[path.rsplit("/", 1)[-1]]
        disk["signatures"] = ["LVM2_member"]
        self.pvs[path] = ""
        self.pv_extents[path] = disk["size"] // EXTENT_BYTES
        return ok()

    def _vgcreate(self, cmd, input):
        vg, path = cmd[1], cmd[2]
        if vg in self.vg_free:
            return fail(5, f'A volume group called {vg} already exists.')
        self.pvs[path] = vg
        self.vg_free[vg] = self.pv_extents[path]
        return ok()

    def _vgextend(self, cmd, input):
        vg, path = cmd[1], cmd[2]
        if vg not in self.vg_free:
            return fail(5, f'Volume group "{vg}" not found')
        self.pvs[path] = vg
        self.vg_free[vg] += self.pv_extents[path]
        return ok()

    def _lvcreate(self, cmd, input):
        lv, vg = cmd[-2], cmd[-1]
        self.lvs[(vg, lv)] = {"extents": self.vg_free[vg], "fs": None, "uuid": "", "fs_extents": 0}
        self.vg_free[vg] = 0
        return ok()

    def _lvextend(self, cmd, input):
        (vg, _), info = self._lv_at(cmd[-1])
        info["extents"] += self.vg_free[vg]
        self.vg_free[vg] = 0
        return ok()

    def _mkfs_ext4(self, cmd, input):
        _, info = self._lv_at(cmd[-1])
        info.update(fs="ext4", uuid=str(uuid_mod.uuid4()), fs_extents=info["extents"])
        return ok()

    def _resize2fs(self, cmd, input):
        _, info = self._lv_at(cmd[-1])
        info["fs_extents"] = info["extents"]
        return ok()

    def _mkdir(self, cmd, input):
        self.directories.add(cmd[-1])
        return ok()

    def _tee(self, cmd, input):
        self.fstab += input
        return ok(input)

    def _mount(self, cmd, input):
        mount_point = cmd[-1]
        for line in self.fstab_lines_for(mount_point):
            fs_uuid = line.split()[0][len("UUID="):]
            for (vg, lv), info in self.lvs.items():
                if info["uuid"] == fs_uuid:
                    self.mounts[mount_point] = f"/dev/mapper/{mapper_name(vg, lv)}"
                    return ok()
        return fail(32, f"mount: {mount_point}: can't find in /etc/fstab.")


@pytest.fixture
def host():
    return ShellHost()


@pytest.fixture
def config():
    return DataVolumeConfig()


def bootstrap(host, config):
    return BootstrapReconciler(LVMTools(host), config).run()


def expand(host, config):
    return ExpansionReconciler(LVMTools(host), config).run()


class TestBootstrapThroughLVMTools:
    """Bootstrap against command-level host state."""

    def test_bootstrap_twice(self, host, config):
        """Test the second run issues no pvcreate/vgcreate/lvcreate/tee and keeps one fstab line."""
        host.add_disk("vdb")

        first = bootstrap(host, config)

        assert first.outcome == ReconcileOutcome.CREATED
        assert host.mutations() == ["pvcreate", "vgcreate", "lvcreate", "mkfs.ext4", "tee", "mount"]
        assert host.mounts["/data"] == "/dev/mapper/data_vg-data_lv"
        assert len(host.fstab_lines_for("/data")) == 1
        calls_before = len(host.calls)

        second = bootstrap(host, config)

        assert second.outcome == ReconcileOutcome.MOUNTED_EXISTING
        assert second.actions == []
        second_calls = [cmd[0] for cmd in host.calls[calls_before:]]
        assert not set(second_calls) & MUTATING
        assert len(host.fstab_lines_for("/data")) == 1

    def test_fstab_line_format(self, host, config):
        host.add_disk("vdb")

        bootstrap(host, config)

        fs_uuid = host.lvs[("data_vg", "data_lv")]["uuid"]
        assert host.fstab_lines_for("/data") == [f"UUID={fs_uuid}  /data  ext4  defaults  0 2"]

    def test_remount_after_reboot(self, host, config):
        """Test an unmounted volume with an fstab entry is only mounted again."""
        host.add_disk("vdb")
        bootstrap(host, config)
        host.mounts.clear()
        calls_before = len(host.calls)

        result = bootstrap(host, config)

        assert result.actions == ["mount /data"]
        assert [c[0] for c in host.calls[calls_before:] if c[0] in MUTATING] == ["mount"]
        assert len(host.fstab_lines_for("/data")) == 1

    def test_disk_with_several_signatures_is_skipped(self, host, config):
        """Test a disk blkid reports as ambivalent is left alone and its blank neighbour used."""
        host.add_disk("vdb", signatures=["dos", "ext4"])
        host.add_disk("vdc")

        result = bootstrap(host, config)

        assert result.outcome == ReconcileOutcome.CREATED
        assert "on /dev/vdc" in result.message
        assert "/dev/vdb" not in host.pvs
        assert host.disks["vdb"]["signatures"] == ["dos", "ext4"]

    def test_loop_and_system_disks_untouched(self, host, config):
        host.add_disk("vdb")

        bootstrap(host, config)

        assert set(host.pvs) == {"/dev/vdb"}
        assert not any("loop0" in " ".join(cmd) for cmd in host.calls)


class TestExpansionThroughLVMTools:
    """Expansion against command-level host state."""

    @pytest.fixture
    def provisioned(self, host, config):
        host.add_disk("vdb")
        bootstrap(host, config)
        return host

    def test_expand_twice(self, provisioned, config):
        """Test the second expansion with nothing new attached changes nothing."""
        host = provisioned
        host.add_disk("vdc", size_gb=5)
        calls_before = len(host.calls)

        first = expand(host, config)

        assert first.outcome == ReconcileOutcome.EXPANDED
        assert [c[0] for c in host.calls[calls_before:] if c[0] in MUTATING] == [
            "pvcreate",
            "vgextend",
            "lvextend",
            "resize2fs",
        ]
        lv = host.lvs[("data_vg", "data_lv")]
        assert lv["extents"] == host.pv_extents["/dev/vdb"] + host.pv_extents["/dev/vdc"]
        assert lv["fs_extents"] == lv["extents"]
        calls_before = len(host.calls)

        second = expand(host, config)

        assert second.outcome == ReconcileOutcome.NOOP
        assert second.actions == []
        assert not {c[0] for c in host.calls[calls_before:]} & MUTATING

    def test_ambivalent_disk_not_absorbed(self, provisioned, config):
        host = provisioned
        host.add_disk("vdc", signatures=["gpt", "xfs"])
        host.add_disk("vdd")

        result = expand(host, config)

        assert result.outcome == ReconcileOutcome.EXPANDED
        assert host.pvs["/dev/vdd"] == "data_vg"
        assert "/dev/vdc" not in host.pvs

    def test_not_mounted(self, host, config):
        host.add_disk("vdb")

        result = expand(host, config)

        assert result.outcome == ReconcileOutcome.NOOP
        assert host.mutations() == []
