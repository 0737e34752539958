"""
Command-line front doors.

    datavol-provision <ssh_user> <host> <ssh_private_key>
    datavol-expand    <ssh_user> <host> <ssh_private_key>

Exit status is 0 on success (including "nothing to do") and 1 on any error.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional, Type

from .config import DataVolumeConfig
from .host_executor import DataVolumeError, SSHExecutor
from .lvm_tools import LVMTools
from .reconciler import (
    BootstrapReconciler,
    ExpansionReconciler,
    format_reconcile_result,
)

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    level_name = os.getenv("DATAVOL_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_args(prog: str, description: str, argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument("ssh_user", help="SSH user (must have password-less sudo)")
    parser.add_argument("host", help="IP address or hostname of the target VM")
    parser.add_argument("ssh_private_key", help="Path to the SSH private key")
    return parser.parse_args(argv)


def run_reconciler(reconciler_cls: Type, args, config: Optional[DataVolumeConfig] = None) -> int:
    """
    Run one reconciler against the host named in args.

    Returns:
        Process exit status
    """
    try:
        config = config or DataVolumeConfig.from_env()
        with SSHExecutor(args.ssh_user, args.host, args.ssh_private_key) as executor:
            tools = LVMTools(executor, fstab_path=config.fstab_path)
            result = reconciler_cls(tools, config).run()
    except (DataVolumeError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(format_reconcile_result(result))
    return 0


def provision_main(argv: Optional[List[str]] = None) -> int:
    _setup_logging()
    args = parse_args(
        "datavol-provision",
        "Ensure a single LVM logical volume is mounted on the data mount point, "
        "creating it on a blank disk if necessary.",
        argv,
    )
    return run_reconciler(BootstrapReconciler, args)


def expand_main(argv: Optional[List[str]] = None) -> int:
    _setup_logging()
    args = parse_args(
        "datavol-expand",
        "Expand the LVM logical volume mounted on the data mount point with any "
        "newly added blank disks.",
        argv,
    )
    return run_reconciler(ExpansionReconciler, args)


def provision() -> None:
    sys.exit(provision_main())


def expand() -> None:
    sys.exit(expand_main())
