"""
Command execution on the target host.

Everything that touches the host goes through an executor so that the same
capability layer runs locally, over SSH, or against a mock in tests.
"""

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import paramiko

logger = logging.getLogger(__name__)


class DataVolumeError(Exception):
    """Base class for every operator-visible failure."""


class CommandError(DataVolumeError):
    """A command on the host exited non-zero."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no error output"
        super().__init__(f"Command '{' '.join(cmd)}' failed with exit code {returncode}: {detail}")


class TransportError(DataVolumeError):
    """The remote command channel could not be established."""


@dataclass
class RunResult:
    """Result of running a command on the host."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class HostExecutor:
    """
    Base executor. Subclasses implement _execute().

    All commands run with elevated privilege (sudo -n) unless use_sudo is False.
    """

    def __init__(self, use_sudo: bool = True):
        self.use_sudo = use_sudo

    def _privileged(self, cmd: List[str]) -> List[str]:
        if self.use_sudo:
            return ["sudo", "-n"] + list(cmd)
        return list(cmd)

    def _execute(self, cmd: List[str], input: Optional[str] = None) -> RunResult:
        raise NotImplementedError

    def run(self, cmd: List[str], input: Optional[str] = None, check: bool = False) -> RunResult:
        """
        Run a command on the host.

        Args:
            cmd: Command argv (without sudo)
            input: Optional text fed to the command's stdin
            check: Raise CommandError on non-zero exit

        Returns:
            RunResult
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        result = self._execute(self._privileged(cmd), input=input)
        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr)
        return result

    def close(self) -> None:
        pass

    def __enter__(self) -> "HostExecutor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class LocalExecutor(HostExecutor):
    """Run commands on this machine via subprocess."""

    def __init__(self, use_sudo: bool = True, timeout: int = 300):
        super().__init__(use_sudo)
        self.timeout = timeout

    def _execute(self, cmd: List[str], input: Optional[str] = None) -> RunResult:
        try:
            result = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            return RunResult(
                stdout=result.stdout or "",
                stderr=result.stderr or "",
                returncode=result.returncode,
            )
        except subprocess.TimeoutExpired as e:
            return RunResult(
                stdout="",
                stderr=f"Command timed out after {e.timeout}s",
                returncode=-1,
            )
        except FileNotFoundError:
            return RunResult(stdout="", stderr=f"Command not found: {cmd[0]}", returncode=127)


# Bytes read from an SSH channel per recv call
SSH_READ_CHUNK = 32768


def _drain_channel(channel) -> Tuple[str, str]:
    """
    Read stdout and stderr of an SSH channel together until the command exits.

    Both streams are emptied on every pass, stderr included.
    """
    out: List[bytes] = []
    err: List[bytes] = []
    while True:
        idle = True
        while channel.recv_ready():
            out.append(channel.recv(SSH_READ_CHUNK))
            idle = False
        while channel.recv_stderr_ready():
            err.append(channel.recv_stderr(SSH_READ_CHUNK))
            idle = False
        if idle and channel.exit_status_ready():
            break
        if idle:
            time.sleep(0.01)
    return (
        b"".join(out).decode(errors="replace"),
        b"".join(err).decode(errors="replace"),
    )


class SSHExecutor(HostExecutor):
    """
    Run commands on a remote host over a single SSH connection.

    The connection is opened lazily on the first command (or on __enter__) and
    reused for the whole reconciliation run.
    """

    def __init__(
        self,
        user: str,
        host: str,
        key_path: str,
        port: int = 22,
        use_sudo: bool = True,
        connect_timeout: int = 30,
    ):
        super().__init__(use_sudo)
        self.user = user
        self.host = host
        self.key_path = key_path
        self.port = port
        self.connect_timeout = connect_timeout
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self) -> None:
        """Open the SSH connection if it is not open yet."""
        if self._client is not None:
            return

        if not os.access(self.key_path, os.R_OK):
            raise TransportError(f"Cannot read SSH key: {self.key_path}")

        logger.info(f"Connecting to {self.user}@{self.host}:{self.port}")
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                self.host,
                port=self.port,
                username=self.user,
                key_filename=self.key_path,
                allow_agent=False,
                look_for_keys=False,
                timeout=self.connect_timeout,
            )
        except (paramiko.ssh_exception.SSHException, OSError) as e:
            client.close()
            raise TransportError(f"Failed to connect to {self.user}@{self.host}: {e}") from e

        self._client = client

    def _execute(self, cmd: List[str], input: Optional[str] = None) -> RunResult:
        self.connect()
        command = " ".join(shlex.quote(part) for part in cmd)
        try:
            stdin, stdout, _ = self._client.exec_command(command)
            if input is not None:
                stdin.write(input)
                stdin.flush()
            stdin.channel.shutdown_write()
            out, err = _drain_channel(stdout.channel)
            returncode = stdout.channel.recv_exit_status()
        except paramiko.ssh_exception.SSHException as e:
            raise TransportError(f"SSH channel to {self.host} failed: {e}") from e

        return RunResult(stdout=out, stderr=err, returncode=returncode)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "SSHExecutor":
        self.connect()
        return self
