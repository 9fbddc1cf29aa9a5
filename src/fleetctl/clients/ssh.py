"""Remote command execution over OpenSSH."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from fleetctl.config import SSHConfig
from fleetctl.core.exceptions import ConnectionError, TimeoutError
from fleetctl.core.logging import get_logger
from fleetctl.core.utils import validate_host, validate_username
from fleetctl.deploy.models import ServerTarget

logger = get_logger(__name__)

LineCallback = Callable[[str], Awaitable[None]]

# ssh exits with 255 when the connection itself fails
SSH_CONNECTION_EXIT = 255

AUTH_FAILURE_MARKERS = ("permission denied", "authentication")


@dataclass
class CommandOutput:
    """Result of a remote command."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteExecutor(ABC):
    """Port for reaching a remote host.

    Implementations must hold no per-target state, so one instance can be
    shared by every worker in a batch.
    """

    @abstractmethod
    async def check_connection(self, target: ServerTarget) -> bool:
        """Check that the host is reachable with the target's credentials.

        Returns:
            True if the session opened, False if authentication was rejected

        Raises:
            ConnectionError: If the host could not be reached at all
        """

    @abstractmethod
    async def run(self, target: ServerTarget, command: str) -> CommandOutput:
        """Run a command and collect its output."""

    async def stream(
        self,
        target: ServerTarget,
        command: str,
        on_line: LineCallback,
    ) -> CommandOutput:
        """Run a command, reporting each stdout line as it arrives.

        The default implementation replays the collected output.
        """
        output = await self.run(target, command)
        for line in output.stdout.splitlines():
            if line.strip():
                await on_line(line.strip())
        return output


class SSHExecutor(RemoteExecutor):
    """RemoteExecutor backed by the system ``ssh`` binary."""

    def __init__(self, config: SSHConfig | None = None, ssh_binary: str = "ssh"):
        self._config = config or SSHConfig()
        self._ssh_binary = ssh_binary

    def build_command(self, target: ServerTarget, command: str) -> list[str]:
        """Build the ssh argument vector for a target."""
        validate_host(target.host)
        validate_username(target.username)

        args = [
            self._ssh_binary,
            "-i",
            str(Path(target.key_path).expanduser()),
            "-p",
            str(self._config.port),
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self._config.get_connect_timeout()}",
            "-o",
            "StrictHostKeyChecking=" + ("yes" if self._config.strict_host_key_checking else "accept-new"),
            "-o",
            "LogLevel=ERROR",
        ]
        for option in self._config.extra_options:
            args.extend(["-o", option])
        args.append(target.address)
        args.append(command)
        return args

    async def check_connection(self, target: ServerTarget) -> bool:
        output = await self._execute(target, "true", timeout=self._config.get_connect_timeout() + 5)

        if output.ok:
            logger.info(f"SSH connection test successful: {target.address}")
            return True

        stderr = output.stderr.lower()
        if any(marker in stderr for marker in AUTH_FAILURE_MARKERS):
            logger.warning(f"SSH authentication failed: {target.address}")
            return False

        raise ConnectionError(
            f"Failed to establish SSH connection to {target.address}: {output.stderr.strip() or 'unknown error'}",
            host=target.host,
        )

    async def run(self, target: ServerTarget, command: str) -> CommandOutput:
        output = await self._execute(target, command, timeout=self._config.command_timeout)
        self._raise_for_connection(target, output)
        return output

    async def stream(
        self,
        target: ServerTarget,
        command: str,
        on_line: LineCallback,
    ) -> CommandOutput:
        args = self.build_command(target, command)
        logger.debug(f"Streaming remote command on {target.address}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConnectionError(f"Cannot run ssh: {e}", host=target.host)

        stdout_lines: list[str] = []

        async def pump() -> bytes:
            assert process.stdout is not None
            async for raw in process.stdout:
                line = raw.decode(errors="replace").rstrip()
                stdout_lines.append(line)
                if line.strip():
                    await on_line(line.strip())
            assert process.stderr is not None
            return await process.stderr.read()

        try:
            stderr = await asyncio.wait_for(pump(), timeout=self._config.command_timeout)
            exit_code = await process.wait()
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TimeoutError(
                f"Remote command timed out on {target.address}",
                timeout_seconds=self._config.command_timeout,
            )

        output = CommandOutput(
            stdout="\n".join(stdout_lines),
            stderr=stderr.decode(errors="replace"),
            exit_code=exit_code,
        )
        self._raise_for_connection(target, output)
        return output

    async def _execute(self, target: ServerTarget, command: str, timeout: float) -> CommandOutput:
        args = self.build_command(target, command)
        logger.debug(f"Executing remote command on {target.address}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConnectionError(f"Cannot run ssh: {e}", host=target.host)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ConnectionError(
                f"Timed out after {timeout:.0f}s talking to {target.address}",
                host=target.host,
            )

        output = CommandOutput(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=process.returncode if process.returncode is not None else -1,
        )
        logger.debug(f"Remote command completed with exit code: {output.exit_code}")
        return output

    def _raise_for_connection(self, target: ServerTarget, output: CommandOutput) -> None:
        if output.exit_code == SSH_CONNECTION_EXIT:
            stderr = output.stderr.strip()
            raise ConnectionError(
                f"Lost SSH connection to {target.address}: {stderr or 'ssh exited with 255'}",
                host=target.host,
                auth_failed=any(marker in stderr.lower() for marker in AUTH_FAILURE_MARKERS),
            )
