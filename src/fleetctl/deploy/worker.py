"""Per-target deployment pipeline."""

import asyncio
import json
import posixpath
import re
from collections.abc import Awaitable, Callable

from fleetctl.clients.ssh import CommandOutput, RemoteExecutor
from fleetctl.config import DeployConfig
from fleetctl.core.exceptions import ConnectionError, FleetCtlError, StageExecutionError
from fleetctl.core.logging import StructuredLogger
from fleetctl.core.utils import last_line
from fleetctl.deploy.models import (
    DeploymentProgress,
    DeployResult,
    ServerTarget,
    Stage,
    StageStatus,
)
from fleetctl.deploy.tester import AUTH_FAILED_MESSAGE

logger = StructuredLogger(__name__)

CANCELLED_MESSAGE = "deployment cancelled"
CONFIG_HEREDOC_MARKER = "FLEETCTL_CONFIG_EOF"

# nvm installs node in user space, so every npm or agent command sources it first
NVM_PRELUDE = 'export NVM_DIR="$HOME/.nvm"\n[ -s "$NVM_DIR/nvm.sh" ] && \\. "$NVM_DIR/nvm.sh"'

_NODE_VERSION = re.compile(r"^v?(\d+)\.")


def parse_node_major(version: str) -> int | None:
    """Major version from ``node --version`` output, e.g. ``v22.12.0`` -> 22."""
    match = _NODE_VERSION.match(version.strip())
    if not match:
        return None
    return int(match.group(1))


def render_agent_config(config: DeployConfig) -> str:
    """Render the agent configuration file written to each target."""
    return json.dumps(config.agent_config, indent=2, sort_keys=True)


class DeploymentWorker:
    """Drives one target through the pipeline, once, for one batch.

    The worker advances only after a stage completes and halts on the first
    failure. Everything it does is reported as ``DeploymentProgress`` events
    on its own queue; it shares no state with other workers.
    """

    def __init__(
        self,
        target: ServerTarget,
        executor: RemoteExecutor,
        config: DeployConfig | None = None,
        queue: asyncio.Queue | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        """Initialize worker.

        Args:
            target: Target to deploy
            executor: Remote command executor
            config: Pipeline settings
            queue: Queue receiving progress events
            cancel_event: When set, the worker stops at the next stage boundary
        """
        self.target = target
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()
        self._executor = executor
        self._config = config or DeployConfig()
        self._cancel_event = cancel_event or asyncio.Event()
        self._handlers: dict[Stage, Callable[[], Awaitable[str]]] = {
            Stage.CONNECT: self._connect,
            Stage.NODE: self._ensure_node,
            Stage.AGENT_INSTALL: self._install_agent,
            Stage.CONFIG: self._write_config,
            Stage.DAEMON: self._start_daemon,
            Stage.COMPLETE: self._complete,
        }

    def cancel(self) -> None:
        """Ask the worker to stop before its next stage."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self) -> DeployResult:
        """Run the pipeline to a terminal event.

        Returns:
            The target's outcome for this batch
        """
        completed: list[Stage] = []
        log = logger.bind(target=self.target.id)

        for stage in Stage.pipeline():
            if self.cancelled:
                await self._emit(stage, StageStatus.FAILED, CANCELLED_MESSAGE, error=CANCELLED_MESSAGE)
                log.info(f"Deployment of {self.target.name} cancelled before {stage.value}")
                return self._result(False, CANCELLED_MESSAGE, completed)

            try:
                message = await self._handlers[stage]()
            except StageExecutionError as e:
                await self._emit(stage, StageStatus.FAILED, e.message, error=e.detail or e.message)
                return self._result(False, e.message, completed)
            except FleetCtlError as e:
                await self._emit(stage, StageStatus.FAILED, e.message, error=e.message)
                return self._result(False, e.message, completed)
            except Exception as e:
                log.exception("Unexpected deployment error", stage=stage.value)
                await self._emit(stage, StageStatus.FAILED, f"Unexpected error: {e}", error=str(e))
                return self._result(False, str(e), completed)

            await self._emit(stage, StageStatus.COMPLETED, message)
            completed.append(stage)

        return self._result(True, None, completed)

    async def _connect(self) -> str:
        await self._running(Stage.CONNECT, "Connecting to remote server...")
        try:
            connected = await self._executor.check_connection(self.target)
        except ConnectionError as e:
            if e.auth_failed:
                raise ConnectionError(AUTH_FAILED_MESSAGE, host=self.target.host, auth_failed=True)
            raise ConnectionError(f"SSH connection failed: {e.message}", host=self.target.host)

        if not connected:
            raise ConnectionError(AUTH_FAILED_MESSAGE, host=self.target.host, auth_failed=True)
        return f"Connected to {self.target.address}"

    async def _ensure_node(self) -> str:
        await self._running(Stage.NODE, "Checking Node.js installation...")
        wanted = self._config.node_major

        output = await self._executor.run(self.target, f"{NVM_PRELUDE}\nnode --version 2>/dev/null")
        if output.ok:
            version = last_line(output.stdout)
            major = parse_node_major(version)
            if major is not None and major >= wanted:
                return f"Node.js {version} already installed"
            logger.warning(f"Node.js on {self.target.name} is {version or 'unknown'}, need >= {wanted}")

        await self._running(Stage.NODE, "Installing Node.js via nvm...")
        script = "\n".join(
            [
                "set -e",
                f"curl -o- {self._config.nvm_install_url} | bash",
                NVM_PRELUDE,
                f"nvm install {wanted}",
                f"nvm use {wanted}",
                f"nvm alias default {wanted}",
                "node --version",
            ]
        )
        output = await self._stream(Stage.NODE, script)
        self._check(Stage.NODE, output, "Node.js installation failed")
        return f"Node.js {last_line(output.stdout, f'v{wanted}')} installed successfully"

    async def _install_agent(self) -> str:
        package = self._config.agent_package
        await self._running(Stage.AGENT_INSTALL, f"Installing {package} via npm...")
        output = await self._stream(Stage.AGENT_INSTALL, f"{NVM_PRELUDE}\nnpm install -g {package}")
        self._check(Stage.AGENT_INSTALL, output, f"{package} installation failed")
        return f"{package} installed successfully"

    async def _write_config(self) -> str:
        path = self._config.remote_config_path
        await self._running(Stage.CONFIG, "Writing agent configuration...")

        # quoted heredoc, so the remote shell does not expand the JSON
        command = (
            f"mkdir -p {posixpath.dirname(path) or '.'} && cat > {path} << '{CONFIG_HEREDOC_MARKER}'\n"
            f"{render_agent_config(self._config)}\n"
            f"{CONFIG_HEREDOC_MARKER}"
        )
        output = await self._executor.run(self.target, command)
        self._check(Stage.CONFIG, output, "Failed to write config")
        return f"Agent configuration written to {path}"

    async def _start_daemon(self) -> str:
        binary = self._config.agent_binary
        await self._running(Stage.DAEMON, f"Installing {binary} daemon...")
        output = await self._executor.run(self.target, f"{NVM_PRELUDE}\n{binary} install-daemon")
        self._check(Stage.DAEMON, output, "Daemon installation failed")

        await self._running(Stage.DAEMON, "Daemon installed, preparing to start...")
        output = await self._executor.run(self.target, f"{NVM_PRELUDE}\n{binary} start")
        self._check(Stage.DAEMON, output, "Failed to start daemon")
        return f"{binary} daemon started successfully"

    async def _complete(self) -> str:
        logger.info(f"Remote setup completed on {self.target.address}")
        return "Remote setup complete!"

    async def _stream(self, stage: Stage, command: str) -> CommandOutput:
        async def forward(line: str) -> None:
            await self._running(stage, line)

        return await self._executor.stream(self.target, command, forward)

    def _check(self, stage: Stage, output: CommandOutput, summary: str) -> None:
        """Raise StageExecutionError for a non-zero exit.

        The event message is the last stderr line, which is usually the
        actual cause; the summary with the exit code becomes the detail.
        """
        if output.ok:
            return
        detail = f"{summary} (exit code {output.exit_code})"
        raise StageExecutionError(last_line(output.stderr, detail), stage=stage.value, detail=detail)

    async def _running(self, stage: Stage, message: str) -> None:
        await self._emit(stage, StageStatus.RUNNING, message)

    async def _emit(
        self,
        stage: Stage,
        status: StageStatus,
        message: str,
        error: str | None = None,
    ) -> None:
        await self.queue.put(
            DeploymentProgress(
                target_id=self.target.id,
                target_name=self.target.name,
                stage=stage,
                status=status,
                message=message,
                error=error,
            )
        )

    def _result(self, success: bool, error: str | None, completed: list[Stage]) -> DeployResult:
        return DeployResult(
            target_id=self.target.id,
            target_name=self.target.name,
            success=success,
            error=error,
            completed_stages=list(completed),
        )
