"""Pytest fixtures for fleetctl tests."""

import asyncio
import logging
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from fleetctl.clients.ssh import CommandOutput, RemoteExecutor
from fleetctl.config import DeployConfig, FleetCtlConfig, ProfileConfig
from fleetctl.core.context import FleetCtlContext
from fleetctl.core.exceptions import ConnectionError
from fleetctl.core.output import OutputFormat
from fleetctl.deploy.coordinator import DeploymentCoordinator
from fleetctl.deploy.models import ServerTarget, TestResult
from fleetctl.deploy.registry import ServerRegistry
from fleetctl.deploy.state import DeploymentState


class FakeExecutor(RemoteExecutor):
    """Scripted RemoteExecutor keyed by host.

    ``failures`` maps a host to ``{command fragment: (exit_code, stderr)}``;
    the first fragment found in a command decides its outcome. ``gates`` hold
    a host's calls until the event is set.
    """

    def __init__(
        self,
        failures: dict[str, dict[str, tuple[int, str]]] | None = None,
        unreachable: set[str] | None = None,
        auth_rejected: set[str] | None = None,
        node_version: str = "v22.12.0",
    ):
        self.failures = failures or {}
        self.unreachable = unreachable or set()
        self.auth_rejected = auth_rejected or set()
        self.node_version = node_version
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str]] = []

    def commands_for(self, host: str) -> list[str]:
        return [command for h, command in self.calls if h == host]

    async def _wait_gate(self, host: str) -> None:
        gate = self.gates.get(host)
        if gate is not None:
            await gate.wait()

    async def check_connection(self, target: ServerTarget) -> bool:
        self.calls.append((target.host, "<check>"))
        await self._wait_gate(target.host)
        if target.host in self.unreachable:
            raise ConnectionError("Connection refused", host=target.host)
        return target.host not in self.auth_rejected

    async def run(self, target: ServerTarget, command: str) -> CommandOutput:
        self.calls.append((target.host, command))
        await self._wait_gate(target.host)
        await asyncio.sleep(0)

        for fragment, (exit_code, stderr) in self.failures.get(target.host, {}).items():
            if fragment in command:
                return CommandOutput(stdout="", stderr=stderr, exit_code=exit_code)

        if command.endswith("node --version 2>/dev/null"):
            return CommandOutput(stdout=f"{self.node_version}\n", stderr="", exit_code=0)
        if "nvm install" in command:
            return CommandOutput(
                stdout="=> Downloading nvm\nNow using node v22.12.0\nv22.12.0\n",
                stderr="",
                exit_code=0,
            )
        return CommandOutput(stdout="ok\n", stderr="", exit_code=0)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Keep tests away from the real home directory and FLEETCTL_* settings."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for var in ("FLEETCTL_STATE_DIR", "FLEETCTL_MAX_CONCURRENT", "FLEETCTL_SSH_CONNECT_TIMEOUT",
                "FLEETCTL_PROFILE", "FLEETCTL_CONFIG"):
        monkeypatch.delenv(var, raising=False)
    yield home

    # CLI runs attach a handler bound to the runner's stderr
    logger = logging.getLogger("fleetctl")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def registry(state_dir: Path) -> ServerRegistry:
    return ServerRegistry(state_dir)


@pytest.fixture
def state(state_dir: Path) -> DeploymentState:
    return DeploymentState(state_dir)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def deploy_config() -> DeployConfig:
    return DeployConfig(agent_config={"gateway": {"port": 18789}})


@pytest.fixture
def coordinator(
    registry: ServerRegistry,
    executor: FakeExecutor,
    state: DeploymentState,
    deploy_config: DeployConfig,
) -> DeploymentCoordinator:
    return DeploymentCoordinator(registry, executor, state=state, config=deploy_config)


@pytest.fixture
def mock_config() -> FleetCtlConfig:
    """Create a configuration with default profile settings."""
    return FleetCtlConfig(profiles={"default": ProfileConfig(deploy=DeployConfig(max_concurrent=2))})


@pytest.fixture
def mock_context(mock_config: FleetCtlConfig) -> FleetCtlContext:
    """Create a FleetCtl context."""
    return FleetCtlContext(
        config=mock_config,
        profile="default",
        output_format=OutputFormat.TABLE,
        verbose=0,
        quiet=False,
        color=False,
    )


@pytest.fixture
def add_target(registry: ServerRegistry) -> Callable[..., ServerTarget]:
    """Factory registering a target, connected unless told otherwise."""

    def _add(name: str, host: str, connected: bool = True) -> ServerTarget:
        target = registry.add(ServerTarget(name=name, host=host, username="deploy", key_path="~/.ssh/id_ed25519"))
        if connected:
            registry.apply_test_result(TestResult(target_id=target.id, success=True, message="ok"))
        return registry.get(target.id)

    return _add
