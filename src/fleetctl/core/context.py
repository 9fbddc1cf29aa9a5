"""Click context object for sharing state across commands."""

from __future__ import annotations

from functools import cached_property
from typing import TYPE_CHECKING

import click

from fleetctl.config import FleetCtlConfig, ProfileConfig, get_default_config
from fleetctl.core.logging import LogLevel, setup_logging
from fleetctl.core.output import OutputFormat, OutputFormatter

if TYPE_CHECKING:
    from fleetctl.clients.ssh import RemoteExecutor
    from fleetctl.deploy.coordinator import DeploymentCoordinator
    from fleetctl.deploy.registry import ServerRegistry
    from fleetctl.deploy.state import DeploymentState


def log_level_for(verbose: int, quiet: bool, configured: LogLevel) -> LogLevel:
    """Map ``-v``/``-q`` flags onto a log level, falling back to the config."""
    if verbose >= 2:
        return LogLevel.DEBUG
    if verbose == 1:
        return LogLevel.INFO
    if quiet:
        return LogLevel.ERROR
    return configured


class FleetCtlContext:
    """State shared by every fleetctl command in one invocation.

    Command-line flags take precedence over the loaded configuration. The
    registry, record store, executor and coordinator are built on first use
    so that commands such as ``config`` never touch the state directory.
    """

    def __init__(
        self,
        config: FleetCtlConfig | None = None,
        profile: str | None = None,
        output_format: OutputFormat | None = None,
        verbose: int = 0,
        quiet: bool = False,
        color: bool = True,
    ):
        self.config = config or get_default_config()
        self.profile_name = profile or "default"
        settings = self.config.global_settings

        self.output_format = output_format or settings.output_format
        self.verbose = verbose
        self.quiet = quiet
        self.color = color

        setup_logging(log_level_for(verbose, quiet, settings.verbosity), rich_output=color)
        self.output = OutputFormatter(format=self.output_format, color=color, quiet=quiet)

    @property
    def profile(self) -> ProfileConfig:
        """Settings of the selected profile."""
        return self.config.get_profile(self.profile_name)

    @cached_property
    def registry(self) -> ServerRegistry:
        from fleetctl.deploy.registry import ServerRegistry

        return ServerRegistry(self.config.global_settings.get_state_dir())

    @cached_property
    def state(self) -> DeploymentState:
        from fleetctl.deploy.state import DeploymentState

        return DeploymentState(self.config.global_settings.get_state_dir())

    @cached_property
    def executor(self) -> RemoteExecutor:
        from fleetctl.clients.ssh import SSHExecutor

        return SSHExecutor(self.profile.ssh)

    @cached_property
    def coordinator(self) -> DeploymentCoordinator:
        """Coordinator for this process; batches are tracked per instance."""
        from fleetctl.deploy.coordinator import DeploymentCoordinator

        return DeploymentCoordinator(self.registry, self.executor, state=self.state, config=self.profile.deploy)

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask before a destructive action unless prompts are disabled in config."""
        if not self.config.global_settings.confirm_destructive:
            return True
        return self.output.confirm(message, default)


pass_context = click.make_pass_decorator(FleetCtlContext, ensure=True)
