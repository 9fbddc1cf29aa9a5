"""Compensating actions for a deployed target."""

from collections.abc import Awaitable, Callable
from contextlib import nullcontext
from dataclasses import replace

from fleetctl.clients.ssh import RemoteExecutor
from fleetctl.config import DeployConfig
from fleetctl.core.exceptions import FleetCtlError, RollbackError
from fleetctl.core.logging import get_logger
from fleetctl.core.utils import last_line
from fleetctl.deploy.coordinator import DeploymentCoordinator
from fleetctl.deploy.models import (
    RollbackResult,
    RollbackStage,
    RollbackStageStatus,
    ServerTarget,
    Stage,
)
from fleetctl.deploy.registry import ServerRegistry
from fleetctl.deploy.state import DeploymentState
from fleetctl.deploy.worker import NVM_PRELUDE

logger = get_logger(__name__)

StageCallback = Callable[[RollbackStage], Awaitable[None]]

# (rollback stage, forward stage it undoes), in execution order
ROLLBACK_PLAN: tuple[tuple[str, Stage], ...] = (
    ("stop_daemon", Stage.DAEMON),
    ("remove_config", Stage.CONFIG),
    ("uninstall_agent", Stage.AGENT_INSTALL),
)

SUCCESS_MESSAGES = {
    "stop_daemon": "Daemon stopped",
    "remove_config": "Configuration removed",
    "uninstall_agent": "Agent uninstalled",
}


class RollbackController:
    """Undo the forward stages a target actually reached.

    Every reached stage is attempted even when an earlier one fails. Once
    the pass finishes the target returns to ``pending`` and its record is
    marked rolled back, so repeating the call is harmless.
    """

    def __init__(
        self,
        registry: ServerRegistry,
        executor: RemoteExecutor,
        state: DeploymentState,
        config: DeployConfig | None = None,
        coordinator: DeploymentCoordinator | None = None,
    ):
        self._registry = registry
        self._executor = executor
        self._state = state
        self._config = config or DeployConfig()
        self._coordinator = coordinator

    def commands(self) -> dict[str, str]:
        """Remote command for each rollback stage."""
        binary = self._config.agent_binary
        return {
            "stop_daemon": f'{NVM_PRELUDE}\n{binary} daemon stop 2>/dev/null || pkill -f "{binary}" 2>/dev/null || true',
            "remove_config": f"rm -f {self._config.remote_config_path}",
            "uninstall_agent": f"{NVM_PRELUDE}\nnpm uninstall -g {self._config.agent_package}",
        }

    async def rollback(
        self,
        target_id: str,
        on_stage: StageCallback | None = None,
    ) -> RollbackResult:
        """Roll back a target.

        Args:
            target_id: Target to roll back
            on_stage: Called with each stage as it starts and finishes

        Returns:
            Stage outcomes in execution order

        Raises:
            TargetNotFoundError: If the id is unknown
            BatchConflictError: If the target is in an in-flight batch or another rollback
        """
        target = self._registry.get(target_id)
        # no batch may start on the target until the pass is over
        guard = self._coordinator.reserve(target_id) if self._coordinator else nullcontext()
        with guard:
            return await self._rollback(target, on_stage)

    async def _rollback(self, target: ServerTarget, on_stage: StageCallback | None) -> RollbackResult:
        target_id = target.id
        record = self._state.load(target_id)
        commands = self.commands()
        result = RollbackResult(target_id=target_id)

        for name, forward_stage in ROLLBACK_PLAN:
            stage = RollbackStage(name=name)
            result.stages.append(stage)

            if record is None or not record.has_reached(forward_stage):
                stage.status = RollbackStageStatus.SKIPPED
                stage.message = f"Stage {forward_stage.value} was not reached"
                await self._notify(on_stage, stage)
                continue

            stage.status = RollbackStageStatus.RUNNING
            await self._notify(on_stage, stage)
            try:
                stage.message = await self._run_stage(target, name, commands[name])
                stage.status = RollbackStageStatus.SUCCESS
            except RollbackError as e:
                logger.warning(f"Rollback stage {name} failed on {target.name}: {e.message}")
                stage.status = RollbackStageStatus.FAILED
                stage.message = e.message
            await self._notify(on_stage, stage)

        if record is not None and not record.rolled_back:
            self._state.mark_rolled_back(target_id, batch_id=record.batch_id)
        self._registry.apply_rollback_result(result)

        if result.all_skipped:
            logger.info(f"Nothing to roll back on {target.name}")
        else:
            logger.info(f"Rollback of {target.name} finished (success={result.success})")
        return result

    async def _run_stage(self, target: ServerTarget, name: str, command: str) -> str:
        try:
            output = await self._executor.run(target, command)
        except FleetCtlError as e:
            raise RollbackError(e.message, stage=name)

        if not output.ok:
            raise RollbackError(
                last_line(output.stderr, f"{name} failed (exit code {output.exit_code})"),
                stage=name,
            )
        return SUCCESS_MESSAGES[name]

    async def _notify(self, on_stage: StageCallback | None, stage: RollbackStage) -> None:
        if on_stage:
            await on_stage(replace(stage))
