"""Read model folded from a batch's progress events."""

from dataclasses import dataclass
from typing import Any

from fleetctl.deploy.models import DeploymentProgress, Stage, StageStatus


@dataclass
class TargetProgress:
    """Latest known progress of one target."""

    target_id: str
    target_name: str = ""
    stage: Stage = Stage.CONNECT
    status: StageStatus = StageStatus.PENDING
    message: str = "Waiting..."
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        if self.status == StageStatus.FAILED:
            return True
        return self.stage is Stage.COMPLETE and self.status == StageStatus.COMPLETED

    @property
    def deployed(self) -> bool:
        return self.stage is Stage.COMPLETE and self.status == StageStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_id": self.target_id,
            "name": self.target_name,
            "stage": self.stage.value,
            "status": self.status.value,
            "message": self.message,
            "error": self.error,
        }


@dataclass(frozen=True)
class BatchSummary:
    """Derived totals for a batch."""

    deployed_count: int
    failed_count: int
    total: int
    in_progress: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "deployed": self.deployed_count,
            "failed": self.failed_count,
            "total": self.total,
            "in_progress": self.in_progress,
        }


class ProgressView:
    """Fold of progress events keyed by target id.

    Events are accepted in any cross-target order. For a single target an
    event whose stage is behind the recorded one, or that arrives after the
    target went terminal, is ignored.
    """

    def __init__(self, target_ids: list[str] | None = None, names: dict[str, str] | None = None):
        """Initialize view.

        Args:
            target_ids: Targets expected in the batch; others are added on first event
            names: Optional display names by target id
        """
        names = names or {}
        self._targets: dict[str, TargetProgress] = {}
        self._transport_lost = False
        for target_id in target_ids or []:
            self._targets[target_id] = TargetProgress(target_id, names.get(target_id, ""))

    def apply(self, event: DeploymentProgress) -> bool:
        """Fold one event into the view.

        Returns:
            True if the event changed the view
        """
        current = self._targets.get(event.target_id)
        if current is None:
            current = TargetProgress(event.target_id)
            self._targets[event.target_id] = current
        elif current.is_terminal or event.stage < current.stage:
            return False

        current.stage = event.stage
        current.status = event.status
        current.message = event.message
        current.error = event.error
        if event.target_name:
            current.target_name = event.target_name
        return True

    def mark_transport_lost(self) -> None:
        """Stop reporting the batch as in progress without claiming outcomes."""
        self._transport_lost = True

    @property
    def transport_lost(self) -> bool:
        return self._transport_lost

    @property
    def targets(self) -> list[TargetProgress]:
        return list(self._targets.values())

    def get(self, target_id: str) -> TargetProgress | None:
        return self._targets.get(target_id)

    def summary(self) -> BatchSummary:
        """Deployed and failed counts plus the in-progress flag."""
        targets = self.targets
        deployed = sum(1 for t in targets if t.deployed)
        failed = sum(1 for t in targets if t.status == StageStatus.FAILED)
        in_progress = not self._transport_lost and any(not t.is_terminal for t in targets)
        return BatchSummary(
            deployed_count=deployed,
            failed_count=failed,
            total=len(targets),
            in_progress=in_progress,
        )
