"""Deployment data models."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TargetStatus(str, Enum):
    """Server target status, owned by the registry."""

    PENDING = "pending"
    CONNECTED = "connected"
    FAILED = "failed"
    DEPLOYED = "deployed"


class Stage(str, Enum):
    """Pipeline stages, declared in execution order."""

    CONNECT = "connect"
    NODE = "node"
    AGENT_INSTALL = "agent-install"
    CONFIG = "config"
    DAEMON = "daemon"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        """Position of the stage in the pipeline."""
        return _STAGE_ORDER.index(self)

    @property
    def is_last(self) -> bool:
        return self is Stage.COMPLETE

    def next(self) -> "Stage | None":
        """Stage that follows this one, or None after complete."""
        if self.is_last:
            return None
        return _STAGE_ORDER[self.order + 1]

    # str comparisons would order stages alphabetically
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order >= other.order

    @classmethod
    def pipeline(cls) -> list["Stage"]:
        """All stages in order."""
        return list(_STAGE_ORDER)


_STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class StageStatus(str, Enum):
    """Status of a single pipeline stage."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.FAILED)


class RollbackStageStatus(str, Enum):
    """Status of a compensating stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ServerTarget:
    """A remote host under management.

    ``key_path`` locates the SSH key on the local machine; the key material
    itself is never stored.
    """

    name: str
    host: str
    username: str
    key_path: str
    id: str = ""
    status: TargetStatus = TargetStatus.PENDING

    @property
    def address(self) -> str:
        return f"{self.username}@{self.host}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "username": self.username,
            "key_path": self.key_path,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerTarget":
        """Create from dictionary."""
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            host=data.get("host", ""),
            username=data.get("username", ""),
            key_path=data.get("key_path", ""),
            status=TargetStatus(data.get("status") or "pending"),
        )


@dataclass(frozen=True)
class DeploymentProgress:
    """One progress event emitted by a deployment worker."""

    target_id: str
    stage: Stage
    status: StageStatus
    message: str
    error: str | None = None
    target_name: str = ""
    timestamp: int = field(default_factory=lambda: int(time.time()))

    @property
    def is_terminal(self) -> bool:
        """True when this event ends the target's pipeline for the batch."""
        if self.status == StageStatus.FAILED:
            return True
        return self.stage is Stage.COMPLETE and self.status == StageStatus.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.stage is Stage.COMPLETE and self.status == StageStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_id": self.target_id,
            "target_name": self.target_name,
            "stage": self.stage.value,
            "status": self.status.value,
            "message": self.message,
            "error": self.error,
            "timestamp": self.timestamp,
        }


@dataclass
class RollbackStage:
    """Outcome of one compensating action."""

    name: str
    status: RollbackStageStatus = RollbackStageStatus.PENDING
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"name": self.name, "status": self.status.value, "message": self.message}


@dataclass
class RollbackResult:
    """Ordered rollback stage outcomes for a target."""

    target_id: str
    stages: list[RollbackStage] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(s.status != RollbackStageStatus.FAILED for s in self.stages)

    @property
    def all_skipped(self) -> bool:
        return all(s.status == RollbackStageStatus.SKIPPED for s in self.stages)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_id": self.target_id,
            "success": self.success,
            "stages": [s.to_dict() for s in self.stages],
        }


@dataclass(frozen=True)
class TestResult:
    """Outcome of a connection test."""

    __test__ = False

    target_id: str
    success: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"target_id": self.target_id, "success": self.success, "message": self.message}


@dataclass
class DeployResult:
    """Final outcome of one target's pipeline within a batch."""

    target_id: str
    target_name: str
    success: bool
    error: str | None = None
    completed_stages: list[Stage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_id": self.target_id,
            "target_name": self.target_name,
            "success": self.success,
            "error": self.error,
            "completed_stages": [s.value for s in self.completed_stages],
        }


@dataclass
class DeploymentRecord:
    """Persisted per-target history of the latest batch.

    ``reached`` lists every stage the worker entered, including a stage
    that later failed, since it may have left partial changes behind.
    """

    target_id: str
    batch_id: str = ""
    reached: list[Stage] = field(default_factory=list)
    stage: Stage = Stage.CONNECT
    status: StageStatus = StageStatus.PENDING
    message: str = ""
    error: str | None = None
    rolled_back: bool = False
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def has_reached(self, stage: Stage) -> bool:
        return not self.rolled_back and stage in self.reached

    def record(self, event: DeploymentProgress) -> None:
        """Fold a progress event into the record."""
        if event.status == StageStatus.RUNNING and event.stage not in self.reached:
            self.reached.append(event.stage)
        self.stage = event.stage
        self.status = event.status
        self.message = event.message
        self.error = event.error
        self.updated_at = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_id": self.target_id,
            "batch_id": self.batch_id,
            "reached": [s.value for s in self.reached],
            "stage": self.stage.value,
            "status": self.status.value,
            "message": self.message,
            "error": self.error,
            "rolled_back": self.rolled_back,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentRecord":
        """Create from dictionary."""
        record = cls(
            target_id=data["target_id"],
            batch_id=data.get("batch_id", ""),
            reached=[Stage(s) for s in data.get("reached", [])],
            stage=Stage(data.get("stage", "connect")),
            status=StageStatus(data.get("status", "pending")),
            message=data.get("message", ""),
            error=data.get("error"),
            rolled_back=data.get("rolled_back", False),
        )
        if data.get("updated_at"):
            record.updated_at = datetime.fromisoformat(data["updated_at"])
        return record
