"""Deployment orchestration module."""

from fleetctl.deploy.models import (
    DeploymentProgress,
    DeploymentRecord,
    DeployResult,
    RollbackResult,
    RollbackStage,
    RollbackStageStatus,
    ServerTarget,
    Stage,
    StageStatus,
    TargetStatus,
    TestResult,
)
from fleetctl.deploy.registry import ServerRegistry
from fleetctl.deploy.state import DeploymentState

__all__ = [
    "DeploymentProgress",
    "DeploymentRecord",
    "DeployResult",
    "DeploymentState",
    "RollbackResult",
    "RollbackStage",
    "RollbackStageStatus",
    "ServerRegistry",
    "ServerTarget",
    "Stage",
    "StageStatus",
    "TargetStatus",
    "TestResult",
]
