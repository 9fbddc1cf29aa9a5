"""Server target registry.

The registry is the only owner of a target's ``status``. Status changes
arrive as result messages (connection test, deployment, rollback) and are
applied under a per-target lock, so results racing on one target are
serialized instead of overwriting each other.
"""

from __future__ import annotations

import json
import threading
from dataclasses import replace
from pathlib import Path

from fleetctl.core.exceptions import DeploymentError, TargetNotFoundError
from fleetctl.core.logging import get_logger
from fleetctl.core.utils import (
    generate_target_id,
    validate_host,
    validate_required,
    validate_username,
)
from fleetctl.deploy.models import (
    DeployResult,
    RollbackResult,
    ServerTarget,
    TargetStatus,
    TestResult,
)

logger = get_logger(__name__)

SERVERS_FILE = "servers.json"


def validate_target(target: ServerTarget) -> None:
    """Check every target field, raising a field-specific ValidationError."""
    validate_required(target.name, "name")
    validate_host(target.host)
    validate_username(target.username)
    validate_required(target.key_path, "key_path")


class ServerRegistry:
    """CRUD store of server targets, persisted as JSON."""

    def __init__(self, state_dir: str | Path | None = None, persist: bool = True):
        """Initialize the registry.

        Args:
            state_dir: Directory holding servers.json
            persist: If False, keep targets in memory only
        """
        self._path: Path | None = None
        if persist:
            directory = Path(state_dir) if state_dir else Path.home() / ".fleetctl"
            directory.mkdir(parents=True, exist_ok=True)
            self._path = directory / SERVERS_FILE

        self._lock = threading.RLock()
        self._targets: dict[str, ServerTarget] = self._load()

    def add(self, target: ServerTarget) -> ServerTarget:
        """Validate and store a new target.

        Args:
            target: Target descriptor; ``id`` is assigned when empty

        Returns:
            The stored target with its id and ``pending`` status

        Raises:
            ValidationError: If any field is malformed
        """
        validate_target(target)

        with self._lock:
            target_id = target.id or generate_target_id()
            while target_id in self._targets:
                target_id = generate_target_id()

            stored = replace(target, id=target_id, status=TargetStatus.PENDING)
            self._targets[target_id] = stored
            self._save()

        logger.info(f"Added server: {stored.name} ({stored.id})")
        return replace(stored)

    def list(self) -> list[ServerTarget]:
        """All targets in insertion order."""
        with self._lock:
            return [replace(t) for t in self._targets.values()]

    def get(self, target_id: str) -> ServerTarget:
        """Get a target by id.

        Raises:
            TargetNotFoundError: If the id is unknown
        """
        with self._lock:
            target = self._targets.get(target_id)
            if target is None:
                raise TargetNotFoundError(target_id)
            return replace(target)

    def find(self, target_id: str) -> ServerTarget | None:
        """Get a target by id, or None."""
        with self._lock:
            target = self._targets.get(target_id)
            return replace(target) if target else None

    def remove(self, target_id: str) -> bool:
        """Remove a target. Unknown ids are ignored.

        Returns:
            True if a target was removed
        """
        with self._lock:
            if self._targets.pop(target_id, None) is None:
                logger.debug(f"Remove ignored, unknown server: {target_id}")
                return False
            self._save()

        logger.info(f"Removed server: {target_id}")
        return True

    def by_status(self, *statuses: TargetStatus) -> list[ServerTarget]:
        """Targets whose status is one of ``statuses``."""
        return [t for t in self.list() if t.status in statuses]

    def apply_test_result(self, result: TestResult) -> ServerTarget | None:
        """Record a connection test outcome."""
        status = TargetStatus.CONNECTED if result.success else TargetStatus.FAILED
        return self._set_status(result.target_id, status)

    def apply_deploy_result(self, result: DeployResult) -> ServerTarget | None:
        """Record a worker's terminal outcome."""
        status = TargetStatus.DEPLOYED if result.success else TargetStatus.FAILED
        return self._set_status(result.target_id, status)

    def apply_rollback_result(self, result: RollbackResult) -> ServerTarget | None:
        """Record rollback completion, returning the target to ``pending``."""
        return self._set_status(result.target_id, TargetStatus.PENDING)

    def _set_status(self, target_id: str, status: TargetStatus) -> ServerTarget | None:
        # test, deploy and rollback results serialize with every other write
        with self._lock:
            target = self._targets.get(target_id)
            if target is None:
                # Removed while a result was in flight
                logger.warning(f"Status update for unknown server dropped: {target_id}")
                return None
            previous = target.status
            target.status = status
            self._save()
            updated = replace(target)

        logger.debug(f"Server {target_id} status {previous.value} -> {status.value}")
        return updated

    def _load(self) -> dict[str, ServerTarget]:
        if not self._path or not self._path.exists():
            return {}

        try:
            with open(self._path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DeploymentError(f"Failed to read {self._path}: {e}")

        targets: dict[str, ServerTarget] = {}
        for entry in data:
            target = ServerTarget.from_dict(entry)
            targets[target.id] = target
        return targets

    def _save(self) -> None:
        if not self._path:
            return

        tmp_path = self._path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump([t.to_dict() for t in self._targets.values()], f, indent=2)
            tmp_path.replace(self._path)
        except OSError as e:
            raise DeploymentError(f"Failed to write {self._path}: {e}")
