"""Deployment record persistence."""

from __future__ import annotations

import json
import threading
from pathlib import Path

from fleetctl.core.exceptions import DeploymentError
from fleetctl.core.logging import get_logger
from fleetctl.deploy.models import DeploymentProgress, DeploymentRecord

logger = get_logger(__name__)


class DeploymentState:
    """Manage per-target deployment records.

    Each target keeps one record describing its latest batch. Starting a new
    batch supersedes the previous record.
    """

    def __init__(self, state_dir: str | Path | None = None, persist: bool = True):
        """Initialize deployment state manager.

        Args:
            state_dir: Directory to store deployment records
            persist: If False, keep records in memory only
        """
        self._state_dir: Path | None = None
        if persist:
            base = Path(state_dir) if state_dir else Path.home() / ".fleetctl"
            self._state_dir = base / "deployments"
            self._state_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._records: dict[str, DeploymentRecord] = {}

    def begin(self, target_id: str, batch_id: str) -> DeploymentRecord:
        """Start a fresh record for a target entering a batch."""
        record = DeploymentRecord(target_id=target_id, batch_id=batch_id)
        self.save(record)
        return record

    def record_event(self, event: DeploymentProgress) -> DeploymentRecord:
        """Fold a progress event into the target's record."""
        with self._lock:
            record = self._get(event.target_id) or DeploymentRecord(target_id=event.target_id)
            record.record(event)
            self._write(record)
            return record

    def mark_rolled_back(self, target_id: str, batch_id: str | None = None) -> bool:
        """Flag the record so no stage counts as reached any more.

        Args:
            target_id: Target whose record to flag
            batch_id: If given, only flag the record of this batch

        Returns:
            True if a record was flagged
        """
        with self._lock:
            record = self._get(target_id)
            if record is None:
                return False
            if batch_id is not None and record.batch_id != batch_id:
                logger.warning(
                    f"Record of {target_id} belongs to batch {record.batch_id}, not {batch_id}; left unchanged"
                )
                return False
            record.rolled_back = True
            self._write(record)
            return True

    def save(self, record: DeploymentRecord) -> None:
        """Save a deployment record.

        Args:
            record: Record to save
        """
        with self._lock:
            self._write(record)

    def load(self, target_id: str) -> DeploymentRecord | None:
        """Load the record for a target, or None if it never deployed."""
        with self._lock:
            return self._get(target_id)

    def delete(self, target_id: str) -> None:
        """Delete a target's record."""
        with self._lock:
            self._records.pop(target_id, None)
            if self._state_dir:
                state_file = self._state_dir / f"{target_id}.json"
                if state_file.exists():
                    state_file.unlink()
                    logger.debug(f"Deleted deployment record for {target_id}")

    def list(self) -> list[DeploymentRecord]:
        """All records, most recently updated first."""
        with self._lock:
            if self._state_dir:
                for state_file in self._state_dir.glob("*.json"):
                    target_id = state_file.stem
                    if target_id not in self._records:
                        try:
                            self._records[target_id] = self._read(state_file)
                        except DeploymentError as e:
                            logger.warning(str(e))
            records = list(self._records.values())

        records.sort(key=lambda r: r.updated_at, reverse=True)
        return records

    def _get(self, target_id: str) -> DeploymentRecord | None:
        record = self._records.get(target_id)
        if record is not None or not self._state_dir:
            return record

        state_file = self._state_dir / f"{target_id}.json"
        if not state_file.exists():
            return None
        record = self._read(state_file)
        self._records[target_id] = record
        return record

    def _read(self, state_file: Path) -> DeploymentRecord:
        try:
            with open(state_file) as f:
                return DeploymentRecord.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            raise DeploymentError(f"Failed to load deployment record {state_file}: {e}")

    def _write(self, record: DeploymentRecord) -> None:
        self._records[record.target_id] = record
        if not self._state_dir:
            return

        state_file = self._state_dir / f"{record.target_id}.json"
        try:
            with open(state_file, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
        except OSError as e:
            raise DeploymentError(
                f"Failed to save deployment record: {e}",
                target_id=record.target_id,
            )
