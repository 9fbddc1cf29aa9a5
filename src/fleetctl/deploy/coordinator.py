"""Batch deployment coordination.

Each target in a batch gets its own worker and its own event queue. A
forwarder task per worker drains that queue into the batch's ``EventFeed``,
so events for one target can never overtake each other while targets stay
unordered relative to one another.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager

from fleetctl.clients.ssh import RemoteExecutor
from fleetctl.config import DeployConfig
from fleetctl.core.exceptions import BatchConflictError, TransportError, ValidationError
from fleetctl.core.logging import get_logger
from fleetctl.deploy.models import (
    DeploymentProgress,
    DeployResult,
    ServerTarget,
    Stage,
    StageStatus,
    TargetStatus,
)
from fleetctl.deploy.registry import ServerRegistry
from fleetctl.deploy.state import DeploymentState
from fleetctl.deploy.worker import DeploymentWorker

logger = get_logger(__name__)

# marks the end of a worker queue, or the loss of the merged feed
_END = object()
_LOST = object()


class EventFeed:
    """Single consumer-facing stream of a batch's progress events.

    Iterating yields events until every target has produced its terminal
    event. If the feed is failed first, iteration delivers what was already
    queued and then raises ``TransportError`` naming the targets whose
    outcome was never observed.
    """

    def __init__(self, target_ids: list[str], on_fail: Callable[[], None] | None = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._order = list(target_ids)
        self._pending = set(target_ids)
        self._on_fail = on_fail
        self._failure: str | None = None
        self._unresolved: list[str] = []
        self._lost_delivered = False

    @property
    def failed(self) -> bool:
        return self._failure is not None

    @property
    def failure(self) -> str | None:
        return self._failure

    @property
    def in_progress(self) -> bool:
        return not self.failed and bool(self._pending)

    @property
    def unresolved(self) -> list[str]:
        """Targets whose terminal event has not been observed."""
        if self.failed:
            return list(self._unresolved)
        return [t for t in self._order if t in self._pending]

    def fail(self, reason: str) -> None:
        """Mark the feed as lost.

        Events arriving afterwards are dropped and no outcome is claimed for
        the targets still pending.
        """
        if self.failed:
            return
        if not self._pending:
            logger.debug(f"Feed already exhausted, ignoring failure: {reason}")
            return

        self._failure = reason
        self._unresolved = [t for t in self._order if t in self._pending]
        logger.warning(f"Progress feed lost ({reason}); unresolved: {', '.join(self._unresolved)}")
        self._queue.put_nowait(_LOST)
        if self._on_fail:
            self._on_fail()

    def publish(self, event: DeploymentProgress) -> bool:
        """Deliver an event, returning False if the feed is lost."""
        if self.failed:
            return False
        if event.is_terminal:
            self._pending.discard(event.target_id)
        self._queue.put_nowait(event)
        return True

    def error(self) -> TransportError:
        return TransportError(
            f"Progress feed lost: {self._failure}",
            unresolved=list(self._unresolved),
        )

    def __aiter__(self) -> EventFeed:
        return self

    async def __anext__(self) -> DeploymentProgress:
        if self._lost_delivered:
            raise self.error()
        if not self.failed and not self._pending and self._queue.empty():
            raise StopAsyncIteration

        item = await self._queue.get()
        if item is _LOST:
            self._lost_delivered = True
            raise self.error()
        return item


class Batch:
    """A set of targets deployed together."""

    def __init__(self, batch_id: str, targets: list[ServerTarget]):
        self.id = batch_id
        self.targets = targets
        self.results: dict[str, DeployResult] = {}
        self._cancel_event = asyncio.Event()
        self.feed = EventFeed([t.id for t in targets], on_fail=self.cancel)
        self._tasks: list[asyncio.Task] = []

    @property
    def target_ids(self) -> list[str]:
        return [t.id for t in self.targets]

    @property
    def total(self) -> int:
        return len(self.targets)

    @property
    def deployed_count(self) -> int:
        """Targets whose successful outcome was observed on the feed."""
        return sum(1 for r in self.results.values() if r.success)

    @property
    def in_progress(self) -> bool:
        return self.feed.in_progress

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop every worker at its next stage boundary."""
        if not self._cancel_event.is_set():
            logger.info(f"Cancelling batch {self.id}")
            self._cancel_event.set()

    async def wait(self) -> list[DeployResult]:
        """Wait for every worker to stop.

        Returns:
            Results observed on the feed, in batch order
        """
        await asyncio.gather(*self._tasks)
        return [self.results[t] for t in self.target_ids if t in self.results]

    def __aiter__(self) -> EventFeed:
        return self.feed


class DeploymentCoordinator:
    """Starts batches and feeds their outcomes back into the registry."""

    def __init__(
        self,
        registry: ServerRegistry,
        executor: RemoteExecutor,
        state: DeploymentState | None = None,
        config: DeployConfig | None = None,
    ):
        """Initialize coordinator.

        Args:
            registry: Target registry; owner of target status
            executor: Remote executor shared by all workers
            state: Deployment record store
            config: Pipeline settings
        """
        self._registry = registry
        self._executor = executor
        self._state = state or DeploymentState(persist=False)
        self._config = config or DeployConfig()
        self._active: dict[str, str] = {}

    def is_active(self, target_id: str) -> bool:
        """True while the target is in an in-flight batch or reserved."""
        return target_id in self._active

    @property
    def active_targets(self) -> list[str]:
        return list(self._active)

    @contextmanager
    def reserve(self, target_id: str, owner: str = "rollback") -> Iterator[None]:
        """Keep batches off a target for the duration of the block.

        Raises:
            BatchConflictError: If the target is in a batch or already reserved
        """
        holder = self._active.get(target_id)
        if holder is not None:
            raise BatchConflictError(
                f"Server {target_id} is busy with {holder}",
                target_ids=[target_id],
            )

        self._active[target_id] = owner
        try:
            yield
        finally:
            if self._active.get(target_id) == owner:
                del self._active[target_id]

    async def start_batch(self, target_ids: Iterable[str]) -> Batch:
        """Start deploying a set of targets.

        Args:
            target_ids: Ids of connected targets; duplicates are collapsed

        Returns:
            The running batch

        Raises:
            ValidationError: If no ids are given or a target is not connected
            TargetNotFoundError: If an id is unknown
            BatchConflictError: If a target is in an in-flight batch or reserved
        """
        ids = list(dict.fromkeys(target_ids))
        if not ids:
            raise ValidationError("At least one server id is required", field="target_ids")

        targets = [self._registry.get(target_id) for target_id in ids]
        not_connected = [t for t in targets if t.status != TargetStatus.CONNECTED]
        if not_connected:
            names = ", ".join(f"{t.id} ({t.status.value})" for t in not_connected)
            raise ValidationError(
                f"Servers must be connected before deploying: {names}",
                field="target_ids",
            )

        busy = [t for t in ids if t in self._active]
        if busy:
            raise BatchConflictError(
                f"Servers are busy with another batch or a rollback: {', '.join(busy)}",
                target_ids=busy,
            )

        batch = Batch(str(uuid.uuid4())[:8], targets)
        semaphore = asyncio.Semaphore(self._config.get_max_concurrent())

        for target in targets:
            self._active[target.id] = f"batch {batch.id}"
            self._state.begin(target.id, batch.id)

            queue: asyncio.Queue = asyncio.Queue()
            worker = DeploymentWorker(
                target,
                self._executor,
                config=self._config,
                queue=queue,
                cancel_event=batch._cancel_event,
            )
            batch._tasks.append(asyncio.create_task(self._run_worker(worker, semaphore)))
            batch._tasks.append(asyncio.create_task(self._forward(batch, target, queue)))

        logger.info(f"Started batch {batch.id} with {batch.total} server(s)")
        return batch

    async def deploy(
        self,
        target_ids: Iterable[str],
        on_event: Callable[[DeploymentProgress], None] | None = None,
    ) -> list[DeployResult]:
        """Run a batch to completion.

        Raises:
            TransportError: If the feed is lost before every outcome is known
        """
        batch = await self.start_batch(target_ids)
        try:
            async for event in batch.feed:
                if on_event:
                    on_event(event)
        finally:
            await batch.wait()
        return [batch.results[t] for t in batch.target_ids if t in batch.results]

    async def _run_worker(self, worker: DeploymentWorker, semaphore: asyncio.Semaphore) -> None:
        try:
            async with semaphore:
                await worker.run()
        except Exception:
            # the forwarder sees no terminal event and fails the feed
            logger.exception(f"Worker for {worker.target.name} crashed")
        finally:
            worker.queue.put_nowait(_END)

    async def _forward(self, batch: Batch, target: ServerTarget, queue: asyncio.Queue) -> None:
        """Drain one worker's queue into the batch feed.

        If an event cannot be recorded, or the worker stops without a
        terminal event, the feed is failed so consumers are never left
        waiting on an outcome that will not arrive.
        """
        completed: list[Stage] = []
        recorded: set[Stage] = set()

        try:
            while True:
                event = await queue.get()
                if event is _END:
                    break
                try:
                    self._observe(batch, target, event, completed, recorded)
                except Exception as e:
                    logger.error(f"Could not record progress of {target.name}: {e}")
                    batch.feed.fail(f"progress of {target.id} could not be recorded: {e}")

            if not batch.feed.failed and target.id in batch.feed.unresolved:
                batch.feed.fail(f"worker for {target.id} stopped without an outcome")
        finally:
            if self._active.get(target.id) == f"batch {batch.id}":
                del self._active[target.id]

    def _observe(
        self,
        batch: Batch,
        target: ServerTarget,
        event: DeploymentProgress,
        completed: list[Stage],
        recorded: set[Stage],
    ) -> None:
        if event.status == StageStatus.COMPLETED:
            completed.append(event.stage)

        # records track reached stages even after the feed is lost
        if event.status != StageStatus.RUNNING or event.stage not in recorded:
            self._state.record_event(event)
            recorded.add(event.stage)

        if batch.feed.failed:
            return
        if event.is_terminal:
            result = DeployResult(
                target_id=target.id,
                target_name=target.name,
                success=event.succeeded,
                error=None if event.succeeded else event.message,
                completed_stages=list(completed),
            )
            self._registry.apply_deploy_result(result)
            batch.results[target.id] = result
        batch.feed.publish(event)
