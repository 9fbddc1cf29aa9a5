"""Connection testing for server targets."""

from collections.abc import Iterable

from fleetctl.clients.ssh import RemoteExecutor
from fleetctl.core.async_utils import map_async
from fleetctl.core.exceptions import ConnectionError, FleetCtlError
from fleetctl.core.logging import get_logger
from fleetctl.deploy.models import ServerTarget, TargetStatus, TestResult
from fleetctl.deploy.registry import ServerRegistry

logger = get_logger(__name__)

AUTH_FAILED_MESSAGE = "SSH authentication failed. Check your SSH key and username."


class ConnectionTester:
    """Check reachability and credentials of targets.

    The tester never touches the registry; callers decide what to do with
    the returned results.
    """

    def __init__(self, executor: RemoteExecutor, concurrency: int = 10):
        self._executor = executor
        self._concurrency = concurrency

    async def test(self, target: ServerTarget) -> TestResult:
        """Test one target."""
        try:
            connected = await self._executor.check_connection(target)
        except ConnectionError as e:
            message = AUTH_FAILED_MESSAGE if e.auth_failed else f"Connection failed: {e.message}"
            return TestResult(target_id=target.id, success=False, message=message)
        except FleetCtlError as e:
            return TestResult(target_id=target.id, success=False, message=f"Connection failed: {e.message}")

        if connected:
            return TestResult(
                target_id=target.id,
                success=True,
                message=f"Connected to {target.address}",
            )
        return TestResult(target_id=target.id, success=False, message=AUTH_FAILED_MESSAGE)

    async def test_many(self, targets: Iterable[ServerTarget]) -> list[TestResult]:
        """Test targets independently and concurrently, preserving order."""
        return await map_async(self.test, list(targets), concurrency=self._concurrency)


async def test_and_record(
    tester: ConnectionTester,
    registry: ServerRegistry,
    target_ids: list[str] | None = None,
) -> list[TestResult]:
    """Test targets and feed the outcomes back into the registry.

    Args:
        tester: Connection tester
        registry: Registry receiving the test-result messages
        target_ids: Targets to test; defaults to every pending or failed target

    Returns:
        Test results in request order
    """
    if target_ids is None:
        targets = registry.by_status(TargetStatus.PENDING, TargetStatus.FAILED)
    else:
        targets = [registry.get(target_id) for target_id in target_ids]

    results = await tester.test_many(targets)
    for result in results:
        registry.apply_test_result(result)
        if result.success:
            logger.info(f"Server {result.target_id}: {result.message}")
        else:
            logger.warning(f"Server {result.target_id}: {result.message}")
    return results


# keep pytest from collecting the helper as a test
test_and_record.__test__ = False  # type: ignore[attr-defined]
