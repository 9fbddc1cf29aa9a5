"""Custom exceptions for fleetctl."""

from typing import Any


class FleetCtlError(Exception):
    """Base exception for all fleetctl errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(FleetCtlError):
    """Configuration-related errors."""

    pass


class ValidationError(FleetCtlError):
    """Malformed input, raised before any network activity."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.field = field


class TargetNotFoundError(FleetCtlError):
    """Unknown server target id."""

    def __init__(self, target_id: str):
        super().__init__(f"Server not found: {target_id}")
        self.target_id = target_id


class ConnectionError(FleetCtlError):
    """Unreachable host or rejected credentials."""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        auth_failed: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.host = host
        self.auth_failed = auth_failed


class StageExecutionError(FleetCtlError):
    """Failure inside a specific pipeline stage."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        detail: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.stage = stage
        self.detail = detail


class TransportError(FleetCtlError):
    """The progress event feed itself was lost.

    Targets listed in ``unresolved`` had no terminal event observed, so their
    outcome is unknown and must be reconciled by re-querying the registry.
    """

    def __init__(
        self,
        message: str,
        unresolved: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.unresolved = unresolved or []


class RollbackError(FleetCtlError):
    """A compensating stage failed."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.stage = stage


class BatchConflictError(FleetCtlError):
    """A target already belongs to an in-flight batch."""

    def __init__(self, message: str, target_ids: list[str] | None = None):
        super().__init__(message)
        self.target_ids = target_ids or []


class DeploymentError(FleetCtlError):
    """Deployment orchestration errors."""

    def __init__(
        self,
        message: str,
        target_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.target_id = target_id


class TimeoutError(FleetCtlError):
    """Operation timeout errors."""

    def __init__(
        self,
        message: str,
        timeout_seconds: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.timeout_seconds = timeout_seconds
