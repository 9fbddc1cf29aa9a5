"""Common utilities for fleetctl."""

import re
import secrets
import time

from fleetctl.core.exceptions import ValidationError

HOST_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+$")
USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")


def validate_required(value: str, field: str) -> str:
    """Reject empty or whitespace-only values."""
    if not value or not value.strip():
        raise ValidationError(f"{field.replace('_', ' ').capitalize()} cannot be empty", field=field)
    return value


def validate_host(host: str) -> str:
    """Validate a hostname or IP address.

    Only letters, digits, dots and hyphens are accepted, which also keeps
    the value safe to place on an ssh command line.

    Raises:
        ValidationError: If the host is empty or malformed
    """
    validate_required(host, "host")
    if not HOST_PATTERN.match(host):
        raise ValidationError(f"Invalid host format: {host}", field="host")
    return host


def validate_username(username: str) -> str:
    """Validate a POSIX-style login name.

    Raises:
        ValidationError: If the username is empty or malformed
    """
    validate_required(username, "username")
    if not USERNAME_PATTERN.match(username):
        raise ValidationError(f"Invalid username format: {username}", field="username")
    return username


def generate_target_id() -> str:
    """Generate a registry id such as ``srv-18c2f9a1b3e-5f1d2c``."""
    return f"srv-{int(time.time() * 1000):x}-{secrets.token_hex(3)}"


def last_line(text: str, default: str = "") -> str:
    """Last non-blank line of command output."""
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return default


def truncate_string(s: str, max_length: int = 50, suffix: str = "...") -> str:
    """Truncate string to max length.

    Args:
        s: String to truncate
        max_length: Maximum length including suffix
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(s) <= max_length:
        return s
    return s[: max_length - len(suffix)] + suffix
