"""Shared CLI plumbing: errors, output, logging and async helpers.

``fleetctl.core.context`` is not re-exported here because it imports the
deploy package, which itself depends on this one.
"""

from fleetctl.core.exceptions import FleetCtlError
from fleetctl.core.output import OutputFormat, OutputFormatter

__all__ = [
    "FleetCtlError",
    "OutputFormat",
    "OutputFormatter",
]
