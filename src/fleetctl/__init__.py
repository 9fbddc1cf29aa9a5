"""fleetctl - deploy and manage an agent across a fleet of servers over SSH."""

__version__ = "0.1.0"
