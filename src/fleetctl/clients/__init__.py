"""Clients for reaching remote hosts."""

from fleetctl.clients.ssh import CommandOutput, RemoteExecutor, SSHExecutor

__all__ = ["CommandOutput", "RemoteExecutor", "SSHExecutor"]
