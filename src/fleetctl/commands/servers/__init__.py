"""Servers command group - manage the target registry."""

import sys

import click

from fleetctl.core.async_utils import run_sync
from fleetctl.core.context import pass_context, FleetCtlContext
from fleetctl.core.exceptions import TargetNotFoundError, ValidationError
from fleetctl.deploy.models import ServerTarget
from fleetctl.deploy.tester import ConnectionTester, test_and_record

SERVER_COLUMNS = ["id", "name", "host", "username", "key_path", "status"]


@click.group()
@pass_context
def servers(ctx: FleetCtlContext) -> None:
    """Server registry - add, remove, list and test targets.

    \b
    Examples:
        fleetctl servers add --name web-1 --host 10.0.0.5 --user deploy --key ~/.ssh/id_ed25519
        fleetctl servers list
        fleetctl servers test --all
        fleetctl servers remove srv-18c2f9a1b3e-5f1d2c
    """
    pass


@servers.command("list")
@pass_context
def list_servers(ctx: FleetCtlContext) -> None:
    """List registered servers."""
    targets = ctx.registry.list()
    if not targets:
        ctx.output.print_info("No servers registered")
        return

    ctx.output.print_data([t.to_dict() for t in targets], headers=SERVER_COLUMNS, title="Servers")


@servers.command("add")
@click.option("--name", required=True, help="Display name")
@click.option("--host", required=True, help="Hostname or IP address")
@click.option("-u", "--user", "username", required=True, help="SSH username")
@click.option("-k", "--key", "key_path", required=True, help="Path to the SSH private key")
@pass_context
def add(ctx: FleetCtlContext, name: str, host: str, username: str, key_path: str) -> None:
    """Register a server.

    \b
    Examples:
        fleetctl servers add --name web-1 --host 10.0.0.5 -u deploy -k ~/.ssh/id_ed25519
    """
    try:
        target = ctx.registry.add(ServerTarget(name=name, host=host, username=username, key_path=key_path))
    except ValidationError as e:
        ctx.output.print_error(f"Invalid {e.field or 'input'}: {e.message}")
        raise click.Abort()

    if ctx.output_format.value in ("json", "yaml"):
        ctx.output.print_data(target.to_dict())
    else:
        ctx.output.print_success(f"Added server {target.name} ({target.id})")


@servers.command("remove")
@click.argument("target_id")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def remove(ctx: FleetCtlContext, target_id: str, yes: bool) -> None:
    """Remove a server from the registry."""
    if not yes and not ctx.confirm(f"Remove server {target_id}?"):
        ctx.output.print_info("Cancelled")
        return

    if ctx.registry.remove(target_id):
        ctx.output.print_success(f"Removed server {target_id}")
    else:
        ctx.output.print_info(f"No server with id {target_id}")


@servers.command("test")
@click.argument("target_ids", nargs=-1)
@click.option("--all", "test_all", is_flag=True, help="Test every registered server")
@pass_context
def test(ctx: FleetCtlContext, target_ids: tuple[str, ...], test_all: bool) -> None:
    """Test SSH connectivity and record the result.

    Without ids, tests every pending or failed server.

    \b
    Examples:
        fleetctl servers test srv-18c2f9a1b3e-5f1d2c
        fleetctl servers test --all
    """
    if test_all:
        ids: list[str] | None = [t.id for t in ctx.registry.list()]
    else:
        ids = list(target_ids) or None

    tester = ConnectionTester(ctx.executor)
    try:
        results = run_sync(test_and_record(tester, ctx.registry, ids))
    except TargetNotFoundError as e:
        ctx.output.print_error(e.message)
        raise click.Abort()

    if not results:
        ctx.output.print_info("No servers to test")
        return

    rows = []
    for result in results:
        target = ctx.registry.find(result.target_id)
        rows.append({
            "id": result.target_id,
            "name": target.name if target else "",
            "status": target.status.value if target else "",
            "message": result.message,
        })
    ctx.output.print_data(rows, headers=["id", "name", "status", "message"], title="Connection Tests")

    if any(not r.success for r in results):
        sys.exit(1)
