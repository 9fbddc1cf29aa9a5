"""Rollback command."""

import sys

import click

from fleetctl.core.async_utils import run_sync
from fleetctl.core.context import pass_context, FleetCtlContext
from fleetctl.core.exceptions import BatchConflictError, TargetNotFoundError
from fleetctl.core.progress import spinner
from fleetctl.deploy.rollback import RollbackController


@click.command()
@click.argument("target_id")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def rollback(ctx: FleetCtlContext, target_id: str, yes: bool) -> None:
    """Undo a deployment on one server.

    Stops the daemon, removes the agent configuration and uninstalls the
    agent, skipping whatever the last deployment never reached. The server
    returns to pending afterwards.

    \b
    Examples:
        fleetctl rollback srv-18c2f9a1b3e-5f1d2c
        fleetctl rollback srv-18c2f9a1b3e-5f1d2c -y
    """
    if not yes and not ctx.confirm(f"Roll back server {target_id}?"):
        ctx.output.print_info("Cancelled")
        return

    controller = RollbackController(
        ctx.registry,
        ctx.executor,
        ctx.state,
        config=ctx.profile.deploy,
        coordinator=ctx.coordinator,
    )

    try:
        if ctx.quiet:
            result = run_sync(controller.rollback(target_id))
        else:
            with spinner(f"Rolling back {target_id}..."):
                result = run_sync(controller.rollback(target_id))
    except (TargetNotFoundError, BatchConflictError) as e:
        ctx.output.print_error(e.message)
        raise click.Abort()

    ctx.output.print_data(
        [s.to_dict() for s in result.stages],
        headers=["name", "status", "message"],
        title=f"Rollback: {target_id}",
    )

    if not result.success:
        ctx.output.print_error("One or more rollback stages failed")
        sys.exit(1)
    if result.all_skipped:
        ctx.output.print_info("Nothing to roll back")
    else:
        ctx.output.print_success(f"Server {target_id} rolled back to pending")
