"""Deploy command group."""

import sys
import time
from contextlib import nullcontext

import click

from fleetctl.core.async_utils import run_sync, run_with_timeout
from fleetctl.core.context import pass_context, FleetCtlContext
from fleetctl.core.exceptions import (
    BatchConflictError,
    TargetNotFoundError,
    TimeoutError,
    TransportError,
    ValidationError,
)
from fleetctl.core.output import OutputFormat, format_duration
from fleetctl.core.progress import DeploymentDisplay
from fleetctl.core.utils import truncate_string
from fleetctl.deploy.coordinator import Batch
from fleetctl.deploy.models import TargetStatus
from fleetctl.deploy.view import ProgressView


@click.group()
@pass_context
def deploy(ctx: FleetCtlContext) -> None:
    """Deployment orchestration - run batches and inspect their progress.

    \b
    Examples:
        fleetctl deploy run srv-18c2f9a1b3e-5f1d2c srv-18c2f9a1c07-a41b9e
        fleetctl deploy run --all-connected
        fleetctl deploy status
    """
    pass


async def _watch(batch: Batch, view: ProgressView, display: DeploymentDisplay | None) -> None:
    async for event in batch.feed:
        if display:
            display.update(event)
        else:
            view.apply(event)


async def _run_batch(
    ctx: FleetCtlContext,
    target_ids: list[str],
    timeout: int | None,
) -> tuple[ProgressView, TransportError | None]:
    batch = await ctx.coordinator.start_batch(target_ids)
    view = ProgressView(batch.target_ids, names={t.id: t.name for t in batch.targets})

    live = ctx.output_format == OutputFormat.TABLE and not ctx.quiet
    display = DeploymentDisplay(view, console=ctx.output.console, title=f"Batch {batch.id}") if live else None

    lost: TransportError | None = None
    with display or nullcontext():
        try:
            if timeout:
                await run_with_timeout(_watch(batch, view, display), timeout)
            else:
                await _watch(batch, view, display)
        except TimeoutError:
            batch.feed.fail(f"no outcome within {timeout}s")
            lost = batch.feed.error()
        except TransportError as e:
            lost = e

        if lost:
            view.mark_transport_lost()
            if display:
                display.refresh()

    await batch.wait()
    return view, lost


@deploy.command("run")
@click.argument("target_ids", nargs=-1)
@click.option("--all-connected", is_flag=True, help="Deploy every connected server")
@click.option("--timeout", type=int, default=None, help="Stop watching after this many seconds")
@pass_context
def run(
    ctx: FleetCtlContext,
    target_ids: tuple[str, ...],
    all_connected: bool,
    timeout: int | None,
) -> None:
    """Deploy the agent to one or more connected servers.

    \b
    Examples:
        fleetctl deploy run srv-18c2f9a1b3e-5f1d2c
        fleetctl deploy run --all-connected --timeout 1800
    """
    ids = list(target_ids)
    if all_connected:
        ids.extend(t.id for t in ctx.registry.by_status(TargetStatus.CONNECTED))

    started = time.monotonic()
    try:
        view, lost = run_sync(_run_batch(ctx, ids, timeout))
    except (ValidationError, TargetNotFoundError, BatchConflictError) as e:
        ctx.output.print_error(e.message)
        raise click.Abort()

    elapsed = format_duration(time.monotonic() - started)
    summary = view.summary()
    if ctx.output_format != OutputFormat.TABLE:
        ctx.output.print_data({
            "targets": [t.to_dict() for t in view.targets],
            "summary": summary.to_dict(),
            "unresolved": lost.unresolved if lost else [],
        })
    elif summary.failed_count:
        ctx.output.print_warning(f"{summary.deployed_count}/{summary.total} deployed, {summary.failed_count} failed")
    elif not lost:
        ctx.output.print_success(f"{summary.deployed_count}/{summary.total} deployed in {elapsed}")

    if lost:
        ctx.output.print_error(
            f"{lost.message}. Outcome unknown for: {', '.join(lost.unresolved)}. "
            "Check 'fleetctl servers list' before retrying."
        )
    if lost or summary.failed_count:
        sys.exit(1)


@deploy.command("status")
@pass_context
def status(ctx: FleetCtlContext) -> None:
    """Show the last recorded progress of each server.

    \b
    Examples:
        fleetctl deploy status
        fleetctl -o json deploy status
    """
    records = ctx.state.list()
    if not records:
        ctx.output.print_info("No deployments found")
        return

    rows = []
    for record in records:
        target = ctx.registry.find(record.target_id)
        rows.append({
            "id": record.target_id,
            "name": target.name if target else "(removed)",
            "batch": record.batch_id,
            "stage": record.stage.value,
            "status": record.status.value,
            "message": truncate_string(record.message, 60),
            "rolled_back": "yes" if record.rolled_back else "",
            "updated": record.updated_at.strftime("%Y-%m-%d %H:%M"),
        })

    ctx.output.print_data(
        rows,
        headers=["id", "name", "batch", "stage", "status", "message", "rolled_back", "updated"],
        title="Deployments",
    )
