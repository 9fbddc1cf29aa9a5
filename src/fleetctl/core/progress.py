"""Progress display utilities for long-running operations."""

from contextlib import contextmanager
from typing import Generator

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from fleetctl.core.output import styled_status
from fleetctl.deploy.models import DeploymentProgress, Stage, StageStatus
from fleetctl.deploy.view import ProgressView

console = Console()

STAGE_ICONS = {
    StageStatus.PENDING: "[dim]○[/dim]",
    StageStatus.RUNNING: "[yellow]●[/yellow]",
    StageStatus.COMPLETED: "[green]✓[/green]",
    StageStatus.FAILED: "[red]✗[/red]",
}


class DeploymentDisplay:
    """Live table of a batch, redrawn as events are folded into its view.

    Usable as a context manager around the loop consuming the feed.
    """

    def __init__(self, view: ProgressView, console: Console | None = None, title: str = "Deployment"):
        """Initialize display.

        Args:
            view: Progress view to render
            console: Rich console to use for output
            title: Table title
        """
        self._view = view
        self._console = console or Console()
        self._title = title
        self._live: Live | None = None

    def render(self) -> Group:
        """Build the renderable for the current view state."""
        table = Table(title=self._title)
        table.add_column("", width=2)
        table.add_column("Server")
        table.add_column("Stage")
        table.add_column("Progress")
        table.add_column("Status")
        table.add_column("Message", overflow="fold")

        last = len(Stage.pipeline()) - 1
        for target in self._view.targets:
            done = target.stage.order if not target.deployed else last
            table.add_row(
                STAGE_ICONS[target.status],
                target.target_name or target.target_id,
                target.stage.value,
                f"{done}/{last}",
                styled_status(target.status.value),
                target.error if target.error and target.error != target.message else target.message,
            )

        summary = self._view.summary()
        footer = Text.from_markup(
            f"Deployed [green]{summary.deployed_count}[/green] / {summary.total}"
            f"  Failed [red]{summary.failed_count}[/red]"
        )
        if self._view.transport_lost:
            footer.append("  progress feed lost", style="bold red")
        elif summary.in_progress:
            footer.append("  in progress", style="yellow")
        return Group(table, footer)

    def update(self, event: DeploymentProgress) -> bool:
        """Fold an event into the view and redraw if it changed anything."""
        changed = self._view.apply(event)
        if changed:
            self.refresh()
        return changed

    def refresh(self) -> None:
        if self._live:
            self._live.update(self.render())

    def __enter__(self) -> "DeploymentDisplay":
        self._live = Live(self.render(), console=self._console, refresh_per_second=8)
        self._live.__enter__()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._live:
            self._live.update(self.render())
            self._live.__exit__(*exc_info)
            self._live = None


@contextmanager
def spinner(
    message: str,
    success_message: str | None = None,
    error_message: str | None = None,
) -> Generator[None, None, None]:
    """Simple spinner context manager.

    Args:
        message: Message to display while spinning
        success_message: Message to display on success
        error_message: Message to display on error

    Yields:
        Nothing - just displays spinner during operation
    """
    status = console.status(message, spinner="dots")
    status.start()
    try:
        yield
        status.stop()
        if success_message:
            console.print(f"[green]✓[/green] {success_message}")
    except Exception:
        status.stop()
        if error_message:
            console.print(f"[red]✗[/red] {error_message}")
        raise
