"""Tests for the live deployment display."""

from io import StringIO

from rich.console import Console

from fleetctl.core.progress import DeploymentDisplay
from fleetctl.deploy.models import DeploymentProgress, Stage, StageStatus
from fleetctl.deploy.view import ProgressView


def render(display: DeploymentDisplay) -> str:
    console = Console(file=StringIO(), width=160, color_system=None)
    console.print(display.render())
    return console.file.getvalue()


class TestDeploymentDisplay:
    """Tests for DeploymentDisplay."""

    def test_render_rows(self):
        view = ProgressView(["srv-1", "srv-2"], names={"srv-1": "web", "srv-2": "db"})
        display = DeploymentDisplay(view)
        display.update(DeploymentProgress("srv-1", Stage.NODE, StageStatus.RUNNING, "Checking Node.js..."))
        display.update(
            DeploymentProgress("srv-2", Stage.AGENT_INSTALL, StageStatus.FAILED, "disk full", error="exit code 1")
        )

        output = render(display)

        assert "web" in output
        assert "Checking Node.js..." in output
        assert "agent-install" in output
        assert "exit code 1" in output
        assert "Failed 1" in output
        assert "in progress" in output

    def test_update_reports_changes(self):
        display = DeploymentDisplay(ProgressView(["srv-1"]))
        done = DeploymentProgress("srv-1", Stage.COMPLETE, StageStatus.COMPLETED, "Remote setup complete!")

        assert display.update(done)
        assert not display.update(DeploymentProgress("srv-1", Stage.NODE, StageStatus.RUNNING, "late"))
        assert "Deployed 1 / 1" in render(display)

    def test_transport_lost_footer(self):
        view = ProgressView(["srv-1"])
        view.mark_transport_lost()

        assert "progress feed lost" in render(DeploymentDisplay(view))

    def test_live_context(self):
        console = Console(file=StringIO(), width=120, force_terminal=False)
        view = ProgressView(["srv-1"])

        with DeploymentDisplay(view, console=console) as display:
            display.update(DeploymentProgress("srv-1", Stage.CONNECT, StageStatus.RUNNING, "Connecting..."))

        assert "srv-1" in console.file.getvalue()
