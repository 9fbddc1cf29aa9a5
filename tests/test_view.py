"""Tests for the progress view."""

from fleetctl.deploy.models import DeploymentProgress, Stage, StageStatus
from fleetctl.deploy.view import ProgressView


def event(target_id, stage, status, message="", error=None):
    return DeploymentProgress(target_id, stage, status, message, error=error, target_name=target_id.upper())


class TestApply:
    """Tests for folding events."""

    def test_unknown_target_is_added(self):
        view = ProgressView()

        assert view.apply(event("a", Stage.CONNECT, StageStatus.RUNNING, "Connecting..."))

        progress = view.get("a")
        assert progress.stage is Stage.CONNECT
        assert progress.status == StageStatus.RUNNING
        assert progress.target_name == "A"

    def test_stale_stage_is_ignored(self):
        view = ProgressView(["a"])
        view.apply(event("a", Stage.CONFIG, StageStatus.RUNNING))

        assert not view.apply(event("a", Stage.NODE, StageStatus.COMPLETED))
        assert view.get("a").stage is Stage.CONFIG

    def test_same_stage_updates(self):
        view = ProgressView(["a"])
        view.apply(event("a", Stage.NODE, StageStatus.RUNNING, "Checking"))

        assert view.apply(event("a", Stage.NODE, StageStatus.RUNNING, "Installing"))
        assert view.get("a").message == "Installing"

    def test_terminal_target_is_frozen(self):
        view = ProgressView(["a"])
        view.apply(event("a", Stage.AGENT_INSTALL, StageStatus.FAILED, "disk full"))

        assert not view.apply(event("a", Stage.CONFIG, StageStatus.RUNNING))
        assert view.get("a").status == StageStatus.FAILED

    def test_interleaved_targets(self):
        view = ProgressView(["a", "b"])
        view.apply(event("b", Stage.NODE, StageStatus.RUNNING))
        view.apply(event("a", Stage.CONNECT, StageStatus.COMPLETED))
        view.apply(event("b", Stage.NODE, StageStatus.COMPLETED))

        assert view.get("a").stage is Stage.CONNECT
        assert view.get("b").status == StageStatus.COMPLETED


class TestSummary:
    """Tests for derived totals."""

    def test_counts(self):
        view = ProgressView(["a", "b", "c"])
        view.apply(event("a", Stage.COMPLETE, StageStatus.COMPLETED))
        view.apply(event("b", Stage.AGENT_INSTALL, StageStatus.FAILED))

        summary = view.summary()
        assert summary.deployed_count == 1
        assert summary.failed_count == 1
        assert summary.total == 3
        assert summary.in_progress

        view.apply(event("c", Stage.COMPLETE, StageStatus.COMPLETED))
        assert not view.summary().in_progress
        assert view.summary().to_dict() == {"deployed": 2, "failed": 1, "total": 3, "in_progress": False}

    def test_empty_view_is_idle(self):
        assert not ProgressView().summary().in_progress

    def test_complete_running_is_not_deployed(self):
        view = ProgressView(["a"])
        view.apply(event("a", Stage.COMPLETE, StageStatus.RUNNING))

        assert view.summary().deployed_count == 0
        assert view.summary().in_progress

    def test_transport_lost_ends_progress_without_outcomes(self):
        view = ProgressView(["a", "b"])
        view.apply(event("a", Stage.COMPLETE, StageStatus.COMPLETED))
        view.apply(event("b", Stage.NODE, StageStatus.RUNNING))

        view.mark_transport_lost()

        summary = view.summary()
        assert view.transport_lost
        assert not summary.in_progress
        assert summary.deployed_count == 1
        assert summary.failed_count == 0
        assert view.get("b").status == StageStatus.RUNNING

    def test_names(self):
        view = ProgressView(["a"], names={"a": "web"})
        assert view.targets[0].to_dict()["name"] == "web"
