"""Tests for deployment record persistence."""

import json

import pytest

from fleetctl.core.exceptions import DeploymentError
from fleetctl.deploy.models import DeploymentProgress, Stage, StageStatus
from fleetctl.deploy.state import DeploymentState


def progress(stage, status, message=""):
    return DeploymentProgress("srv-1", stage, status, message)


class TestDeploymentState:
    """Tests for DeploymentState."""

    def test_begin_and_record(self, state):
        state.begin("srv-1", "abc123")
        state.record_event(progress(Stage.CONNECT, StageStatus.RUNNING, "Connecting..."))
        state.record_event(progress(Stage.CONNECT, StageStatus.COMPLETED, "Connected"))
        state.record_event(progress(Stage.NODE, StageStatus.RUNNING, "Checking"))

        record = state.load("srv-1")
        assert record.batch_id == "abc123"
        assert record.reached == [Stage.CONNECT, Stage.NODE]
        assert record.stage is Stage.NODE
        assert record.status == StageStatus.RUNNING

    def test_failed_stage_counts_as_reached(self, state):
        state.begin("srv-1", "abc123")
        state.record_event(progress(Stage.CONFIG, StageStatus.RUNNING))
        state.record_event(progress(Stage.CONFIG, StageStatus.FAILED, "read-only file system"))

        record = state.load("srv-1")
        assert record.has_reached(Stage.CONFIG)
        assert not record.has_reached(Stage.DAEMON)
        assert record.message == "read-only file system"

    def test_persists_across_instances(self, state_dir):
        DeploymentState(state_dir).begin("srv-1", "abc123")
        DeploymentState(state_dir).record_event(progress(Stage.CONNECT, StageStatus.RUNNING))

        record = DeploymentState(state_dir).load("srv-1")
        assert record.reached == [Stage.CONNECT]
        assert (state_dir / "deployments" / "srv-1.json").exists()

    def test_begin_supersedes_previous_batch(self, state):
        state.begin("srv-1", "first")
        state.record_event(progress(Stage.DAEMON, StageStatus.RUNNING))

        state.begin("srv-1", "second")

        record = state.load("srv-1")
        assert record.batch_id == "second"
        assert record.reached == []

    def test_mark_rolled_back(self, state):
        state.begin("srv-1", "abc123")
        state.record_event(progress(Stage.CONFIG, StageStatus.RUNNING))

        state.mark_rolled_back("srv-1")

        record = state.load("srv-1")
        assert record.rolled_back
        assert not record.has_reached(Stage.CONFIG)

    def test_mark_rolled_back_unknown_is_noop(self, state):
        assert not state.mark_rolled_back("srv-missing")
        assert state.load("srv-missing") is None

    def test_mark_rolled_back_ignores_newer_batch(self, state):
        state.begin("srv-1", "first")
        state.begin("srv-1", "second")
        state.record_event(progress(Stage.CONFIG, StageStatus.RUNNING))

        assert not state.mark_rolled_back("srv-1", batch_id="first")

        record = state.load("srv-1")
        assert not record.rolled_back
        assert record.has_reached(Stage.CONFIG)

    def test_delete(self, state, state_dir):
        state.begin("srv-1", "abc123")
        state.delete("srv-1")

        assert state.load("srv-1") is None
        assert not (state_dir / "deployments" / "srv-1.json").exists()

    def test_list(self, state_dir):
        writer = DeploymentState(state_dir)
        writer.begin("srv-1", "a")
        writer.begin("srv-2", "b")

        records = DeploymentState(state_dir).list()
        assert {r.target_id for r in records} == {"srv-1", "srv-2"}

    def test_corrupt_record(self, state_dir):
        deployments = state_dir / "deployments"
        deployments.mkdir()
        (deployments / "srv-1.json").write_text("{not json")

        with pytest.raises(DeploymentError):
            DeploymentState(state_dir).load("srv-1")

    def test_list_skips_corrupt_records(self, state_dir):
        state = DeploymentState(state_dir)
        state.begin("srv-1", "a")
        (state_dir / "deployments" / "srv-2.json").write_text(json.dumps({"batch_id": "x"}))

        assert [r.target_id for r in DeploymentState(state_dir).list()] == ["srv-1"]

    def test_in_memory(self, tmp_path):
        state = DeploymentState(tmp_path / "unused", persist=False)
        state.begin("srv-1", "abc123")

        assert state.load("srv-1").batch_id == "abc123"
        assert not (tmp_path / "unused").exists()
