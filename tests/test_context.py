"""Tests for the CLI context object."""

from fleetctl.clients.ssh import SSHExecutor
from fleetctl.config import FleetCtlConfig, GlobalConfig
from fleetctl.core.context import FleetCtlContext, log_level_for
from fleetctl.core.logging import LogLevel
from fleetctl.core.output import OutputFormat


class TestFleetCtlContext:
    """Tests for FleetCtlContext."""

    def test_settings(self, mock_context):
        assert mock_context.profile_name == "default"
        assert mock_context.output_format == OutputFormat.TABLE
        assert mock_context.profile.deploy.max_concurrent == 2

    def test_output_format_falls_back_to_config(self):
        config = FleetCtlConfig(global_settings=GlobalConfig(output_format=OutputFormat.YAML))

        assert FleetCtlContext(config=config).output_format == OutputFormat.YAML
        assert FleetCtlContext(config=config, output_format=OutputFormat.JSON).output_format == OutputFormat.JSON

    def test_services_are_lazy_and_shared(self, mock_context, monkeypatch, tmp_path):
        monkeypatch.setenv("FLEETCTL_STATE_DIR", str(tmp_path / "fleet"))

        assert mock_context.registry is mock_context.registry
        assert (tmp_path / "fleet" / "deployments").exists() is False
        assert mock_context.coordinator is mock_context.coordinator
        assert isinstance(mock_context.executor, SSHExecutor)
        assert (tmp_path / "fleet" / "deployments").is_dir()

    def test_confirm_skipped_when_disabled(self):
        config = FleetCtlConfig(global_settings=GlobalConfig(confirm_destructive=False))

        assert FleetCtlContext(config=config).confirm("Remove?")

    def test_log_level_for(self):
        assert log_level_for(2, False, LogLevel.WARNING) == LogLevel.DEBUG
        assert log_level_for(1, True, LogLevel.WARNING) == LogLevel.INFO
        assert log_level_for(0, True, LogLevel.WARNING) == LogLevel.ERROR
        assert log_level_for(0, False, LogLevel.WARNING) == LogLevel.WARNING
