"""Tests for the SSH executor."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fleetctl.clients.ssh import CommandOutput, RemoteExecutor, SSHExecutor
from fleetctl.config import SSHConfig
from fleetctl.core.exceptions import ConnectionError, ValidationError
from fleetctl.deploy.models import ServerTarget


@pytest.fixture
def target() -> ServerTarget:
    return ServerTarget(name="web", host="10.0.0.1", username="deploy", key_path="/keys/id_ed25519", id="srv-1")


class TestBuildCommand:
    """Tests for argument vector construction."""

    def test_defaults(self, target):
        args = SSHExecutor().build_command(target, "uptime")

        assert args[0] == "ssh"
        assert args[1:3] == ["-i", "/keys/id_ed25519"]
        assert "BatchMode=yes" in args
        assert "ConnectTimeout=10" in args
        assert "StrictHostKeyChecking=yes" in args
        assert args[-2:] == ["deploy@10.0.0.1", "uptime"]

    def test_config_options(self, target):
        config = SSHConfig(port=2222, strict_host_key_checking=False, extra_options=["ServerAliveInterval=30"])

        args = SSHExecutor(config).build_command(target, "uptime")

        assert args[args.index("-p") + 1] == "2222"
        assert "StrictHostKeyChecking=accept-new" in args
        assert "ServerAliveInterval=30" in args

    def test_connect_timeout_env_override(self, target, monkeypatch):
        monkeypatch.setenv("FLEETCTL_SSH_CONNECT_TIMEOUT", "3")

        assert "ConnectTimeout=3" in SSHExecutor().build_command(target, "true")

    @pytest.mark.parametrize("host", ["", "10.0.0.1; rm -rf /", "host name", "$(whoami)"])
    def test_bad_host_never_spawns(self, target, host):
        target.host = host

        with patch("asyncio.create_subprocess_exec", new=AsyncMock()) as spawn:
            with pytest.raises(ValidationError):
                asyncio.run(SSHExecutor().run(target, "true"))
            spawn.assert_not_called()

    def test_bad_username(self, target):
        target.username = "Root;id"

        with pytest.raises(ValidationError):
            SSHExecutor().build_command(target, "true")


class TestCheckConnection:
    """Tests for SSHExecutor.check_connection."""

    def check(self, target, output: CommandOutput):
        executor = SSHExecutor()
        with patch.object(SSHExecutor, "_execute", new=AsyncMock(return_value=output)):
            return asyncio.run(executor.check_connection(target))

    def test_success(self, target):
        assert self.check(target, CommandOutput("", "", 0)) is True

    def test_auth_rejected(self, target):
        output = CommandOutput("", "deploy@10.0.0.1: Permission denied (publickey).", 255)
        assert self.check(target, output) is False

    def test_unreachable(self, target):
        output = CommandOutput("", "ssh: connect to host 10.0.0.1 port 22: Connection refused", 255)

        with pytest.raises(ConnectionError, match="Connection refused"):
            self.check(target, output)


class TestRun:
    """Tests for SSHExecutor.run and stream."""

    def test_remote_failure_is_returned(self, target):
        output = CommandOutput("", "npm ERR! disk full", 1)

        with patch.object(SSHExecutor, "_execute", new=AsyncMock(return_value=output)):
            result = asyncio.run(SSHExecutor().run(target, "npm install -g openclaw"))

        assert not result.ok
        assert result.exit_code == 1

    def test_dropped_connection_raises(self, target):
        output = CommandOutput("", "Connection reset by peer", 255)

        with patch.object(SSHExecutor, "_execute", new=AsyncMock(return_value=output)):
            with pytest.raises(ConnectionError) as exc_info:
                asyncio.run(SSHExecutor().run(target, "true"))

        assert exc_info.value.host == "10.0.0.1"
        assert not exc_info.value.auth_failed

    def test_missing_ssh_binary(self, target):
        spawn = AsyncMock(side_effect=FileNotFoundError("ssh"))

        with patch("asyncio.create_subprocess_exec", new=spawn):
            with pytest.raises(ConnectionError, match="Cannot run ssh"):
                asyncio.run(SSHExecutor().run(target, "true"))

    def test_stream_reports_lines(self, target):
        async def go():
            stdout = asyncio.StreamReader()
            stdout.feed_data(b"=> Downloading nvm\n\nNow using node v22.12.0\n")
            stdout.feed_eof()
            stderr = asyncio.StreamReader()
            stderr.feed_eof()
            process = MagicMock(stdout=stdout, stderr=stderr)
            process.wait = AsyncMock(return_value=0)

            lines = []

            async def on_line(line):
                lines.append(line)

            with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
                output = await SSHExecutor().stream(target, "nvm install 22", on_line)
            return lines, output

        lines, output = asyncio.run(go())

        assert lines == ["=> Downloading nvm", "Now using node v22.12.0"]
        assert output.ok


class TestDefaultStream:
    """RemoteExecutor.stream replays collected output."""

    def test_replay(self, target):
        class Canned(RemoteExecutor):
            async def check_connection(self, target):
                return True

            async def run(self, target, command):
                return CommandOutput("one\n  \ntwo\n", "", 0)

        lines = []

        async def on_line(line):
            lines.append(line)

        asyncio.run(Canned().stream(target, "x", on_line))
        assert lines == ["one", "two"]
