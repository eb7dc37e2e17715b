"""Tests for the SSH command executor and worker setup script."""

import asyncio
import base64
import os
import stat
import subprocess
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from swarm_fleet.errors import ConfigurationError, ExecutionError
from swarm_fleet.remote import RemoteCommandExecutor, SSHTarget, WorkerSetupScript, build_provision_commands
from swarm_fleet.remote.executor import wrap_commands

from tests.conftest import SSH_KEY


def stream(*lines):
    reader = asyncio.StreamReader()
    for line in lines:
        reader.feed_data(line.encode())
    reader.feed_eof()
    return reader


def mock_ssh_process(stdout_lines=(), stderr_lines=(), returncode=0):
    process = MagicMock()
    process.stdout = stream(*stdout_lines)
    process.stderr = stream(*stderr_lines)
    process.returncode = returncode
    process.wait = AsyncMock(return_value=returncode)
    process.kill = MagicMock()
    return process


def hanging_ssh_process():
    """A session that printed one line and never exits until killed."""
    process = MagicMock()
    process.stdout = asyncio.StreamReader()
    process.stdout.feed_data(b"Reading package lists...\n")
    process.stderr = stream()
    process.returncode = None
    process.kill = MagicMock()
    process.started = asyncio.Event()
    process.wait_calls = 0

    async def wait():
        process.wait_calls += 1
        if process.wait_calls == 1:
            process.started.set()
            await asyncio.sleep(60)
        process.returncode = -9
        return -9

    process.wait = wait
    return process


class TestWrapCommands:
    """Tests for wrap_commands."""

    def test_chain_is_base64_encoded(self):
        wrapped = wrap_commands(["apt-get update", "echo 'done'"])

        assert wrapped.startswith("echo ")
        assert wrapped.endswith(" | base64 -d | sh")
        encoded = wrapped.split(" ")[1]
        assert base64.b64decode(encoded).decode() == "apt-get update && echo 'done'"


class TestBuildSshArgs:
    """Tests for RemoteCommandExecutor.build_ssh_args."""

    def test_default_port(self):
        executor = RemoteCommandExecutor(connect_timeout=7)
        args = executor.build_ssh_args(SSHTarget(host="10.0.0.5"), "/tmp/key", "uptime")

        assert args[0] == "ssh"
        assert "-p" not in args
        assert "ConnectTimeout=7" in args
        assert "BatchMode=yes" in args
        assert args[-2:] == ["root@10.0.0.5", "uptime"]

    def test_custom_port_and_user(self):
        executor = RemoteCommandExecutor(ssh_path="/usr/bin/ssh")
        args = executor.build_ssh_args(SSHTarget(host="h", port=2222, user="ops"), "/tmp/key", "uptime")

        assert args[:3] == ["/usr/bin/ssh", "-p", "2222"]
        assert "ops@h" in args

    def test_key_hidden_from_repr(self):
        assert SSH_KEY not in repr(SSHTarget(host="h", private_key=SSH_KEY))


class TestRunCommands:
    """Tests for RemoteCommandExecutor.run_commands."""

    @pytest.mark.asyncio
    async def test_success_streams_output(self):
        process = mock_ssh_process(["step 1\n", "step 2\n"], ["warning: x\n"])
        key_modes = []

        async def fake_exec(*args, **kwargs):
            key_path = args[args.index("-i") + 1]
            key_modes.append(stat.S_IMODE(os.stat(key_path).st_mode))
            assert kwargs["stdin"] == subprocess.DEVNULL
            with open(key_path, encoding="utf-8") as f:
                assert f.read().strip() == SSH_KEY
            return process

        with patch("asyncio.create_subprocess_exec", new=fake_exec):
            result = await RemoteCommandExecutor().run_commands(
                SSHTarget(host="10.0.0.5", private_key=SSH_KEY), ["echo 1", "echo 2"], label="w1",
            )

        assert result.success
        assert result.stdout == "step 1\nstep 2\n"
        assert result.stderr == "warning: x\n"
        assert key_modes == [0o600]

    @pytest.mark.asyncio
    async def test_key_file_removed_afterwards(self):
        paths = []

        async def fake_exec(*args, **kwargs):
            paths.append(args[args.index("-i") + 1])
            return mock_ssh_process()

        with patch("asyncio.create_subprocess_exec", new=fake_exec):
            await RemoteCommandExecutor().run_commands(SSHTarget(host="h", private_key=SSH_KEY), ["true"])

        assert not os.path.exists(paths[0])

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        process = mock_ssh_process(["installing\n"], ["E: apt failed\n"], returncode=100)

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(ExecutionError) as exc_info:
                await RemoteCommandExecutor().run_commands(SSHTarget(host="h", private_key=SSH_KEY), ["false"])

        error = exc_info.value
        assert error.exit_code == 100
        assert "apt failed" in error.stderr
        assert error.stdout == "installing\n"

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with patch("asyncio.create_subprocess_exec", new=AsyncMock()) as exec_mock:
            with pytest.raises(ExecutionError) as exc_info:
                await RemoteCommandExecutor().run_commands(SSHTarget(host="h"), ["true"])

        assert exc_info.value.exit_code == -2
        exec_mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_chain_is_noop(self):
        with patch("asyncio.create_subprocess_exec", new=AsyncMock()) as exec_mock:
            result = await RemoteCommandExecutor().run_commands(SSHTarget(host="h"), [])

        assert result.success
        exec_mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_ssh_binary_missing(self):
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(side_effect=FileNotFoundError())):
            with pytest.raises(ExecutionError) as exc_info:
                await RemoteCommandExecutor().run_commands(SSHTarget(host="h", private_key=SSH_KEY), ["true"])

        assert exc_info.value.exit_code == -4


    @pytest.mark.asyncio
    async def test_line_longer_than_reader_limit(self):
        long_line = "x" * 70_000 + "\n"
        process = mock_ssh_process([long_line, "done\n"])

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            result = await RemoteCommandExecutor().run_commands(SSHTarget(host="h", private_key=SSH_KEY), ["true"])

        assert result.stdout == long_line + "done\n"

    @pytest.mark.asyncio
    async def test_stream_failure_kills_session(self):
        process = mock_ssh_process()
        process.returncode = None
        process.stdout = MagicMock()
        process.stdout.read = AsyncMock(side_effect=RuntimeError("broken pipe"))

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(ExecutionError) as exc_info:
                await RemoteCommandExecutor().run_commands(SSHTarget(host="h", private_key=SSH_KEY), ["true"])

        assert "broken pipe" in str(exc_info.value)
        process.kill.assert_called_once()
        process.wait.assert_awaited()

    @pytest.mark.asyncio
    async def test_timeout_kills_session(self):
        process = hanging_ssh_process()

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(ExecutionError) as exc_info:
                await RemoteCommandExecutor(timeout=0.05).run_commands(
                    SSHTarget(host="h", private_key=SSH_KEY), ["apt-get install -y docker-ce"],
                )

        error = exc_info.value
        assert error.exit_code == 124
        assert error.stdout == "Reading package lists...\n"
        process.kill.assert_called_once()
        assert process.wait_calls == 2

    @pytest.mark.asyncio
    async def test_cancel_kills_session(self):
        process = hanging_ssh_process()

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            run = asyncio.create_task(RemoteCommandExecutor().run_commands(
                SSHTarget(host="h", private_key=SSH_KEY), ["sleep 600"],
            ))
            await process.started.wait()
            run.cancel()

            with pytest.raises(asyncio.CancelledError):
                await run

        process.kill.assert_called_once()
        assert process.wait_calls == 2


class TestWorkerSetupScript:
    """Tests for WorkerSetupScript and build_provision_commands."""

    def test_loaded_once(self, tmp_path):
        path = tmp_path / "setup.sh"
        path.write_text("#!/bin/bash\necho v1\n")
        script = WorkerSetupScript(path)

        assert "v1" in script.load()
        path.write_text("#!/bin/bash\necho v2\n")
        assert "v1" in script.load()

    def test_missing_script(self, tmp_path):
        with pytest.raises(ConfigurationError):
            WorkerSetupScript(tmp_path / "absent.sh").load()

    def test_bundled_script_exists(self):
        assert "docker swarm join" in WorkerSetupScript().load()

    def test_provision_commands(self):
        commands = build_provision_commands("node-1", "#!/bin/bash\necho hi\n", "SWMTKN-1-x", "10.0.0.1")

        assert len(commands) == 4
        encoded = commands[0].split("'")[1]
        assert base64.b64decode(encoded).decode() == "#!/bin/bash\necho hi\n"
        assert commands[0].endswith("> /tmp/swarm-fleet-worker-node-1.sh")
        assert commands[1] == "chmod +x /tmp/swarm-fleet-worker-node-1.sh"
        assert commands[2] == "/tmp/swarm-fleet-worker-node-1.sh SWMTKN-1-x 10.0.0.1"
        assert commands[3] == "rm -f /tmp/swarm-fleet-worker-node-1.sh"

    def test_provision_commands_with_sudo(self):
        commands = build_provision_commands("node-1", "echo hi\n", "SWMTKN-1-x", "10.0.0.1", use_sudo=True)

        assert commands[2] == "sudo -n /tmp/swarm-fleet-worker-node-1.sh SWMTKN-1-x 10.0.0.1"
        assert commands[3] == "rm -f /tmp/swarm-fleet-worker-node-1.sh"
