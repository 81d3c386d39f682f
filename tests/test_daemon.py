"""Tests for the privileged tunneld controller."""

import asyncio
import logging

import pytest

from geoghost.common.exceptions import CredentialRejectedError, DaemonStartError

SUDO = ("sudo", "-S")
SECRET = "hunter2"


async def start_later(stub, delay: float) -> None:
    await asyncio.sleep(delay)
    await stub.start()


class TestDaemonCheck:
    @pytest.mark.asyncio
    async def test_needs_credential_when_down(self, context):
        result = await context.daemon.check()

        assert result.needs_credential

    @pytest.mark.asyncio
    async def test_running_daemon(self, context, tunneld):
        await tunneld.start()

        result = await context.daemon.check()

        assert not result.needs_credential
        assert tunneld.requests == 1

    @pytest.mark.asyncio
    async def test_error_status_still_counts_as_running(self, context, tunneld):
        tunneld.status = 404
        await tunneld.start()

        assert await context.daemon.is_running()


class TestStartWithCredential:
    """Elevated start through sudo with the password on stdin"""

    @pytest.mark.asyncio
    async def test_already_running(self, context, script, tunneld):
        await tunneld.start()

        already_running = await context.daemon.start_with_credential(SECRET)

        assert already_running
        assert script.spawned == []
        assert context.state.daemon is None

    @pytest.mark.asyncio
    async def test_secret_only_on_stdin(self, context, script, tunneld, resolved_tool, caplog):
        caplog.set_level(logging.DEBUG)
        script.on(*SUDO)
        starter = asyncio.create_task(start_later(tunneld, 0.1))

        already_running = await context.daemon.start_with_credential(SECRET)
        await starter

        assert not already_running
        process = script.spawned[0]
        assert process.args == ["sudo", "-S", "-p", "", resolved_tool, "remote", "tunneld"]
        assert process.stdin.data == b"hunter2\n"
        assert process.stdin.closed
        assert SECRET not in " ".join(process.args)
        env = script.kwargs[0]["env"]
        assert all(SECRET not in value for value in env.values())
        assert SECRET not in caplog.text

        daemon = context.state.daemon
        assert daemon is not None
        assert daemon.started_by_us
        assert daemon.process.pid == process.pid

    @pytest.mark.asyncio
    async def test_rejected_password(self, context, script, config):
        script.on(*SUDO, events=[(0.01, "stderr", b"Sorry, try again.\n")])
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(CredentialRejectedError, match="Incorrect password"):
            await context.daemon.start_with_credential("wrong")

        assert loop.time() - started < config.daemon_start_timeout
        assert script.spawned[0].terminated
        assert context.state.daemon is None

    @pytest.mark.asyncio
    async def test_early_exit(self, context, script):
        script.on(*SUDO, returncode=1, exit_after=0.01, stderr=b"sudo: a password is required\n")

        with pytest.raises(DaemonStartError, match="exited before becoming ready") as exc_info:
            await context.daemon.start_with_credential(SECRET)

        assert not isinstance(exc_info.value, CredentialRejectedError)
        assert "a password is required" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_never_ready(self, context, script):
        script.on(*SUDO)

        with pytest.raises(DaemonStartError, match="did not start within"):
            await context.daemon.start_with_credential(SECRET)

        assert not script.spawned[0].alive
        assert context.state.daemon is None


class TestDaemonShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_owned_daemon(self, context, script, tunneld):
        script.on(*SUDO)
        script.on("kill", "-TERM", returncode=0)
        starter = asyncio.create_task(start_later(tunneld, 0.05))
        await context.daemon.start_with_credential(SECRET)
        await starter
        daemon_process = script.matching(*SUDO)[0]

        await context.daemon.shutdown()

        kill = script.matching("kill", "-TERM")
        assert kill and kill[0].args == ["sudo", "-n", "kill", "-TERM", str(daemon_process.pid)]
        assert not daemon_process.alive
        assert context.state.daemon is None

    @pytest.mark.asyncio
    async def test_failed_elevated_kill_is_tolerated(self, context, script, tunneld):
        script.on(*SUDO)
        starter = asyncio.create_task(start_later(tunneld, 0.05))
        await context.daemon.start_with_credential(SECRET)
        await starter

        await context.daemon.shutdown()

        assert script.matching(*SUDO)[0].terminated

    @pytest.mark.asyncio
    async def test_shutdown_without_daemon(self, context, script):
        await context.daemon.shutdown()

        assert script.spawned == []
