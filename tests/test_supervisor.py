"""Tests for TunnelSupervisor."""

import asyncio

import pytest

from geoghost.common.exceptions import TunnelEstablishError
from geoghost.models import TunnelEndpoint
from geoghost.tunnel.supervisor import MANUAL_TUNNEL_HINT, TunnelState

LOCKDOWN = ("lockdown", "start-tunnel")
REMOTE = ("remote", "start-tunnel")
ENDPOINT_OUTPUT = b"Interface: utun4\nRSD Address: fd7b:e5b:6f53::1\nRSD Port: 60105\n"


class TestTunnelStart:
    """Establishing a tunnel from start-tunnel output"""

    @pytest.mark.asyncio
    async def test_establishes_from_lockdown(self, context, script):
        script.on(*LOCKDOWN, stdout=ENDPOINT_OUTPUT)

        endpoint = await context.tunnels.start()

        assert (endpoint.host, endpoint.port) == ("fd7b:e5b:6f53::1", 60105)
        assert endpoint.owned
        assert context.tunnels.tunnel_state == TunnelState.ESTABLISHED
        assert context.state.endpoint is endpoint
        assert not script.matching(*REMOTE)

    @pytest.mark.asyncio
    async def test_endpoint_split_across_chunks(self, context, script):
        script.on(
            *LOCKDOWN,
            events=[
                (0.01, "stdout", b"RSD Address: fd00::"),
                (0.02, "stdout", b"1\nRSD Po"),
                (0.03, "stdout", b"rt: 5000\n"),
            ],
        )

        endpoint = await context.tunnels.start()

        assert (endpoint.host, endpoint.port) == ("fd00::1", 5000)

    @pytest.mark.asyncio
    async def test_second_start_reuses_tunnel(self, context, script):
        script.on(*LOCKDOWN, stdout=ENDPOINT_OUTPUT)

        first = await context.tunnels.start()
        second = await context.tunnels.start()

        assert first is second
        assert len(script.spawned) == 1

    @pytest.mark.asyncio
    async def test_silent_lockdown_falls_back_to_remote(self, context, script):
        """A lockdown tunnel that never prints an endpoint is stopped after the timeout"""
        script.on(*LOCKDOWN)
        script.on(*REMOTE, stdout=b"--rsd fd00::5 6000\n")

        endpoint = await context.tunnels.start()

        assert (endpoint.host, endpoint.port) == ("fd00::5", 6000)
        assert script.matching(*LOCKDOWN)[0].terminated

    @pytest.mark.asyncio
    async def test_both_variants_fail(self, context, script):
        script.on(*LOCKDOWN, returncode=1, stderr=b"Device is not connected\n")
        script.on(*REMOTE, returncode=1, stderr=b"This command requires root privileges\n")

        with pytest.raises(TunnelEstablishError) as exc_info:
            await context.tunnels.start()

        message = str(exc_info.value)
        assert MANUAL_TUNNEL_HINT in message
        assert "Device is not connected" in message
        assert "root privileges" in message
        assert context.tunnels.tunnel_state == TunnelState.FAILED
        assert context.tunnels.endpoint is None

    @pytest.mark.asyncio
    async def test_timeout_leaves_no_process(self, context, script):
        script.on(*LOCKDOWN)
        script.on(*REMOTE)

        with pytest.raises(TunnelEstablishError, match="timed out"):
            await context.tunnels.start()

        assert all(not p.alive for p in script.spawned)


class TestTunnelLifecycle:
    @pytest.mark.asyncio
    async def test_exit_clears_endpoint(self, context, script):
        script.on(*LOCKDOWN, stdout=ENDPOINT_OUTPUT)
        await context.tunnels.start()

        script.matching(*LOCKDOWN)[0].exit(1)
        await asyncio.sleep(0.05)

        assert context.state.endpoint is None
        assert context.tunnels.tunnel_state == TunnelState.IDLE
        assert not context.tunnels.status().active

    @pytest.mark.asyncio
    async def test_status(self, context, script):
        assert not context.tunnels.status().active

        script.on(*LOCKDOWN, stdout=ENDPOINT_OUTPUT)
        await context.tunnels.start()

        status = context.tunnels.status()
        assert status.active
        assert (status.host, status.port) == ("fd7b:e5b:6f53::1", 60105)

    @pytest.mark.asyncio
    async def test_adopt_stops_replaced_owned_tunnel(self, context, script):
        script.on(*LOCKDOWN, stdout=ENDPOINT_OUTPUT)
        await context.tunnels.start()

        await context.tunnels.adopt(TunnelEndpoint(host="fd00::2", port=2222))

        assert script.matching(*LOCKDOWN)[0].terminated
        assert context.state.endpoint.host == "fd00::2"
        assert not context.state.endpoint.owned

    @pytest.mark.asyncio
    async def test_invalidate_discovered_endpoint(self, context):
        context.state.endpoint = TunnelEndpoint(host="fd00::2", port=2222)

        await context.tunnels.invalidate()

        assert context.tunnels.endpoint is None

    @pytest.mark.asyncio
    async def test_shutdown_terminates_tunnel(self, context, script):
        script.on(*LOCKDOWN, stdout=ENDPOINT_OUTPUT)
        await context.tunnels.start()

        await context.tunnels.shutdown()

        assert script.matching(*LOCKDOWN)[0].terminated
        assert context.tunnels.endpoint is None
