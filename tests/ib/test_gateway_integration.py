"""
Integration tests against a running TWS / IB Gateway.

Run with: pytest --run-integration tests/ib/test_gateway_integration.py
Connection settings come from the IB_* environment variables.
"""

import asyncio

import pytest

from ibtools.config import IbConfig
from ibtools.ib import ConnectionTools, IbInsyncTransport


@pytest.fixture
def config():
    return IbConfig(heartbeat_timeout=5.0)


@pytest.mark.integration
def test_connect_and_probe(config):
    """Connect, probe once and disconnect."""
    tools = ConnectionTools(IbInsyncTransport(config), config)

    async def run():
        try:
            connected = await tools.safe_connect(max_retries=0)
            alive = await tools.check_connection() if connected else False
            return connected, alive
        finally:
            tools.disconnect()

    connected, alive = asyncio.run(run())

    assert connected
    assert alive
    assert tools.prober.acks == 1


@pytest.mark.integration
def test_probe_after_disconnect_reconnects(config):
    """A probe on a closed session reconnects and still gets its reply."""
    tools = ConnectionTools(IbInsyncTransport(config), config)

    async def run():
        try:
            assert await tools.safe_connect(max_retries=0)
            tools.transport.disconnect()
            return await tools.check_connection()
        finally:
            tools.disconnect()

    assert asyncio.run(run())
    assert tools.prober.reconnects == 1


@pytest.mark.integration
def test_unresolvable_host_fails_fast():
    config = IbConfig(host="gateway.invalid", timeout=2.0)
    tools = ConnectionTools(IbInsyncTransport(config), config)

    assert asyncio.run(tools.safe_connect()) is False
    assert tools.supervisor.connect_attempts == 1
