"""Tests for the OPC UA session state machine."""

import pytest
from asyncua import ua

from opcua_poller.config import NodeSettings, SecurityMode, SecurityPolicy
from opcua_poller.connection import READ_MAX_AGE, ConnectionState, OpcUaConnection
from opcua_poller.exceptions import ConnectError, ConnectTimeoutError
from opcua_poller.nodes import resolve_nodes
from opcua_poller.security import ConnectionOptions


def make_connection(server, opcua_config, nodes=None, **kwargs):
    if nodes is None:
        nodes = resolve_nodes(opcua_config.metric_name, opcua_config.nodes, opcua_config.groups)
    return OpcUaConnection(
        nodes,
        ConnectionOptions.from_config(opcua_config),
        connect_timeout=kwargs.get("connect_timeout", 1.0),
        request_timeout=kwargs.get("request_timeout", 1.0),
        client_factory=server.factory,
    )


async def test_initial_state_is_disconnected(server, opcua_config):
    conn = make_connection(server, opcua_config)

    assert conn.state is ConnectionState.DISCONNECTED
    assert conn.client is None
    assert conn.read_parameters is None
    assert server.clients == []


async def test_connect_registers_all_nodes(server, opcua_config):
    conn = make_connection(server, opcua_config)

    await conn.connect()

    assert conn.state is ConnectionState.CONNECTED
    assert conn.connected
    client = server.last_client
    assert client.url == "opc.tcp://plc.local:4840"
    assert client.timeout == 1.0
    assert client.connected
    assert [str(nid) for nid in server.registered_ids[0]] == [
        str(ua.NodeId.from_string("ns=0;i=2262")),
        str(ua.NodeId.from_string("ns=0;i=2259")),
        str(ua.NodeId.from_string("ns=3;s=Tank1.Level")),
    ]


async def test_read_parameters_use_registered_ids(server, opcua_config):
    conn = make_connection(server, opcua_config)

    await conn.connect()

    params = conn.read_parameters
    assert params.MaxAge == READ_MAX_AGE == 2000
    assert params.TimestampsToReturn == ua.TimestampsToReturn.Both
    assert [rv.NodeId for rv in params.NodesToRead] == [
        ua.NodeId(5000, 7), ua.NodeId(5001, 7), ua.NodeId(5002, 7),
    ]
    assert all(rv.AttributeId == ua.AttributeIds.Value for rv in params.NodesToRead)


async def test_reconnect_closes_previous_client_first(server, opcua_config):
    conn = make_connection(server, opcua_config)
    await conn.connect()
    first = server.last_client

    await conn.connect()

    assert len(server.clients) == 2
    assert first.disconnect_calls == 1
    assert conn.client is server.last_client
    assert conn.client is not first
    assert conn.connected


async def test_transport_failure_leaves_disconnected(server, opcua_config):
    server.connect_error = OSError("connection refused")
    conn = make_connection(server, opcua_config)

    with pytest.raises(ConnectError, match="connection refused"):
        await conn.connect()

    assert conn.state is ConnectionState.DISCONNECTED
    assert conn.client is None
    assert conn.read_parameters is None
    assert server.last_client.disconnect_calls == 1


async def test_registration_failure_then_clean_retry(server, opcua_config):
    server.register_error = ua.UaStatusCodeError(ua.StatusCodes.BadTooManyOperations)
    conn = make_connection(server, opcua_config)

    with pytest.raises(ConnectError, match="RegisterNodes failed"):
        await conn.connect()

    assert conn.state is ConnectionState.DISCONNECTED
    assert server.last_client.disconnect_calls == 1

    server.register_error = None
    await conn.connect()

    assert conn.connected
    assert len(server.clients) == 2
    assert len(server.registered_ids) == 1
    assert len(conn.read_parameters.NodesToRead) == 3


async def test_registration_count_mismatch(server, opcua_config, monkeypatch):
    conn = make_connection(server, opcua_config)

    async def short_register(nodes):
        return nodes[:1]

    base_factory = server.factory

    def factory(url, timeout):
        client = base_factory(url, timeout)
        monkeypatch.setattr(client, "register_nodes", short_register)
        return client

    conn._client_factory = factory

    with pytest.raises(ConnectError, match="1 id"):
        await conn.connect()

    assert conn.state is ConnectionState.DISCONNECTED


async def test_connect_timeout(server, opcua_config):
    server.connect_delay = 1.0
    conn = make_connection(server, opcua_config, connect_timeout=0.05)

    with pytest.raises(ConnectTimeoutError):
        await conn.connect()

    assert conn.state is ConnectionState.DISCONNECTED
    assert conn.client is None


async def test_timeout_is_a_connect_error(server, opcua_config):
    server.connect_delay = 1.0
    conn = make_connection(server, opcua_config, connect_timeout=0.05)

    with pytest.raises(ConnectError):
        await conn.connect()


async def test_malformed_address_surfaces_at_connect(server, opcua_config):
    nodes = resolve_nodes("opcua", [
        NodeSettings("good", "0", "i", "2262"),
        NodeSettings("bad", "0", "i", "not-a-number"),
    ], [])
    conn = make_connection(server, opcua_config, nodes=nodes)

    with pytest.raises(ConnectError, match="ns=0;i=not-a-number"):
        await conn.connect()

    assert conn.state is ConnectionState.DISCONNECTED
    assert server.registered_ids == []


async def test_close_is_best_effort(server, opcua_config):
    conn = make_connection(server, opcua_config)
    await conn.connect()
    server.disconnect_error = OSError("socket already closed")

    await conn.close()

    assert conn.state is ConnectionState.DISCONNECTED
    assert conn.client is None
    assert server.last_client.disconnect_calls == 1


async def test_close_without_session(server, opcua_config):
    conn = make_connection(server, opcua_config)

    await conn.close()

    assert conn.state is ConnectionState.DISCONNECTED


async def test_failed_connect_repeats_endpoint_discovery(server, opcua_config):
    opcua_config.security_policy = SecurityPolicy.AUTO
    opcua_config.security_mode = SecurityMode.AUTO
    server.connect_error = OSError("connection refused")
    conn = make_connection(server, opcua_config)

    with pytest.raises(ConnectError):
        await conn.connect()
    server.connect_error = None
    await conn.connect()

    assert server.discoveries == 2
    assert conn.connected


async def test_successful_reconnect_reuses_endpoint_choice(server, opcua_config):
    opcua_config.security_policy = SecurityPolicy.AUTO
    opcua_config.security_mode = SecurityMode.AUTO
    conn = make_connection(server, opcua_config)

    await conn.connect()
    await conn.close()
    await conn.connect()

    assert server.discoveries == 1
