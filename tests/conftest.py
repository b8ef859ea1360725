"""Shared fixtures: an in-memory stand-in for the asyncua client."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import pytest
from asyncua import ua

from opcua_poller.config import (
    GroupSettings,
    NodeSettings,
    OpcUaConfig,
    SecurityMode,
    SecurityPolicy,
)

SERVER_TS = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
SOURCE_TS = datetime(2024, 5, 1, 11, 59, 59, tzinfo=timezone.utc)


@dataclass
class FakeDataValue:
    """Carries the DataValue attributes the poller reads."""

    Value: Optional[ua.Variant] = None
    StatusCode: ua.StatusCode = field(default_factory=ua.StatusCode)
    SourceTimestamp: Optional[datetime] = None
    ServerTimestamp: Optional[datetime] = None


def make_result(value: Any = None, variant_type: Optional[ua.VariantType] = None,
                status: int = ua.StatusCodes.Good) -> FakeDataValue:
    variant = None
    if value is not None:
        variant = ua.Variant(value, variant_type) if variant_type else ua.Variant(value)
    return FakeDataValue(
        Value=variant,
        StatusCode=ua.StatusCode(status),
        SourceTimestamp=SOURCE_TS,
        ServerTimestamp=SERVER_TS,
    )


def make_endpoint(policy: str, mode: ua.MessageSecurityMode, level: int) -> ua.EndpointDescription:
    ep = ua.EndpointDescription()
    ep.SecurityPolicyUri = f"http://opcfoundation.org/UA/SecurityPolicy#{policy}"
    ep.SecurityMode = mode
    ep.SecurityLevel = level
    return ep


class FakeNode:
    def __init__(self, nodeid):
        self.nodeid = nodeid


class FakeUaClient:
    def __init__(self, server: "FakeServer"):
        self.server = server
        self.read_requests: list[ua.ReadParameters] = []

    async def read(self, params):
        self.read_requests.append(params)
        if self.server.read_delay:
            await asyncio.sleep(self.server.read_delay)
        if self.server.read_error:
            raise self.server.read_error
        if self.server.results is not None:
            return self.server.results
        return [make_result(i) for i in range(len(params.NodesToRead))]


class FakeClient:
    """Minimal async asyncua.Client replacement."""

    def __init__(self, server: "FakeServer", url: str, timeout: float):
        self.server = server
        self.url = url
        self.timeout = timeout
        self.uaclient = FakeUaClient(server)
        self.connected = False
        self.disconnect_calls = 0
        self.registered: list = []
        self.user = None
        self.password = None

    async def connect(self):
        if self.server.connect_delay:
            await asyncio.sleep(self.server.connect_delay)
        if self.server.connect_error:
            raise self.server.connect_error
        self.connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False
        if self.server.disconnect_error:
            raise self.server.disconnect_error

    def get_node(self, nodeid):
        return FakeNode(nodeid)

    async def register_nodes(self, nodes):
        if self.server.register_error:
            raise self.server.register_error
        # Servers hand back their own handles for registered nodes
        self.registered = [
            FakeNode(ua.NodeId(5000 + i, 7)) for i, _ in enumerate(nodes)
        ]
        self.server.registered_ids.append([n.nodeid for n in nodes])
        return self.registered

    async def connect_and_get_server_endpoints(self):
        self.server.discoveries += 1
        return self.server.endpoints

    def set_user(self, user):
        self.user = user

    def set_password(self, password):
        self.password = password


class FakeServer:
    """Behaviour switches plus a record of every client created."""

    def __init__(self):
        self.clients: list[FakeClient] = []
        self.registered_ids: list[list] = []
        self.connect_error: Optional[Exception] = None
        self.connect_delay = 0.0
        self.register_error: Optional[Exception] = None
        self.read_error: Optional[Exception] = None
        self.read_delay = 0.0
        self.disconnect_error: Optional[Exception] = None
        self.results: Optional[list] = None
        self.discoveries = 0
        self.endpoints = [make_endpoint("None", ua.MessageSecurityMode.None_, 0)]

    def factory(self, url: str, timeout: float) -> FakeClient:
        client = FakeClient(self, url, timeout)
        self.clients.append(client)
        return client

    @property
    def last_client(self) -> FakeClient:
        return self.clients[-1]


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def opcua_config():
    return OpcUaConfig(
        metric_name="opcua",
        endpoint="opc.tcp://plc.local:4840",
        connect_timeout=1.0,
        request_timeout=1.0,
        security_policy=SecurityPolicy.NONE,
        security_mode=SecurityMode.NONE,
        nodes=[
            NodeSettings("product_uri", "0", "i", "2262"),
            NodeSettings("server_state", "0", "i", "2259"),
        ],
        groups=[
            GroupSettings(
                metric_name="plc",
                namespace="3",
                identifier_type="s",
                nodes=[NodeSettings("tank_level", identifier="Tank1.Level")],
            ),
        ],
    )


class FakeSink:
    def __init__(self):
        self.emitted: list[tuple] = []

    async def emit(self, name, fields, tags):
        self.emitted.append((name, dict(fields), dict(tags)))


@pytest.fixture
def sink():
    return FakeSink()
