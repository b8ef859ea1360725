"""OPC UA session lifecycle.

One ``OpcUaConnection`` owns at most one live asyncua client. ``connect()``
always throws the previous client away, opens a new session, registers every
node and prepares the batched read request reused by every poll.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Sequence

from asyncua import Client, ua

from .exceptions import ConnectError, ConnectTimeoutError
from .nodes import ResolvedNode
from .security import ConnectionOptions

logger = logging.getLogger(__name__)

# Maximum age (ms) of a cached server value the read will accept
READ_MAX_AGE = 2000


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def default_client_factory(endpoint: str, request_timeout: float) -> Client:
    return Client(url=endpoint, timeout=request_timeout)


def build_read_parameters(node_ids: Sequence[ua.NodeId]) -> ua.ReadParameters:
    """Batched Value read of all nodes with server and source timestamps."""
    params = ua.ReadParameters()
    params.MaxAge = READ_MAX_AGE
    params.TimestampsToReturn = ua.TimestampsToReturn.Both
    for node_id in node_ids:
        rv = ua.ReadValueId()
        rv.NodeId = node_id
        rv.AttributeId = ua.AttributeIds.Value
        params.NodesToRead.append(rv)
    return params


class OpcUaConnection:
    """Session state machine: disconnected -> connecting -> connected."""

    def __init__(
        self,
        nodes: Sequence[ResolvedNode],
        options: ConnectionOptions,
        connect_timeout: float,
        request_timeout: float,
        client_factory: Callable[[str, float], Client] = default_client_factory,
    ):
        """Initialize the connection.

        Args:
            nodes: Resolved nodes, in the order results must come back.
            options: Security and identity settings applied before connect.
            connect_timeout: Seconds allowed for connect plus registration.
            request_timeout: Seconds allowed for a single request.
            client_factory: Builds the asyncua client (replaced in tests).
        """
        self.nodes = list(nodes)
        self.options = options
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self._client_factory = client_factory

        self._client: Optional[Client] = None
        self._state = ConnectionState.DISCONNECTED
        self._read_params: Optional[ua.ReadParameters] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def client(self) -> Optional[Client]:
        return self._client

    @property
    def read_parameters(self) -> Optional[ua.ReadParameters]:
        """Batched read request built by the last successful connect."""
        return self._read_params

    async def connect(self) -> None:
        """Open a new session and register all nodes.

        Raises:
            ConnectTimeoutError: connect_timeout elapsed.
            ConnectError: Transport, session, address or registration failure.
        """
        self._state = ConnectionState.CONNECTING
        await self._release_client()

        endpoint = self.options.endpoint
        logger.info(f"Connecting to {endpoint}")
        client = self._client_factory(endpoint, self.request_timeout)
        self._client = client

        try:
            self._read_params = await asyncio.wait_for(
                self._open_and_register(client), timeout=self.connect_timeout
            )
        except asyncio.TimeoutError:
            await self._fail_connect()
            raise ConnectTimeoutError(
                f"connect to {endpoint} timed out after {self.connect_timeout}s"
            ) from None
        except Exception:
            await self._fail_connect()
            raise

        self._state = ConnectionState.CONNECTED
        logger.info(f"Connected to {endpoint}, {len(self.nodes)} node(s) registered")

    async def _open_and_register(self, client: Client) -> ua.ReadParameters:
        try:
            await self.options.apply(client)
            await client.connect()
        except (ConnectError, asyncio.TimeoutError):
            raise
        except Exception as e:
            raise ConnectError(f"Error in client connection: {e}") from e

        try:
            # Raises the deferred parse error of the first bad node
            node_ids = [node.require_node_id() for node in self.nodes]
            registered = await client.register_nodes([client.get_node(nid) for nid in node_ids])
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            raise ConnectError(f"RegisterNodes failed: {e}") from e

        if len(registered) != len(node_ids):
            raise ConnectError(
                f"RegisterNodes returned {len(registered)} id(s) for {len(node_ids)} node(s)"
            )
        logger.debug(f"Registered {len(registered)} node(s)")

        return build_read_parameters([node.nodeid for node in registered])

    async def _fail_connect(self) -> None:
        self.options.forget_security()
        await self._release_client()
        self._state = ConnectionState.DISCONNECTED

    async def close(self) -> None:
        """Close the session; always ends in the disconnected state."""
        self._state = ConnectionState.DISCONNECTED
        await self._release_client()

    async def _release_client(self) -> None:
        client, self._client = self._client, None
        self._read_params = None
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as e:
            logger.debug(f"Error closing OPC UA session: {e}")
