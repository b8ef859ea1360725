"""Batched read of all registered nodes."""

import asyncio
import logging

from asyncua import ua

from .connection import OpcUaConnection
from .exceptions import ReadError, ReadTimeoutError

logger = logging.getLogger(__name__)


class ReadPipeline:
    """Executes the read request prepared by the connection."""

    def __init__(self, connection: OpcUaConnection):
        self.connection = connection

    async def execute(self) -> list[ua.DataValue]:
        """Read all nodes in one request.

        Returns:
            One DataValue per node, in resolved-node order. Bad per-node
            status codes are returned as data.

        Raises:
            ReadTimeoutError: request_timeout elapsed.
            ReadError: Not connected, or the request failed as a whole.
        """
        conn = self.connection
        client = conn.client
        params = conn.read_parameters
        if not conn.connected or client is None or params is None:
            raise ReadError(f"cannot read while {conn.state.value}")

        try:
            results = await asyncio.wait_for(
                client.uaclient.read(params), timeout=conn.request_timeout
            )
        except asyncio.TimeoutError:
            raise ReadTimeoutError(
                f"read timed out after {conn.request_timeout}s"
            ) from None
        except Exception as e:
            raise ReadError(f"read of {len(conn.nodes)} node(s) failed: {e}") from e

        if len(results) != len(conn.nodes):
            raise ReadError(
                f"read returned {len(results)} result(s) for {len(conn.nodes)} node(s)"
            )

        for node, result in zip(conn.nodes, results):
            if not result.StatusCode.is_good():
                logger.debug(f"Node '{node.field_name}' ({node.id_str}): {result.StatusCode.name}")

        return list(results)
