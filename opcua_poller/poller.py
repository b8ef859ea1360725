"""Poll cycle: ensure a session, read every node, emit one metric per node."""

import logging
from typing import Callable, Optional

from asyncua import Client

from .config import OpcUaConfig
from .connection import ConnectionState, OpcUaConnection, default_client_factory
from .exceptions import ReadError
from .nodes import resolve_nodes
from .reader import ReadPipeline
from .records import Metric, NodeSlot, to_metric
from .security import ConnectionOptions
from .sink import RecordSink
from .stats import ReadCounters

logger = logging.getLogger(__name__)


class OpcUaPoller:
    """Polls one OPC UA server.

    Calls to :meth:`poll` must not overlap; the caller schedules cycles.
    """

    def __init__(
        self,
        config: OpcUaConfig,
        sink: Optional[RecordSink] = None,
        counters: Optional[ReadCounters] = None,
        client_factory: Callable[[str, float], Client] = default_client_factory,
    ):
        """Resolve nodes and prepare the connection. No network I/O.

        Raises:
            ConfigurationError: Invalid endpoint, security or node settings.
        """
        config.validate()
        self.config = config

        nodes = resolve_nodes(config.metric_name, config.nodes, config.groups)
        self.slots = [NodeSlot(node) for node in nodes]

        self.connection = OpcUaConnection(
            nodes,
            ConnectionOptions.from_config(config),
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
            client_factory=client_factory,
        )
        self.reader = ReadPipeline(self.connection)
        self.sink = sink
        self.counters = counters or ReadCounters(config.endpoint)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def poll(self) -> list[Metric]:
        """Run one cycle.

        Returns:
            The metrics emitted this cycle, one per node in resolved order.

        Raises:
            ConnectError: No session could be opened; nothing was read.
            ReadError: The read failed; the session was closed.
        """
        if self.connection.state is not ConnectionState.CONNECTED:
            await self.connection.connect()

        try:
            results = await self.reader.execute()
        except ReadError:
            self.counters.incr_read_error()
            await self.connection.close()
            raise

        self.counters.incr_read_success()

        metrics = []
        for slot, result in zip(self.slots, results):
            slot.store(result)
            metric = to_metric(slot)
            metrics.append(metric)
            if self.sink:
                await self.sink.emit(metric.name, metric.fields, metric.tags)

        return metrics

    async def close(self) -> None:
        await self.connection.close()
