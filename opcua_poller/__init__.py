"""OPC UA Poller - Read OPC UA server nodes and publish to MQTT/InfluxDB."""

__version__ = "1.0.0"

from .config import Config, OpcUaConfig, load_config
from .connection import ConnectionState, OpcUaConnection
from .exceptions import (
    ConfigurationError,
    ConnectError,
    NodeAddressError,
    OpcUaPollerError,
    ReadError,
)
from .influxdb_client import InfluxClient
from .logging_setup import setup_logging
from .mqtt_client import MQTTClient
from .nodes import ResolvedNode, build_node_id, resolve_nodes
from .poller import OpcUaPoller
from .sink import RecordSink

__all__ = [
    "__version__",
    "Config",
    "OpcUaConfig",
    "load_config",
    "setup_logging",
    "ConnectionState",
    "OpcUaConnection",
    "OpcUaPoller",
    "ResolvedNode",
    "build_node_id",
    "resolve_nodes",
    "RecordSink",
    "MQTTClient",
    "InfluxClient",
    "OpcUaPollerError",
    "ConfigurationError",
    "NodeAddressError",
    "ConnectError",
    "ReadError",
]
