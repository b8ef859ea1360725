"""Exception hierarchy for OPC UA Poller.

Configuration errors are fatal and raised before any network activity.
Connect and read errors are recoverable: the poll loop logs them and the
next cycle starts again from a disconnected session.
"""

from typing import Optional


class OpcUaPollerError(Exception):
    """Root of the poller exception hierarchy."""


class ConfigurationError(OpcUaPollerError, ValueError):
    """Invalid or incomplete configuration."""


class NodeAddressError(OpcUaPollerError):
    """A node id string could not be parsed into a protocol address."""

    def __init__(self, field_name: str, node_id: str, reason: Optional[Exception] = None):
        message = f"invalid node id '{node_id}' for field '{field_name}'"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.field_name = field_name
        self.node_id = node_id
        self.reason = reason


class ConnectError(OpcUaPollerError, ConnectionError):
    """Session could not be opened or nodes could not be registered."""


class ConnectTimeoutError(ConnectError, TimeoutError):
    """Connect did not complete within connect_timeout."""


class ReadError(OpcUaPollerError):
    """The batched read request failed as a whole."""


class ReadTimeoutError(ReadError, TimeoutError):
    """The read did not complete within request_timeout."""
