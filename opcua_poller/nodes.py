"""Node address resolution.

Merges group defaults into the configured nodes and turns each one into an
OPC UA node id string of the form ``ns=<namespace>;<type>=<identifier>``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from asyncua import ua
from asyncua.ua.uaerrors import UaStringParsingError

from .config import GroupSettings, NodeSettings
from .exceptions import ConfigurationError, NodeAddressError

logger = logging.getLogger(__name__)

# Output field carrying the status code next to every value
QUALITY_FIELD = "quality"


class IdentifierType(Enum):
    """OPC UA node identifier kinds as written in node id strings."""

    STRING = "s"
    NUMERIC = "i"
    GUID = "g"
    OPAQUE = "b"


@dataclass(frozen=True)
class ResolvedNode:
    """A configured node after defaults were applied.

    ``node_id`` holds the parsed address, or None when the id string could
    not be parsed; in that case ``address_error`` says why and
    :meth:`require_node_id` raises it.
    """

    settings: NodeSettings
    metric_name: str
    id_str: str
    node_id: Optional[ua.NodeId] = None
    address_error: Optional[NodeAddressError] = None

    @property
    def field_name(self) -> str:
        return self.settings.field_name

    def require_node_id(self) -> ua.NodeId:
        """Return the parsed node id or raise the deferred parse error."""
        if self.address_error is not None:
            raise self.address_error
        return self.node_id


def build_node_id(settings: NodeSettings) -> str:
    """Build the node id string, e.g. ``ns=0;i=2262``."""
    return f"ns={settings.namespace};{settings.identifier_type}={settings.identifier}"


def parse_node_id(field_name: str, id_str: str) -> tuple[Optional[ua.NodeId], Optional[NodeAddressError]]:
    """Parse a node id string, returning the error instead of raising it."""
    try:
        return ua.NodeId.from_string(id_str), None
    except (UaStringParsingError, ValueError) as e:
        return None, NodeAddressError(field_name, id_str, e)


def _with_group_defaults(node: NodeSettings, group: GroupSettings) -> NodeSettings:
    return NodeSettings(
        field_name=node.field_name,
        namespace=node.namespace or group.namespace,
        identifier_type=node.identifier_type or group.identifier_type,
        identifier=node.identifier,
    )


def resolve_nodes(
    default_metric_name: str,
    root_nodes: Sequence[NodeSettings],
    groups: Sequence[GroupSettings],
) -> list[ResolvedNode]:
    """Resolve root nodes and group nodes into one ordered list.

    Root nodes come first in configured order, then the nodes of each group
    in group order.

    The field name ``quality`` is reserved: every emitted metric carries the
    node's status under that key, so a node using it is rejected even when
    it is unique.

    Raises:
        ConfigurationError: Empty, reserved or duplicated field name, or an
            unknown identifier type. Unparseable node ids do not raise here;
            they are stored on the resolved node.
    """
    merged: list[tuple[NodeSettings, str]] = [
        (node, default_metric_name) for node in root_nodes
    ]

    for group in groups:
        metric_name = group.metric_name or default_metric_name
        for node in group.nodes:
            merged.append((_with_group_defaults(node, group), metric_name))

    resolved: list[ResolvedNode] = []
    seen: set[str] = set()

    for settings, metric_name in merged:
        if not settings.field_name:
            raise ConfigurationError(
                f"empty field_name for node '{build_node_id(settings)}'"
            )

        if settings.field_name == QUALITY_FIELD:
            raise ConfigurationError(f"field_name '{QUALITY_FIELD}' is reserved")

        if settings.field_name in seen:
            raise ConfigurationError(f"field_name '{settings.field_name}' is duplicated")
        seen.add(settings.field_name)

        try:
            IdentifierType(settings.identifier_type)
        except ValueError:
            raise ConfigurationError(
                f"invalid identifier type '{settings.identifier_type}' in '{settings.field_name}'"
            ) from None

        id_str = build_node_id(settings)
        node_id, error = parse_node_id(settings.field_name, id_str)
        if error is not None:
            logger.warning(f"Node '{settings.field_name}': {error}")

        resolved.append(ResolvedNode(
            settings=settings,
            metric_name=metric_name,
            id_str=id_str,
            node_id=node_id,
            address_error=error,
        ))

    logger.info(
        f"Resolved {len(resolved)} node(s) "
        f"({len(root_nodes)} root, {len(resolved) - len(root_nodes)} in {len(groups)} group(s))"
    )
    return resolved
