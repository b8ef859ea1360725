"""Conversion of OPC UA read results into output records."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from asyncua import ua

from .nodes import QUALITY_FIELD, ResolvedNode


@dataclass
class PolledRecord:
    """Latest read result for one node."""

    field_name: str = ""
    value: Any = None
    quality: ua.StatusCode = field(default_factory=ua.StatusCode)
    server_timestamp: str = ""
    source_timestamp: str = ""
    value_type: Optional[ua.VariantType] = None

    @property
    def has_value(self) -> bool:
        return self.value_type is not None

    @property
    def quality_name(self) -> str:
        return self.quality.name


@dataclass
class NodeSlot:
    """A resolved node and the record slot it is polled into.

    Slots are created once at startup; every poll overwrites ``record``
    in place.
    """

    node: ResolvedNode
    record: PolledRecord = field(default_factory=PolledRecord)

    def store(self, result: ua.DataValue) -> PolledRecord:
        fresh = map_result(self.node, result)
        self.record.field_name = fresh.field_name
        self.record.value = fresh.value
        self.record.quality = fresh.quality
        self.record.server_timestamp = fresh.server_timestamp
        self.record.source_timestamp = fresh.source_timestamp
        self.record.value_type = fresh.value_type
        return self.record


def format_timestamp(ts: Optional[datetime]) -> str:
    return ts.isoformat() if ts is not None else ""


def map_result(node: ResolvedNode, result: ua.DataValue) -> PolledRecord:
    """Build the record for one node from its raw read result.

    A result without a value (or with a Null variant) yields a record with
    ``value`` None and no type; that is a valid state, not an error.
    """
    record = PolledRecord(
        field_name=node.field_name,
        quality=result.StatusCode,
        server_timestamp=format_timestamp(result.ServerTimestamp),
        source_timestamp=format_timestamp(result.SourceTimestamp),
    )

    variant = result.Value
    if variant is not None and variant.VariantType is not ua.VariantType.Null:
        record.value = variant.Value
        record.value_type = variant.VariantType

    return record


@dataclass
class Metric:
    """One emitted record: measurement name, fields and tags."""

    name: str
    fields: dict[str, Any]
    tags: dict[str, str]


def to_metric(slot: NodeSlot) -> Metric:
    """Fields hold the value under the node's field name plus ``quality``.

    The value is None when the server returned none.
    """
    record = slot.record
    fields: dict[str, Any] = {
        record.field_name: record.value,
        QUALITY_FIELD: record.quality_name,
    }
    return Metric(
        name=slot.node.metric_name,
        fields=fields,
        tags={"id": slot.node.id_str},
    )
