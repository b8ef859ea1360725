"""Fan-out of polled metrics to the configured outputs."""

from typing import Any, Optional

from .influxdb_client import InfluxClient, field_value
from .mqtt_client import MQTTClient
from .nodes import QUALITY_FIELD


class RecordSink:
    """Writes each metric to InfluxDB and/or MQTT.

    InfluxDB gets one point per metric (measurement = metric name, tag
    ``id``). MQTT gets one message per value field on
    ``<base_topic>/<metric name>/<field>`` with a JSON payload holding the
    value, its quality and the node id.
    """

    def __init__(
        self,
        influx: Optional[InfluxClient] = None,
        mqtt: Optional[MQTTClient] = None,
    ):
        self.influx = influx
        self.mqtt = mqtt
        self.emitted = 0

    async def emit(self, name: str, fields: dict[str, Any], tags: dict[str, str]) -> None:
        self.emitted += 1

        if self.influx:
            await self.influx.write(name, fields, tags)

        if self.mqtt:
            quality = fields.get(QUALITY_FIELD)
            for key, value in fields.items():
                if key == QUALITY_FIELD:
                    continue
                if value is not None:
                    value = field_value(value)
                payload = {"value": value, "quality": quality, **tags}
                await self.mqtt.publish(f"{name}/{key}", payload)
