"""Configuration loader for OPC UA Poller."""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlparse

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEME = "opc.tcp"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


class SecurityPolicy(Enum):
    """OPC UA security policy names accepted in the config."""

    NONE = "None"
    BASIC128RSA15 = "Basic128Rsa15"
    BASIC256 = "Basic256"
    BASIC256SHA256 = "Basic256Sha256"
    AUTO = "auto"


class SecurityMode(Enum):
    """OPC UA message security modes accepted in the config."""

    NONE = "None"
    SIGN = "Sign"
    SIGN_AND_ENCRYPT = "SignAndEncrypt"
    AUTO = "auto"


class AuthMethod(Enum):
    """User identity used when activating the session."""

    ANONYMOUS = "Anonymous"
    USERNAME = "UserName"
    CERTIFICATE = "Certificate"


@dataclass(frozen=True)
class NodeSettings:
    """One configured node: output field name plus address parts."""

    field_name: str
    namespace: str = ""
    identifier_type: str = ""
    identifier: str = ""


@dataclass(frozen=True)
class GroupSettings:
    """Nodes sharing a metric name and address defaults."""

    metric_name: str = ""  # Empty = use opcua.metric_name
    namespace: str = ""
    identifier_type: str = ""
    nodes: list[NodeSettings] = field(default_factory=list)


@dataclass
class OpcUaConfig:
    """OPC UA device configuration."""

    metric_name: str = "opcua"
    endpoint: str = "opc.tcp://localhost:4840"
    connect_timeout: float = 10.0
    request_timeout: float = 5.0
    poll_interval: float = 10.0
    security_policy: SecurityPolicy = SecurityPolicy.AUTO
    security_mode: SecurityMode = SecurityMode.AUTO
    certificate: str = ""
    private_key: str = ""
    auth_method: AuthMethod = AuthMethod.ANONYMOUS
    username: str = ""
    password: str = ""
    nodes: list[NodeSettings] = field(default_factory=list)
    groups: list[GroupSettings] = field(default_factory=list)

    def validate(self) -> None:
        """Check endpoint and security settings.

        Raises:
            ConfigurationError: On the first invalid setting.
        """
        if not self.metric_name:
            raise ConfigurationError("device name is empty")

        if not self.endpoint:
            raise ConfigurationError("endpoint url is empty")

        try:
            scheme = urlparse(self.endpoint).scheme
        except ValueError as e:
            raise ConfigurationError(f"endpoint url is invalid: {e}") from e

        if scheme != SUPPORTED_SCHEME:
            raise ConfigurationError(
                f"unsupported scheme '{scheme}' in endpoint. Expected {SUPPORTED_SCHEME}"
            )

        if self.auth_method is AuthMethod.USERNAME and not self.username:
            raise ConfigurationError("username is required for auth_method 'UserName'")

        needs_cert = self.auth_method is AuthMethod.CERTIFICATE or (
            self.security_policy not in (SecurityPolicy.NONE, SecurityPolicy.AUTO)
            or self.security_mode not in (SecurityMode.NONE, SecurityMode.AUTO)
        )
        if needs_cert and not (self.certificate and self.private_key):
            raise ConfigurationError(
                f"certificate and private_key are required for security "
                f"'{self.security_policy.value}/{self.security_mode.value}' "
                f"with auth_method '{self.auth_method.value}' in '{self.metric_name}'"
            )


@dataclass
class MQTTConfig:
    """MQTT broker configuration."""

    enabled: bool = True
    host: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""
    base_topic: str = "opcua"
    retain: bool = True
    qos: int = 1
    publish_mode: str = "on_change"  # "always" or "on_change"
    client_id: str = ""
    reconnect_delay: int = 5


@dataclass
class InfluxDBConfig:
    """InfluxDB v2 configuration."""

    enabled: bool = True
    url: str = "http://localhost:8086"
    token: str = ""
    org: str = ""
    bucket: str = "opcua"
    write_mode: str = "always"  # "always" or "on_change"
    batch_size: int = 100
    flush_interval: int = 10
    reconnect_delay: int = 5


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file: str = ""
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3


@dataclass
class Config:
    """Main configuration container."""

    opcua: OpcUaConfig
    mqtt: MQTTConfig
    influxdb: InfluxDBConfig
    logging: LoggingConfig


def parse_duration(value: Union[int, float, str], name: str) -> float:
    """Convert a duration setting to seconds.

    Accepts plain numbers (seconds) or strings such as "500ms", "10s",
    "1m".
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"{name}: invalid duration {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ConfigurationError(f"{name}: invalid duration {value!r}")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]

    if seconds <= 0:
        raise ConfigurationError(f"{name}: duration must be positive, got {value!r}")
    return seconds


def _parse_enum(enum_cls, value: Any, name: str, metric_name: str):
    try:
        return enum_cls(str(value))
    except ValueError:
        raise ConfigurationError(
            f"invalid {name} '{value}' in '{metric_name}'"
        ) from None


def _as_str(value: Any) -> str:
    """YAML turns namespace: 0 and identifier: 2262 into ints."""
    if value is None:
        return ""
    return str(value)


def _parse_node(data: Any) -> NodeSettings:
    if not isinstance(data, dict):
        raise ConfigurationError(f"node entry must be a mapping, got {data!r}")

    return NodeSettings(
        field_name=_as_str(data.get("field_name")),
        namespace=_as_str(data.get("namespace")),
        identifier_type=_as_str(data.get("identifier_type")),
        identifier=_as_str(data.get("identifier")),
    )


def _parse_group(data: Any) -> GroupSettings:
    if not isinstance(data, dict):
        raise ConfigurationError(f"group entry must be a mapping, got {data!r}")

    return GroupSettings(
        metric_name=_as_str(data.get("metric_name")),
        namespace=_as_str(data.get("namespace")),
        identifier_type=_as_str(data.get("identifier_type")),
        nodes=[_parse_node(n) for n in data.get("nodes") or []],
    )


def parse_opcua_config(data: dict[str, Any]) -> OpcUaConfig:
    """Build and validate the opcua section."""
    metric_name = _as_str(data.get("metric_name", "opcua"))

    opcua = OpcUaConfig(
        metric_name=metric_name,
        endpoint=_as_str(data.get("endpoint", "opc.tcp://localhost:4840")),
        connect_timeout=parse_duration(data.get("connect_timeout", 10), "connect_timeout"),
        request_timeout=parse_duration(data.get("request_timeout", 5), "request_timeout"),
        poll_interval=parse_duration(data.get("poll_interval", 10), "poll_interval"),
        security_policy=_parse_enum(
            SecurityPolicy, data.get("security_policy", "auto"), "security policy", metric_name
        ),
        security_mode=_parse_enum(
            SecurityMode, data.get("security_mode", "auto"), "security mode", metric_name
        ),
        certificate=_as_str(data.get("certificate", "")),
        private_key=_as_str(data.get("private_key", "")),
        auth_method=_parse_enum(
            AuthMethod, data.get("auth_method", "Anonymous"), "auth method", metric_name
        ),
        username=_as_str(data.get("username", "")),
        password=_as_str(data.get("password", "")),
        nodes=[_parse_node(n) for n in data.get("nodes") or []],
        groups=[_parse_group(g) for g in data.get("groups") or []],
    )
    opcua.validate()
    return opcua


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses the
                     OPCUA_POLLER_CONFIG env var or config.yaml.

    Returns:
        Config object with all settings.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigurationError: If config file is invalid.
    """
    if config_path is None:
        config_path = os.environ.get("OPCUA_POLLER_CONFIG", "config.yaml")

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Config file is not valid YAML: {e}") from e

    if not data:
        raise ConfigurationError("Config file is empty")

    opcua = parse_opcua_config(data.get("opcua") or {})

    mqtt_data = data.get("mqtt") or {}
    mqtt = MQTTConfig(
        enabled=mqtt_data.get("enabled", True),
        host=mqtt_data.get("host", "localhost"),
        port=mqtt_data.get("port", 1883),
        username=mqtt_data.get("username", ""),
        password=mqtt_data.get("password", ""),
        base_topic=mqtt_data.get("base_topic", "opcua"),
        retain=mqtt_data.get("retain", True),
        qos=mqtt_data.get("qos", 1),
        publish_mode=mqtt_data.get("publish_mode", "on_change"),
        client_id=mqtt_data.get("client_id", ""),
        reconnect_delay=mqtt_data.get("reconnect_delay", 5),
    )

    influx_data = data.get("influxdb") or {}
    influxdb = InfluxDBConfig(
        enabled=influx_data.get("enabled", True),
        url=influx_data.get("url", "http://localhost:8086"),
        token=influx_data.get("token", ""),
        org=influx_data.get("org", ""),
        bucket=influx_data.get("bucket", "opcua"),
        write_mode=influx_data.get("write_mode", "always"),
        batch_size=influx_data.get("batch_size", 100),
        flush_interval=influx_data.get("flush_interval", 10),
        reconnect_delay=influx_data.get("reconnect_delay", 5),
    )

    log_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=log_data.get("level", "INFO"),
        file=log_data.get("file", ""),
        max_bytes=log_data.get("max_bytes", 5 * 1024 * 1024),
        backup_count=log_data.get("backup_count", 3),
    )

    return Config(
        opcua=opcua,
        mqtt=mqtt,
        influxdb=influxdb,
        logging=logging_config,
    )
