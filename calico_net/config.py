"""Controller configuration of the extension and its loading."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

GROUP_NAME = "calico.networking.extensions.config.gardener.cloud"
API_VERSION = f"{GROUP_NAME}/v1alpha1"
KIND = "ControllerConfiguration"

_DURATION = re.compile(r"(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+")
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ConfigError(ValueError):
    """The controller configuration is missing or malformed."""


@dataclass
class ClientConnection:
    """Settings for talking to the API server."""

    kubeconfig: str = ""
    accept_content_types: str = ""
    content_type: str = ""
    qps: float = 0.0
    burst: int = 0


@dataclass
class HealthCheckConfig:
    """Settings of the health check controller."""

    sync_period: timedelta = field(default_factory=timedelta)


@dataclass
class ControllerConfiguration:
    """Configuration of the calico networking extension."""

    client_connection: ClientConnection | None = None
    health_check_config: HealthCheckConfig | None = None
    feature_gates: dict[str, bool] | None = None


def _parse_duration(text: str) -> timedelta:
    sign = 1
    body = text
    if body[:1] in "+-" and body:
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not _DURATION.fullmatch(body):
        raise ConfigError(f"invalid duration {text!r}")
    seconds = sum(float(number) * _UNIT_SECONDS[unit] for number, unit in _DURATION_PART.findall(body))
    return timedelta(seconds=sign * seconds)


def _field(data: dict, key: str, kinds: tuple[type, ...]) -> Any:
    value = data.get(key)
    if value is None:
        return None
    if (isinstance(value, bool) and bool not in kinds) or not isinstance(value, kinds):
        raise ConfigError(f"field {key!r} has unexpected type {type(value).__name__}")
    return value


def _section(data: dict, key: str) -> dict | None:
    return _field(data, key, (dict,))


def _client_connection(data: dict) -> ClientConnection:
    return ClientConnection(
        kubeconfig=_field(data, "kubeconfig", (str,)) or "",
        accept_content_types=_field(data, "acceptContentTypes", (str,)) or "",
        content_type=_field(data, "contentType", (str,)) or "",
        qps=float(_field(data, "qps", (int, float)) or 0),
        burst=_field(data, "burst", (int,)) or 0,
    )


def _health_check_config(data: dict) -> HealthCheckConfig:
    period = _field(data, "syncPeriod", (str,))
    return HealthCheckConfig(sync_period=_parse_duration(period) if period is not None else timedelta(0))


def _feature_gates(data: dict) -> dict[str, bool] | None:
    gates = _section(data, "featureGates")
    if gates is None:
        return None
    for name, value in gates.items():
        if not isinstance(name, str) or not isinstance(value, bool):
            raise ConfigError(f"feature gate {name!r} must map a name to a boolean")
    return dict(gates)


def load(data: str | bytes) -> ControllerConfiguration:
    """Decode a configuration document; empty input gives an empty configuration."""
    text = data.decode("utf-8") if isinstance(data, bytes) else data
    if not text:
        return ControllerConfiguration()
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"could not parse configuration: {exc}") from exc
    if not isinstance(document, dict):
        raise ConfigError("configuration must be a mapping")
    kind = document.get("kind")
    api_version = document.get("apiVersion")
    if not kind:
        raise ConfigError("Object 'Kind' is missing")
    if api_version != API_VERSION or kind != KIND:
        raise ConfigError(f"no kind {kind!r} is registered for version {api_version!r}")
    client = _section(document, "clientConnection")
    health = _section(document, "healthCheckConfig")
    return ControllerConfiguration(
        client_connection=_client_connection(client) if client is not None else None,
        health_check_config=_health_check_config(health) if health is not None else None,
        feature_gates=_feature_gates(document),
    )


def load_from_file(filename: str | Path) -> ControllerConfiguration:
    """Read and decode a configuration file."""
    return load(Path(filename).read_bytes())


@dataclass
class ConfigOptions:
    """Command line options naming the configuration file."""

    config_file_path: str = ""
    _config: ControllerConfiguration | None = field(default=None, init=False, repr=False)

    def complete(self) -> None:
        """Load the configuration from the configured file."""
        if not self.config_file_path:
            raise ConfigError("config file path not set")
        self._config = load_from_file(self.config_file_path)

    def completed(self) -> ControllerConfiguration:
        """Return the loaded configuration."""
        if self._config is None:
            raise ConfigError("config options have not been completed")
        return self._config

    def apply_health_check_config(self, target: HealthCheckConfig) -> HealthCheckConfig:
        """Return the configured health check settings, or ``target`` if none are set."""
        configured = self.completed().health_check_config
        return configured if configured is not None else target