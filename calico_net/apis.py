"""Provider configuration and status types of the calico network extension."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, TypeVar

import yaml

from .models import Network

GROUP_NAME = "calico.networking.extensions.gardener.cloud"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP_NAME}/{VERSION}"
NETWORK_CONFIG_KIND = "NetworkConfig"
NETWORK_STATUS_KIND = "NetworkStatus"

_QUANTITY = re.compile(
    r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:Ki|Mi|Gi|Ti|Pi|Ei|n|u|m|k|M|G|T|P|E|[eE][+-]?\d+)?"
)


class DecodeError(ValueError):
    """A provider configuration could not be decoded."""


class Backend(str, Enum):
    """Routing backend of calico."""

    BIRD = "bird"
    NONE = "none"
    VXLAN = "vxlan"


class PoolMode(str, Enum):
    """Encapsulation mode of an IP pool."""

    ALWAYS = "Always"
    NEVER = "Never"
    CROSS_SUBNET = "CrossSubnet"
    OFF = "Off"


class Pool(str, Enum):
    """Type of IP pool for the tunnel interface."""

    IPIP = "ipip"
    VXLAN = "vxlan"


class AutoscalingMode(str, Enum):
    """How the calico components are scaled."""

    CLUSTER_PROPORTIONAL = "cluster-proportional"
    VPA = "vpa"
    STATIC = "static"


_E = TypeVar("_E", bound=Enum)


def _coerce(enum_cls: type[_E], value: str | None) -> _E | str | None:
    """Turn a known value into its enum member; keep unknown values as they are."""
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _mapping(value: Any, path: str) -> dict:
    if not isinstance(value, dict):
        raise DecodeError(f"{path or 'object'} must be an object, got {type(value).__name__}")
    return value


def _check_fields(data: Mapping, allowed: set[str], path: str) -> None:
    for key in data:
        if key not in allowed:
            where = f"{path}.{key}" if path else str(key)
            raise DecodeError(f'strict decoding error: unknown field "{where}"')


def _where(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _string(data: Mapping, key: str, path: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodeError(f"{_where(path, key)} must be a string, got {type(value).__name__}")
    return value


def _boolean(data: Mapping, key: str, path: str) -> bool | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise DecodeError(f"{_where(path, key)} must be a boolean, got {type(value).__name__}")
    return value


def _section(data: Mapping, key: str, path: str) -> dict | None:
    value = data.get(key)
    if value is None:
        return None
    return _mapping(value, _where(path, key))


def _resource_list(data: Mapping, key: str, path: str) -> dict[str, str] | None:
    section = _section(data, key, path)
    if section is None:
        return None
    resources: dict[str, str] = {}
    for name, amount in section.items():
        where = f"{_where(path, key)}.{name}"
        if isinstance(amount, bool) or not isinstance(amount, (str, int, float)):
            raise DecodeError(f"{where} must be a quantity")
        text = amount if isinstance(amount, str) else str(amount)
        if not _QUANTITY.fullmatch(text):
            raise DecodeError(f"{where}: quantities must match the regular expression")
        resources[str(name)] = text
    return resources


@dataclass
class IPv4:
    """IPv4 specific settings."""

    pool: Pool | str | None = None
    mode: PoolMode | str | None = None
    auto_detection_method: str | None = None

    @classmethod
    def _from_dict(cls, data: Mapping, path: str) -> IPv4:
        _check_fields(data, {"pool", "mode", "autoDetectionMethod"}, path)
        return cls(
            pool=_coerce(Pool, _string(data, "pool", path)),
            mode=_coerce(PoolMode, _string(data, "mode", path)),
            auto_detection_method=_string(data, "autoDetectionMethod", path),
        )

    def _to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.pool is not None:
            result["pool"] = _plain(self.pool)
        if self.mode is not None:
            result["mode"] = _plain(self.mode)
        if self.auto_detection_method is not None:
            result["autoDetectionMethod"] = self.auto_detection_method
        return result


@dataclass
class IPv6(IPv4):
    """IPv6 specific settings."""

    @classmethod
    def _from_dict(cls, data: Mapping, path: str) -> IPv6:
        base = IPv4._from_dict(data, path)
        return cls(base.pool, base.mode, base.auto_detection_method)


@dataclass
class IPAM:
    """Settings of the IP address management plugin."""

    type: str = ""
    cidr: str | None = None

    @classmethod
    def _from_dict(cls, data: Mapping, path: str) -> IPAM:
        _check_fields(data, {"type", "cidr"}, path)
        return cls(type=_string(data, "type", path) or "", cidr=_string(data, "cidr", path))

    def _to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type}
        if self.cidr is not None:
            result["cidr"] = self.cidr
        return result


@dataclass
class _Toggle:
    enabled: bool = False

    @classmethod
    def _from_dict(cls, data: Mapping, path: str):
        _check_fields(data, {"enabled"}, path)
        return cls(enabled=bool(_boolean(data, "enabled", path)))

    def _to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled}


@dataclass
class Typha(_Toggle):
    """Whether calico-typha is deployed."""


@dataclass
class EbpfDataplane(_Toggle):
    """Whether the eBPF dataplane is used."""


@dataclass
class SnatToUpstreamDNS(_Toggle):
    """Whether packets to the upstream DNS server are masqueraded."""


@dataclass
class VXLAN(_Toggle):
    """Whether vxlan is used as overlay network."""


@dataclass
class Overlay:
    """Network overlay settings."""

    enabled: bool = False
    create_pod_routes: bool | None = None

    @classmethod
    def _from_dict(cls, data: Mapping, path: str) -> Overlay:
        _check_fields(data, {"enabled", "createPodRoutes"}, path)
        return cls(
            enabled=bool(_boolean(data, "enabled", path)),
            create_pod_routes=_boolean(data, "createPodRoutes", path),
        )

    def _to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"enabled": self.enabled}
        if self.create_pod_routes is not None:
            result["createPodRoutes"] = self.create_pod_routes
        return result


@dataclass
class StaticResources:
    """Statically allocated resources for the node and typha components."""

    node: dict[str, str] | None = None
    typha: dict[str, str] | None = None

    @classmethod
    def _from_dict(cls, data: Mapping, path: str) -> StaticResources:
        _check_fields(data, {"node", "typha"}, path)
        return cls(node=_resource_list(data, "node", path), typha=_resource_list(data, "typha", path))

    def _to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.node is not None:
            result["node"] = dict(self.node)
        if self.typha is not None:
            result["typha"] = dict(self.typha)
        return result


@dataclass
class AutoScaling:
    """How the calico components are automatically scaled."""

    mode: AutoscalingMode | str = ""
    resources: StaticResources | None = None

    @classmethod
    def _from_dict(cls, data: Mapping, path: str) -> AutoScaling:
        _check_fields(data, {"mode", "resources"}, path)
        resources = _section(data, "resources", path)
        return cls(
            mode=_coerce(AutoscalingMode, _string(data, "mode", path) or ""),
            resources=(
                StaticResources._from_dict(resources, _where(path, "resources"))
                if resources is not None
                else None
            ),
        )

    def _to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"mode": _plain(self.mode)}
        if self.resources is not None:
            result["resources"] = self.resources._to_dict()
        return result


_SECTIONS: dict[str, tuple[str, type]] = {
    "ipam": ("ipam", IPAM),
    "ipv4": ("ipv4", IPv4),
    "ipv6": ("ipv6", IPv6),
    "typha": ("typha", Typha),
    "ebpfDataplane": ("ebpf_dataplane", EbpfDataplane),
    "overlay": ("overlay", Overlay),
    "snatToUpstreamDNS": ("snat_to_upstream_dns", SnatToUpstreamDNS),
    "autoScaling": ("auto_scaling", AutoScaling),
    "vxlan": ("vxlan", VXLAN),
}

_CONFIG_FIELDS = set(_SECTIONS) | {
    "apiVersion",
    "kind",
    "backend",
    "vethMTU",
    "ipip",
    "ipAutodetectionMethod",
    "wireguardEncryption",
}


@dataclass
class NetworkConfig:
    """Configuration of the calico networking plugin."""

    backend: Backend | str | None = None
    ipam: IPAM | None = None
    ipv4: IPv4 | None = None
    ipv6: IPv6 | None = None
    typha: Typha | None = None
    veth_mtu: str | None = None
    ebpf_dataplane: EbpfDataplane | None = None
    overlay: Overlay | None = None
    snat_to_upstream_dns: SnatToUpstreamDNS | None = None
    auto_scaling: AutoScaling | None = None
    vxlan: VXLAN | None = None
    # Deprecated: superseded by ipv4.mode.
    ipip: PoolMode | str | None = None
    # Deprecated: superseded by ipv4.auto_detection_method.
    ip_autodetection_method: str | None = None
    wireguard_encryption: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetworkConfig:
        """Build a configuration from its serialized form, rejecting unknown fields."""
        data = _mapping(data, "")
        _check_fields(data, _CONFIG_FIELDS, "")
        sections = {}
        for key, (attr, section_cls) in _SECTIONS.items():
            section = _section(data, key, "")
            if section is not None:
                sections[attr] = section_cls._from_dict(section, key)
        return cls(
            backend=_coerce(Backend, _string(data, "backend", "")),
            veth_mtu=_string(data, "vethMTU", ""),
            ipip=_coerce(PoolMode, _string(data, "ipip", "")),
            ip_autodetection_method=_string(data, "ipAutodetectionMethod", ""),
            wireguard_encryption=bool(_boolean(data, "wireguardEncryption", "")),
            **sections,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the configuration, leaving out unset fields."""
        result: dict[str, Any] = {"apiVersion": API_VERSION, "kind": NETWORK_CONFIG_KIND}
        if self.backend is not None:
            result["backend"] = _plain(self.backend)
        for key, (attr, _) in _SECTIONS.items():
            section = getattr(self, attr)
            if section is not None:
                result[key] = section._to_dict()
        if self.veth_mtu is not None:
            result["vethMTU"] = self.veth_mtu
        if self.ipip is not None:
            result["ipip"] = _plain(self.ipip)
        if self.ip_autodetection_method is not None:
            result["ipAutodetectionMethod"] = self.ip_autodetection_method
        if self.wireguard_encryption:
            result["wireguardEncryption"] = True
        return result


@dataclass
class NetworkStatus:
    """Status of the network resources created by the extension."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize the status with its type information."""
        return {"apiVersion": API_VERSION, "kind": NETWORK_STATUS_KIND}


def decode_network_config(raw: bytes | str) -> NetworkConfig:
    """Strictly decode a JSON or YAML provider configuration."""
    text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise DecodeError(f"could not parse provider config: {exc}") from exc
    if document is None:
        raise DecodeError("Object 'Kind' is missing in provider config")
    document = _mapping(document, "")
    kind = document.get("kind")
    api_version = document.get("apiVersion")
    if not kind:
        raise DecodeError("Object 'Kind' is missing in provider config")
    if api_version != API_VERSION or kind != NETWORK_CONFIG_KIND:
        raise DecodeError(f"no kind {kind!r} is registered for version {api_version!r}")
    return NetworkConfig.from_dict(document)


def network_config_from_network(network: Network) -> NetworkConfig:
    """Extract the calico configuration from a Network's provider config."""
    if network.provider_config is None:
        raise DecodeError("provider config is not set on the network resource")
    return decode_network_config(network.provider_config)