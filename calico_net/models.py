"""Plain models of the cluster resources the extension works on."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class IPFamily(str, Enum):
    """IP family of a network."""

    IPV4 = "IPv4"
    IPV6 = "IPv6"


@dataclass
class Network:
    """A Network extension resource."""

    name: str = ""
    namespace: str = ""
    pod_cidr: str = ""
    service_cidr: str = ""
    ip_families: list[IPFamily] = field(default_factory=list)
    provider_config: bytes | str | None = None


@dataclass
class Shoot:
    """The parts of a Shoot that networking decisions depend on."""

    name: str = ""
    namespace: str = ""
    kubernetes_version: str = ""
    kube_proxy_enabled: bool | None = None
    networking_type: str | None = None
    networking_nodes: str | None = None
    networking_provider_config: bytes | str | None = None
    ip_families: list[IPFamily] = field(default_factory=list)
    status_nodes: list[str] = field(default_factory=list)
    status_pods: list[str] = field(default_factory=list)
    wants_vpa: bool = False


@dataclass
class Cluster:
    """A cluster as handed to the network actuator."""

    shoot: Shoot = field(default_factory=Shoot)