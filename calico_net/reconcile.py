"""Preparation of the calico network configuration during reconciliation."""

from __future__ import annotations

import ipaddress
from typing import Iterable

from .apis import IPv4, IPv6, Backend, NetworkConfig, NetworkStatus, PoolMode, network_config_from_network
from .models import Cluster, IPFamily, Network

_KUBE_PROXY_FIELD = "spec.kubernetes.kubeProxy.enabled"
_KUBE_PROXY_DETAIL = (
    "Disabling kube-proxy is forbidden in conjunction with calico without running in ebpf dataplane"
)


class ForbiddenError(ValueError):
    """A requested setting is forbidden for the given field."""

    def __init__(self, field_path: str, detail: str) -> None:
        super().__init__(f"{field_path}: Forbidden: {detail}")
        self.field_path = field_path
        self.detail = detail


def _families(ip_families: Iterable[IPFamily | str]) -> set[IPFamily]:
    return {IPFamily(family) for family in ip_families}


def set_pool_mode(
    network_config: NetworkConfig, ip_families: Iterable[IPFamily | str], mode: PoolMode
) -> None:
    """Set the pool mode of the primary family and pick the matching backend."""
    if IPFamily.IPV6 in _families(ip_families):
        if network_config.ipv6 is None:
            network_config.ipv6 = IPv6()
        network_config.ipv6.mode = PoolMode(mode)
    else:
        if network_config.ipv4 is None:
            network_config.ipv4 = IPv4()
        network_config.ipv4.mode = PoolMode(mode)

    network_config.backend = Backend.NONE if PoolMode(mode) is PoolMode.NEVER else Backend.BIRD


def _set_auto_detection_method(
    network_config: NetworkConfig, families: set[IPFamily], method: str
) -> None:
    if IPFamily.IPV4 in families:
        if network_config.ipv4 is None:
            network_config.ipv4 = IPv4()
        network_config.ipv4.auto_detection_method = method


def _set_auto_detection_method_v6(
    network_config: NetworkConfig, families: set[IPFamily], method: str
) -> None:
    if IPFamily.IPV6 in families:
        if network_config.ipv6 is None:
            network_config.ipv6 = IPv6()
        network_config.ipv6.auto_detection_method = method


def _is_ipv4_cidr(cidr: str) -> bool:
    if "/" not in cidr:
        raise ValueError(f"invalid CIDR address: {cidr}")
    try:
        parsed = ipaddress.ip_network(cidr, strict=False)
    except ValueError as exc:
        raise ValueError(f"invalid CIDR address: {cidr}") from exc
    if parsed.version == 4:
        return True
    return parsed.network_address.ipv4_mapped is not None


def segregate_node_cidrs(node_cidrs: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split node CIDRs into IPv4 and IPv6 lists, keeping their order."""
    ipv4_nodes: list[str] = []
    ipv6_nodes: list[str] = []
    for cidr in node_cidrs:
        (ipv4_nodes if _is_ipv4_cidr(cidr) else ipv6_nodes).append(cidr)
    return ipv4_nodes, ipv6_nodes


def update_auto_detection_mode(nodes: Iterable[str]) -> str:
    """Return a ``cidr=`` auto detection method for the nodes, or an empty string."""
    nodes = list(nodes)
    return f"cidr={','.join(nodes)}" if nodes else ""


def kube_proxy_enabled(cluster: Cluster) -> bool:
    """Return whether kube-proxy runs in the cluster; it does unless disabled."""
    enabled = cluster.shoot.kube_proxy_enabled
    return True if enabled is None else enabled


def prepare_network_config(network: Network, cluster: Cluster) -> NetworkConfig:
    """Build the effective calico configuration for a Network of the given cluster."""
    families = _families(network.ip_families)
    shoot = cluster.shoot

    if network.provider_config is not None:
        network_config = network_config_from_network(network)
    else:
        network_config = NetworkConfig()

    if IPFamily.IPV4 in families and network_config.ipv4 is None:
        network_config.ipv4 = IPv4()
    if IPFamily.IPV6 in families and network_config.ipv6 is None:
        network_config.ipv6 = IPv6()

    if shoot.networking_nodes:
        _set_auto_detection_method(network_config, families, f"cidr={shoot.networking_nodes}")
        if shoot.status_nodes:
            ipv4_nodes, ipv6_nodes = segregate_node_cidrs(shoot.status_nodes)
            _set_auto_detection_method(network_config, families, update_auto_detection_mode(ipv4_nodes))
            _set_auto_detection_method_v6(
                network_config, families, update_auto_detection_mode(ipv6_nodes)
            )

    overlay = network_config.overlay
    if overlay is not None:
        if overlay.enabled:
            set_pool_mode(network_config, families, PoolMode.ALWAYS)
            if network_config.vxlan is not None and network_config.vxlan.enabled:
                network_config.backend = Backend.VXLAN
        else:
            set_pool_mode(network_config, families, PoolMode.NEVER)
            if overlay.create_pod_routes:
                network_config.backend = Backend.BIRD
    elif IPFamily.IPV6 in families:
        set_pool_mode(network_config, families, PoolMode.NEVER)

    if shoot.kube_proxy_enabled is False:
        ebpf = network_config.ebpf_dataplane
        if ebpf is None or not ebpf.enabled:
            raise ForbiddenError(_KUBE_PROXY_FIELD, _KUBE_PROXY_DETAIL)

    return network_config


def compute_network_status(network_config: NetworkConfig | None) -> NetworkStatus:
    """Return the provider status reported for the Network."""
    return NetworkStatus()