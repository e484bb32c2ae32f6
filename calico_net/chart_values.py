"""Values of the calico chart, computed from a Network and its provider config."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol

from .apis import AutoscalingMode, Backend, NetworkConfig, Pool, PoolMode, StaticResources
from .constants import CALICO_CHART_PATH, IMAGE_NAMES, RELEASE_NAME
from .imagevector import ImageVector
from .models import IPFamily, Network

CALICO_CONFIG_KEY = "config.yaml"
KUBE_SYSTEM_NAMESPACE = "kube-system"

_HOST_LOCAL = "host-local"
_CALICO_IPAM = "calico-ipam"
_USE_POD_CIDR = "usePodCidr"
_USE_POD_CIDR_V6 = "usePodCidrIPv6"
_DEFAULT_MTU = "0"

_BACKENDS = {Backend.BIRD.value, Backend.VXLAN.value, Backend.NONE.value}
_IPV4_POOLS = {Pool.IPIP.value, Pool.VXLAN.value}
_IPV6_POOLS = {Pool.VXLAN.value}
_IPV4_MODES = {
    PoolMode.ALWAYS.value,
    PoolMode.NEVER.value,
    PoolMode.OFF.value,
    PoolMode.CROSS_SUBNET.value,
}
_IPV6_MODES = {PoolMode.ALWAYS.value, PoolMode.NEVER.value, PoolMode.CROSS_SUBNET.value}


class ChartValuesError(ValueError):
    """The chart values could not be computed from the given configuration."""


class ChartRenderer(Protocol):
    """Renders the internal chart at ``chart_path`` into a manifest."""

    def render(
        self, chart_path: str, release_name: str, namespace: str, values: Mapping[str, Any]
    ) -> bytes: ...


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


@dataclass
class _Felix:
    ipinip: bool = True
    bpf: bool = False
    bpf_kube_proxy_iptables_cleanup: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ipinip": {"enabled": self.ipinip},
            "bpf": {"enabled": self.bpf},
            "bpfKubeProxyIPTablesCleanup": {"enabled": self.bpf_kube_proxy_iptables_cleanup},
        }


@dataclass
class _IPv4Values:
    enabled: bool = False
    pool: str = ""
    mode: str = ""
    auto_detection_method: str | None = None
    wireguard: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "pool": self.pool,
            "mode": self.mode,
            "autoDetectionMethod": self.auto_detection_method,
            "wireguard": self.wireguard,
        }


@dataclass
class _IPv6Values(_IPv4Values):
    nat_outgoing: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "natOutgoing": self.nat_outgoing}


@dataclass
class _Ipam:
    type: str = _HOST_LOCAL
    subnet: str = ""
    ranges: list[list[str]] | None = None
    assign_ipv4: bool = False
    assign_ipv6: bool = False

    def to_dict(self) -> dict[str, Any]:
        ranges = (
            None
            if self.ranges is None
            else [[{"subnet": subnet} for subnet in group] for group in self.ranges]
        )
        return {
            "type": self.type,
            "subnet": self.subnet,
            "ranges": ranges,
            "assign_ipv4": self.assign_ipv4,
            "assign_ipv6": self.assign_ipv6,
        }


@dataclass
class _CalicoConfig:
    backend: str = Backend.BIRD.value
    felix: _Felix = field(default_factory=_Felix)
    ipv4: _IPv4Values = field(default_factory=_IPv4Values)
    ipv6: _IPv6Values = field(default_factory=_IPv6Values)
    ipam: _Ipam = field(default_factory=_Ipam)
    typha_enabled: bool = True
    kube_controllers_enabled: bool = True
    veth_mtu: str = _DEFAULT_MTU
    non_privileged: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "felix": self.felix.to_dict(),
            "ipv4": self.ipv4.to_dict(),
            "ipv6": self.ipv6.to_dict(),
            "ipam": self.ipam.to_dict(),
            "typha": {"enabled": self.typha_enabled},
            "kubeControllers": {"enabled": self.kube_controllers_enabled},
            "veth_mtu": self.veth_mtu,
            "monitoring": {
                "enabled": True,
                "typhaMetricsPort": "9093",
                "felixMetricsPort": "9091",
            },
            "nonPrivileged": self.non_privileged,
        }


def _is_ipv6_cidr(cidr: str) -> bool:
    if "/" not in cidr:
        raise ChartValuesError(f"invalid CIDR address: {cidr}")
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError as exc:
        raise ChartValuesError(f"invalid CIDR address: {cidr}") from exc
    if network.version == 4:
        return False
    return network.network_address.ipv4_mapped is None


def _generate_config(
    network: Network, config: NetworkConfig | None, kube_proxy_enabled: bool, non_privileged: bool
) -> _CalicoConfig:
    families = {IPFamily(family) for family in network.ip_families}
    is_ipv4 = IPFamily.IPV4 in families
    is_ipv6 = IPFamily.IPV6 in families

    values = _CalicoConfig()
    if is_ipv4:
        values.ipam.assign_ipv4 = True
        values.ipam.subnet = _USE_POD_CIDR
        values.ipv4 = _IPv4Values(enabled=True, pool=Pool.IPIP.value, mode=PoolMode.ALWAYS.value)
    if is_ipv6:
        values.ipam.assign_ipv6 = True
        values.ipam.subnet = _USE_POD_CIDR_V6
        values.ipam.type = _HOST_LOCAL
        values.ipv6 = _IPv6Values(
            enabled=True, pool=Pool.VXLAN.value, mode=PoolMode.NEVER.value, nat_outgoing=True
        )
        values.felix.ipinip = False
    if is_ipv4 and is_ipv6:
        values.ipam.subnet = ""
        values.ipam.ranges = [[_USE_POD_CIDR_V6], [_USE_POD_CIDR]]

    if not kube_proxy_enabled:
        values.felix.bpf_kube_proxy_iptables_cleanup = True

    # Turned off again below when the eBPF dataplane is enabled.
    values.non_privileged = non_privileged

    if config is not None:
        _merge_config(values, config, is_ipv4, is_ipv6)
    return values


def _merge_config(values: _CalicoConfig, config: NetworkConfig, is_ipv4: bool, is_ipv6: bool) -> None:
    values.ipv4.wireguard = config.wireguard_encryption
    values.ipv6.wireguard = config.wireguard_encryption
    if config.wireguard_encryption:
        values.ipv6.nat_outgoing = True

    if config.backend is not None:
        backend = _plain(config.backend)
        if backend not in _BACKENDS:
            raise ChartValuesError(f"unsupported value for backend: {backend}")
        values.backend = backend
    if values.backend == Backend.NONE.value:
        values.kube_controllers_enabled = False
        values.felix.ipinip = False
        values.ipv4.mode = PoolMode.NEVER.value

    if config.ebpf_dataplane is not None and config.ebpf_dataplane.enabled:
        values.felix.bpf = True
        values.non_privileged = False

    if config.ipam is not None and config.ipam.type:
        values.ipam.type = config.ipam.type

    if values.ipam.type == _HOST_LOCAL:
        if config.ipam is not None and config.ipam.cidr is not None and not (is_ipv4 and is_ipv6):
            values.ipam.subnet = config.ipam.cidr

    if config.ipv4 is not None:
        if not is_ipv4:
            raise ChartValuesError(
                "IPv4 configuration must not be specified if Shoot doesn't use IPv4 networking"
            )
        if config.vxlan is not None and config.vxlan.enabled:
            values.ipv4.pool = Pool.VXLAN.value
            values.ipv4.mode = PoolMode.ALWAYS.value
            values.ipam.type = _CALICO_IPAM
        if config.ipv4.pool is not None:
            pool = _plain(config.ipv4.pool)
            if pool not in _IPV4_POOLS:
                raise ChartValuesError(f"unsupported value for ipv4 pool: {pool}")
            values.ipv4.pool = pool
        if config.ipv4.mode is not None:
            mode = _plain(config.ipv4.mode)
            if mode not in _IPV4_MODES:
                raise ChartValuesError(f"unsupported value for ipv4 mode: {mode}")
            values.ipv4.mode = mode
        if config.ipv4.auto_detection_method is not None:
            values.ipv4.auto_detection_method = config.ipv4.auto_detection_method
    else:
        # Deprecated fields, honoured only when no ipv4 section is given.
        if config.ipip is not None:
            if not is_ipv4:
                raise ChartValuesError(
                    "IPv4 configuration must not be specified if Shoot doesn't use IPv4 networking"
                )
            mode = _plain(config.ipip)
            if mode not in _IPV4_MODES:
                raise ChartValuesError(f"unsupported value for ipip: {mode}")
            values.ipv4.mode = mode
        if config.ip_autodetection_method is not None:
            values.ipv4.auto_detection_method = config.ip_autodetection_method

    if config.ipv6 is not None:
        if not is_ipv6:
            raise ChartValuesError(
                "IPv6 configuration must not be specified if Shoot doesn't use IPv6 networking"
            )
        if config.ipv6.pool is not None:
            pool = _plain(config.ipv6.pool)
            if pool not in _IPV6_POOLS:
                raise ChartValuesError(f"unsupported value for ipv6 pool: {pool}")
            values.ipv6.pool = pool
        if config.ipv6.mode is not None:
            mode = _plain(config.ipv6.mode)
            if mode not in _IPV6_MODES:
                raise ChartValuesError(f"unsupported value for ipv6 mode: {mode}")
            values.ipv6.mode = mode
        if config.ipv6.auto_detection_method is not None:
            values.ipv6.auto_detection_method = config.ipv6.auto_detection_method

    if config.typha is not None:
        values.typha_enabled = config.typha.enabled

    if config.veth_mtu is not None:
        values.veth_mtu = config.veth_mtu


def _resource_requests(resources: StaticResources | None) -> dict[str, Any]:
    requests: dict[str, Any] = {}
    if resources is None:
        return requests
    for name, resource_list in (("node", resources.node), ("typha", resources.typha)):
        if resource_list is not None:
            requests[name] = {
                key: resource_list[key] for key in ("cpu", "memory") if key in resource_list
            }
    return requests


def compute_calico_chart_values(
    network: Network,
    config: NetworkConfig | None,
    kubernetes_version: str,
    wants_vpa: bool,
    kube_proxy_enabled: bool,
    non_privileged: bool,
    node_cidr: str | None,
    pod_cidrs: Iterable[str] | None,
    image_vector: ImageVector,
) -> dict[str, Any]:
    """Compute the values for the calico chart."""
    try:
        calico_config = _generate_config(network, config, kube_proxy_enabled, non_privileged)
    except ChartValuesError as exc:
        raise ChartValuesError(f"error when generating calico config: {exc}") from exc

    autoscaling: dict[str, Any] = {"kubeControllers": wants_vpa}
    global_values: dict[str, str] = {"podCIDR": network.pod_cidr}
    values: dict[str, Any] = {
        "autoscaling": autoscaling,
        "images": {
            name: image_vector.find_image(name, kubernetes_version, kubernetes_version)
            for name in IMAGE_NAMES
        },
        "global": global_values,
        "config": calico_config.to_dict(),
    }

    for pod_cidr in pod_cidrs or ():
        if _is_ipv6_cidr(pod_cidr):
            global_values["podCIDRv6"] = pod_cidr

    if node_cidr is not None:
        global_values["nodeCIDR"] = node_cidr

    overlay = config.overlay if config is not None else None
    if overlay is not None:
        global_values["overlayEnabled"] = "true" if overlay.enabled else "false"
        if overlay.enabled and config.vxlan is not None and config.vxlan.enabled:
            global_values["vxlanEnabled"] = "true"
        elif not overlay.enabled:
            # Without overlay, source NAT to the upstream DNS is on unless disabled.
            snat = True
            if config.snat_to_upstream_dns is not None:
                snat = config.snat_to_upstream_dns.enabled
            global_values["snatToUpstreamDNSEnabled"] = "true" if snat else "false"

    auto_scaling = config.auto_scaling if config is not None else None
    if auto_scaling is not None:
        mode = _plain(auto_scaling.mode)
        if mode == AutoscalingMode.VPA.value and wants_vpa:
            autoscaling["node"] = "true"
            autoscaling["typha"] = "true"
        elif mode == AutoscalingMode.STATIC.value:
            autoscaling["staticRequests"] = "true"
            autoscaling["resourceRequests"] = _resource_requests(auto_scaling.resources)

    return values


def render_calico_chart(
    renderer: ChartRenderer,
    network: Network,
    config: NetworkConfig | None,
    kubernetes_version: str,
    wants_vpa: bool,
    kube_proxy_enabled: bool,
    non_privileged: bool,
    node_cidr: str | None,
    pod_cidrs: Iterable[str] | None,
    image_vector: ImageVector,
) -> bytes:
    """Compute the chart values and render the calico chart into a manifest."""
    values = compute_calico_chart_values(
        network,
        config,
        kubernetes_version,
        wants_vpa,
        kube_proxy_enabled,
        non_privileged,
        node_cidr,
        pod_cidrs,
        image_vector,
    )
    return renderer.render(CALICO_CHART_PATH, RELEASE_NAME, KUBE_SYSTEM_NAMESPACE, values)