import pytest

from calico_net.apis import (
    IPAM,
    VXLAN,
    AutoScaling,
    AutoscalingMode,
    Backend,
    EbpfDataplane,
    IPv4,
    IPv6,
    NetworkConfig,
    Overlay,
    Pool,
    PoolMode,
    SnatToUpstreamDNS,
    StaticResources,
)
from calico_net.chart_values import (
    CALICO_CONFIG_KEY,
    ChartValuesError,
    compute_calico_chart_values,
    render_calico_chart,
)
from calico_net.imagevector import ImageNotFoundError, ImageVector
from calico_net.models import IPFamily, Network

KUBERNETES_VERSION = "1.28.0"
POD_CIDR = "12.0.0.0/8"
NODE_CIDR = "10.250.0.0/8"
AUTODETECTION = "interface=eth1"
IPV6_CIDR = "2001:0db8:85a3:0000::/56"

IMAGES_YAML = """
images:
  - name: calico-cni
    repository: registry.example.com/calico/cni
    tag: v3.28.0
  - name: calico-node
    repository: registry.example.com/calico/node
    tag: v3.28.0
  - name: calico-typha
    repository: registry.example.com/calico/typha
    tag: v3.28.0
  - name: calico-kube-controllers
    repository: registry.example.com/calico/kube-controllers
    tag: v3.28.0
  - name: calico-cpa
    repository: registry.example.com/cpa
    tag: v1.8.9
  - name: calico-cpva
    repository: registry.example.com/cpva
    tag: v0.8.4
"""

EXPECTED_IMAGES = {
    "calico-cni": "registry.example.com/calico/cni:v3.28.0",
    "calico-node": "registry.example.com/calico/node:v3.28.0",
    "calico-typha": "registry.example.com/calico/typha:v3.28.0",
    "calico-kube-controllers": "registry.example.com/calico/kube-controllers:v3.28.0",
    "calico-cpa": "registry.example.com/cpa:v1.8.9",
    "calico-cpva": "registry.example.com/cpva:v0.8.4",
}


@pytest.fixture
def images():
    return ImageVector.from_yaml(IMAGES_YAML)


@pytest.fixture
def network():
    return Network(
        name="foo",
        namespace="bar",
        service_cidr="10.0.0.0/8",
        pod_cidr=POD_CIDR,
        ip_families=[IPFamily.IPV4],
    )


def config_nil():
    return None


def config_nil_values():
    return NetworkConfig(backend=Backend.BIRD, ipam=IPAM(type="host-local", cidr="usePodCidr"))


def config_backend_none():
    return NetworkConfig(backend=Backend.NONE, ipam=IPAM(type="host-local", cidr=POD_CIDR))


def _all_ipv4():
    return IPv4(pool=Pool.VXLAN, mode=PoolMode.CROSS_SUBNET, auto_detection_method=AUTODETECTION)


def config_all():
    return NetworkConfig(
        backend=Backend.VXLAN, ipam=IPAM(type="host-local", cidr=POD_CIDR), ipv4=_all_ipv4()
    )


def config_all_mtu():
    return NetworkConfig(
        backend=Backend.VXLAN,
        ipam=IPAM(type="host-local", cidr=POD_CIDR),
        ipv4=_all_ipv4(),
        veth_mtu="1430",
    )


def config_all_ebpf():
    return NetworkConfig(
        backend=Backend.VXLAN,
        ipam=IPAM(type="host-local", cidr=POD_CIDR),
        ipv4=_all_ipv4(),
        ebpf_dataplane=EbpfDataplane(enabled=True),
    )


def config_deprecated():
    return NetworkConfig(
        backend=Backend.BIRD,
        ipam=IPAM(type="host-local", cidr=POD_CIDR),
        ipip=PoolMode.CROSS_SUBNET,
        ip_autodetection_method=AUTODETECTION,
    )


def config_invalid():
    return NetworkConfig(
        backend="invalid",
        ipam=IPAM(type="host-local", cidr=POD_CIDR),
        ipv4=IPv4(mode="invalid", auto_detection_method=AUTODETECTION),
    )


def config_overlay_disabled():
    return NetworkConfig(
        overlay=Overlay(enabled=False),
        backend=Backend.NONE,
        ipam=IPAM(type="host-local", cidr=POD_CIDR),
        ipv4=IPv4(mode=PoolMode.NEVER, auto_detection_method=AUTODETECTION),
        ip_autodetection_method=AUTODETECTION,
    )


def config_wireguard():
    return NetworkConfig(
        backend=Backend.BIRD,
        ipam=IPAM(type="host-local", cidr=POD_CIDR),
        wireguard_encryption=True,
    )


def _expected(result, wants_vpa, kube_proxy, mtu, ipinip, bpf, pool, mode, detection, extra_global):
    global_values = {"podCIDR": POD_CIDR}
    global_values.update(extra_global)
    return {
        "images": dict(EXPECTED_IMAGES),
        "global": global_values,
        "autoscaling": {"kubeControllers": wants_vpa},
        "config": {
            "backend": result.backend.value,
            "ipam": {
                "assign_ipv4": True,
                "assign_ipv6": False,
                "type": result.ipam.type,
                "subnet": result.ipam.cidr,
                "ranges": None,
            },
            "typha": {"enabled": True},
            "kubeControllers": {"enabled": result.backend != Backend.NONE},
            "veth_mtu": mtu,
            "monitoring": {"enabled": True, "typhaMetricsPort": "9093", "felixMetricsPort": "9091"},
            "nonPrivileged": False,
            "felix": {
                "ipinip": {"enabled": ipinip},
                "bpf": {"enabled": bpf},
                "bpfKubeProxyIPTablesCleanup": {"enabled": not kube_proxy},
            },
            "ipv4": {
                "enabled": True,
                "pool": pool,
                "mode": mode,
                "autoDetectionMethod": detection,
                "wireguard": result.wireguard_encryption,
            },
            "ipv6": {
                "enabled": False,
                "pool": "",
                "mode": "",
                "autoDetectionMethod": None,
                "natOutgoing": result.wireguard_encryption,
                "wireguard": result.wireguard_encryption,
            },
        },
    }


TABLE = [
    pytest.param(config_nil, config_nil_values, False, True, "0", True, False, "ipip", "Always",
                 None, NODE_CIDR, {"nodeCIDR": NODE_CIDR}, id="empty-config"),
    pytest.param(config_nil, config_nil_values, False, True, "0", True, False, "ipip", "Always",
                 None, None, {}, id="empty-config-no-node-cidr"),
    pytest.param(config_backend_none, config_backend_none, False, True, "0", False, False, "ipip",
                 "Never", None, NODE_CIDR, {"nodeCIDR": NODE_CIDR}, id="backend-none"),
    pytest.param(config_all, config_all, True, True, "0", True, False, "vxlan", "CrossSubnet",
                 AUTODETECTION, NODE_CIDR, {"nodeCIDR": NODE_CIDR}, id="all"),
    pytest.param(config_all_mtu, config_all_mtu, False, True, "1430", True, False, "vxlan",
                 "CrossSubnet", AUTODETECTION, NODE_CIDR, {"nodeCIDR": NODE_CIDR}, id="all-mtu"),
    pytest.param(config_all_ebpf, config_all_ebpf, False, False, "0", True, True, "vxlan",
                 "CrossSubnet", AUTODETECTION, NODE_CIDR, {"nodeCIDR": NODE_CIDR}, id="ebpf"),
    pytest.param(config_overlay_disabled, config_overlay_disabled, True, True, "0", False, False,
                 "ipip", "Never", AUTODETECTION, NODE_CIDR,
                 {"nodeCIDR": NODE_CIDR, "overlayEnabled": "false", "snatToUpstreamDNSEnabled": "true"},
                 id="overlay-disabled"),
    pytest.param(config_overlay_disabled, config_overlay_disabled, True, True, "0", False, False,
                 "ipip", "Never", AUTODETECTION, None,
                 {"overlayEnabled": "false", "snatToUpstreamDNSEnabled": "true"},
                 id="overlay-disabled-no-node-cidr"),
    pytest.param(config_deprecated, config_deprecated, True, True, "0", True, False, "ipip",
                 "CrossSubnet", AUTODETECTION, NODE_CIDR, {"nodeCIDR": NODE_CIDR}, id="deprecated"),
    pytest.param(config_wireguard, config_wireguard, False, True, "0", True, False, "ipip", "Always",
                 None, NODE_CIDR, {"nodeCIDR": NODE_CIDR}, id="wireguard"),
]


@pytest.mark.parametrize(
    "config_factory,result_factory,wants_vpa,kube_proxy,mtu,ipinip,bpf,pool,mode,detection,node_cidr,extra_global",
    TABLE,
)
def test_compute_chart_values_table(
    network, images, config_factory, result_factory, wants_vpa, kube_proxy, mtu, ipinip, bpf,
    pool, mode, detection, node_cidr, extra_global,
):
    values = compute_calico_chart_values(
        network, config_factory(), KUBERNETES_VERSION, wants_vpa, kube_proxy, False, node_cidr,
        [network.pod_cidr], images,
    )
    expected = _expected(
        result_factory(), wants_vpa, kube_proxy, mtu, ipinip, bpf, pool, mode, detection, extra_global
    )
    assert values == expected


@pytest.mark.parametrize(
    "config_factory,expected",
    [pytest.param(config_all, True, id="default"), pytest.param(config_all_ebpf, False, id="ebpf")],
)
def test_non_privileged_mode(network, images, config_factory, expected):
    values = compute_calico_chart_values(
        network, config_factory(), KUBERNETES_VERSION, True, True, True, NODE_CIDR, None, images
    )
    assert values["config"]["nonPrivileged"] is expected


def test_invalid_backend_is_reported(network, images):
    with pytest.raises(ChartValuesError) as excinfo:
        compute_calico_chart_values(
            network, config_invalid(), KUBERNETES_VERSION, True, True, False, NODE_CIDR, None, images
        )
    assert str(excinfo.value) == "error when generating calico config: unsupported value for backend: invalid"


def test_ipv4_network_defaults(images):
    network = Network(ip_families=[IPFamily.IPV4], pod_cidr=POD_CIDR)
    values = compute_calico_chart_values(network, None, "", False, False, False, None, None, images)
    assert values["config"]["ipam"] == {
        "type": "host-local",
        "subnet": "usePodCidr",
        "assign_ipv4": True,
        "assign_ipv6": False,
        "ranges": None,
    }
    assert values["config"]["ipv4"] == {
        "enabled": True,
        "pool": "ipip",
        "mode": "Always",
        "autoDetectionMethod": None,
        "wireguard": False,
    }
    assert values["config"]["ipv6"]["enabled"] is False
    assert values["global"]["podCIDR"] == POD_CIDR


def test_ipv4_overrides_from_config(images):
    network = Network(ip_families=[IPFamily.IPV4], pod_cidr=POD_CIDR)
    config = NetworkConfig(
        ipv4=IPv4(pool=Pool.VXLAN, mode=PoolMode.CROSS_SUBNET, auto_detection_method="first-found")
    )
    values = compute_calico_chart_values(network, config, "", False, False, False, None, None, images)
    assert values["config"]["ipam"] == {
        "type": "host-local",
        "subnet": "usePodCidr",
        "assign_ipv4": True,
        "assign_ipv6": False,
        "ranges": None,
    }
    assert values["config"]["ipv4"] == {
        "enabled": True,
        "pool": "vxlan",
        "mode": "CrossSubnet",
        "autoDetectionMethod": "first-found",
        "wireguard": False,
    }
    assert values["config"]["ipv6"]["enabled"] is False
    assert values["global"]["podCIDR"] == POD_CIDR


def test_deprecated_ipip_override(images):
    network = Network(ip_families=[IPFamily.IPV4], pod_cidr=POD_CIDR)
    config = NetworkConfig(ipip=PoolMode.OFF)
    values = compute_calico_chart_values(network, config, "", False, False, False, None, None, images)
    assert values["config"]["ipv4"] == {
        "enabled": True,
        "pool": "ipip",
        "mode": "Off",
        "autoDetectionMethod": None,
        "wireguard": False,
    }
    assert values["config"]["ipam"]["subnet"] == "usePodCidr"


def test_ipv6_network_defaults(images):
    network = Network(ip_families=[IPFamily.IPV6])
    values = compute_calico_chart_values(
        network, None, "", False, False, False, None, [IPV6_CIDR], images
    )
    assert values["config"]["ipam"] == {
        "type": "host-local",
        "subnet": "usePodCidrIPv6",
        "assign_ipv4": False,
        "assign_ipv6": True,
        "ranges": None,
    }
    assert values["config"]["ipv4"]["enabled"] is False
    assert values["config"]["ipv6"] == {
        "enabled": True,
        "pool": "vxlan",
        "mode": "Never",
        "autoDetectionMethod": None,
        "natOutgoing": True,
        "wireguard": False,
    }
    assert values["global"]["podCIDRv6"] == IPV6_CIDR


def test_ipv6_overrides_from_config(images):
    network = Network(ip_families=[IPFamily.IPV6])
    config = NetworkConfig(
        ipv6=IPv6(pool=Pool.VXLAN, mode=PoolMode.CROSS_SUBNET, auto_detection_method="first-found")
    )
    values = compute_calico_chart_values(
        network, config, "", False, False, False, None, [IPV6_CIDR], images
    )
    assert values["config"]["ipv6"] == {
        "enabled": True,
        "pool": "vxlan",
        "mode": "CrossSubnet",
        "autoDetectionMethod": "first-found",
        "natOutgoing": True,
        "wireguard": False,
    }
    assert values["config"]["ipam"]["subnet"] == "usePodCidrIPv6"
    assert values["global"]["podCIDRv6"] == IPV6_CIDR


def test_dual_stack(images):
    network = Network(ip_families=[IPFamily.IPV6, IPFamily.IPV4], pod_cidr=POD_CIDR)
    values = compute_calico_chart_values(
        network, None, "", False, False, False, None, [IPV6_CIDR, POD_CIDR], images
    )
    assert values["config"]["ipam"] == {
        "type": "host-local",
        "subnet": "",
        "assign_ipv4": True,
        "assign_ipv6": True,
        "ranges": [[{"subnet": "usePodCidrIPv6"}], [{"subnet": "usePodCidr"}]],
    }
    assert values["config"]["ipv4"]["enabled"] is True
    assert values["config"]["ipv6"]["mode"] == "Never"
    assert values["config"]["ipv6"]["natOutgoing"] is True
    assert values["global"]["podCIDR"] == POD_CIDR
    assert values["global"]["podCIDRv6"] == IPV6_CIDR


def test_ipv4_config_on_ipv6_network_is_rejected(images):
    network = Network(ip_families=[IPFamily.IPV6])
    config = NetworkConfig(ipv4=IPv4(mode=PoolMode.ALWAYS))
    with pytest.raises(ChartValuesError, match="IPv4 configuration must not be specified"):
        compute_calico_chart_values(network, config, "", False, True, False, None, None, images)


def test_ipv6_config_on_ipv4_network_is_rejected(network, images):
    config = NetworkConfig(ipv6=IPv6(mode=PoolMode.ALWAYS))
    with pytest.raises(ChartValuesError, match="IPv6 configuration must not be specified"):
        compute_calico_chart_values(network, config, "", False, True, False, None, None, images)


@pytest.mark.parametrize(
    "ipv6,message",
    [
        (IPv6(pool=Pool.IPIP), "unsupported value for ipv6 pool: ipip"),
        (IPv6(mode=PoolMode.OFF), "unsupported value for ipv6 mode: Off"),
    ],
)
def test_invalid_ipv6_values(images, ipv6, message):
    network = Network(ip_families=[IPFamily.IPV6])
    with pytest.raises(ChartValuesError) as excinfo:
        compute_calico_chart_values(
            network, NetworkConfig(ipv6=ipv6), "", False, True, False, None, None, images
        )
    assert str(excinfo.value) == f"error when generating calico config: {message}"


def test_invalid_ipv4_mode(network, images):
    config = NetworkConfig(ipv4=IPv4(mode="bogus"))
    with pytest.raises(ChartValuesError, match="unsupported value for ipv4 mode: bogus"):
        compute_calico_chart_values(network, config, "", False, True, False, None, None, images)


def test_invalid_pod_cidr(network, images):
    with pytest.raises(ChartValuesError):
        compute_calico_chart_values(network, None, "", False, True, False, None, ["not-a-cidr"], images)


def test_vxlan_with_overlay(network, images):
    config = NetworkConfig(ipv4=IPv4(), overlay=Overlay(enabled=True), vxlan=VXLAN(enabled=True))
    values = compute_calico_chart_values(network, config, "", False, True, False, None, None, images)
    assert values["global"] == {"podCIDR": POD_CIDR, "overlayEnabled": "true", "vxlanEnabled": "true"}
    assert values["config"]["ipv4"]["pool"] == "vxlan"
    assert values["config"]["ipv4"]["mode"] == "Always"
    assert values["config"]["ipam"]["type"] == "calico-ipam"


def test_snat_disabled_explicitly(network, images):
    config = NetworkConfig(overlay=Overlay(enabled=False), snat_to_upstream_dns=SnatToUpstreamDNS(enabled=False))
    values = compute_calico_chart_values(network, config, "", False, True, False, None, None, images)
    assert values["global"]["overlayEnabled"] == "false"
    assert values["global"]["snatToUpstreamDNSEnabled"] == "false"


def test_vpa_autoscaling(network, images):
    config = NetworkConfig(auto_scaling=AutoScaling(mode=AutoscalingMode.VPA))
    values = compute_calico_chart_values(network, config, "", True, True, False, None, None, images)
    assert values["autoscaling"] == {"kubeControllers": True, "node": "true", "typha": "true"}


def test_vpa_autoscaling_without_vpa_wish(network, images):
    config = NetworkConfig(auto_scaling=AutoScaling(mode=AutoscalingMode.VPA))
    values = compute_calico_chart_values(network, config, "", False, True, False, None, None, images)
    assert values["autoscaling"] == {"kubeControllers": False}


def test_static_autoscaling(network, images):
    config = NetworkConfig(
        auto_scaling=AutoScaling(
            mode=AutoscalingMode.STATIC,
            resources=StaticResources(node={"cpu": "100m", "memory": "100Mi", "pods": "3"}),
        )
    )
    values = compute_calico_chart_values(network, config, "", False, True, False, None, None, images)
    assert values["autoscaling"] == {
        "kubeControllers": False,
        "staticRequests": "true",
        "resourceRequests": {"node": {"cpu": "100m", "memory": "100Mi"}},
    }


def test_missing_image_is_reported(network):
    with pytest.raises(ImageNotFoundError):
        compute_calico_chart_values(network, None, "", False, True, False, None, None, ImageVector())


class _RecordingRenderer:
    def __init__(self):
        self.calls = []

    def render(self, chart_path, release_name, namespace, values):
        self.calls.append((chart_path, release_name, namespace, values))
        return b"# Source: test/templates/" + CALICO_CONFIG_KEY.encode() + b"\ntest-content\n"


@pytest.mark.parametrize("node_cidr", [NODE_CIDR, None])
def test_render_calico_chart(network, images, node_cidr):
    renderer = _RecordingRenderer()
    manifest = render_calico_chart(
        renderer, network, None, KUBERNETES_VERSION, False, True, False, node_cidr, None, images
    )
    assert manifest == b"# Source: test/templates/config.yaml\ntest-content\n"
    assert len(renderer.calls) == 1
    chart_path, release_name, namespace, values = renderer.calls[0]
    assert (chart_path, release_name, namespace) == ("internal/calico", "calico", "kube-system")
    assert values["global"].get("nodeCIDR") == node_cidr
    assert values["images"] == EXPECTED_IMAGES


def test_render_propagates_value_errors(network, images):
    renderer = _RecordingRenderer()
    with pytest.raises(ChartValuesError):
        render_calico_chart(
            renderer, network, config_invalid(), KUBERNETES_VERSION, False, True, False, None, None, images
        )
    assert renderer.calls == []