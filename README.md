# calico_net

`calico_net` holds the decision logic for running Calico as the network
plugin of a Kubernetes cluster. It turns a cluster's network description and
an optional Calico network configuration into the values that the Calico
chart is rendered with, prepares the effective network configuration for a
cluster, picks container images from an image vector, manages feature gates
and loads the controller's own configuration file.

It does not talk to a cluster. You pass in plain Python objects and get plain
Python values back.

## What is inside

| Module | Purpose |
| --- | --- |
| `calico_net.models` | Plain dataclasses `Network`, `Shoot` and `Cluster`, and the enum `IPFamily`. |
| `calico_net.constants` | Image names, the release name and the chart paths. |
| `calico_net.apis` | The Calico network configuration (`NetworkConfig` and its parts), the enums `Backend`, `PoolMode`, `Pool` and `AutoscalingMode`, `NetworkStatus`, and strict decoding of provider configuration (`decode_network_config`, `network_config_from_network`). |
| `calico_net.imagevector` | `ImageVector` read from YAML, with overrides from a file named in the environment, and image lookup by Kubernetes version. |
| `calico_net.features` | `FeatureGate`, `FeatureSpec` and `register_feature_gates`. |
| `calico_net.config` | `ControllerConfiguration`, `load` / `load_from_file`, and `ConfigOptions`. |
| `calico_net.chart_values` | `compute_calico_chart_values` and `render_calico_chart`. |
| `calico_net.reconcile` | `prepare_network_config`, `kube_proxy_enabled`, `set_pool_mode`, `segregate_node_cidrs`, `update_auto_detection_mode` and `compute_network_status`. |

## Cluster models

```python
from calico_net.models import Cluster, IPFamily, Network, Shoot

network = Network(
    name="foo",
    namespace="bar",
    pod_cidr="100.96.0.0/11",
    ip_families=[IPFamily.IPV4],
)
cluster = Cluster(shoot=Shoot(kubernetes_version="1.28.0", networking_nodes="10.250.0.0/16"))
```

`Network.provider_config` may hold the raw JSON or YAML of a Calico network
configuration.

## Network configuration

A configuration can be built from its serialized mapping:

```python
from calico_net.apis import NetworkConfig

config = NetworkConfig.from_dict({
    "backend": "vxlan",
    "ipam": {"type": "host-local", "cidr": "usePodCidr"},
    "ipv4": {"pool": "vxlan", "mode": "CrossSubnet"},
    "vethMTU": "1430",
})

config.to_dict()  # includes apiVersion and kind, leaves out unset fields
```

`from_dict` rejects unknown fields and values of the wrong type with a
`DecodeError`. Known enum values become enum members; other strings are kept
as they are, so that they can be reported later.

`decode_network_config(raw)` parses JSON or YAML and additionally requires
`apiVersion` to be `calico_net.apis.API_VERSION` and `kind` to be
`NetworkConfig`. `network_config_from_network(network)` decodes
`network.provider_config` and raises `DecodeError` when it is not set.

## Preparing the configuration for a cluster

```python
from calico_net.reconcile import kube_proxy_enabled, prepare_network_config

config = prepare_network_config(network, cluster)
```

`prepare_network_config` decodes the network's provider configuration (or
starts from an empty one), adds IPv4/IPv6 sections for the network's IP
families, sets `cidr=...` auto-detection methods from the shoot's node
networks, and derives pool mode and backend from the overlay settings. When
the shoot disables kube-proxy without the eBPF dataplane enabled, it raises
`ForbiddenError`. `kube_proxy_enabled(cluster)` is true unless the shoot
disables kube-proxy.

`segregate_node_cidrs` splits CIDRs into IPv4 and IPv6 lists;
`update_auto_detection_mode` joins them into a `cidr=a,b` string, or returns
an empty string for no nodes.

## Chart values

```python
from calico_net.chart_values import compute_calico_chart_values

values = compute_calico_chart_values(
    network,               # the cluster's Network
    config,                # a NetworkConfig, or None for defaults
    "1.28.0",              # Kubernetes version, used to pick images
    False,                 # wants_vpa
    True,                  # kube_proxy_enabled
    False,                 # non_privileged
    "10.250.0.0/16",       # node_cidr, or None
    ["100.96.0.0/11"],     # pod_cidrs
    image_vector,          # an ImageVector
)

values["config"]["ipv4"]["mode"]    # e.g. "Always"
values["global"]["podCIDR"]
```

Unsupported values, such as an unknown backend or pool mode, IPv4 settings
for a cluster that only uses IPv6, or an invalid pod CIDR, raise
`ChartValuesError`.

`render_calico_chart` takes a renderer followed by the same arguments. The
renderer is any object with a method
`render(chart_path, release_name, namespace, values)` returning bytes; it is
called with `constants.CALICO_CHART_PATH`, the release name `calico` and the
namespace `kube-system`, and its result is returned unchanged.

## Images

```python
import os
from calico_net.imagevector import ImageVector

vector = ImageVector.from_yaml(images_yaml).with_env_override(os.environ)
images = vector.calico_images("1.28.0")   # {"calico-cni": "...", ...}
```

The YAML holds an `images` list whose entries have `name`, `repository` or
`ref`, and optionally `tag`, `runtimeVersion` and `targetVersion` constraints.
When the environment variable `IMAGEVECTOR_OVERWRITE` names a file, its
entries are merged over the vector. `find_image` prefers the entry with the
most matching version constraints; when none matches it raises
`ImageNotFoundError`.

## Feature gates

```python
from calico_net.features import FeatureGate, NON_PRIVILEGED_CALICO_NODE, register_feature_gates

gate = register_feature_gates(FeatureGate())
gate.set_from_map({NON_PRIVILEGED_CALICO_NODE: True})
gate.enabled(NON_PRIVILEGED_CALICO_NODE)  # True
```

Without an argument, `register_feature_gates` registers into the shared
`FEATURE_GATE`. Setting an unknown feature raises `ValueError`; asking for an
unknown feature raises `KeyError`.

## Controller configuration

```python
from calico_net.config import ConfigOptions, load_from_file

configuration = load_from_file("componentconfig.yaml")
configuration.feature_gates

options = ConfigOptions(config_file_path="componentconfig.yaml")
options.complete()
options.completed().health_check_config
```

The document must carry `apiVersion` equal to `calico_net.config.API_VERSION`
and `kind: ControllerConfiguration`; it may hold `clientConnection`,
`healthCheckConfig` (with a duration such as `30s` as `syncPeriod`) and
`featureGates`. Empty input gives an empty configuration. Malformed input, and
`ConfigOptions.complete` without a file path, raise `ConfigError`.

## What this package does not do

- It has no admission webhook or shoot validator; shoots are not checked
  before they are accepted, apart from the kube-proxy check inside
  `prepare_network_config`.
- It runs no controller: it does not watch resources, apply manifests,
  create managed resources, write status or deploy monitoring configuration.
- It ships no chart templates; rendering is left to the renderer you pass.
- It provides no command-line program.

## Requirements

Python 3.10 or later and PyYAML. The tests use pytest, available through the
`test` extra.