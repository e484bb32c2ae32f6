"""Names, image names and chart paths of the calico networking extension."""

import posixpath

TYPE = "calico"
NAME = "networking-calico"

CNI_IMAGE_NAME = "calico-cni"
NODE_IMAGE_NAME = "calico-node"
KUBE_CONTROLLERS_IMAGE_NAME = "calico-kube-controllers"
TYPHA_IMAGE_NAME = "calico-typha"
CLUSTER_PROPORTIONAL_AUTOSCALER_IMAGE_NAME = "calico-cpa"
CLUSTER_PROPORTIONAL_VERTICAL_AUTOSCALER_IMAGE_NAME = "calico-cpva"

IMAGE_NAMES = (
    CNI_IMAGE_NAME,
    TYPHA_IMAGE_NAME,
    KUBE_CONTROLLERS_IMAGE_NAME,
    NODE_IMAGE_NAME,
    CLUSTER_PROPORTIONAL_AUTOSCALER_IMAGE_NAME,
    CLUSTER_PROPORTIONAL_VERTICAL_AUTOSCALER_IMAGE_NAME,
)

MONITORING_NAME = "calico-monitoring-config"
RELEASE_NAME = "calico"

INTERNAL_CHARTS_PATH = "internal"
CALICO_CHART_PATH = posixpath.join(INTERNAL_CHARTS_PATH, "calico")
CALICO_MONITORING_CHART_PATH = posixpath.join(INTERNAL_CHARTS_PATH, "calico-monitoring")