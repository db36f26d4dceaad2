"""Cluster configuration and API endpoint resolution."""

from kubeaccess.cluster.api_url import (
    MalformedAddressError,
    NoAddressConfiguredError,
    resolve_api_url,
    select_address,
)
from kubeaccess.cluster.config import (
    ClusterConfig,
    ClusterConfigError,
    cluster_config_from_string,
    load_cluster_config,
)

__all__ = [
    "ClusterConfig",
    "ClusterConfigError",
    "MalformedAddressError",
    "NoAddressConfiguredError",
    "cluster_config_from_string",
    "load_cluster_config",
    "resolve_api_url",
    "select_address",
]
