"""Configuration models for the services topology."""

from .topology_config import (
    ArtifactStoreConfig,
    DeploymentPipelineConfig,
    FleetConfig,
    HealthCheckConfig,
    NetworkConfig,
    SubnetTierConfig,
    SubnetVisibility,
    TopologyConfig,
    TrafficRouterConfig,
    TrustFederationConfig,
    load_topology_config,
)

__all__ = [
    "ArtifactStoreConfig",
    "DeploymentPipelineConfig",
    "FleetConfig",
    "HealthCheckConfig",
    "NetworkConfig",
    "SubnetTierConfig",
    "SubnetVisibility",
    "TopologyConfig",
    "TrafficRouterConfig",
    "TrustFederationConfig",
    "load_topology_config",
]
