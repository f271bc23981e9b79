"""Topology builder for the services deployment.

``TopologyBuilder`` turns a ``TopologyConfig`` into an immutable ``Topology``:
the subnet plan plus the resource graph that fixes the creation order

    network -> {compute fleet, traffic router} -> deployment pipeline
            -> {trust grants, artifact store grants}

Every structural invariant is checked here, so an invalid declaration fails
with the first violated constraint before any construct is created.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Sequence

from stacks.common.utils import load_bootstrap_payload
from stacks.configs.topology_config import SubnetVisibility, TopologyConfig
from stacks.topology.errors import TopologyConfigurationError
from stacks.topology.graph import DependencyRegistry, ResourceGraph, ResourceKind
from stacks.topology.subnet_plan import SubnetPlan, assert_disjoint, plan_subnets

logger = logging.getLogger(__name__)

NETWORK = "network"
EGRESS_OPTIMIZATION = "egress-optimization"
COMPUTE_FLEET = "compute-fleet"
TRAFFIC_ROUTER = "traffic-router"
DEPLOYMENT_PIPELINE = "deployment-pipeline"
ARTIFACT_STORE = "artifact-store"
TRUST_FEDERATION = "trust-federation"
TRUST_GRANTS = "trust-grants"
ARTIFACT_STORE_GRANTS = "artifact-store-grants"


@dataclass(frozen=True)
class Topology:
    """Validated declaration of the services topology.

    Attributes:
        config: Configuration the topology was built from.
        subnet_plan: Address blocks of every subnet tier.
        graph: Resources in creation order with their named dependencies.
    """

    config: TopologyConfig
    subnet_plan: SubnetPlan
    graph: ResourceGraph


class TopologyBuilder:
    """Builds and validates the topology for one configuration.

    Args:
        config: Declared topology configuration.
        availability_zones: Zones receiving subnets. Defaults to placeholder
            names, one per ``network.max_azs``; only the count affects the plan.
    """

    def __init__(
        self,
        config: TopologyConfig,
        availability_zones: Sequence[str] | None = None,
    ) -> None:
        self._config = config
        if availability_zones is None:
            availability_zones = [
                f"az-{index + 1}" for index in range(config.network.max_azs)
            ]
        self._availability_zones = tuple(
            availability_zones[: config.network.max_azs],
        )

    def build(self) -> Topology:
        """Validate the configuration and produce the topology.

        Raises:
            TopologyError: On the first violated structural invariant.
        """
        self._validate_tiers()
        subnet_plan = self._plan_network()
        self._validate_egress()
        self._validate_fleet()
        self._validate_separation_of_duties()

        graph = self._register_resources(subnet_plan).freeze()
        logger.info(
            "Built topology '%s' (%s) with %d resources, fingerprint %s",
            self._config.app_name,
            self._config.environment,
            len(graph.nodes),
            graph.fingerprint()[:12],
        )
        return Topology(config=self._config, subnet_plan=subnet_plan, graph=graph)

    def _validate_tiers(self) -> None:
        network = self._config.network
        if not network.tiers_with_visibility(SubnetVisibility.PUBLIC):
            msg = "The network needs an active public tier for the load balancer"
            raise TopologyConfigurationError(msg)
        if not network.tiers_with_visibility(SubnetVisibility.PRIVATE_EGRESS):
            msg = "The network needs an active private-egress tier for the compute fleet"
            raise TopologyConfigurationError(msg)

    def _plan_network(self) -> SubnetPlan:
        network = self._config.network
        plan = plan_subnets(
            network.cidr,
            network.tiers,
            self._availability_zones,
            reserved_azs=network.reserved_azs,
        )
        assert_disjoint(plan)
        return plan

    def _validate_egress(self) -> None:
        network = self._config.network
        zone_count = len(self._availability_zones)
        if network.nat_gateways < 1:
            msg = "At least one NAT gateway is required for the private-egress tier"
            raise TopologyConfigurationError(msg)
        if network.nat_gateways > zone_count:
            msg = (
                f"{network.nat_gateways} NAT gateways requested for "
                f"{zone_count} availability zones; at most one per zone is allowed"
            )
            raise TopologyConfigurationError(msg)
        if network.nat_gateways < zone_count:
            logger.warning(
                "%d NAT gateway(s) shared by %d availability zones; egress of "
                "the application tier depends on a single zone",
                network.nat_gateways,
                zone_count,
            )

    def _validate_fleet(self) -> None:
        fleet = self._config.fleet
        floor = self._config.pipeline.minimum_healthy_hosts
        if fleet.min_capacity < 1:
            msg = f"Fleet min_capacity must be at least 1, got {fleet.min_capacity}"
            raise TopologyConfigurationError(msg)
        if floor >= fleet.effective_max_capacity:
            msg = (
                f"minimum_healthy_hosts ({floor}) leaves no host of the fleet "
                f"(max_capacity {fleet.effective_max_capacity}) free to update; "
                "no deployment could ever start"
            )
            raise TopologyConfigurationError(msg)
        if fleet.min_capacity <= floor:
            logger.warning(
                "Fleet min_capacity (%d) does not exceed minimum_healthy_hosts (%d); "
                "rollouts halt while the fleet runs at minimum capacity",
                fleet.min_capacity,
                floor,
            )

    def _bootstrap_digest(self) -> str:
        """SHA-256 of the bootstrap payload content."""
        payload = load_bootstrap_payload(self._config.fleet.bootstrap_script_path)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def _validate_separation_of_duties(self) -> None:
        if self._config.pipeline.execution_role_name == self._config.trust.role_name:
            msg = (
                f"Deployment execution role and CI trigger role share the name "
                f"'{self._config.trust.role_name}'; they must be distinct roles"
            )
            raise TopologyConfigurationError(msg)

    def _register_resources(self, subnet_plan: SubnetPlan) -> DependencyRegistry:
        config = self._config
        registry = DependencyRegistry()

        network = registry.register(
            NETWORK,
            ResourceKind.NETWORK,
            cidr=config.network.cidr,
            availability_zones=list(self._availability_zones),
            reserved_azs=config.network.reserved_azs,
            nat_gateways=config.network.nat_gateways,
            subnets=[
                {
                    "tier": subnet.tier,
                    "cidr": str(subnet.cidr),
                    "provisioned": subnet.provisioned,
                }
                for subnet in subnet_plan.subnets
            ],
            flow_logs=config.network.enable_flow_logs,
        )
        registry.register(
            EGRESS_OPTIMIZATION,
            ResourceKind.EGRESS_OPTIMIZATION,
            depends_on=[network],
            services=sorted(config.network.gateway_endpoints),
        )
        fleet = registry.register(
            COMPUTE_FLEET,
            ResourceKind.COMPUTE_FLEET,
            depends_on=[network],
            **config.fleet.model_dump(mode="json", exclude={"bootstrap_script_path"}),
            bootstrap_payload_sha256=self._bootstrap_digest(),
        )
        router = registry.register(
            TRAFFIC_ROUTER,
            ResourceKind.TRAFFIC_ROUTER,
            depends_on=[network, fleet],
            **config.router.model_dump(mode="json"),
        )
        pipeline = registry.register(
            DEPLOYMENT_PIPELINE,
            ResourceKind.DEPLOYMENT_PIPELINE,
            depends_on=[fleet, router],
            **config.pipeline.model_dump(mode="json"),
        )
        store = registry.register(
            ARTIFACT_STORE,
            ResourceKind.ARTIFACT_STORE,
            **config.artifact_store.model_dump(mode="json"),
        )
        trust = registry.register(
            TRUST_FEDERATION,
            ResourceKind.TRUST_FEDERATION,
            **config.trust.model_dump(mode="json"),
        )
        registry.register(
            TRUST_GRANTS,
            ResourceKind.TRUST_GRANTS,
            depends_on=[trust, pipeline, store],
        )
        registry.register(
            ARTIFACT_STORE_GRANTS,
            ResourceKind.ARTIFACT_STORE_GRANTS,
            depends_on=[store, fleet, trust, pipeline],
        )
        return registry
