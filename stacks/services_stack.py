"""AWS CDK stack for the services topology.

The stack validates its configuration into a resource graph first and only
then creates constructs, walking the graph in dependency order. A component
receives nothing but the components it declared as dependencies, so a
construct can never reference an attribute of a component that does not
exist yet.
"""

import logging
from collections.abc import Callable
from typing import Any

import aws_cdk as cdk
import cdk_nag
from aws_cdk import Aspects, Token
from cdk_nag import NagSuppressions
from constructs import Construct

from stacks.cicd.deployment_pipeline import DeploymentPipeline
from stacks.cicd.trust_federation import TrustFederation
from stacks.common.outputs import OutputManager
from stacks.compute.fleet import ComputeFleet
from stacks.compute.traffic_router import TrafficRouter
from stacks.configs.topology_config import TopologyConfig
from stacks.network.egress_endpoints import EgressOptimization
from stacks.network.network_stack import NetworkStack
from stacks.storage.release_artifact_store import ReleaseArtifactStore
from stacks.topology.builder import (
    ARTIFACT_STORE,
    COMPUTE_FLEET,
    DEPLOYMENT_PIPELINE,
    NETWORK,
    TRAFFIC_ROUTER,
    TRUST_FEDERATION,
    TopologyBuilder,
)
from stacks.topology.errors import UnresolvedReferenceError
from stacks.topology.graph import ResourceKind, ResourceNode

logger = logging.getLogger(__name__)


class ServicesStack(cdk.Stack):
    """AWS CDK stack for a load-balanced, CI-deployed service fleet.

    Deploys:
    - Segmented VPC with gateway endpoints for S3 and DynamoDB
    - Autoscaled compute fleet behind an internet-facing load balancer
    - Deployment application, floor policy and deployment group
    - OIDC-federated role that CI assumes to trigger deployments
    - Encrypted, private release artifact store

    Attributes:
        topology: Validated topology the stack was built from.
        components: Created constructs keyed by resource name.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: TopologyConfig,
        **kwargs: Any,
    ) -> None:
        """Initializes the services topology stack.

        Args:
            scope: Parent construct scope.
            construct_id: Unique identifier for this stack.
            config: Validated topology configuration.
            **kwargs: Additional keyword arguments passed to the Stack.

        Raises:
            TopologyError: If the configuration violates a structural invariant.
        """
        super().__init__(scope, construct_id, **kwargs)

        self.config = config
        self.topology = TopologyBuilder(config, self._availability_zone_names()).build()
        self.components: dict[str, Construct] = {}

        factories: dict[ResourceKind, Callable[[ResourceNode], Construct | None]] = {
            ResourceKind.NETWORK: self._create_network,
            ResourceKind.EGRESS_OPTIMIZATION: self._create_egress_optimization,
            ResourceKind.COMPUTE_FLEET: self._create_compute_fleet,
            ResourceKind.TRAFFIC_ROUTER: self._create_traffic_router,
            ResourceKind.DEPLOYMENT_PIPELINE: self._create_deployment_pipeline,
            ResourceKind.ARTIFACT_STORE: self._create_artifact_store,
            ResourceKind.TRUST_FEDERATION: self._create_trust_federation,
            ResourceKind.TRUST_GRANTS: self._grant_trust_permissions,
            ResourceKind.ARTIFACT_STORE_GRANTS: self._grant_artifact_store_access,
        }
        for node in self.topology.graph.topological_order():
            component = factories[node.kind](node)
            if component is not None:
                self.components[node.name] = component
            logger.debug("Created %s (%s)", node.name, node.kind.value)

        self._create_outputs()
        self._configure_security_checks()

    @property
    def network(self) -> NetworkStack:
        return self.components[NETWORK]

    @property
    def fleet(self) -> ComputeFleet:
        return self.components[COMPUTE_FLEET]

    @property
    def router(self) -> TrafficRouter:
        return self.components[TRAFFIC_ROUTER]

    @property
    def pipeline(self) -> DeploymentPipeline:
        return self.components[DEPLOYMENT_PIPELINE]

    @property
    def artifact_store(self) -> ReleaseArtifactStore:
        return self.components[ARTIFACT_STORE]

    @property
    def trust(self) -> TrustFederation:
        return self.components[TRUST_FEDERATION]

    def _availability_zone_names(self) -> list[str]:
        """Zones for the subnet plan.

        Environment-agnostic stacks only know their zones as tokens, which
        differ between synthesis runs; placeholders keep the plan stable.
        """
        zones = list(self.availability_zones[: self.config.network.max_azs])
        if any(Token.is_unresolved(zone) for zone in zones):
            return [f"az-{index + 1}" for index in range(len(zones))]
        return zones

    def _dependency(self, node: ResourceNode, name: str) -> Any:
        """Return a created dependency that ``node`` declared.

        Raises:
            UnresolvedReferenceError: If ``node`` did not declare ``name`` or it
                has not been created.
        """
        if name not in node.depends_on:
            msg = f"Resource '{node.name}' uses '{name}' without declaring it as a dependency"
            raise UnresolvedReferenceError(msg)
        if name not in self.components:
            msg = f"Resource '{node.name}' depends on '{name}', which has not been created"
            raise UnresolvedReferenceError(msg)
        return self.components[name]

    def _create_network(self, node: ResourceNode) -> NetworkStack:
        return NetworkStack(
            self,
            "Network",
            config=self.config.network,
            subnet_plan=self.topology.subnet_plan,
        )

    def _create_egress_optimization(self, node: ResourceNode) -> EgressOptimization:
        return EgressOptimization(
            self,
            "EgressOptimization",
            network=self._dependency(node, NETWORK),
            services=list(self.config.network.gateway_endpoints),
            environment_name=self.config.environment,
        )

    def _create_compute_fleet(self, node: ResourceNode) -> ComputeFleet:
        return ComputeFleet(
            self,
            "ComputeFleet",
            network=self._dependency(node, NETWORK),
            config=self.config.fleet,
        )

    def _create_traffic_router(self, node: ResourceNode) -> TrafficRouter:
        return TrafficRouter(
            self,
            "TrafficRouter",
            network=self._dependency(node, NETWORK),
            fleet=self._dependency(node, COMPUTE_FLEET),
            config=self.config.router,
        )

    def _create_deployment_pipeline(self, node: ResourceNode) -> DeploymentPipeline:
        return DeploymentPipeline(
            self,
            "DeploymentPipeline",
            fleet=self._dependency(node, COMPUTE_FLEET),
            router=self._dependency(node, TRAFFIC_ROUTER),
            config=self.config.pipeline,
        )

    def _create_artifact_store(self, node: ResourceNode) -> ReleaseArtifactStore:
        return ReleaseArtifactStore(
            self,
            "ReleaseArtifactStore",
            config=self.config.artifact_store,
        )

    def _create_trust_federation(self, node: ResourceNode) -> TrustFederation:
        return TrustFederation(self, "TrustFederation", config=self.config.trust)

    def _grant_trust_permissions(self, node: ResourceNode) -> None:
        trust: TrustFederation = self._dependency(node, TRUST_FEDERATION)
        store: ReleaseArtifactStore = self._dependency(node, ARTIFACT_STORE)
        trust.grant_deployments(self._dependency(node, DEPLOYMENT_PIPELINE))
        store.grant_release_access(trust.role)

    def _grant_artifact_store_access(self, node: ResourceNode) -> None:
        store: ReleaseArtifactStore = self._dependency(node, ARTIFACT_STORE)
        store.grant_fleet_access(self._dependency(node, COMPUTE_FLEET))

    def _create_outputs(self) -> None:
        OutputManager.for_stack(self).add_output_with_ssm(
            "loadBalancerDNS",
            value=self.router.load_balancer.load_balancer_dns_name,
            description="DNS name of the internet-facing load balancer",
            parameter_name="traffic-router/dns-name",
        )

    def _configure_security_checks(self) -> None:
        """Configures security analysis and compliance rules for the topology.

        Applies the AWS Solutions rule pack and suppresses the findings that
        are accepted for this topology. Resource-specific findings are
        suppressed on the resources themselves.
        """
        Aspects.of(self).add(cdk_nag.AwsSolutionsChecks())
        NagSuppressions.add_stack_suppressions(
            stack=self,
            suppressions=[
                {
                    "id": "AwsSolutions-IAM5",
                    "reason": "Artifact grants and the deployment agent download "
                    "require object-level wildcards below a single bucket",
                },
                {
                    "id": "AwsSolutions-IAM4",
                    "reason": "Custom resource Lambdas run with the AWS managed "
                    "basic execution policy",
                    "appliesTo": [
                        "Policy::arn:<AWS::Partition>:iam::aws:policy/service-role/"
                        "AWSLambdaBasicExecutionRole",
                    ],
                },
                {
                    "id": "AwsSolutions-L1",
                    "reason": "Custom resource Lambda runtimes are managed by the CDK",
                },
                {
                    "id": "CdkNagValidationFailure",
                    "reason": "Security group validation fails due to CDK intrinsic "
                    "function references - this is expected",
                },
            ],
        )

