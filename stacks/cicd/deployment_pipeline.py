"""Push-style deployment pipeline for the compute fleet.

A deployment targets every member of the fleet and is gated by a
minimum-healthy-hosts floor: hosts are taken out of the load balancer (and
drained) before they are updated, and re-registered only once their health
check passes after the update. The deployment service runs under its own
execution role, separate from the role external CI assumes to trigger it.
"""

import logging

from aws_cdk import aws_codedeploy as codedeploy
from aws_cdk import aws_iam as iam
from cdk_nag import NagSuppressions
from constructs import Construct

from stacks.compute.fleet import ComputeFleet
from stacks.compute.traffic_router import TrafficRouter
from stacks.configs.topology_config import DeploymentPipelineConfig

logger = logging.getLogger(__name__)


class DeploymentPipeline(Construct):
    """Deployment application, floor policy, execution role and deployment group.

    Attributes:
        application: The deployment application.
        deployment_config: Policy holding the minimum-healthy-hosts floor.
        execution_role: Role assumed by the deployment service.
        deployment_group: Fleet and target group binding of the application.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        fleet: ComputeFleet,
        router: TrafficRouter,
        config: DeploymentPipelineConfig,
    ) -> None:
        super().__init__(scope, construct_id)

        self.application = codedeploy.ServerApplication(
            self,
            "CodeDeployApplication",
            application_name=config.application_name,
        )

        self.deployment_config = codedeploy.ServerDeploymentConfig(
            self,
            "DeploymentConfiguration",
            minimum_healthy_hosts=codedeploy.MinimumHealthyHosts.count(
                config.minimum_healthy_hosts,
            ),
        )

        self.execution_role = iam.Role(
            self,
            "CodeDeployRole",
            role_name=config.execution_role_name,
            assumed_by=iam.ServicePrincipal("codedeploy.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSCodeDeployRole",
                ),
            ],
        )
        NagSuppressions.add_resource_suppressions(
            self.execution_role,
            [
                {
                    "id": "AwsSolutions-IAM4",
                    "reason": "AWSCodeDeployRole is the service role policy the "
                    "deployment service is documented to run with.",
                    "appliesTo": [
                        "Policy::arn:<AWS::Partition>:iam::aws:policy/service-role/AWSCodeDeployRole",
                    ],
                },
            ],
        )

        self.deployment_group = codedeploy.ServerDeploymentGroup(
            self,
            "DeploymentGroup",
            application=self.application,
            role=self.execution_role,
            deployment_config=self.deployment_config,
            auto_scaling_groups=[fleet.auto_scaling_group],
            install_agent=config.install_agent,
            load_balancers=[codedeploy.LoadBalancer.application(router.target_group)],
        )

        logger.info(
            "Deployment pipeline '%s': minimum %d healthy host(s), agent %s",
            config.application_name,
            config.minimum_healthy_hosts,
            "installed" if config.install_agent else "not installed",
        )

    @property
    def resource_arns(self) -> list[str]:
        """ARNs a deployment trigger needs to act on."""
        return [
            self.application.application_arn,
            self.deployment_group.deployment_group_arn,
            self.deployment_config.deployment_config_arn,
        ]
