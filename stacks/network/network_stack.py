"""Segmented network for the services topology.

This module provides the virtual network every other component is placed in.
Subnet tiers are declared in ``NetworkConfig`` and replicated once per
availability zone:

Architecture:
    - Public tier: default route to the internet gateway, hosts the load
      balancer and the NAT gateway(s)
    - Application tier (private-egress): default route through NAT, hosts the
      compute fleet
    - Data tier (private-isolated): no default route out; reserved by default
      so its address space is set aside without provisioning subnets
    - Reserved availability zones whose address space is set aside for every
      tier, so later expansion never renumbers existing subnets
    - VPC Flow Logs delivered to CloudWatch Logs
"""

import logging
from typing import cast

from aws_cdk import RemovalPolicy
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_iam as iam
from aws_cdk import aws_logs as logs
from cdk_nag import NagSuppressions
from constructs import Construct

from stacks.common.outputs import OutputManager
from stacks.configs.topology_config import NetworkConfig, SubnetVisibility
from stacks.topology.subnet_plan import SubnetPlan

logger = logging.getLogger(__name__)

SUBNET_TYPES: dict[SubnetVisibility, ec2.SubnetType] = {
    SubnetVisibility.PUBLIC: ec2.SubnetType.PUBLIC,
    SubnetVisibility.PRIVATE_EGRESS: ec2.SubnetType.PRIVATE_WITH_EGRESS,
    SubnetVisibility.PRIVATE_ISOLATED: ec2.SubnetType.PRIVATE_ISOLATED,
}

FLOW_LOG_RETENTION: dict[int, logs.RetentionDays] = {
    1: logs.RetentionDays.ONE_DAY,
    3: logs.RetentionDays.THREE_DAYS,
    5: logs.RetentionDays.FIVE_DAYS,
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    60: logs.RetentionDays.TWO_MONTHS,
    90: logs.RetentionDays.THREE_MONTHS,
    180: logs.RetentionDays.SIX_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
}


class NetworkStack(Construct):
    """Segmented virtual network for the services topology.

    Attributes:
        vpc: The virtual network.
        subnet_plan: Address blocks the network was validated against.
        flow_logs_role: IAM role for VPC Flow Logs, when enabled.
        flow_logs: VPC Flow Logs configuration, when enabled.
    """

    flow_logs_role: iam.Role | None
    flow_logs: ec2.FlowLog | None

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: NetworkConfig,
        subnet_plan: SubnetPlan,
    ) -> None:
        """Initialize the network.

        Args:
            scope: CDK construct scope for resource creation.
            construct_id: Unique identifier for this construct.
            config: Network configuration.
            subnet_plan: Validated address plan for ``config``.
        """
        super().__init__(scope, construct_id)

        self._config = config
        self.subnet_plan = subnet_plan
        self.flow_logs_role = None
        self.flow_logs = None

        self._create_vpc()
        if config.enable_flow_logs:
            self._create_flow_logs()
        self._create_outputs_and_parameters()

        logger.info(
            "Network %s: %d provisioned subnets, %d NAT gateway(s), %d reserved AZ(s)",
            config.cidr,
            len(subnet_plan.provisioned),
            config.nat_gateways,
            config.reserved_azs,
        )

    @property
    def vpc(self) -> ec2.Vpc:
        return self._vpc

    @property
    def public_subnets(self) -> list[ec2.ISubnet]:
        return self._vpc.public_subnets

    @property
    def private_subnets(self) -> list[ec2.ISubnet]:
        return self._vpc.private_subnets

    @property
    def isolated_subnets(self) -> list[ec2.ISubnet]:
        return self._vpc.isolated_subnets

    def subnet_selection(self, visibility: SubnetVisibility) -> ec2.SubnetSelection:
        """Select every provisioned subnet of a routing class.

        Args:
            visibility: Routing class of the tier(s) to select.

        Returns:
            Subnet selection usable by load balancers, fleets and endpoints.
        """
        return ec2.SubnetSelection(subnet_type=SUBNET_TYPES[visibility])

    def _create_vpc(self) -> None:
        """Create the VPC with one subnet configuration per declared tier.

        NAT gateways live in the public tier. Isolated tiers get no default
        route, which ``ec2.SubnetType.PRIVATE_ISOLATED`` guarantees.
        """
        subnet_configuration = [
            ec2.SubnetConfiguration(
                name=tier.name,
                subnet_type=SUBNET_TYPES[tier.visibility],
                cidr_mask=tier.cidr_mask,
                reserved=tier.reserved,
            )
            for tier in self._config.tiers
        ]

        self._vpc = ec2.Vpc(
            self,
            "VPC",
            ip_addresses=ec2.IpAddresses.cidr(self._config.cidr),
            subnet_configuration=subnet_configuration,
            max_azs=self._config.max_azs,
            reserved_azs=self._config.reserved_azs,
            nat_gateways=self._config.nat_gateways,
            nat_gateway_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            enable_dns_hostnames=True,
            enable_dns_support=True,
        )

    def _create_flow_logs(self) -> None:
        """Configure VPC Flow Logs for network traffic monitoring."""
        flow_logs_log_group = logs.LogGroup(
            self,
            "VpcFlowLogsGroup",
            retention=FLOW_LOG_RETENTION[self._config.flow_logs_retention_days],
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.flow_logs_role = iam.Role(
            self,
            "VpcFlowLogsRole",
            assumed_by=cast(
                "iam.IPrincipal",
                iam.ServicePrincipal("vpc-flow-logs.amazonaws.com"),
            ),
            inline_policies={
                "FlowLogsDeliveryRolePolicy": iam.PolicyDocument(
                    statements=[
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=[
                                "logs:CreateLogStream",
                                "logs:PutLogEvents",
                                "logs:DescribeLogGroups",
                                "logs:DescribeLogStreams",
                            ],
                            resources=[
                                flow_logs_log_group.log_group_arn,
                                f"{flow_logs_log_group.log_group_arn}:*",
                            ],
                        ),
                    ],
                ),
            },
        )
        NagSuppressions.add_resource_suppressions(
            self.flow_logs_role,
            [
                {
                    "id": "AwsSolutions-IAM5",
                    "reason": "Log stream names are chosen by the flow log service, "
                    "so the stream ARN must end in a wildcard.",
                },
            ],
            apply_to_children=True,
        )

        self.flow_logs = ec2.FlowLog(
            self,
            "VpcFlowLogs",
            resource_type=ec2.FlowLogResourceType.from_vpc(self._vpc),
            destination=ec2.FlowLogDestination.to_cloud_watch_logs(
                flow_logs_log_group,
                self.flow_logs_role,
            ),
            traffic_type=ec2.FlowLogTrafficType.ALL,
        )

    def _create_outputs_and_parameters(self) -> None:
        outputs = OutputManager.for_stack(self)
        outputs.add_output_with_ssm(
            "VpcId",
            value=self._vpc.vpc_id,
            description="VPC ID of the services network",
            parameter_name="network/vpc-id",
        )
        outputs.add_output_with_ssm(
            "VpcCidr",
            value=self._vpc.vpc_cidr_block,
            description="VPC CIDR block of the services network",
            parameter_name="network/vpc-cidr",
        )
