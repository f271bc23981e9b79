"""Autoscaled compute fleet running the service.

Members are placed in the private-egress tier only, so they are reachable
from the load balancer but never directly from the internet. Each new member
runs the bootstrap payload once; a member whose payload leaves it unhealthy
is replaced after the health-check grace period.
"""

import logging

from aws_cdk import Duration
from aws_cdk import aws_autoscaling as autoscaling
from aws_cdk import aws_ec2 as ec2
from cdk_nag import NagSuppressions
from constructs import Construct

from stacks.common.utils import load_bootstrap_payload
from stacks.configs.topology_config import FleetConfig, MachineImage, SubnetVisibility
from stacks.network.network_stack import NetworkStack

logger = logging.getLogger(__name__)


def machine_image_for(image: MachineImage) -> ec2.IMachineImage:
    """Latest published image of the configured family."""
    if image == MachineImage.AMAZON_LINUX_2023:
        return ec2.MachineImage.latest_amazon_linux2023()
    return ec2.MachineImage.latest_amazon_linux2()


class ComputeFleet(Construct):
    """Autoscaling group of identical service hosts.

    Attributes:
        auto_scaling_group: The group; used as load balancer target,
            deployment target and grantee of artifact store reads.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        network: NetworkStack,
        config: FleetConfig,
    ) -> None:
        """Create the fleet in the private-egress tier.

        Args:
            scope: CDK construct scope for resource creation.
            construct_id: Unique identifier for this construct.
            network: Network providing the private-egress subnets.
            config: Fleet configuration.

        Raises:
            TopologyConfigurationError: If the bootstrap payload is missing or empty.
        """
        super().__init__(scope, construct_id)

        user_data = load_bootstrap_payload(config.bootstrap_script_path)

        self.auto_scaling_group = autoscaling.AutoScalingGroup(
            self,
            "AutoScalingGroup",
            vpc=network.vpc,
            vpc_subnets=network.subnet_selection(SubnetVisibility.PRIVATE_EGRESS),
            instance_type=ec2.InstanceType(config.instance_type),
            machine_image=machine_image_for(config.machine_image),
            min_capacity=config.min_capacity,
            max_capacity=config.effective_max_capacity,
            health_checks=autoscaling.HealthChecks.ec2(
                grace_period=Duration.seconds(config.health_check_grace_seconds),
            ),
            block_devices=[
                autoscaling.BlockDevice(
                    device_name="/dev/xvda",
                    volume=autoscaling.BlockDeviceVolume.ebs(20, encrypted=True),
                ),
            ],
            require_imdsv2=True,
        )
        self.auto_scaling_group.add_user_data(user_data)

        NagSuppressions.add_resource_suppressions(
            self.auto_scaling_group,
            [
                {
                    "id": "AwsSolutions-AS3",
                    "reason": "Scaling events are observed through the deployment "
                    "group and load balancer health, not notifications.",
                },
                {
                    "id": "AwsSolutions-EC26",
                    "reason": "The only volume is the root device, which is encrypted.",
                },
                {
                    "id": "AwsSolutions-EC28",
                    "reason": "Basic monitoring suffices; members are replaceable "
                    "and health is judged by the load balancer.",
                },
                {
                    "id": "AwsSolutions-EC29",
                    "reason": "Members are replaced by scaling and deployments, so "
                    "termination protection must stay off.",
                },
            ],
            apply_to_children=True,
        )

        logger.info(
            "Compute fleet: %s x %d-%d (%s) in the private-egress tier",
            config.instance_type,
            config.min_capacity,
            config.effective_max_capacity,
            config.machine_image.value,
        )
