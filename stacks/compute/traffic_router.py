"""Internet-facing load balancer in front of the compute fleet.

The load balancer lives in the public tier and forwards to a single target
group holding the fleet. Every health-check parameter is set explicitly: a
target becomes healthy after ``healthy_threshold_count`` consecutive passes
and unhealthy after ``unhealthy_threshold_count`` consecutive failures.
Deregistered targets keep serving in-flight connections for exactly the
deregistration delay and receive no new ones.
"""

import logging

from aws_cdk import Duration
from aws_cdk import aws_elasticloadbalancingv2 as elbv2
from cdk_nag import NagSuppressions
from constructs import Construct

from stacks.compute.fleet import ComputeFleet
from stacks.configs.topology_config import (
    HealthCheckConfig,
    SubnetVisibility,
    TrafficRouterConfig,
)
from stacks.network.network_stack import NetworkStack

logger = logging.getLogger(__name__)


def build_health_check(config: HealthCheckConfig) -> elbv2.HealthCheck:
    """Translate the health-check policy without relying on platform defaults."""
    return elbv2.HealthCheck(
        enabled=True,
        path=config.path,
        protocol=elbv2.Protocol.HTTP,
        healthy_http_codes="200",
        interval=Duration.seconds(config.interval_seconds),
        timeout=Duration.seconds(config.timeout_seconds),
        healthy_threshold_count=config.healthy_threshold_count,
        unhealthy_threshold_count=config.unhealthy_threshold_count,
    )


class TrafficRouter(Construct):
    """Application load balancer, listener and fleet target group.

    Attributes:
        load_balancer: Internet-facing application load balancer.
        listener: HTTP listener open to all sources.
        target_group: Target group with the fleet registered.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        network: NetworkStack,
        fleet: ComputeFleet,
        config: TrafficRouterConfig,
    ) -> None:
        super().__init__(scope, construct_id)

        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            "LB",
            load_balancer_name=config.load_balancer_name,
            vpc=network.vpc,
            vpc_subnets=network.subnet_selection(SubnetVisibility.PUBLIC),
            internet_facing=True,
        )

        self.listener = self.load_balancer.add_listener(
            "Listener",
            port=config.listener_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            open=True,
        )

        self.target_group = self.listener.add_targets(
            "default-target",
            port=config.target_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[fleet.auto_scaling_group],
            health_check=build_health_check(config.health_check),
            deregistration_delay=Duration.seconds(config.deregistration_delay_seconds),
        )

        NagSuppressions.add_resource_suppressions(
            self.load_balancer,
            [
                {
                    "id": "AwsSolutions-ELB2",
                    "reason": "Access logs need a dedicated log bucket per region; "
                    "request metrics are available in CloudWatch.",
                },
                {
                    "id": "AwsSolutions-EC23",
                    "reason": "The load balancer is the public entry point and "
                    "accepts traffic from any source on the listener port.",
                },
            ],
            apply_to_children=True,
        )

        logger.info(
            "Traffic router '%s': port %d -> %d, health check %s every %ds, drain %ds",
            config.load_balancer_name,
            config.listener_port,
            config.target_port,
            config.health_check.path,
            config.health_check.interval_seconds,
            config.deregistration_delay_seconds,
        )
