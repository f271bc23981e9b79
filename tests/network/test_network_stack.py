"""
Test suite for the services NetworkStack.

Tests cover VPC creation from the tier configuration, reserved address space,
NAT placement, flow logs, subnet selectors and cross-stack parameters.
"""

import pytest
from aws_cdk import App, Stack
from aws_cdk.assertions import Match, Template

from stacks.configs.topology_config import NetworkConfig, SubnetVisibility
from stacks.network.network_stack import NetworkStack
from stacks.topology.subnet_plan import plan_subnets


def _network(config: NetworkConfig) -> tuple[Stack, NetworkStack]:
    app = App()
    cdk_stack = Stack(app, "TestStack")
    plan = plan_subnets(
        config.cidr,
        config.tiers,
        [f"az-{index + 1}" for index in range(config.max_azs)],
        reserved_azs=config.reserved_azs,
    )
    network = NetworkStack(cdk_stack, "TestNetwork", config=config, subnet_plan=plan)
    return cdk_stack, network


class TestNetworkStackResourceCreation:
    """Test suite for verifying correct resource creation in NetworkStack."""

    @pytest.fixture
    def network(self):
        return _network(NetworkConfig())

    @pytest.fixture
    def basic_stack_template(self, network):
        cdk_stack, _ = network
        return Template.from_stack(cdk_stack)

    def test_vpc_created_with_correct_configuration(self, basic_stack_template):
        """Verify VPC resource is created with the base address block."""
        basic_stack_template.has_resource_properties(
            "AWS::EC2::VPC",
            {
                "CidrBlock": "10.0.0.0/20",
                "EnableDnsHostnames": True,
                "EnableDnsSupport": True,
            },
        )

    def test_only_active_tiers_are_provisioned(self, basic_stack_template):
        """2 AZs x 2 active tiers; the reserved data tier creates no subnets."""
        basic_stack_template.resource_count_is("AWS::EC2::Subnet", 4)

    @pytest.mark.parametrize(
        ("cidr", "public"),
        [
            ("10.0.0.0/24", True),
            ("10.0.1.0/24", True),
            ("10.0.4.0/24", False),
            ("10.0.5.0/24", False),
        ],
    )
    def test_subnets_match_the_address_plan(self, basic_stack_template, cidr, public):
        """Reserved zones keep their slots, so the application tier starts at 10.0.4.0."""
        basic_stack_template.has_resource_properties(
            "AWS::EC2::Subnet",
            {"CidrBlock": cidr, "MapPublicIpOnLaunch": public},
        )

    def test_plan_agrees_with_synthesized_subnets(self, network, basic_stack_template):
        _, network_stack = network
        subnets = basic_stack_template.find_resources("AWS::EC2::Subnet")
        synthesized = sorted(
            resource["Properties"]["CidrBlock"] for resource in subnets.values()
        )
        planned = sorted(str(subnet.cidr) for subnet in network_stack.subnet_plan.provisioned)
        assert synthesized == planned

    def test_single_nat_gateway_in_public_tier(self, basic_stack_template):
        basic_stack_template.resource_count_is("AWS::EC2::NatGateway", 1)
        basic_stack_template.resource_count_is("AWS::EC2::EIP", 1)

    def test_private_egress_routes_through_nat(self, basic_stack_template):
        basic_stack_template.has_resource_properties(
            "AWS::EC2::Route",
            {
                "DestinationCidrBlock": "0.0.0.0/0",
                "NatGatewayId": Match.any_value(),
            },
        )

    def test_internet_gateway_created(self, basic_stack_template):
        basic_stack_template.resource_count_is("AWS::EC2::InternetGateway", 1)
        basic_stack_template.resource_count_is("AWS::EC2::VPCGatewayAttachment", 1)

    def test_flow_logs_delivered_to_cloudwatch(self, basic_stack_template):
        basic_stack_template.resource_count_is("AWS::EC2::FlowLog", 1)
        basic_stack_template.has_resource_properties(
            "AWS::EC2::FlowLog",
            {"ResourceType": "VPC", "TrafficType": "ALL"},
        )
        basic_stack_template.has_resource_properties(
            "AWS::Logs::LogGroup",
            {"RetentionInDays": 30},
        )

    def test_vpc_parameters_published(self, basic_stack_template):
        basic_stack_template.has_resource_properties(
            "AWS::SSM::Parameter",
            {"Name": "/infrastructure/teststack/network/vpc-id", "Type": "String"},
        )
        basic_stack_template.has_resource_properties(
            "AWS::SSM::Parameter",
            {"Name": "/infrastructure/teststack/network/vpc-cidr"},
        )


class TestSubnetSelection:
    """Subnet selectors by routing class."""

    @pytest.fixture
    def network_stack(self):
        _, network_stack = _network(NetworkConfig())
        return network_stack

    def test_public_selection(self, network_stack):
        selection = network_stack.subnet_selection(SubnetVisibility.PUBLIC)
        selected = network_stack.vpc.select_subnets(subnet_type=selection.subnet_type)
        assert len(selected.subnets) == 2
        assert len(network_stack.public_subnets) == 2

    def test_private_egress_selection(self, network_stack):
        selection = network_stack.subnet_selection(SubnetVisibility.PRIVATE_EGRESS)
        selected = network_stack.vpc.select_subnets(subnet_type=selection.subnet_type)
        assert len(selected.subnets) == 2
        assert len(network_stack.private_subnets) == 2

    def test_reserved_isolated_tier_has_no_subnets(self, network_stack):
        assert network_stack.isolated_subnets == []


class TestNetworkStackCustomConfiguration:
    """Non-default network declarations."""

    def test_active_isolated_tier_has_no_default_route(self):
        config = NetworkConfig(
            tiers=[
                {"name": "public", "visibility": "public", "cidr_mask": 24},
                {"name": "application", "visibility": "private-egress", "cidr_mask": 24},
                {"name": "data", "visibility": "private-isolated", "cidr_mask": 24},
            ],
            reserved_azs=0,
        )
        cdk_stack, network_stack = _network(config)
        template = Template.from_stack(cdk_stack)

        template.resource_count_is("AWS::EC2::Subnet", 6)
        assert len(network_stack.isolated_subnets) == 2
        # Default routes exist only for the public (IGW) and application (NAT) tiers
        routes = template.find_resources(
            "AWS::EC2::Route",
            {"Properties": {"DestinationCidrBlock": "0.0.0.0/0"}},
        )
        assert len(routes) == 4

    def test_nat_gateway_per_zone(self):
        cdk_stack, _ = _network(NetworkConfig(nat_gateways=2))
        Template.from_stack(cdk_stack).resource_count_is("AWS::EC2::NatGateway", 2)

    def test_flow_logs_disabled(self):
        cdk_stack, network_stack = _network(NetworkConfig(enable_flow_logs=False))
        Template.from_stack(cdk_stack).resource_count_is("AWS::EC2::FlowLog", 0)
        assert network_stack.flow_logs is None
