"""Tests for the push-style deployment pipeline."""

import json

import pytest
from aws_cdk.assertions import Match, Template

from stacks.cicd.deployment_pipeline import DeploymentPipeline
from stacks.configs.topology_config import DeploymentPipelineConfig


class TestDeploymentPipeline:
    """Application, floor policy and deployment group."""

    @pytest.fixture
    def pipeline(self, cdk_stack, compute_fleet, traffic_router):
        return DeploymentPipeline(
            cdk_stack,
            "Pipeline",
            fleet=compute_fleet,
            router=traffic_router,
            config=DeploymentPipelineConfig(),
        )

    @pytest.fixture
    def template(self, cdk_stack, pipeline):
        return Template.from_stack(cdk_stack)

    def test_server_application(self, template):
        template.has_resource_properties(
            "AWS::CodeDeploy::Application",
            {"ApplicationName": "your-api", "ComputePlatform": "Server"},
        )

    def test_minimum_healthy_hosts_floor(self, template):
        template.has_resource_properties(
            "AWS::CodeDeploy::DeploymentConfig",
            {"MinimumHealthyHosts": {"Type": "HOST_COUNT", "Value": 1}},
        )

    def test_deployment_group_uses_floor_policy(self, template):
        """The floor policy is attached, not merely declared."""
        (config_id,) = template.find_resources("AWS::CodeDeploy::DeploymentConfig")
        template.has_resource_properties(
            "AWS::CodeDeploy::DeploymentGroup",
            {"DeploymentConfigName": {"Ref": config_id}},
        )

    def test_deployment_group_targets_fleet(self, template):
        (group_id,) = template.find_resources("AWS::AutoScaling::AutoScalingGroup")
        template.has_resource_properties(
            "AWS::CodeDeploy::DeploymentGroup",
            {"AutoScalingGroups": [{"Ref": group_id}]},
        )

    def test_deployment_group_drains_through_router(self, template):
        (target_group_id,) = template.find_resources(
            "AWS::ElasticLoadBalancingV2::TargetGroup",
        )
        template.has_resource_properties(
            "AWS::CodeDeploy::DeploymentGroup",
            {
                "LoadBalancerInfo": {
                    "TargetGroupInfoList": [
                        {"Name": {"Fn::GetAtt": [target_group_id, "TargetGroupName"]}},
                    ],
                },
            },
        )

    def test_execution_role(self, template):
        template.has_resource_properties(
            "AWS::IAM::Role",
            {
                "RoleName": "ec2-codedeploy-role",
                "AssumeRolePolicyDocument": Match.object_like(
                    {
                        "Statement": [
                            Match.object_like(
                                {"Principal": {"Service": "codedeploy.amazonaws.com"}},
                            ),
                        ],
                    },
                ),
                "ManagedPolicyArns": [
                    {
                        "Fn::Join": [
                            "",
                            [
                                "arn:",
                                {"Ref": "AWS::Partition"},
                                ":iam::aws:policy/service-role/AWSCodeDeployRole",
                            ],
                        ],
                    },
                ],
            },
        )

    def test_agent_installed_on_members(self, template):
        assert "/latest/install" in json.dumps(template.to_json())

    def test_resource_arns(self, pipeline):
        assert len(pipeline.resource_arns) == 3


class TestDeploymentPipelineConfiguration:
    """Non-default pipeline declarations."""

    def test_custom_floor_and_name(self, cdk_stack, compute_fleet, traffic_router):
        DeploymentPipeline(
            cdk_stack,
            "Pipeline",
            fleet=compute_fleet,
            router=traffic_router,
            config=DeploymentPipelineConfig(
                application_name="orders-api",
                minimum_healthy_hosts=0,
            ),
        )
        template = Template.from_stack(cdk_stack)

        template.has_resource_properties(
            "AWS::CodeDeploy::Application",
            {"ApplicationName": "orders-api"},
        )
        template.has_resource_properties(
            "AWS::CodeDeploy::DeploymentConfig",
            {"MinimumHealthyHosts": {"Type": "HOST_COUNT", "Value": 0}},
        )

    def test_agent_not_installed(self, cdk_stack, compute_fleet, traffic_router):
        DeploymentPipeline(
            cdk_stack,
            "Pipeline",
            fleet=compute_fleet,
            router=traffic_router,
            config=DeploymentPipelineConfig(install_agent=False),
        )
        assert "/latest/install" not in json.dumps(Template.from_stack(cdk_stack).to_json())
