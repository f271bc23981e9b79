"""Output Manager for AWS CDK stacks.

This module provides a class that consistently handles CloudFormation outputs
and SSM parameters for the services topology, so CI scripts and other stacks
can look up the values they need without parsing templates.
"""

from aws_cdk import CfnOutput, Stack
from aws_cdk import aws_ssm as ssm
from constructs import Construct


class OutputManager:
    """Consistent management of CloudFormation outputs and SSM Parameters for
    services topology cross-stack references.

    Attributes:
        scope: The construct for which outputs are being managed.
        parameter_prefix: SSM path prefix shared by all parameters of the stack.
    """

    def __init__(self, scope: Construct, parameter_prefix: str) -> None:
        self.scope = scope
        self.parameter_prefix = parameter_prefix.rstrip("/")

    @classmethod
    def for_stack(cls, scope: Construct) -> "OutputManager":
        """Output manager publishing below ``/infrastructure/<stack name>``."""
        return cls(scope, f"/infrastructure/{Stack.of(scope).stack_name}")

    def add_output(
        self,
        id_: str,
        value: str,
        description: str,
        export_name: str | None = None,
    ) -> CfnOutput:
        """Creates a CloudFormation output.

        Args:
            id_: Unique identifier for the output.
            value: The value returned by ``aws cloudformation describe-stacks``.
            description: A String type that describes the output value.
            export_name: Optional name used to export the value across stacks.
        """
        return CfnOutput(
            self.scope,
            id_,
            value=value,
            export_name=export_name,
            description=description,
        )

    def add_output_with_ssm(
        self,
        id_: str,
        value: str,
        description: str,
        parameter_name: str,
        export_name: str | None = None,
    ) -> ssm.StringParameter:
        """Creates a CloudFormation output and an SSM Parameter holding the same value.

        Args:
            id_: Unique identifier for the output/parameter.
            value: The value returned by ``aws cloudformation describe-stacks``.
            description: A String type that describes the output value.
            parameter_name: Parameter name below ``parameter_prefix``.
            export_name: Optional name used to export the value across stacks.
        """
        self.add_output(id_, value, description, export_name)
        return ssm.StringParameter(
            self.scope,
            f"{id_}Parameter",
            parameter_name=f"{self.parameter_prefix}/{parameter_name}".lower(),
            string_value=value,
            description=description,
        )
