"""Configuration models for the services topology.

Every tunable of the topology (address block, subnet tiers, instance shape,
health-check policy, deployment floor, federated trust inputs and artifact
store settings) is declared here and validated before synthesis. The trust
subject patterns and provider thumbprints have no defaults: a topology without
them is rejected.
"""

import ipaddress
import re
from enum import Enum
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from stacks.topology.errors import TopologyConfigurationError

DEFAULT_BOOTSTRAP_SCRIPT: Final[Path] = (
    Path(__file__).resolve().parents[2] / "assets" / "user-data.sh"
)
GITHUB_ISSUER_URL: Final[str] = "https://token.actions.githubusercontent.com"
STS_AUDIENCE: Final[str] = "sts.amazonaws.com"
GATEWAY_ENDPOINT_SERVICES: Final[tuple[str, ...]] = ("dynamodb", "s3")
FLOW_LOG_RETENTION_DAYS: Final[tuple[int, ...]] = (1, 3, 5, 7, 14, 30, 60, 90, 180, 365)

_THUMBPRINT_PATTERN = re.compile(r"^[0-9a-fA-F]{40}$")
_SUBJECT_PATTERN = re.compile(r"^repo:[^/:\s]+/[^/:\s]+:\S+$")


class SubnetVisibility(str, Enum):
    """Routing class of a subnet tier.

    Values:
        PUBLIC: Default route to the internet gateway.
        PRIVATE_EGRESS: Default route through a NAT gateway.
        PRIVATE_ISOLATED: No default route out of the network.
    """

    PUBLIC = "public"
    PRIVATE_EGRESS = "private-egress"
    PRIVATE_ISOLATED = "private-isolated"


class MachineImage(str, Enum):
    """Machine images supported for fleet members."""

    AMAZON_LINUX_2 = "amazon-linux-2"
    AMAZON_LINUX_2023 = "amazon-linux-2023"


class ArtifactEncryption(str, Enum):
    """Encryption-at-rest modes for the release artifact store."""

    KMS_MANAGED = "kms-managed"
    S3_MANAGED = "s3-managed"


class SubnetTierConfig(BaseModel):
    """One subnet tier, replicated once per availability zone.

    Attributes:
        name: Tier name, unique within the network.
        visibility: Routing class of the tier.
        cidr_mask: Prefix length of each subnet in the tier.
        reserved: Set aside address space without provisioning subnets.
    """

    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    visibility: SubnetVisibility
    cidr_mask: int = Field(ge=16, le=28)
    reserved: bool = False


def _default_tiers() -> list[SubnetTierConfig]:
    return [
        SubnetTierConfig(
            name="public",
            visibility=SubnetVisibility.PUBLIC,
            cidr_mask=24,
        ),
        SubnetTierConfig(
            name="application",
            visibility=SubnetVisibility.PRIVATE_EGRESS,
            cidr_mask=24,
        ),
        SubnetTierConfig(
            name="data",
            visibility=SubnetVisibility.PRIVATE_ISOLATED,
            cidr_mask=24,
            reserved=True,
        ),
    ]


class NetworkConfig(BaseModel):
    """Configuration for the segmented virtual network.

    Attributes:
        cidr: Base address block of the network.
        tiers: Subnet tiers in allocation order.
        max_azs: Number of availability zones that receive subnets.
        reserved_azs: Extra availability zones whose address space is set aside.
        nat_gateways: Number of NAT egress paths.
        gateway_endpoints: Managed services reached through gateway endpoints.
        enable_flow_logs: Whether VPC flow logs are delivered to CloudWatch.
        flow_logs_retention_days: Retention of the flow log group.
    """

    model_config = {"frozen": True}

    cidr: str = "10.0.0.0/20"
    tiers: list[SubnetTierConfig] = Field(default_factory=_default_tiers)
    max_azs: int = Field(default=2, ge=1)
    reserved_azs: int = Field(default=2, ge=0)
    nat_gateways: int = Field(default=1, ge=0)
    gateway_endpoints: list[str] = Field(default_factory=lambda: ["dynamodb", "s3"])
    enable_flow_logs: bool = True
    flow_logs_retention_days: int = Field(default=30, ge=1)

    @field_validator("cidr")
    @classmethod
    def _validate_cidr(cls, value: str) -> str:
        network = ipaddress.ip_network(value, strict=True)
        if network.version != 4:
            msg = f"Network CIDR {value} must be an IPv4 block"
            raise ValueError(msg)
        if not 16 <= network.prefixlen <= 28:
            msg = f"Network CIDR {value} must have a prefix between /16 and /28"
            raise ValueError(msg)
        return value

    @field_validator("tiers")
    @classmethod
    def _validate_tiers(cls, value: list[SubnetTierConfig]) -> list[SubnetTierConfig]:
        if not value:
            msg = "At least one subnet tier is required"
            raise ValueError(msg)
        names = [tier.name for tier in value]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            msg = f"Subnet tier names must be unique, duplicated: {duplicates}"
            raise ValueError(msg)
        return value

    @field_validator("gateway_endpoints")
    @classmethod
    def _validate_gateway_endpoints(cls, value: list[str]) -> list[str]:
        unknown = sorted(set(value) - set(GATEWAY_ENDPOINT_SERVICES))
        if unknown:
            msg = (
                f"Unsupported gateway endpoint services {unknown}; "
                f"supported: {list(GATEWAY_ENDPOINT_SERVICES)}"
            )
            raise ValueError(msg)
        if len(set(value)) != len(value):
            msg = "Gateway endpoint services must not repeat"
            raise ValueError(msg)
        return value

    @field_validator("flow_logs_retention_days")
    @classmethod
    def _validate_retention(cls, value: int) -> int:
        if value not in FLOW_LOG_RETENTION_DAYS:
            msg = f"Flow log retention must be one of {list(FLOW_LOG_RETENTION_DAYS)} days"
            raise ValueError(msg)
        return value

    def tiers_with_visibility(
        self,
        visibility: SubnetVisibility,
        include_reserved: bool = False,
    ) -> list[SubnetTierConfig]:
        """Tiers of the given routing class, active tiers only by default."""
        return [
            tier
            for tier in self.tiers
            if tier.visibility == visibility and (include_reserved or not tier.reserved)
        ]


class FleetConfig(BaseModel):
    """Configuration for the autoscaled compute fleet.

    Attributes:
        instance_type: Instance shape, e.g. ``t3.small``.
        machine_image: Machine image family for fleet members.
        min_capacity: Minimum number of running members (at least one).
        max_capacity: Maximum number of members, defaults to ``min_capacity``.
        bootstrap_script_path: Shell payload executed once per new member.
        health_check_grace_seconds: Time a new member gets to bootstrap before
            its health is evaluated for replacement.
    """

    model_config = {"frozen": True}

    instance_type: str = Field(default="t3.small", pattern=r"^[a-z0-9-]+\.[a-z0-9]+$")
    machine_image: MachineImage = MachineImage.AMAZON_LINUX_2
    min_capacity: int = Field(default=2, ge=1)
    max_capacity: int | None = None
    bootstrap_script_path: Path = DEFAULT_BOOTSTRAP_SCRIPT
    health_check_grace_seconds: int = Field(default=300, ge=0)

    @model_validator(mode="after")
    def _validate_capacity(self) -> "FleetConfig":
        if self.max_capacity is not None and self.max_capacity < self.min_capacity:
            msg = (
                f"max_capacity ({self.max_capacity}) must not be lower than "
                f"min_capacity ({self.min_capacity})"
            )
            raise ValueError(msg)
        return self

    @property
    def effective_max_capacity(self) -> int:
        """Upper capacity bound with the default applied."""
        return self.max_capacity if self.max_capacity is not None else self.min_capacity


class HealthCheckConfig(BaseModel):
    """Load balancer health-check policy for fleet members.

    Attributes:
        path: HTTP path probed on each member.
        interval_seconds: Time between two checks of the same target.
        timeout_seconds: Time after which a check counts as failed.
        healthy_threshold_count: Consecutive passes before a target is healthy.
        unhealthy_threshold_count: Consecutive failures before a target is unhealthy.
    """

    model_config = {"frozen": True}

    path: str = Field(default="/", pattern=r"^/")
    interval_seconds: int = Field(default=10, ge=5, le=300)
    timeout_seconds: int = Field(default=5, ge=2, le=120)
    healthy_threshold_count: int = Field(default=5, ge=2, le=10)
    unhealthy_threshold_count: int = Field(default=2, ge=2, le=10)

    @model_validator(mode="after")
    def _validate_timeout(self) -> "HealthCheckConfig":
        if self.timeout_seconds >= self.interval_seconds:
            msg = (
                f"Health check timeout ({self.timeout_seconds}s) must be shorter "
                f"than the interval ({self.interval_seconds}s)"
            )
            raise ValueError(msg)
        return self


class TrafficRouterConfig(BaseModel):
    """Configuration for the internet-facing load balancer."""

    model_config = {"frozen": True}

    load_balancer_name: str = Field(default="api-load-balancer", max_length=32)
    listener_port: int = Field(default=80, ge=1, le=65535)
    target_port: int = Field(default=80, ge=1, le=65535)
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    deregistration_delay_seconds: int = Field(default=10, ge=0, le=3600)


class DeploymentPipelineConfig(BaseModel):
    """Configuration for the push-style deployment pipeline.

    Attributes:
        application_name: Name of the deployment application.
        minimum_healthy_hosts: Floor of healthy hosts kept during a rollout.
        install_agent: Install the deployment agent on fleet members.
        execution_role_name: Name of the role the deployment service assumes.
    """

    model_config = {"frozen": True}

    application_name: str = Field(default="your-api", min_length=1)
    minimum_healthy_hosts: int = Field(default=1, ge=0)
    install_agent: bool = True
    execution_role_name: str = Field(default="ec2-codedeploy-role", min_length=1)


class TrustFederationConfig(BaseModel):
    """Federated identity inputs for the external CI system.

    ``thumbprints`` and ``subject_patterns`` are required: the trust boundary
    is never derived from values baked into the topology.

    Attributes:
        issuer_url: OpenID Connect issuer of the CI tokens.
        audience: Expected ``aud`` claim.
        thumbprints: Certificate thumbprints of the issuer.
        subject_patterns: Accepted ``sub`` claim patterns, ``repo:<org>/<repo>:*``.
        role_name: Name of the role assumed by CI.
        max_session_hours: Upper bound of an assumed-role session.
    """

    model_config = {"frozen": True}

    issuer_url: str = Field(default=GITHUB_ISSUER_URL, pattern=r"^https://[^\s/]+")
    audience: str = Field(default=STS_AUDIENCE, min_length=1)
    thumbprints: list[str] = Field(min_length=1)
    subject_patterns: list[str] = Field(min_length=1)
    role_name: str = Field(default="githubactions-ec2-codedeploy-role", min_length=1)
    max_session_hours: int = Field(default=1, ge=1, le=12)

    @field_validator("thumbprints")
    @classmethod
    def _validate_thumbprints(cls, value: list[str]) -> list[str]:
        for thumbprint in value:
            if not _THUMBPRINT_PATTERN.match(thumbprint):
                msg = f"Thumbprint {thumbprint!r} must be 40 hexadecimal characters"
                raise ValueError(msg)
        return [thumbprint.lower() for thumbprint in value]

    @field_validator("subject_patterns")
    @classmethod
    def _validate_subject_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            if not _SUBJECT_PATTERN.match(pattern):
                msg = (
                    f"Subject pattern {pattern!r} must look like "
                    "'repo:<org>/<repo>:<ref-pattern>'"
                )
                raise ValueError(msg)
        return value

    @property
    def issuer_host(self) -> str:
        """Issuer URL without scheme, the prefix of token condition keys."""
        return self.issuer_url.removeprefix("https://").rstrip("/")


class ArtifactStoreConfig(BaseModel):
    """Configuration for the release artifact store.

    Attributes:
        encryption: Encryption-at-rest mode.
        versioned: Keep previous object versions.
        retain_on_teardown: Keep the store and its artifacts when the stack is
            destroyed.
        noncurrent_version_expiration_days: Lifetime of superseded versions.
    """

    model_config = {"frozen": True}

    encryption: ArtifactEncryption = ArtifactEncryption.KMS_MANAGED
    versioned: bool = True
    retain_on_teardown: bool = True
    noncurrent_version_expiration_days: int = Field(default=30, ge=1)


class TopologyConfig(BaseModel):
    """Complete declaration of the services topology."""

    model_config = {"frozen": True}

    app_name: str = Field(default="Services", pattern=r"^[A-Za-z][A-Za-z0-9-]*$")
    environment: str = Field(default="dev", min_length=1)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    fleet: FleetConfig = Field(default_factory=FleetConfig)
    router: TrafficRouterConfig = Field(default_factory=TrafficRouterConfig)
    pipeline: DeploymentPipelineConfig = Field(default_factory=DeploymentPipelineConfig)
    trust: TrustFederationConfig
    artifact_store: ArtifactStoreConfig = Field(default_factory=ArtifactStoreConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_topology_config(
    raw: dict[str, Any] | None,
    environment: str | None = None,
    environment_overrides: dict[str, Any] | None = None,
) -> TopologyConfig:
    """Validate raw configuration into a ``TopologyConfig``.

    Args:
        raw: Base configuration, typically the ``topology`` CDK context value.
        environment: Deployment environment name; selects an override block.
        environment_overrides: Mapping of environment name to partial
            configuration merged over ``raw``.

    Returns:
        Validated, immutable topology configuration.

    Raises:
        TopologyConfigurationError: If the configuration is missing or invalid.
    """
    if raw is None:
        msg = "No topology configuration found; set the 'topology' CDK context value"
        raise TopologyConfigurationError(msg)

    data = dict(raw)
    if environment:
        data["environment"] = environment
        override = (environment_overrides or {}).get(environment)
        if override:
            data = _deep_merge(data, override)

    try:
        return TopologyConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "topology"
        msg = f"Invalid topology configuration at '{location}': {first['msg']}"
        raise TopologyConfigurationError(msg) from e
