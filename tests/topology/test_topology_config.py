"""Tests for topology configuration models and loading."""

import pytest
from pydantic import ValidationError

from stacks.configs.topology_config import (
    GITHUB_ISSUER_URL,
    STS_AUDIENCE,
    FleetConfig,
    HealthCheckConfig,
    NetworkConfig,
    SubnetVisibility,
    TopologyConfig,
    TrustFederationConfig,
    load_topology_config,
)
from stacks.topology.errors import TopologyConfigurationError


class TestDefaults:
    """Defaults reproduce the reference deployment."""

    def test_network_defaults(self):
        network = NetworkConfig()

        assert network.cidr == "10.0.0.0/20"
        assert [tier.name for tier in network.tiers] == ["public", "application", "data"]
        assert network.max_azs == 2
        assert network.reserved_azs == 2
        assert network.nat_gateways == 1
        assert network.gateway_endpoints == ["dynamodb", "s3"]

    def test_data_tier_is_reserved_and_isolated(self):
        network = NetworkConfig()

        assert network.tiers_with_visibility(SubnetVisibility.PRIVATE_ISOLATED) == []
        reserved = network.tiers_with_visibility(
            SubnetVisibility.PRIVATE_ISOLATED,
            include_reserved=True,
        )
        assert [tier.name for tier in reserved] == ["data"]

    def test_health_check_defaults(self):
        health_check = HealthCheckConfig()

        assert health_check.path == "/"
        assert health_check.interval_seconds == 10
        assert health_check.healthy_threshold_count == 5
        assert health_check.unhealthy_threshold_count == 2

    def test_fleet_max_capacity_defaults_to_min(self):
        assert FleetConfig(min_capacity=3).effective_max_capacity == 3
        assert FleetConfig(min_capacity=1, max_capacity=4).effective_max_capacity == 4

    def test_trust_defaults(self, topology_config):
        assert topology_config.trust.issuer_url == GITHUB_ISSUER_URL
        assert topology_config.trust.audience == STS_AUDIENCE
        assert topology_config.trust.issuer_host == "token.actions.githubusercontent.com"
        assert topology_config.pipeline.application_name == "your-api"
        assert topology_config.router.deregistration_delay_seconds == 10
        assert topology_config.artifact_store.retain_on_teardown is True


class TestValidation:
    """Invalid values are rejected by the models."""

    @pytest.mark.parametrize("cidr", ["10.0.0.0/8", "10.0.0.0/30", "fd00::/48", "10.0.0.1/20"])
    def test_invalid_cidr(self, cidr):
        with pytest.raises(ValidationError):
            NetworkConfig(cidr=cidr)

    def test_duplicate_tier_names(self):
        tier = {"name": "public", "visibility": "public", "cidr_mask": 24}
        with pytest.raises(ValidationError, match="unique"):
            NetworkConfig(tiers=[tier, tier])

    def test_unknown_gateway_endpoint(self):
        with pytest.raises(ValidationError, match="Unsupported gateway endpoint"):
            NetworkConfig(gateway_endpoints=["s3", "sqs"])

    def test_unsupported_flow_log_retention(self):
        with pytest.raises(ValidationError, match="Flow log retention"):
            NetworkConfig(flow_logs_retention_days=42)

    def test_zero_capacity_is_rejected(self):
        with pytest.raises(ValidationError):
            FleetConfig(min_capacity=0)

    def test_max_below_min_capacity(self):
        with pytest.raises(ValidationError, match="max_capacity"):
            FleetConfig(min_capacity=3, max_capacity=2)

    @pytest.mark.parametrize("field", ["healthy_threshold_count", "unhealthy_threshold_count"])
    @pytest.mark.parametrize("value", [1, 11])
    def test_threshold_bounds(self, field, value):
        with pytest.raises(ValidationError):
            HealthCheckConfig(**{field: value})

    def test_timeout_must_be_shorter_than_interval(self):
        with pytest.raises(ValidationError, match="shorter"):
            HealthCheckConfig(interval_seconds=10, timeout_seconds=10)

    def test_trust_inputs_are_required(self):
        with pytest.raises(ValidationError):
            TrustFederationConfig()
        with pytest.raises(ValidationError):
            TrustFederationConfig(thumbprints=[], subject_patterns=["repo:org/repo:*"])

    @pytest.mark.parametrize("pattern", ["*", "repo:*", "org/repo:*", "repo:org/repo"])
    def test_subject_pattern_must_name_a_repository(self, pattern):
        with pytest.raises(ValidationError, match="Subject pattern"):
            TrustFederationConfig(
                thumbprints=["6938fd4d98bab03faadb97b34396831e3780aea1"],
                subject_patterns=[pattern],
            )

    def test_thumbprint_format(self):
        with pytest.raises(ValidationError, match="40 hexadecimal"):
            TrustFederationConfig(thumbprints=["not-a-thumbprint"], subject_patterns=["repo:o/r:*"])

    def test_thumbprints_are_normalized(self):
        trust = TrustFederationConfig(
            thumbprints=["6938FD4D98BAB03FAADB97B34396831E3780AEA1"],
            subject_patterns=["repo:o/r:*"],
        )
        assert trust.thumbprints == ["6938fd4d98bab03faadb97b34396831e3780aea1"]

    def test_models_are_frozen(self, topology_config):
        with pytest.raises(ValidationError):
            topology_config.environment = "prod"


class TestLoadTopologyConfig:
    """Loading raw context values."""

    def test_missing_configuration(self):
        with pytest.raises(TopologyConfigurationError, match="'topology' CDK context"):
            load_topology_config(None)

    def test_validation_error_names_location(self, raw_topology):
        raw = {**raw_topology, "fleet": {"min_capacity": 0}}
        with pytest.raises(TopologyConfigurationError, match="fleet.min_capacity"):
            load_topology_config(raw)

    def test_missing_trust_section(self):
        with pytest.raises(TopologyConfigurationError, match="trust"):
            load_topology_config({"app_name": "Services"})

    def test_environment_overrides_are_merged(self, raw_topology):
        overrides = {"prod": {"fleet": {"min_capacity": 2, "max_capacity": 4}}}
        raw = {**raw_topology, "fleet": {"instance_type": "t3.medium"}}

        config = load_topology_config(raw, environment="prod", environment_overrides=overrides)

        assert isinstance(config, TopologyConfig)
        assert config.environment == "prod"
        assert config.fleet.instance_type == "t3.medium"
        assert config.fleet.min_capacity == 2
        assert config.fleet.max_capacity == 4

    def test_unlisted_environment_uses_base(self, raw_topology):
        overrides = {"prod": {"fleet": {"min_capacity": 3}}}

        config = load_topology_config(raw_topology, environment="dev", environment_overrides=overrides)

        assert config.environment == "dev"
        assert config.fleet.min_capacity == 2
