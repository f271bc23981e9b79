"""Tests for target health evaluation."""

import pytest

from stacks.configs.topology_config import HealthCheckConfig
from stacks.control.target_health import (
    NoHealthyTargetsError,
    TargetGroupModel,
    TargetHealth,
    TargetState,
    time_to_healthy,
    time_to_unhealthy,
)

HEALTH_CHECK = HealthCheckConfig()
DRAIN_SECONDS = 10


def _healthy_target(target_id: str = "i-1") -> TargetHealth:
    target = TargetHealth(target_id, HEALTH_CHECK, DRAIN_SECONDS)
    for at in range(0, 50, 10):
        target.record_check(True, at)
    return target


class TestTargetHealth:
    """State machine of a single target."""

    def test_new_target_starts_unknown(self):
        target = TargetHealth("i-1", HEALTH_CHECK, DRAIN_SECONDS)
        assert target.state == TargetState.UNKNOWN
        assert not target.accepts_new_connections(0)

    def test_healthy_after_threshold_passes(self):
        target = TargetHealth("i-1", HEALTH_CHECK, DRAIN_SECONDS)
        for at in range(0, 40, 10):
            assert target.record_check(True, at) == TargetState.UNKNOWN
        assert target.record_check(True, 40) == TargetState.HEALTHY
        assert target.transitions[-1].at == time_to_healthy(HEALTH_CHECK) == 40

    def test_unhealthy_after_threshold_failures(self):
        target = _healthy_target()
        assert target.record_check(False, 50) == TargetState.HEALTHY
        assert target.record_check(False, 60) == TargetState.UNHEALTHY
        assert not target.accepts_new_connections(60)
        assert target.serves_in_flight(60)
        assert time_to_unhealthy(HEALTH_CHECK) == 10

    def test_pass_resets_failure_streak(self):
        target = _healthy_target()
        target.record_check(False, 50)
        target.record_check(True, 60)
        assert target.record_check(False, 70) == TargetState.HEALTHY

    def test_unhealthy_target_recovers(self):
        target = _healthy_target()
        target.record_check(False, 50)
        target.record_check(False, 60)
        for at in range(70, 120, 10):
            target.record_check(True, at)
        assert target.state == TargetState.HEALTHY

    def test_deregistered_target_drains_then_becomes_unused(self):
        target = _healthy_target()
        assert target.deregister(100) == TargetState.DRAINING
        assert target.drain_deadline == 100 + DRAIN_SECONDS
        assert not target.accepts_new_connections(105)
        assert target.serves_in_flight(105)
        assert target.expire(110) == TargetState.UNUSED
        assert not target.serves_in_flight(110)

    def test_checks_ignored_while_draining(self):
        target = _healthy_target()
        target.deregister(100)
        assert target.record_check(True, 102) == TargetState.DRAINING


class TestTargetGroupModel:
    """Routing over registered targets."""

    @pytest.fixture
    def group(self):
        group = TargetGroupModel(HEALTH_CHECK, DRAIN_SECONDS)
        for target_id in ("i-1", "i-2"):
            group.bring_online(target_id, 0)
        return group

    def test_bring_online_returns_time_healthy(self):
        group = TargetGroupModel(HEALTH_CHECK, DRAIN_SECONDS)
        assert group.bring_online("i-1", 100) == 140

    def test_round_robin_over_healthy_targets(self, group):
        assert [group.route(50) for _ in range(4)] == ["i-1", "i-2", "i-1", "i-2"]

    def test_draining_target_receives_no_new_connections(self, group):
        group.deregister("i-1", 50)
        assert {group.route(51) for _ in range(3)} == {"i-2"}
        assert group.registered_targets(51) == ["i-2"]

    def test_no_healthy_targets(self, group):
        group.deregister("i-1", 50)
        group.deregister("i-2", 50)
        with pytest.raises(NoHealthyTargetsError):
            group.route(51)

    def test_reregistered_target_starts_over(self, group):
        group.deregister("i-1", 50)
        target = group.register("i-1")
        assert target.state == TargetState.UNKNOWN

    def test_unknown_target(self, group):
        with pytest.raises(KeyError, match="i-9"):
            group.target("i-9")
