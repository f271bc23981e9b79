"""Target health evaluation for the traffic router.

Models how the load balancer judges each registered fleet member from the
declared ``HealthCheckConfig`` and deregistration delay:

    unknown   -> healthy    after ``healthy_threshold_count`` consecutive passes
    unknown   -> unhealthy  after ``unhealthy_threshold_count`` consecutive failures
    healthy   -> unhealthy  after ``unhealthy_threshold_count`` consecutive failures
    unhealthy -> healthy    after ``healthy_threshold_count`` consecutive passes
    any       -> draining   when deregistered
    draining  -> unused     once the deregistration delay has elapsed

A draining target keeps serving in-flight connections until the delay ends and
never receives a new connection.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from stacks.configs.topology_config import HealthCheckConfig

logger = logging.getLogger(__name__)


class TargetState(str, Enum):
    """Health state of a registered target."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DRAINING = "draining"
    UNUSED = "unused"


class NoHealthyTargetsError(RuntimeError):
    """Raised when a connection arrives and no target is healthy."""


@dataclass(frozen=True)
class StateTransition:
    """A recorded state change of one target."""

    at: float
    previous: TargetState
    current: TargetState


def time_to_healthy(health_check: HealthCheckConfig) -> int:
    """Seconds between the first passing check and a new target turning healthy."""
    return (health_check.healthy_threshold_count - 1) * health_check.interval_seconds


def time_to_unhealthy(health_check: HealthCheckConfig) -> int:
    """Seconds between the first failing check and a healthy target turning unhealthy."""
    return (health_check.unhealthy_threshold_count - 1) * health_check.interval_seconds


class TargetHealth:
    """Health state machine of a single target.

    Args:
        target_id: Identifier of the fleet member.
        health_check: Declared health-check policy.
        deregistration_delay_seconds: Drain window after deregistration.
    """

    def __init__(
        self,
        target_id: str,
        health_check: HealthCheckConfig,
        deregistration_delay_seconds: int,
    ) -> None:
        self.target_id = target_id
        self.health_check = health_check
        self.deregistration_delay_seconds = deregistration_delay_seconds
        self.state = TargetState.UNKNOWN
        self.transitions: list[StateTransition] = []
        self._consecutive_passes = 0
        self._consecutive_failures = 0
        self._draining_since: float | None = None

    @property
    def drain_deadline(self) -> float | None:
        """Time at which draining ends, ``None`` if not draining."""
        if self._draining_since is None:
            return None
        return self._draining_since + self.deregistration_delay_seconds

    def record_check(self, passed: bool, at: float) -> TargetState:
        """Feed the result of one health check taken at ``at``.

        Checks against a deregistered target are ignored.
        """
        self.expire(at)
        if self.state in (TargetState.DRAINING, TargetState.UNUSED):
            return self.state

        if passed:
            self._consecutive_passes += 1
            self._consecutive_failures = 0
            if (
                self.state != TargetState.HEALTHY
                and self._consecutive_passes >= self.health_check.healthy_threshold_count
            ):
                self._transition(TargetState.HEALTHY, at)
        else:
            self._consecutive_failures += 1
            self._consecutive_passes = 0
            if (
                self.state != TargetState.UNHEALTHY
                and self._consecutive_failures
                >= self.health_check.unhealthy_threshold_count
            ):
                self._transition(TargetState.UNHEALTHY, at)
        return self.state

    def deregister(self, at: float) -> TargetState:
        """Start draining the target."""
        if self.state not in (TargetState.DRAINING, TargetState.UNUSED):
            self._draining_since = at
            self._transition(TargetState.DRAINING, at)
        self.expire(at)
        return self.state

    def expire(self, at: float) -> TargetState:
        """Finish draining once the deregistration delay has elapsed."""
        deadline = self.drain_deadline
        if self.state == TargetState.DRAINING and deadline is not None and at >= deadline:
            self._transition(TargetState.UNUSED, deadline)
        return self.state

    def accepts_new_connections(self, at: float) -> bool:
        """Whether the router may send a new connection to this target."""
        self.expire(at)
        return self.state == TargetState.HEALTHY

    def serves_in_flight(self, at: float) -> bool:
        """Whether connections already open on this target keep being served."""
        self.expire(at)
        return self.state in (
            TargetState.HEALTHY,
            TargetState.UNHEALTHY,
            TargetState.DRAINING,
        )

    def _transition(self, state: TargetState, at: float) -> None:
        previous = self.state
        self.state = state
        self.transitions.append(StateTransition(at=at, previous=previous, current=state))
        logger.debug(
            "Target %s: %s -> %s at %.1fs",
            self.target_id,
            previous.value,
            state.value,
            at,
        )


class TargetGroupModel:
    """Registered targets of the router and round-robin routing over them.

    Args:
        health_check: Declared health-check policy.
        deregistration_delay_seconds: Drain window after deregistration.
    """

    def __init__(
        self,
        health_check: HealthCheckConfig,
        deregistration_delay_seconds: int,
    ) -> None:
        self.health_check = health_check
        self.deregistration_delay_seconds = deregistration_delay_seconds
        self._targets: dict[str, TargetHealth] = {}
        self._cursor = 0

    def register(self, target_id: str) -> TargetHealth:
        """Register a target; a previously deregistered target starts over."""
        existing = self._targets.get(target_id)
        if existing is not None and existing.state not in (
            TargetState.DRAINING,
            TargetState.UNUSED,
        ):
            return existing
        target = TargetHealth(
            target_id,
            self.health_check,
            self.deregistration_delay_seconds,
        )
        self._targets[target_id] = target
        return target

    def deregister(self, target_id: str, at: float) -> TargetHealth:
        target = self.target(target_id)
        target.deregister(at)
        return target

    def target(self, target_id: str) -> TargetHealth:
        try:
            return self._targets[target_id]
        except KeyError:
            msg = f"Target '{target_id}' is not registered"
            raise KeyError(msg) from None

    def record_check(self, target_id: str, passed: bool, at: float) -> TargetState:
        return self.target(target_id).record_check(passed, at)

    @property
    def target_ids(self) -> list[str]:
        return list(self._targets)

    def registered_targets(self, at: float) -> list[str]:
        """Targets that are registered and not draining."""
        return [
            target_id
            for target_id, target in self._targets.items()
            if target.expire(at) not in (TargetState.DRAINING, TargetState.UNUSED)
        ]

    def healthy_targets(self, at: float) -> list[str]:
        return [
            target_id
            for target_id, target in self._targets.items()
            if target.accepts_new_connections(at)
        ]

    def route(self, at: float) -> str:
        """Pick the target for a new connection, round-robin over healthy targets.

        Raises:
            NoHealthyTargetsError: If no target is healthy.
        """
        healthy = self.healthy_targets(at)
        if not healthy:
            msg = "No healthy targets available for new connections"
            raise NoHealthyTargetsError(msg)
        chosen = healthy[self._cursor % len(healthy)]
        self._cursor += 1
        return chosen

    def bring_online(self, target_id: str, at: float) -> float:
        """Register a target and feed passing checks until it turns healthy.

        Returns:
            Time at which the target became healthy.
        """
        target = self.register(target_id)
        check_at = at
        while target.record_check(True, check_at) != TargetState.HEALTHY:
            check_at += self.health_check.interval_seconds
        return check_at
