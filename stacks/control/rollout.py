"""Policy-gated rolling deployment onto the compute fleet.

``RolloutModel`` replays what the deployment group does with the declared
minimum-healthy-hosts floor: hosts are taken out of service in batches no
wider than ``healthy - minimum``, drained through the traffic router before
receiving the new revision, and registered again only after their post-update
health check passes. When no host can be taken out of service without
dropping below the floor, the rollout halts and reports failure; it never
force-completes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from stacks.control.target_health import TargetGroupModel

logger = logging.getLogger(__name__)

ApplyRevision = Callable[[str, str], bool]


class DeploymentStatus(str, Enum):
    """Terminal status of a rollout."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RolloutAction(str, Enum):
    """Steps recorded while rolling a revision onto a host."""

    DEREGISTERED = "deregistered"
    UPDATED = "updated"
    REGISTERED = "registered"
    UPDATE_FAILED = "update-failed"
    HALTED = "halted"


@dataclass(frozen=True)
class RolloutEvent:
    at: float
    host_id: str | None
    action: RolloutAction
    healthy_hosts: int


@dataclass(frozen=True)
class DeploymentResult:
    """Outcome of a rollout.

    Attributes:
        status: Terminal status.
        revision: Revision that was rolled out.
        updated_hosts: Hosts now serving the revision.
        failed_hosts: Hosts whose post-update health check failed.
        skipped_hosts: Hosts left on the previous revision after a halt.
        lowest_healthy_hosts: Fewest healthy hosts observed during the rollout.
        events: Ordered record of every step.
        reason: Explanation when the rollout failed.
    """

    status: DeploymentStatus
    revision: str
    updated_hosts: tuple[str, ...]
    failed_hosts: tuple[str, ...]
    skipped_hosts: tuple[str, ...]
    lowest_healthy_hosts: int
    events: tuple[RolloutEvent, ...] = field(default_factory=tuple)
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == DeploymentStatus.SUCCEEDED


class RolloutModel:
    """Rolls revisions over the targets of a target group.

    Args:
        target_group: Router target group holding the fleet members.
        minimum_healthy_hosts: Floor of healthy hosts during a rollout.
    """

    def __init__(self, target_group: TargetGroupModel, minimum_healthy_hosts: int) -> None:
        if minimum_healthy_hosts < 0:
            msg = f"minimum_healthy_hosts must not be negative, got {minimum_healthy_hosts}"
            raise ValueError(msg)
        self.target_group = target_group
        self.minimum_healthy_hosts = minimum_healthy_hosts

    def deploy(
        self,
        revision: str,
        apply_revision: ApplyRevision,
        start_at: float = 0.0,
    ) -> DeploymentResult:
        """Roll ``revision`` onto every registered host.

        Args:
            revision: Identifier of the revision being deployed.
            apply_revision: Installs the revision on a host and reports whether
                the host passes its post-update health check.
            start_at: Clock value at which the rollout starts.

        Returns:
            Result describing the terminal status and every step taken.
        """
        clock = start_at
        group = self.target_group
        pending = group.registered_targets(clock)
        updated: list[str] = []
        failed: list[str] = []
        events: list[RolloutEvent] = []
        lowest = len(group.healthy_targets(clock))

        def record(host_id: str | None, action: RolloutAction) -> None:
            nonlocal lowest
            healthy = len(group.healthy_targets(clock))
            lowest = min(lowest, healthy)
            events.append(RolloutEvent(clock, host_id, action, healthy))

        logger.info(
            "Rolling revision %s onto %d hosts with a floor of %d healthy hosts",
            revision,
            len(pending),
            self.minimum_healthy_hosts,
        )

        while pending:
            healthy = set(group.healthy_targets(clock))
            width = len(healthy) - self.minimum_healthy_hosts
            out_of_service = [host for host in pending if host not in healthy]
            in_service = [host for host in pending if host in healthy]
            batch = out_of_service + in_service[: max(width, 0)]

            if not batch:
                reason = (
                    f"Cannot take a host out of service: {len(healthy)} healthy "
                    f"hosts against a floor of {self.minimum_healthy_hosts}"
                )
                record(None, RolloutAction.HALTED)
                logger.error("Rollout of %s halted: %s", revision, reason)
                return DeploymentResult(
                    status=DeploymentStatus.FAILED,
                    revision=revision,
                    updated_hosts=tuple(updated),
                    failed_hosts=tuple(failed),
                    skipped_hosts=tuple(pending),
                    lowest_healthy_hosts=lowest,
                    events=tuple(events),
                    reason=reason,
                )

            for host in batch:
                group.deregister(host, clock)
                record(host, RolloutAction.DEREGISTERED)
            clock += group.deregistration_delay_seconds
            for host in batch:
                group.target(host).expire(clock)

            batch_ready = clock
            for host in batch:
                pending.remove(host)
                if apply_revision(host, revision):
                    record(host, RolloutAction.UPDATED)
                    batch_ready = max(batch_ready, group.bring_online(host, clock))
                    updated.append(host)
                else:
                    record(host, RolloutAction.UPDATE_FAILED)
                    failed.append(host)
                    logger.warning(
                        "Host %s failed its post-update health check for %s",
                        host,
                        revision,
                    )
            clock = batch_ready
            for host in batch:
                if host in updated:
                    record(host, RolloutAction.REGISTERED)

        healthy_at_end = len(group.healthy_targets(clock))
        if healthy_at_end < self.minimum_healthy_hosts:
            reason = (
                f"Only {healthy_at_end} healthy hosts after the rollout; "
                f"{self.minimum_healthy_hosts} required"
            )
            logger.error("Rollout of %s failed: %s", revision, reason)
            return DeploymentResult(
                status=DeploymentStatus.FAILED,
                revision=revision,
                updated_hosts=tuple(updated),
                failed_hosts=tuple(failed),
                skipped_hosts=(),
                lowest_healthy_hosts=lowest,
                events=tuple(events),
                reason=reason,
            )

        logger.info(
            "Rollout of %s succeeded on %d hosts (%d failed)",
            revision,
            len(updated),
            len(failed),
        )
        return DeploymentResult(
            status=DeploymentStatus.SUCCEEDED,
            revision=revision,
            updated_hosts=tuple(updated),
            failed_hosts=tuple(failed),
            skipped_hosts=(),
            lowest_healthy_hosts=lowest,
            events=tuple(events),
        )
