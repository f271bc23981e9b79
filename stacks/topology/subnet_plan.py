"""Address planning for the segmented network.

Subnets are carved from the base block tier by tier, one block per
availability zone slot, each aligned to its own mask. This is the allocation
``ec2.Vpc`` performs for subnet configurations with an explicit ``cidr_mask``,
so the plan equals the subnets CDK synthesizes and can be validated before any
construct exists.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Sequence

from stacks.configs.topology_config import SubnetTierConfig, SubnetVisibility
from stacks.topology.errors import AddressSpaceError

logger = logging.getLogger(__name__)

MIN_SUBNET_MASK = 16
MAX_SUBNET_MASK = 28


@dataclass(frozen=True)
class PlannedSubnet:
    """One address block of the plan.

    Attributes:
        tier: Name of the owning tier.
        visibility: Routing class of the tier.
        cidr: Allocated address block.
        availability_zone: Zone of the subnet, ``None`` for reserved zone slots.
        provisioned: Whether a subnet resource is created for this block.
    """

    tier: str
    visibility: SubnetVisibility
    cidr: ipaddress.IPv4Network
    availability_zone: str | None
    provisioned: bool


@dataclass(frozen=True)
class SubnetPlan:
    """Result of planning a network's subnets."""

    network: ipaddress.IPv4Network
    subnets: tuple[PlannedSubnet, ...]

    @property
    def provisioned(self) -> tuple[PlannedSubnet, ...]:
        """Blocks that become real subnets."""
        return tuple(subnet for subnet in self.subnets if subnet.provisioned)

    def by_visibility(self, visibility: SubnetVisibility) -> tuple[PlannedSubnet, ...]:
        """Provisioned subnets of a routing class."""
        return tuple(
            subnet for subnet in self.provisioned if subnet.visibility == visibility
        )

    def by_tier(self, tier: str) -> tuple[PlannedSubnet, ...]:
        """All blocks, provisioned or reserved, owned by a tier."""
        return tuple(subnet for subnet in self.subnets if subnet.tier == tier)

    @property
    def free_addresses(self) -> int:
        """Addresses of the base block not covered by any planned block."""
        used = sum(subnet.cidr.num_addresses for subnet in self.subnets)
        return self.network.num_addresses - used


def _align(address: int, prefixlen: int) -> int:
    size = 1 << (32 - prefixlen)
    return (address + size - 1) // size * size


def plan_subnets(
    cidr: str,
    tiers: Sequence[SubnetTierConfig],
    availability_zones: Sequence[str],
    reserved_azs: int = 0,
) -> SubnetPlan:
    """Allocate one block per (tier, availability zone slot).

    Args:
        cidr: Base address block of the network.
        tiers: Subnet tiers in allocation order.
        availability_zones: Zones that receive provisioned subnets.
        reserved_azs: Additional zone slots whose address space is set aside.

    Returns:
        Plan with disjoint blocks contained in ``cidr``.

    Raises:
        AddressSpaceError: If a mask is out of range or the block is exhausted.
    """
    network = ipaddress.IPv4Network(cidr)
    slots: list[str | None] = [*availability_zones, *([None] * reserved_azs)]
    if not slots:
        msg = "At least one availability zone is required to plan subnets"
        raise AddressSpaceError(msg)

    next_address = int(network.network_address)
    end = int(network.broadcast_address) + 1
    subnets: list[PlannedSubnet] = []

    for tier in tiers:
        if not MIN_SUBNET_MASK <= tier.cidr_mask <= MAX_SUBNET_MASK:
            msg = (
                f"Tier '{tier.name}' mask /{tier.cidr_mask} is outside "
                f"/{MIN_SUBNET_MASK}-/{MAX_SUBNET_MASK}"
            )
            raise AddressSpaceError(msg)
        if tier.cidr_mask < network.prefixlen:
            msg = (
                f"Tier '{tier.name}' mask /{tier.cidr_mask} is larger than the "
                f"network block {network}"
            )
            raise AddressSpaceError(msg)

        for zone in slots:
            start = _align(next_address, tier.cidr_mask)
            block = ipaddress.IPv4Network((start, tier.cidr_mask))
            if start + block.num_addresses > end:
                msg = (
                    f"Network {network} has insufficient address space for tier "
                    f"'{tier.name}' (/{tier.cidr_mask}) across {len(slots)} "
                    "availability zone slots"
                )
                raise AddressSpaceError(msg)
            subnets.append(
                PlannedSubnet(
                    tier=tier.name,
                    visibility=tier.visibility,
                    cidr=block,
                    availability_zone=zone,
                    provisioned=not tier.reserved and zone is not None,
                ),
            )
            next_address = start + block.num_addresses

    plan = SubnetPlan(network=network, subnets=tuple(subnets))
    logger.debug(
        "Planned %d subnet blocks in %s, %d provisioned, %d addresses free",
        len(plan.subnets),
        network,
        len(plan.provisioned),
        plan.free_addresses,
    )
    return plan


def assert_disjoint(plan: SubnetPlan) -> None:
    """Check that every block is inside the network and no two blocks overlap.

    Raises:
        AddressSpaceError: On the first block that escapes or overlaps.
    """
    seen: list[PlannedSubnet] = []
    for subnet in plan.subnets:
        if not subnet.cidr.subnet_of(plan.network):
            msg = f"Subnet {subnet.cidr} of tier '{subnet.tier}' is outside {plan.network}"
            raise AddressSpaceError(msg)
        for other in seen:
            if subnet.cidr.overlaps(other.cidr):
                msg = (
                    f"Subnet {subnet.cidr} of tier '{subnet.tier}' overlaps "
                    f"{other.cidr} of tier '{other.tier}'"
                )
                raise AddressSpaceError(msg)
        seen.append(subnet)
