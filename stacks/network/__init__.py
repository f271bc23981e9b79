"""Network infrastructure module for the services topology.

This module provides the segmented VPC and the gateway endpoints that keep
managed-service traffic of the private tiers off the NAT path.
"""

from .egress_endpoints import EgressOptimization
from .network_stack import NetworkStack

__all__ = ["EgressOptimization", "NetworkStack"]
