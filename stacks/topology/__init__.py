"""Topology model for the services deployment.

This module provides the named-reference resource graph and the error types
shared by the configuration models. The address planner and the builder live
in ``stacks.topology.subnet_plan`` and ``stacks.topology.builder``.
"""

from .errors import (
    AddressSpaceError,
    DependencyCycleError,
    TopologyConfigurationError,
    TopologyError,
    UnresolvedReferenceError,
)
from .graph import DependencyRegistry, ResourceGraph, ResourceKind, ResourceRef

__all__ = [
    "AddressSpaceError",
    "DependencyCycleError",
    "DependencyRegistry",
    "ResourceGraph",
    "ResourceKind",
    "ResourceRef",
    "TopologyConfigurationError",
    "TopologyError",
    "UnresolvedReferenceError",
]
