"""Immutable resource graph with named cross-references.

Components refer to each other by name through ``ResourceRef`` rather than by
live construct handles. References are collected in a ``DependencyRegistry``
in any order and resolved by ``freeze()``, which rejects dangling references
and cycles and fixes a deterministic creation order. The frozen
``ResourceGraph`` is the checkable form of the topology: its fingerprint is
stable across re-synthesis and ``diff`` reports the changes between two
declarations.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from stacks.topology.errors import (
    DependencyCycleError,
    TopologyConfigurationError,
    UnresolvedReferenceError,
)

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Kinds of resources making up the services topology."""

    NETWORK = "network"
    EGRESS_OPTIMIZATION = "egress-optimization"
    COMPUTE_FLEET = "compute-fleet"
    TRAFFIC_ROUTER = "traffic-router"
    DEPLOYMENT_PIPELINE = "deployment-pipeline"
    ARTIFACT_STORE = "artifact-store"
    TRUST_FEDERATION = "trust-federation"
    TRUST_GRANTS = "trust-grants"
    ARTIFACT_STORE_GRANTS = "artifact-store-grants"


class ChangeAction(str, Enum):
    """Kind of change between two declarations of the same resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ResourceRef:
    """Named reference to a registered resource."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, eq=False)
class ResourceNode:
    """A resource, its dependencies and its declared attributes."""

    name: str
    kind: ResourceKind
    depends_on: tuple[str, ...]
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def canonical(self) -> dict[str, Any]:
        """JSON-compatible view used for fingerprints and diffs."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "depends_on": sorted(self.depends_on),
            "attributes": json.loads(
                json.dumps(dict(self.attributes), sort_keys=True, default=str),
            ),
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceNode):
            return NotImplemented
        return self.canonical() == other.canonical()

    def __hash__(self) -> int:
        return hash((self.name, self.kind))


@dataclass(frozen=True)
class ResourceChange:
    """One difference between two resource graphs."""

    name: str
    action: ChangeAction


@dataclass(frozen=True)
class ResourceGraph:
    """Validated topology, nodes stored in creation order."""

    nodes: tuple[ResourceNode, ...]

    def topological_order(self) -> tuple[ResourceNode, ...]:
        """Nodes ordered so every dependency precedes its dependents."""
        return self.nodes

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(node.name for node in self.nodes)

    def node(self, name: str | ResourceRef) -> ResourceNode:
        """Look up a node by name or reference.

        Raises:
            UnresolvedReferenceError: If no such node exists.
        """
        key = str(name)
        for node in self.nodes:
            if node.name == key:
                return node
        msg = f"Resource '{key}' is not part of the topology"
        raise UnresolvedReferenceError(msg)

    def dependencies_of(self, name: str | ResourceRef) -> frozenset[str]:
        """Transitive dependencies of a node."""
        pending = list(self.node(name).depends_on)
        found: set[str] = set()
        while pending:
            current = pending.pop()
            if current in found:
                continue
            found.add(current)
            pending.extend(self.node(current).depends_on)
        return frozenset(found)

    def precedes(self, first: str, second: str) -> bool:
        """Whether ``first`` is created before ``second``."""
        names = self.names
        return names.index(first) < names.index(second)

    def canonical(self) -> list[dict[str, Any]]:
        return [node.canonical() for node in sorted(self.nodes, key=lambda n: n.name)]

    def fingerprint(self) -> str:
        """Stable digest of the declared topology."""
        payload = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def diff(self, desired: "ResourceGraph") -> tuple[ResourceChange, ...]:
        """Changes needed to move from this graph to ``desired``.

        Applying an unchanged declaration yields an empty tuple.
        """
        current = {node.name: node for node in self.nodes}
        target = {node.name: node for node in desired.nodes}
        changes: list[ResourceChange] = []
        for name in desired.names:
            if name not in current:
                changes.append(ResourceChange(name, ChangeAction.CREATE))
            elif current[name] != target[name]:
                changes.append(ResourceChange(name, ChangeAction.UPDATE))
        for name in reversed(self.names):
            if name not in target:
                changes.append(ResourceChange(name, ChangeAction.DELETE))
        return tuple(changes)


class DependencyRegistry:
    """Collects resources and their named dependencies before validation."""

    def __init__(self) -> None:
        self._nodes: dict[str, ResourceNode] = {}

    def register(
        self,
        name: str,
        kind: ResourceKind,
        depends_on: Iterable[ResourceRef | str] = (),
        **attributes: Any,
    ) -> ResourceRef:
        """Register a resource and return a reference to it.

        Dependencies may name resources registered later; they are resolved
        when the registry is frozen.

        Raises:
            TopologyConfigurationError: If the name is already registered.
        """
        if name in self._nodes:
            msg = f"Resource '{name}' is registered twice"
            raise TopologyConfigurationError(msg)
        self._nodes[name] = ResourceNode(
            name=name,
            kind=kind,
            depends_on=tuple(str(dep) for dep in depends_on),
            attributes=MappingProxyType(dict(attributes)),
        )
        return ResourceRef(name)

    def freeze(self) -> ResourceGraph:
        """Resolve every reference and order the resources.

        Raises:
            UnresolvedReferenceError: If a dependency names an unknown resource.
            DependencyCycleError: If the dependencies form a cycle.
        """
        for node in self._nodes.values():
            for dependency in node.depends_on:
                if dependency not in self._nodes:
                    msg = (
                        f"Resource '{node.name}' references unregistered "
                        f"resource '{dependency}'"
                    )
                    raise UnresolvedReferenceError(msg)

        registration_order = list(self._nodes)
        remaining = {name: set(node.depends_on) for name, node in self._nodes.items()}
        ordered: list[ResourceNode] = []
        while remaining:
            ready = [name for name in registration_order if remaining.get(name) == set()]
            if not ready:
                msg = f"Dependency cycle between resources {sorted(remaining)}"
                raise DependencyCycleError(msg)
            for name in ready:
                ordered.append(self._nodes[name])
                del remaining[name]
                for dependencies in remaining.values():
                    dependencies.discard(name)

        graph = ResourceGraph(nodes=tuple(ordered))
        logger.debug("Resolved topology order: %s", " -> ".join(graph.names))
        return graph
