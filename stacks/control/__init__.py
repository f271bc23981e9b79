"""Control-loop models for the services topology.

The platform runs load balancer health evaluation, rolling deployments,
federated credential exchange and artifact access on its own. These models
replay those loops from the same configuration the constructs are built
from, so the declared parameters can be checked against the behaviour they
are meant to produce.
"""

from .artifact_access import ArtifactRequest, ArtifactStorePolicy
from .rollout import DeploymentResult, DeploymentStatus, RolloutModel
from .target_health import TargetGroupModel, TargetHealth, TargetState
from .trust import FederatedTokenEvaluator, RoleSession, oidc_trust_conditions

__all__ = [
    "ArtifactRequest",
    "ArtifactStorePolicy",
    "DeploymentResult",
    "DeploymentStatus",
    "FederatedTokenEvaluator",
    "RoleSession",
    "RolloutModel",
    "TargetGroupModel",
    "TargetHealth",
    "TargetState",
    "oidc_trust_conditions",
]
