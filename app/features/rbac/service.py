"""
Access decisions.

``check_right`` is the one call the rest of the application needs:

    decision = await check_right(repo, user_id=user.id, org_id=org_id, right="backoffice:dashboard:access")
    if not decision.allowed:
        ...

Grants reach a user through four layers:
- ``user-direct``: grants attached to the user
- ``role``: grants on roles assigned to the user
- ``group-role``: grants on roles the user only gets through a group
- ``group``: grants attached to a group the user belongs to

Global grants always apply; org grants only when deciding for that org.
All collected grants go through deny-overrides-allow evaluation. A denial
is a normal result, never an exception.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.core.errors import RbacValidationError
from app.features.rbac.engine import DecisionReason, evaluate_effects, normalize_right
from app.features.rbac.models import Grant, SubjectType
from app.features.rbac.repository import RbacRepository
from app.features.rbac.resolver import ResolvedScope, resolve_subjects
from app.utils import get_logger


log = get_logger(__name__)


class DecisionLayer(str, enum.Enum):
    """Resolution path that produced a grant."""
    USER_DIRECT = "user-direct"
    ROLE = "role"
    GROUP_ROLE = "group-role"
    GROUP = "group"


# Reporting order when deciding grants come from several layers
LAYER_PRIORITY = [DecisionLayer.USER_DIRECT, DecisionLayer.ROLE, DecisionLayer.GROUP_ROLE, DecisionLayer.GROUP]


@dataclass
class Decision:
    """Result of ``check_right``."""
    allowed: bool
    reason: DecisionReason
    decision_layer: Optional[DecisionLayer] = None
    explain: List[Dict[str, Any]] = field(default_factory=list)
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "decision_layer": self.decision_layer.value if self.decision_layer else None,
            "explain": self.explain,
            "context": self.context,
        }


@dataclass
class EffectiveGrants:
    """Every grant that applies to a user in a scope, grouped by layer."""
    scope: ResolvedScope
    grants: List[Grant] = field(default_factory=list)
    layers: Dict[DecisionLayer, List[Grant]] = field(default_factory=dict)

    def layer_of(self, grant: Grant) -> DecisionLayer:
        return grant_layer(self.scope, grant)

    def explain_item(self, grant: Grant) -> Dict[str, Any]:
        layer = self.layer_of(grant)
        return {
            "id": grant.id,
            "source": f"{layer.value}:{grant.scope_type.value}",
            "layer": layer.value,
            "right": grant.right,
            "effect": grant.effect.value,
            "subject_type": grant.subject_type.value,
            "subject_id": grant.subject_id,
            "scope_type": grant.scope_type.value,
            "scope_id": grant.scope_id,
        }

    @property
    def explain(self) -> List[Dict[str, Any]]:
        return [self.explain_item(grant) for grant in self.grants]


def grant_layer(scope: ResolvedScope, grant: Grant) -> DecisionLayer:
    """Classify a grant by the path that made it apply to the user."""
    if grant.subject_type == SubjectType.USER:
        return DecisionLayer.USER_DIRECT
    if grant.subject_type == SubjectType.GROUP:
        return DecisionLayer.GROUP
    if scope.is_direct_role(grant.subject_id):
        return DecisionLayer.ROLE
    return DecisionLayer.GROUP_ROLE


async def _decision_org_id(repo: RbacRepository, org_id: Optional[str]) -> Optional[str]:
    """Org scope actually used: an unknown org falls back to a global-only decision."""
    org_id = (org_id or "").strip() or None
    if org_id is None:
        return None
    if not await repo.organization_exists(org_id):
        log.debug(f"Organization {org_id} not found, deciding globally")
        return None
    return org_id


async def get_effective_grants(
    repo: RbacRepository,
    user_id: str,
    org_id: Optional[str] = None,
) -> EffectiveGrants:
    """
    Collect the grants that apply to ``user_id`` when deciding for ``org_id``.

    Args:
        repo: Data access for RBAC tables
        user_id: User the decision is about
        org_id: Organization under test; None or unknown means global-only

    Returns:
        EffectiveGrants with all grants, grouped by layer
    """
    org_id = await _decision_org_id(repo, org_id)
    scope = await resolve_subjects(repo, user_id, org_id)
    grants = await repo.grants_for_subjects(scope.subjects, org_id)

    effective = EffectiveGrants(scope=scope, grants=grants)
    for layer in LAYER_PRIORITY:
        effective.layers[layer] = []
    for grant in grants:
        effective.layers[effective.layer_of(grant)].append(grant)
    return effective


async def check_right(
    repo: RbacRepository,
    user_id: Optional[str],
    org_id: Optional[str],
    right: Optional[str],
) -> Decision:
    """
    Decide whether ``user_id`` holds ``right`` in ``org_id`` (or globally).

    Raises:
        RbacValidationError: ``user_id`` or ``right`` is missing

    Returns:
        Decision with the deciding grants in ``explain``
    """
    user_id = (user_id or "").strip()
    if not user_id:
        raise RbacValidationError("userId is required")
    required = normalize_right(right)
    if not required:
        raise RbacValidationError("right is required")

    effective = await get_effective_grants(repo, user_id, org_id)
    evaluation = evaluate_effects(effective.grants, required)

    layer: Optional[DecisionLayer] = None
    if evaluation.matched:
        matched_layers = {effective.layer_of(grant) for grant in evaluation.matched}
        layer = next(candidate for candidate in LAYER_PRIORITY if candidate in matched_layers)

    decision = Decision(
        allowed=evaluation.allowed,
        reason=evaluation.reason,
        decision_layer=layer,
        explain=[effective.explain_item(grant) for grant in evaluation.matched],
        context=effective.scope.context(),
    )
    log.debug(
        f"Decision user={user_id} org={effective.scope.org_id} right={required!r} "
        f"reason={decision.reason.value} layer={layer.value if layer else None}"
    )
    return decision
