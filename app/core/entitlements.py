"""
Plan gating for API routes.

Uses the dependency injection pattern: each guard factory returns a FastAPI
dependency that resolves the caller's plan once per request and rejects the
request with a structured 403 body when the plan does not allow it.

Usage:
    @router.post("/bulk-optimize")
    def bulk_optimize(
        access: ActionAccessContext = Depends(require_action_access(ActionType.BULK_OPTIMIZE))
    ):
        # Only executes if the plan allows this batch size
        pass

    @router.post("/campaigns", dependencies=[Depends(require_plan("growth"))])
    def create_campaign():
        pass
"""
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

import httpx
from fastapi import Depends, HTTPException, Request, status
from postgrest.exceptions import APIError

from app.core.access import AccessDecision, ActionType, check_action_access, parse_action
from app.core.config import settings
from app.core.features import (
    CAPABILITY_LABELS,
    FEATURE_PREDICATES,
    PLAN_DISPLAY_NAMES,
    CapabilitySet,
    SubscriptionTier,
    get_display_name,
    get_max_bulk_products,
    get_plan_capabilities,
    get_plan_id,
    lowest_tier_with,
    meets_minimum,
    parse_feature,
    parse_tier,
)
from app.core.security import CallerIdentity, get_caller_identity
from app.repositories.user import UserRepository

logger = logging.getLogger(__name__)

PlanLookup = Callable[[str], Optional[str]]

# Failures of the plan lookup that mean "unknown plan", never "denied"
LOOKUP_ERRORS = (APIError, httpx.HTTPError, RuntimeError)


class PlanGateError(HTTPException):
    """Base for plan gating errors. `detail` is the full JSON response body."""

    def __init__(self, status_code: int, body: dict):
        super().__init__(status_code=status_code, detail=body)


class PlanUpgradeRequiredError(PlanGateError):
    """Raised when the caller's tier is below a route's minimum tier."""

    def __init__(self, current_plan: str, required: SubscriptionTier):
        display = PLAN_DISPLAY_NAMES[required]
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            {
                "error": "Plan upgrade required",
                "message": f"This feature requires {display} plan or higher.",
                "currentPlan": current_plan,
                "requiredPlan": required.value,
                "upgradeHint": f"Upgrade to {display} to access this feature.",
            },
        )


class FeatureNotAvailableError(PlanGateError):
    """Raised when a feature is not available in the caller's plan."""

    def __init__(self, current_plan: str, feature: str):
        label = CAPABILITY_LABELS[feature]
        required = lowest_tier_with(feature)
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            {
                "error": "Feature not available",
                "message": f"{label} is not available on your current plan.",
                "feature": feature,
                "currentPlan": current_plan,
                "requiredPlan": required.value if required else None,
                "upgradeHint": (
                    f"Upgrade to {PLAN_DISPLAY_NAMES[required]} to unlock {label[0].lower()}{label[1:]}."
                    if required else None
                ),
            },
        )


class ActionNotAllowedError(PlanGateError):
    """Raised when check_action_access denies an action. Carries the decision verbatim."""

    def __init__(self, current_plan: str, action_type: ActionType, decision: AccessDecision):
        self.decision = decision
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            {
                "error": "Action not allowed",
                "message": decision.reason,
                "reason": decision.reason,
                "denial": decision.denial.value if decision.denial else None,
                "actionType": action_type.value,
                "currentPlan": current_plan,
                "requiredPlan": decision.required_plan.value if decision.required_plan else None,
                "upgradeHint": decision.upgrade_hint,
                "maxAllowed": decision.max_allowed,
            },
        )


class PlanLookupError(PlanGateError):
    """Raised when the caller's plan could not be loaded. Never treated as a denial."""

    def __init__(self):
        super().__init__(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            {
                "error": "Unable to verify plan access",
                "message": "We couldn't load your plan. Please try again shortly.",
            },
        )


@dataclass(frozen=True)
class PlanContext:
    """The caller's plan, resolved once per request."""
    tier_name: str  # as stored, e.g. "Starter+"
    tier: SubscriptionTier
    tier_id: str
    capabilities: CapabilitySet

    @classmethod
    def from_plan_name(cls, plan_name: str) -> "PlanContext":
        tier = parse_tier(plan_name)
        return cls(
            tier_name=plan_name,
            tier=tier,
            tier_id=get_plan_id(tier),
            capabilities=get_plan_capabilities(tier),
        )


@dataclass(frozen=True)
class ActionAccessContext:
    """Passed to route handlers guarded by require_action_access."""
    identity: CallerIdentity
    plan: PlanContext
    action_type: ActionType
    decision: AccessDecision
    product_count: int


def get_plan_lookup() -> PlanLookup:
    """Dependency returning the function that loads a user's plan name.

    Overridden in tests and by deployments that keep plans elsewhere.
    """
    return UserRepository.get_plan


def _load_plan_name(user_id: str, lookup: PlanLookup) -> str:
    try:
        plan_name = lookup(user_id)
    except LOOKUP_ERRORS as e:
        logger.error(f"Plan lookup failed for user {user_id}: {e}")
        raise PlanLookupError() from e
    except Exception as e:
        logger.exception(f"Unexpected error loading plan for user {user_id}: {e}")
        raise PlanLookupError() from e
    return plan_name or settings.default_plan


def get_plan_context(
    request: Request,
    identity: CallerIdentity = Depends(get_caller_identity),
    lookup: PlanLookup = Depends(get_plan_lookup),
) -> PlanContext:
    """Resolve the caller's plan, at most once per request.

    The result is kept on request.state, so every guard in the same request
    reuses it. request.state is created fresh for each request.
    """
    cached = getattr(request.state, "plan_context", None)
    if cached is not None:
        return cached

    plan = PlanContext.from_plan_name(_load_plan_name(identity.id, lookup))
    request.state.plan_context = plan
    return plan


def require_plan(minimum_tier: Union[str, SubscriptionTier]):
    """Factory to create a dependency that requires a minimum tier.

    Args:
        minimum_tier: Lowest tier allowed ('starter', 'growth' or 'scale', any case)

    Returns:
        A FastAPI dependency function returning the caller's PlanContext

    Raises:
        ValueError: If minimum_tier is not a tier name
    """
    minimum = SubscriptionTier(str(getattr(minimum_tier, "value", minimum_tier)).lower())

    def dependency(
        request: Request,
        plan: PlanContext = Depends(get_plan_context),
    ) -> PlanContext:
        if not meets_minimum(plan.tier, minimum):
            logger.warning(
                f"Plan gate denied: plan={plan.tier_name!r} required={minimum.value} "
                f"path={request.url.path}"
            )
            raise PlanUpgradeRequiredError(plan.tier_name, minimum)
        return plan

    return dependency


def require_feature(feature: str):
    """Factory to create a dependency that requires a specific feature.

    Args:
        feature: Capability flag name (e.g. 'serp_intelligence'; the
            dashboard's camelCase names are accepted too)

    Returns:
        A FastAPI dependency function returning the caller's PlanContext

    Raises:
        ValueError: If feature is not a known capability flag
    """
    flag = parse_feature(feature)

    def dependency(
        request: Request,
        plan: PlanContext = Depends(get_plan_context),
    ) -> PlanContext:
        if not getattr(plan.capabilities, flag):
            logger.warning(
                f"Feature gate denied: plan={plan.tier_name!r} feature={flag} path={request.url.path}"
            )
            raise FeatureNotAvailableError(plan.tier_name, flag)
        return plan

    return dependency


def _count_from_payload(payload) -> int:
    # The largest quantity in the body wins, so a declared count cannot understate the id list
    if not isinstance(payload, dict):
        return 1
    counts = [1]
    for key in ("product_count", "productCount"):
        value = payload.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            counts.append(value)
    for key in ("product_ids", "productIds"):
        value = payload.get(key)
        if isinstance(value, list):
            counts.append(len(value))
    return max(counts)


async def get_requested_product_count(request: Request) -> int:
    """Batch size requested by the JSON body; 1 when absent or not JSON."""
    body = await request.body()
    if not body:
        return 1
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return 1
    return _count_from_payload(payload)


def enforce_action_access(
    request: Request,
    identity: CallerIdentity,
    plan: PlanContext,
    action: ActionType,
    product_count: int = 1,
    is_auto_execution: bool = False,
) -> ActionAccessContext:
    """Check an action for an already resolved plan, raising on denial.

    Shared by require_action_access and routes whose action comes from the path.

    Raises:
        ActionNotAllowedError: If the plan does not allow the action
    """
    decision = check_action_access(
        plan.tier,
        action,
        product_count=product_count,
        is_auto_execution=is_auto_execution,
    )
    if not decision.allowed:
        logger.warning(
            f"Action gate denied: plan={plan.tier_name!r} action={action.value} "
            f"count={product_count} auto={is_auto_execution} denial={decision.denial.value}"
        )
        raise ActionNotAllowedError(plan.tier_name, action, decision)

    request.state.plan_access = decision
    return ActionAccessContext(
        identity=identity,
        plan=plan,
        action_type=action,
        decision=decision,
        product_count=product_count,
    )


def require_action_access(action_type: Union[str, ActionType], is_auto_execution: bool = False):
    """Factory to create a dependency that checks an action against the caller's plan.

    The requested batch size is the largest of 'product_count',
    'productCount' and the lengths of 'product_ids'/'productIds' in the body.
    On success the decision is also stored on request.state.plan_access.

    Args:
        action_type: The gated action
        is_auto_execution: True for routes that run the action without approval

    Returns:
        A FastAPI dependency function returning an ActionAccessContext

    Raises:
        ValueError: If action_type is not a known action
    """
    action = parse_action(action_type)
    if action is None:
        raise ValueError(f"Unknown action type: {action_type!r}")

    def dependency(
        request: Request,
        identity: CallerIdentity = Depends(get_caller_identity),
        plan: PlanContext = Depends(get_plan_context),
        product_count: int = Depends(get_requested_product_count),
    ) -> ActionAccessContext:
        return enforce_action_access(request, identity, plan, action, product_count, is_auto_execution)

    return dependency


def get_user_plan_capabilities(user_id: str, lookup: PlanLookup = UserRepository.get_plan) -> dict:
    """Get a user's plan and capabilities without gating anything.

    Useful for handlers and the dashboard's plan page.

    Raises:
        PlanLookupError: If the plan could not be loaded
    """
    plan_name = _load_plan_name(user_id, lookup)
    summary = {
        "plan_name": plan_name,
        "plan_id": get_plan_id(plan_name),
        "tier": parse_tier(plan_name).value,
        "display_name": get_display_name(plan_name),
        "capabilities": get_plan_capabilities(plan_name).to_dict(),
        "max_bulk_products": get_max_bulk_products(plan_name),
    }
    for name, predicate in FEATURE_PREDICATES.items():
        summary[name] = predicate(plan_name)
    return summary
