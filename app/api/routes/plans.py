from fastapi import APIRouter, Depends

from app.core.access import check_action_access
from app.core.entitlements import (
    PlanContext,
    PlanLookup,
    get_plan_context,
    get_plan_lookup,
    get_user_plan_capabilities,
)
from app.core.features import PLAN_CAPABILITIES, PLAN_DISPLAY_NAMES, PLAN_IDS, TIER_ORDER
from app.core.security import CallerIdentity, get_caller_identity
from app.domain.schemas import (
    AccessCheckRequest,
    AccessDecisionResponse,
    PlanCatalogEntry,
    PlanCatalogResponse,
    UserPlanResponse,
)

router = APIRouter()


@router.get("/catalog", response_model=PlanCatalogResponse)
def get_plan_catalog():
    """List every tier with its capabilities, lowest first. No auth required."""
    return PlanCatalogResponse(plans=[
        PlanCatalogEntry(
            tier=tier.value,
            plan_id=PLAN_IDS[tier],
            display_name=PLAN_DISPLAY_NAMES[tier],
            capabilities=PLAN_CAPABILITIES[tier].to_dict(),
        )
        for tier in TIER_ORDER
    ])


@router.get("/me", response_model=UserPlanResponse)
def get_my_plan(
    identity: CallerIdentity = Depends(get_caller_identity),
    lookup: PlanLookup = Depends(get_plan_lookup),
):
    """Get the current user's plan and capabilities."""
    return UserPlanResponse(**get_user_plan_capabilities(identity.id, lookup))


@router.post("/access-check", response_model=AccessDecisionResponse)
def check_access(
    data: AccessCheckRequest,
    plan: PlanContext = Depends(get_plan_context),
):
    """Evaluate an action for the caller without running it.

    Always 200: the dashboard uses the decision to render upgrade prompts.
    """
    decision = check_action_access(
        plan.tier,
        data.action_type,
        product_count=data.product_count,
        is_auto_execution=data.is_auto_execution,
    )
    return AccessDecisionResponse(**decision.to_dict())
