import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.access import ActionType, get_execution_message, parse_action
from app.core.entitlements import (
    ActionAccessContext,
    PlanContext,
    enforce_action_access,
    get_plan_context,
    get_requested_product_count,
    require_action_access,
    require_feature,
    require_plan,
)
from app.core.security import CallerIdentity, get_caller_identity
from app.domain.schemas import (
    ActionAcceptedResponse,
    BulkOptimizeRequest,
    CampaignCreate,
    SerpScanRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _accepted(access: ActionAccessContext, auto: bool = False) -> ActionAcceptedResponse:
    logger.info(
        f"Accepted {access.action_type.value} for user {access.identity.id} "
        f"(plan={access.plan.tier.value}, products={access.product_count})"
    )
    return ActionAcceptedResponse(
        action_type=access.action_type.value,
        plan=access.plan.tier.value,
        product_count=access.product_count,
        requires_approval=access.decision.requires_approval,
        execution_message=get_execution_message(access.plan.tier, auto),
    )


@router.post("/bulk-optimize", response_model=ActionAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
def bulk_optimize(
    data: BulkOptimizeRequest,
    access: ActionAccessContext = Depends(require_action_access(ActionType.BULK_OPTIMIZE)),
):
    """Queue SEO optimization for a batch of products."""
    return _accepted(access)


@router.post("/serp-scan", status_code=status.HTTP_202_ACCEPTED)
def serp_scan(
    data: SerpScanRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    plan: PlanContext = Depends(require_feature("serp_intelligence")),
):
    """Queue a competitive SERP scan for a keyword."""
    logger.info(f"Accepted SERP scan for user {identity.id}: {data.keyword!r}")
    return {"status": "accepted", "keyword": data.keyword, "plan": plan.tier.value}


@router.post(
    "/campaigns",
    response_model=ActionAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_plan("growth"))],
)
def create_campaign(
    data: CampaignCreate,
    access: ActionAccessContext = Depends(require_action_access(ActionType.SEND_CAMPAIGN)),
):
    """Queue a marketing campaign."""
    return _accepted(access)


@router.post(
    "/auto-execute/{action_type}",
    response_model=ActionAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def auto_execute(
    action_type: str,
    request: Request,
    identity: CallerIdentity = Depends(get_caller_identity),
    plan: PlanContext = Depends(get_plan_context),
    product_count: int = Depends(get_requested_product_count),
):
    """Run an action without waiting for merchant approval, if the plan allows it."""
    action = parse_action(action_type)
    if action is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown action type: {action_type}"
        )
    access = enforce_action_access(
        request, identity, plan, action, product_count, is_auto_execution=True
    )
    return _accepted(access, auto=True)
