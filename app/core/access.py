"""
Plan access controller for Zyra actions.

Decides whether a plan may run an action, before anything is executed.
Pure functions over the capability table in app.core.features: no I/O,
no clock, no randomness. Denials are returned as AccessDecision values,
never raised.

Plan hierarchy:
- Free / Starter: manual approval required, single-product only
- Growth: bulk optimization, advanced recovery, auto-runs low-risk actions
- Scale: SERP intelligence, per-product/per-action controls, auto-runs up to medium risk
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from app.core.features import (
    CAPABILITY_LABELS,
    PLAN_CAPABILITIES,
    PLAN_DISPLAY_NAMES,
    RISK_LEVEL_ORDER,
    TIER_ORDER,
    CapabilitySet,
    ExecutionPriority,
    RiskLevel,
    SubscriptionTier,
    get_plan_capabilities,
    lowest_tier_with,
    lowest_tier_with_bulk_limit,
    parse_tier,
)


class ActionType(str, Enum):
    """Gated operations a caller may request."""
    OPTIMIZE_SEO = "optimize_seo"
    BULK_OPTIMIZE = "bulk_optimize"
    ADJUST_PRICE = "adjust_price"
    BULK_ADJUST_PRICE = "bulk_adjust_price"
    SEND_CART_RECOVERY = "send_cart_recovery"
    ADVANCED_CART_RECOVERY = "advanced_cart_recovery"
    POST_PURCHASE_UPSELL = "post_purchase_upsell"
    SEND_CAMPAIGN = "send_campaign"
    SERP_SCAN = "serp_scan"
    BRAND_VOICE_OPTIMIZATION = "brand_voice_optimization"
    SCHEDULED_CONTENT_REFRESH = "scheduled_content_refresh"
    PER_PRODUCT_AUTONOMY = "per_product_autonomy"
    PER_ACTION_AUTONOMY = "per_action_autonomy"


_LEGACY_ACTION_IDS = {
    "bulk_optimize_seo": ActionType.BULK_OPTIMIZE,
    "competitive_intelligence": ActionType.SERP_SCAN,
}


def parse_action(raw: Union[str, ActionType]) -> Optional[ActionType]:
    """Resolve an action id, including legacy ids. None if unknown."""
    if isinstance(raw, ActionType):
        return raw
    if raw in _LEGACY_ACTION_IDS:
        return _LEGACY_ACTION_IDS[raw]
    try:
        return ActionType(raw)
    except ValueError:
        return None


class DenialKind(str, Enum):
    TIER_TOO_LOW = "tier_too_low"
    QUANTITY_OVER_LIMIT = "quantity_over_limit"
    AUTO_EXECUTION_LOCKED = "auto_execution_locked"


@dataclass(frozen=True)
class ActionRule:
    capability: Optional[str]  # None = available on every plan
    risk: RiskLevel
    quantity_scaled: bool = False


ACTION_RULES: dict[ActionType, ActionRule] = {
    ActionType.OPTIMIZE_SEO: ActionRule(None, RiskLevel.LOW),
    ActionType.BULK_OPTIMIZE: ActionRule("bulk_optimization", RiskLevel.MEDIUM, quantity_scaled=True),
    ActionType.ADJUST_PRICE: ActionRule("pricing_automation", RiskLevel.MEDIUM),
    ActionType.BULK_ADJUST_PRICE: ActionRule("bulk_pricing", RiskLevel.HIGH, quantity_scaled=True),
    ActionType.SEND_CART_RECOVERY: ActionRule(None, RiskLevel.LOW),
    ActionType.ADVANCED_CART_RECOVERY: ActionRule("advanced_cart_recovery", RiskLevel.MEDIUM),
    ActionType.POST_PURCHASE_UPSELL: ActionRule(None, RiskLevel.LOW),
    ActionType.SEND_CAMPAIGN: ActionRule("marketing_campaigns", RiskLevel.MEDIUM),
    ActionType.SERP_SCAN: ActionRule("serp_intelligence", RiskLevel.LOW),
    ActionType.BRAND_VOICE_OPTIMIZATION: ActionRule("brand_voice", RiskLevel.LOW),
    ActionType.SCHEDULED_CONTENT_REFRESH: ActionRule("scheduled_refresh", RiskLevel.LOW),
    ActionType.PER_PRODUCT_AUTONOMY: ActionRule("per_product_autonomy", RiskLevel.MEDIUM),
    ActionType.PER_ACTION_AUTONOMY: ActionRule("per_action_autonomy", RiskLevel.HIGH),
}


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of evaluating one (plan, action, context) triple."""
    allowed: bool
    plan_name: str
    requires_approval: bool = True
    reason: Optional[str] = None
    upgrade_hint: Optional[str] = None
    required_plan: Optional[SubscriptionTier] = None
    denial: Optional[DenialKind] = None
    max_allowed: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "plan_name": self.plan_name,
            "requires_approval": self.requires_approval,
            "reason": self.reason,
            "upgrade_hint": self.upgrade_hint,
            "required_plan": self.required_plan.value if self.required_plan else None,
            "denial": self.denial.value if self.denial else None,
            "max_allowed": self.max_allowed,
        }


def _risk_allowed(capabilities: CapabilitySet, risk: RiskLevel) -> bool:
    ceiling = capabilities.auto_execution_max_risk
    if not capabilities.auto_execution or ceiling is None:
        return False
    return RISK_LEVEL_ORDER.index(risk) <= RISK_LEVEL_ORDER.index(ceiling)


def _lowest_tier_auto_running(risk: RiskLevel) -> Optional[SubscriptionTier]:
    for tier in TIER_ORDER:
        if _risk_allowed(PLAN_CAPABILITIES[tier], risk):
            return tier
    return None


def _deny_tier(plan_name: str, label: str, required: Optional[SubscriptionTier]) -> AccessDecision:
    if required is None:
        hint = f"{label} is not available on any plan."
    else:
        hint = f"Upgrade to {PLAN_DISPLAY_NAMES[required]} to unlock {label[0].lower()}{label[1:]}."
    return AccessDecision(
        allowed=False,
        plan_name=plan_name,
        reason=f"{label} is not available on the {plan_name} plan.",
        upgrade_hint=hint,
        required_plan=required,
        denial=DenialKind.TIER_TOO_LOW,
    )


def check_action_access(
    tier_name: Optional[str],
    action_type: Union[str, ActionType],
    product_count: Optional[int] = None,
    is_auto_execution: bool = False,
) -> AccessDecision:
    """Check if an action is allowed for a plan.

    This is the main enforcement function, called before any action executes.

    Args:
        tier_name: Plan name as stored on the user record
        action_type: The requested action (ActionType or its id)
        product_count: Batch size for bulk actions; None or < 1 counts as 1
        is_auto_execution: True if triggered automatically rather than by
            the merchant approving it

    Returns:
        AccessDecision; denied decisions carry a reason and, where an
        upgrade would help, the lowest plan that allows the request
    """
    tier = parse_tier(tier_name)
    capabilities = get_plan_capabilities(tier)
    plan_name = PLAN_DISPLAY_NAMES[tier]

    action = parse_action(action_type)
    if action is None:
        return AccessDecision(
            allowed=False,
            plan_name=plan_name,
            reason=f"Unknown action: {action_type}.",
            denial=DenialKind.TIER_TOO_LOW,
        )

    rule = ACTION_RULES[action]

    if rule.capability is not None and not getattr(capabilities, rule.capability):
        return _deny_tier(plan_name, CAPABILITY_LABELS[rule.capability], lowest_tier_with(rule.capability))

    if rule.quantity_scaled:
        count = max(product_count or 1, 1)
        limit = capabilities.max_bulk_products
        if count > limit:
            next_tier = lowest_tier_with_bulk_limit(rule.capability, count)
            hint = f"Reduce the batch to {limit} products or fewer"
            if next_tier is not None:
                hint += (
                    f", or upgrade to {PLAN_DISPLAY_NAMES[next_tier]} to process up to "
                    f"{get_plan_capabilities(next_tier).max_bulk_products} products at once"
                )
            return AccessDecision(
                allowed=False,
                plan_name=plan_name,
                reason=f"{count} exceeds limit of {limit} for {plan_name}.",
                upgrade_hint=hint + ".",
                required_plan=next_tier,
                denial=DenialKind.QUANTITY_OVER_LIMIT,
                max_allowed=limit,
            )

    if is_auto_execution:
        if not _risk_allowed(capabilities, rule.risk):
            required = _lowest_tier_auto_running(rule.risk)
            if required is None:
                hint = f"{rule.risk.value.replace('_', ' ').capitalize()}-risk actions always require approval."
            else:
                hint = f"Upgrade to {PLAN_DISPLAY_NAMES[required]} to run {rule.risk.value}-risk actions automatically."
            return AccessDecision(
                allowed=False,
                plan_name=plan_name,
                reason=f"Automatic execution of {rule.risk.value}-risk actions is not available on the {plan_name} plan.",
                upgrade_hint=hint,
                required_plan=required,
                denial=DenialKind.AUTO_EXECUTION_LOCKED,
            )
        return AccessDecision(allowed=True, plan_name=plan_name, requires_approval=False)

    return AccessDecision(
        allowed=True,
        plan_name=plan_name,
        requires_approval=not capabilities.auto_execution,
    )


def should_auto_execute(
    tier_name: Optional[str],
    action_type: Union[str, ActionType],
    force_approval: bool = False,
    force_auto: bool = False,
) -> bool:
    """Whether an allowed action should run without waiting for approval.

    Merchant overrides win; otherwise the plan's auto-execution risk ceiling decides.
    """
    if force_approval:
        return False
    if force_auto:
        return True
    return check_action_access(tier_name, action_type, is_auto_execution=True).allowed


_SPEED_MULTIPLIERS = {
    ExecutionPriority.STANDARD: 1.0,
    ExecutionPriority.FAST: 1.5,
    ExecutionPriority.PRIORITY: 2.0,
}


def get_execution_speed_multiplier(tier_name: Optional[str]) -> float:
    return _SPEED_MULTIPLIERS[get_plan_capabilities(tier_name).execution_priority]


def get_execution_message(tier_name: Optional[str], was_auto_executed: bool) -> str:
    """Message shown next to an action in the activity feed."""
    capabilities = get_plan_capabilities(tier_name)
    return capabilities.executed_message if was_auto_executed else capabilities.approval_message
