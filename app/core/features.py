"""
Subscription tiers and plan capabilities.
Single source of truth for what each Zyra plan can do.

This module defines:
- The ordered tier enumeration (free < starter < growth < scale)
- Parsing of loosely formatted plan names stored on user records
- The static capability table (feature flags and quantity limits)
- Named predicates so call sites read as intent, not table lookups

The dashboard mirrors these definitions in client/src/lib/constants/plans.ts
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SubscriptionTier(str, Enum):
    """Subscription tier identifiers, lowest first."""
    FREE = "free"
    STARTER = "starter"
    GROWTH = "growth"
    SCALE = "scale"


class ExecutionPriority(str, Enum):
    STANDARD = "standard"
    FAST = "fast"
    PRIORITY = "priority"


class AutonomyLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(str, Enum):
    """Risk classification of an action, used to cap auto-execution."""
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


TIER_ORDER: tuple[SubscriptionTier, ...] = (
    SubscriptionTier.FREE,
    SubscriptionTier.STARTER,
    SubscriptionTier.GROWTH,
    SubscriptionTier.SCALE,
)

LOWEST_TIER = TIER_ORDER[0]

EXECUTION_PRIORITY_ORDER = tuple(ExecutionPriority)
AUTONOMY_LEVEL_ORDER = tuple(AutonomyLevel)
RISK_LEVEL_ORDER = tuple(RiskLevel)

# Stable plan ids from the billing catalogue
PLAN_IDS: dict[SubscriptionTier, str] = {
    SubscriptionTier.FREE: "18f8da29-94cf-417b-83f8-07191b22f254",
    SubscriptionTier.STARTER: "357abaf6-3035-4a25-b178-b5602c09fa8a",
    SubscriptionTier.GROWTH: "aaca603f-f064-44a7-87a4-485f84f19517",
    SubscriptionTier.SCALE: "5a02d7c5-031f-48fe-bbbd-42847b1c39df",
}

PLAN_DISPLAY_NAMES: dict[SubscriptionTier, str] = {
    SubscriptionTier.FREE: "Free",
    SubscriptionTier.STARTER: "Starter",
    SubscriptionTier.GROWTH: "Growth",
    SubscriptionTier.SCALE: "Scale",
}

# Every spelling seen in users.plan, after normalisation (lowercase, no punctuation)
_TIER_ALIASES: dict[str, SubscriptionTier] = {
    "free": SubscriptionTier.FREE,
    "freeplan": SubscriptionTier.FREE,
    "trial": SubscriptionTier.FREE,
    "freetrial": SubscriptionTier.FREE,
    "starter": SubscriptionTier.STARTER,
    "starterplus": SubscriptionTier.STARTER,
    "growth": SubscriptionTier.GROWTH,
    "scale": SubscriptionTier.SCALE,
    "pro": SubscriptionTier.SCALE,
}

_PLAN_ID_TO_TIER = {plan_id: tier for tier, plan_id in PLAN_IDS.items()}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def parse_tier(raw: Optional[str]) -> SubscriptionTier:
    """Parse a stored plan name or plan id into a SubscriptionTier.

    Accepts case and punctuation variants ("Starter+", "STARTER", "free_plan"),
    the legacy "pro" name for Scale, and the plan UUIDs. Anything else
    resolves to the lowest tier.

    Args:
        raw: Plan value as stored on the user record, possibly None

    Returns:
        The canonical tier, never None
    """
    if raw is None:
        return LOWEST_TIER
    if isinstance(raw, SubscriptionTier):
        return raw

    value = str(raw).strip().lower()
    if value in _PLAN_ID_TO_TIER:
        return _PLAN_ID_TO_TIER[value]

    key = _NON_ALNUM.sub("", value.replace("+", "plus"))
    if key.endswith("plus") and key[:-4] in _TIER_ALIASES:
        key = key[:-4]
    return _TIER_ALIASES.get(key, LOWEST_TIER)


def tier_rank(tier: SubscriptionTier) -> int:
    return TIER_ORDER.index(tier)


def meets_minimum(tier_name: Optional[str], minimum: SubscriptionTier) -> bool:
    """True if the plan is at or above the minimum tier."""
    return tier_rank(parse_tier(tier_name)) >= tier_rank(minimum)


def get_plan_id(tier_name: Optional[str]) -> str:
    return PLAN_IDS[parse_tier(tier_name)]


def get_display_name(tier_name: Optional[str]) -> str:
    return PLAN_DISPLAY_NAMES[parse_tier(tier_name)]


@dataclass(frozen=True)
class CapabilitySet:
    """Feature flags and limits granted by one tier."""
    bulk_optimization: bool
    bulk_pricing: bool
    pricing_automation: bool
    marketing_campaigns: bool
    brand_voice: bool
    serp_intelligence: bool
    advanced_cart_recovery: bool
    scheduled_refresh: bool
    per_product_autonomy: bool
    per_action_autonomy: bool
    auto_execution: bool
    auto_execution_max_risk: Optional[RiskLevel]  # None = never auto-run
    max_bulk_products: int
    max_actions_per_day: int
    max_cart_recovery_channels: int  # 1 = SMS or email, 2 = both
    execution_priority: ExecutionPriority
    autonomy_level: AutonomyLevel
    approval_message: str
    executed_message: str

    def to_dict(self) -> dict:
        data = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            data[name] = value.value if isinstance(value, Enum) else value
        return data


# Boolean capabilities that can gate a feature or action
CAPABILITY_FLAGS: tuple[str, ...] = (
    "bulk_optimization",
    "bulk_pricing",
    "pricing_automation",
    "marketing_campaigns",
    "brand_voice",
    "serp_intelligence",
    "advanced_cart_recovery",
    "scheduled_refresh",
    "per_product_autonomy",
    "per_action_autonomy",
    "auto_execution",
)

CAPABILITY_LABELS: dict[str, str] = {
    "bulk_optimization": "Bulk optimization",
    "bulk_pricing": "Bulk pricing changes",
    "pricing_automation": "Pricing optimization",
    "marketing_campaigns": "Marketing campaigns",
    "brand_voice": "Brand voice optimization",
    "serp_intelligence": "Real-time SERP competitive intelligence",
    "advanced_cart_recovery": "Advanced cart recovery",
    "scheduled_refresh": "Scheduled content refresh",
    "per_product_autonomy": "Per-product autonomy controls",
    "per_action_autonomy": "Per-action autonomy controls",
    "auto_execution": "Automatic execution",
}

# Names used by the dashboard and older route definitions
_FEATURE_ALIASES: dict[str, str] = {
    "bulkOptimization": "bulk_optimization",
    "serpIntelligence": "serp_intelligence",
    "advancedCartRecovery": "advanced_cart_recovery",
    "scheduledRefresh": "scheduled_refresh",
    "perProductAutonomy": "per_product_autonomy",
    "perActionAutonomy": "per_action_autonomy",
    "autoExecution": "auto_execution",
}


def parse_feature(name: str) -> str:
    """Resolve a feature name to its capability flag.

    Raises:
        ValueError: If the name is not a known capability flag
    """
    flag = _FEATURE_ALIASES.get(name, name)
    if flag not in CAPABILITY_FLAGS:
        raise ValueError(f"Unknown plan feature: {name!r}")
    return flag


# Plan configuration - edit here to change what a tier includes.
# Every flag and limit must be non-decreasing from one tier to the next.
PLAN_CAPABILITIES: dict[SubscriptionTier, CapabilitySet] = {
    SubscriptionTier.FREE: CapabilitySet(
        bulk_optimization=False,
        bulk_pricing=False,
        pricing_automation=False,
        marketing_campaigns=False,
        brand_voice=False,
        serp_intelligence=False,
        advanced_cart_recovery=False,
        scheduled_refresh=False,
        per_product_autonomy=False,
        per_action_autonomy=False,
        auto_execution=False,
        auto_execution_max_risk=None,
        max_bulk_products=1,
        max_actions_per_day=5,  # trial allowance
        max_cart_recovery_channels=1,
        execution_priority=ExecutionPriority.STANDARD,
        autonomy_level=AutonomyLevel.VERY_LOW,
        approval_message="Approve to apply this change safely.",
        executed_message="Action executed after your approval.",
    ),
    SubscriptionTier.STARTER: CapabilitySet(
        bulk_optimization=False,
        bulk_pricing=False,
        pricing_automation=False,
        marketing_campaigns=False,
        brand_voice=True,
        serp_intelligence=False,
        advanced_cart_recovery=False,
        scheduled_refresh=False,
        per_product_autonomy=False,
        per_action_autonomy=False,
        auto_execution=False,
        auto_execution_max_risk=None,
        max_bulk_products=1,  # single product only
        max_actions_per_day=10,
        max_cart_recovery_channels=1,
        execution_priority=ExecutionPriority.STANDARD,
        autonomy_level=AutonomyLevel.VERY_LOW,
        approval_message="Approve to apply this change safely.",
        executed_message="Action executed after your approval.",
    ),
    SubscriptionTier.GROWTH: CapabilitySet(
        bulk_optimization=True,
        bulk_pricing=False,
        pricing_automation=True,
        marketing_campaigns=True,
        brand_voice=True,
        serp_intelligence=False,
        advanced_cart_recovery=True,
        scheduled_refresh=True,
        per_product_autonomy=False,
        per_action_autonomy=False,
        auto_execution=True,
        auto_execution_max_risk=RiskLevel.LOW,
        max_bulk_products=50,
        max_actions_per_day=50,
        max_cart_recovery_channels=2,
        execution_priority=ExecutionPriority.FAST,
        autonomy_level=AutonomyLevel.MEDIUM,
        approval_message="This action requires your approval before execution.",
        executed_message="ZYRA applied this automatically based on proven results.",
    ),
    SubscriptionTier.SCALE: CapabilitySet(
        bulk_optimization=True,
        bulk_pricing=True,
        pricing_automation=True,
        marketing_campaigns=True,
        brand_voice=True,
        serp_intelligence=True,
        advanced_cart_recovery=True,
        scheduled_refresh=True,
        per_product_autonomy=True,
        per_action_autonomy=True,
        auto_execution=True,
        auto_execution_max_risk=RiskLevel.MEDIUM,  # high risk always needs approval
        max_bulk_products=1000,
        max_actions_per_day=200,
        max_cart_recovery_channels=2,
        execution_priority=ExecutionPriority.PRIORITY,
        autonomy_level=AutonomyLevel.HIGH,
        approval_message="This high-impact action requires your approval.",
        executed_message="ZYRA optimized this automatically to maximize revenue.",
    ),
}


def get_plan_capabilities(tier_name: Optional[str]) -> CapabilitySet:
    """Get capabilities for a plan name.

    Args:
        tier_name: Plan name as stored ('Starter+', 'growth', a plan id, ...)

    Returns:
        CapabilitySet for the tier, the lowest tier's set if unrecognised
    """
    return PLAN_CAPABILITIES[parse_tier(tier_name)]


def lowest_tier_with(flag: str) -> Optional[SubscriptionTier]:
    """Lowest tier on which a boolean capability is enabled, if any."""
    for tier in TIER_ORDER:
        if getattr(PLAN_CAPABILITIES[tier], flag):
            return tier
    return None


def lowest_tier_with_bulk_limit(flag: str, product_count: int) -> Optional[SubscriptionTier]:
    """Lowest tier that enables the flag and accepts product_count in one batch."""
    for tier in TIER_ORDER:
        capabilities = PLAN_CAPABILITIES[tier]
        if getattr(capabilities, flag) and product_count <= capabilities.max_bulk_products:
            return tier
    return None


def has_feature(tier_name: Optional[str], feature: str) -> bool:
    """Check if a plan has access to a boolean capability.

    Raises:
        ValueError: If feature is not a known capability flag
    """
    return getattr(get_plan_capabilities(tier_name), parse_feature(feature))


def has_serp_access(tier_name: Optional[str]) -> bool:
    return get_plan_capabilities(tier_name).serp_intelligence


def can_use_bulk_operations(tier_name: Optional[str]) -> bool:
    return get_plan_capabilities(tier_name).bulk_optimization


def get_max_bulk_products(tier_name: Optional[str]) -> int:
    return get_plan_capabilities(tier_name).max_bulk_products


def has_advanced_cart_recovery(tier_name: Optional[str]) -> bool:
    """Multi-channel recovery with escalation."""
    return get_plan_capabilities(tier_name).advanced_cart_recovery


def has_scheduled_refresh(tier_name: Optional[str]) -> bool:
    return get_plan_capabilities(tier_name).scheduled_refresh


def has_per_product_autonomy(tier_name: Optional[str]) -> bool:
    return get_plan_capabilities(tier_name).per_product_autonomy


def get_daily_action_limit(tier_name: Optional[str]) -> int:
    return get_plan_capabilities(tier_name).max_actions_per_day


def get_cart_recovery_channel_limit(tier_name: Optional[str]) -> int:
    return get_plan_capabilities(tier_name).max_cart_recovery_channels


# Predicates exposed to route handlers and the /plans endpoints
FEATURE_PREDICATES = {
    "has_serp_access": has_serp_access,
    "can_use_bulk_operations": can_use_bulk_operations,
    "has_advanced_cart_recovery": has_advanced_cart_recovery,
    "has_scheduled_refresh": has_scheduled_refresh,
    "has_per_product_autonomy": has_per_product_autonomy,
}
