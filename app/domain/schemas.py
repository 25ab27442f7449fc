from pydantic import BaseModel, Field
from typing import Optional, List


# ============================================
# Plan Schemas
# ============================================

class CapabilitySetResponse(BaseModel):
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
    auto_execution_max_risk: Optional[str] = None
    max_bulk_products: int
    max_actions_per_day: int
    max_cart_recovery_channels: int
    execution_priority: str
    autonomy_level: str
    approval_message: str
    executed_message: str


class PlanCatalogEntry(BaseModel):
    tier: str
    plan_id: str
    display_name: str
    capabilities: CapabilitySetResponse


class PlanCatalogResponse(BaseModel):
    plans: List[PlanCatalogEntry]


class UserPlanResponse(BaseModel):
    plan_name: str
    plan_id: str
    tier: str
    display_name: str
    capabilities: CapabilitySetResponse
    max_bulk_products: int
    has_serp_access: bool
    can_use_bulk_operations: bool
    has_advanced_cart_recovery: bool
    has_scheduled_refresh: bool
    has_per_product_autonomy: bool


# ============================================
# Access Check Schemas
# ============================================

class AccessCheckRequest(BaseModel):
    action_type: str
    product_count: Optional[int] = Field(default=None, ge=0)
    is_auto_execution: bool = False


class AccessDecisionResponse(BaseModel):
    allowed: bool
    plan_name: str
    requires_approval: bool
    reason: Optional[str] = None
    upgrade_hint: Optional[str] = None
    required_plan: Optional[str] = None
    denial: Optional[str] = None
    max_allowed: Optional[int] = None


# ============================================
# Automation Schemas
# ============================================

class BulkOptimizeRequest(BaseModel):
    product_ids: List[str] = Field(..., min_length=1)


class SerpScanRequest(BaseModel):
    keyword: str = Field(..., min_length=1)
    product_id: Optional[str] = None


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1)
    channel: str = Field(default="email", pattern=r'^(email|sms)$')


class ActionAcceptedResponse(BaseModel):
    action_type: str
    status: str = "accepted"
    plan: str
    product_count: int = 1
    requires_approval: bool
    execution_message: str
