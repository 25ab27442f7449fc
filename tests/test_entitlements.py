"""
Plan guards on HTTP routes.

Goals:
- Denials return a flat JSON body with currentPlan, the requirement and an upgrade hint.
- The caller's plan is loaded once per request, however many guards run.
- A failing plan lookup is a 503, never a 403 and never an allow.
- Missing authentication is a 401 before any plan logic.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from app.core.entitlements import (
    PlanLookupError,
    _count_from_payload,
    get_user_plan_capabilities,
    require_action_access,
    require_feature,
    require_plan,
)
from app.core.features import SubscriptionTier


def _product_ids(n):
    return [f"gid://shopify/Product/{i}" for i in range(n)]


# ---------------------------------------------------------------------------
# require_plan
# ---------------------------------------------------------------------------

def test_require_plan_denies_mixed_case_starter(client, plan_lookup):
    plan_lookup.plan = "Starter+"

    response = client.post("/automation/campaigns", json={"name": "Spring sale"})

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "Plan upgrade required"
    assert body["currentPlan"] == "Starter+"
    assert body["requiredPlan"] == "growth"
    assert "Growth" in body["upgradeHint"]
    assert "message" in body


def test_stacked_guards_load_plan_once(client, plan_lookup):
    plan_lookup.plan = "growth"

    response = client.post("/automation/campaigns", json={"name": "Spring sale", "channel": "sms"})

    assert response.status_code == 202
    assert response.json()["action_type"] == "send_campaign"
    assert plan_lookup.calls == ["user-1"]


def test_plan_is_not_cached_across_requests(client, plan_lookup):
    plan_lookup.plan = "growth"
    assert client.post("/automation/campaigns", json={"name": "A"}).status_code == 202

    plan_lookup.plan = "starter"
    assert client.post("/automation/campaigns", json={"name": "B"}).status_code == 403

    assert len(plan_lookup.calls) == 2


# ---------------------------------------------------------------------------
# require_feature
# ---------------------------------------------------------------------------

def test_require_feature_allows_scale(client, plan_lookup):
    plan_lookup.plan = "Scale"

    response = client.post("/automation/serp-scan", json={"keyword": "linen shirts"})

    assert response.status_code == 202
    assert response.json()["plan"] == "scale"


def test_require_feature_denies_growth(client, plan_lookup):
    plan_lookup.plan = "growth"

    response = client.post("/automation/serp-scan", json={"keyword": "linen shirts"})

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "Feature not available"
    assert body["feature"] == "serp_intelligence"
    assert body["currentPlan"] == "growth"
    assert body["requiredPlan"] == "scale"
    assert "Scale" in body["upgradeHint"]


# ---------------------------------------------------------------------------
# require_action_access
# ---------------------------------------------------------------------------

def test_bulk_optimize_at_limit(client, plan_lookup):
    plan_lookup.plan = "growth"

    response = client.post("/automation/bulk-optimize", json={"product_ids": _product_ids(50)})

    assert response.status_code == 202
    body = response.json()
    assert body["product_count"] == 50
    assert body["requires_approval"] is False


def test_bulk_optimize_over_limit(client, plan_lookup):
    plan_lookup.plan = "growth"

    response = client.post("/automation/bulk-optimize", json={"product_ids": _product_ids(51)})

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "Action not allowed"
    assert body["denial"] == "quantity_over_limit"
    assert body["actionType"] == "bulk_optimize"
    assert body["currentPlan"] == "growth"
    assert body["maxAllowed"] == 50
    assert body["message"] == "51 exceeds limit of 50 for Growth."
    assert body["reason"] == body["message"]
    assert body["requiredPlan"] == "scale"


def test_bulk_optimize_counts_ids_beyond_declared_count(client, plan_lookup):
    plan_lookup.plan = "growth"

    response = client.post(
        "/automation/bulk-optimize",
        json={"product_count": 1, "product_ids": _product_ids(1000)},
    )

    assert response.status_code == 403
    body = response.json()
    assert body["denial"] == "quantity_over_limit"
    assert body["maxAllowed"] == 50
    assert body["message"] == "1000 exceeds limit of 50 for Growth."


def test_bulk_optimize_tier_too_low(client, plan_lookup):
    plan_lookup.plan = "starter"

    response = client.post("/automation/bulk-optimize", json={"product_ids": _product_ids(5)})

    assert response.status_code == 403
    body = response.json()
    assert body["denial"] == "tier_too_low"
    assert body["requiredPlan"] == "growth"
    assert "Growth" in body["upgradeHint"]


def test_auto_execute_locked_on_starter(client, plan_lookup):
    plan_lookup.plan = "starter"

    response = client.post("/automation/auto-execute/optimize_seo")

    assert response.status_code == 403
    body = response.json()
    assert body["denial"] == "auto_execution_locked"
    assert body["requiredPlan"] == "growth"


def test_auto_execute_allowed_on_growth(client, plan_lookup):
    plan_lookup.plan = "growth"

    response = client.post("/automation/auto-execute/optimize_seo")

    assert response.status_code == 202
    body = response.json()
    assert body["requires_approval"] is False
    assert "automatically" in body["execution_message"]


def test_auto_execute_unknown_action(client, plan_lookup):
    plan_lookup.plan = "scale"

    response = client.post("/automation/auto-execute/launch_rocket")

    assert response.status_code == 404


@pytest.mark.parametrize("payload,expected", [
    ({"product_count": 7}, 7),
    ({"productCount": 12}, 12),
    ({"productIds": ["a", "b", "c"]}, 3),
    ({"product_count": 1, "product_ids": _product_ids(51)}, 51),
    ({"productCount": 80, "productIds": ["a", "b"]}, 80),
    ({"product_ids": []}, 1),
    ({"product_count": 0}, 1),
    ({"product_count": True}, 1),
    ({}, 1),
    (["a", "b"], 1),
])
def test_count_from_payload(payload, expected):
    assert _count_from_payload(payload) == expected


def test_require_plan_accepts_any_case():
    require_plan("Growth")
    require_plan("SCALE")
    require_plan(SubscriptionTier.STARTER)


def test_guard_factories_reject_unknown_names():
    with pytest.raises(ValueError):
        require_plan("platinum")
    with pytest.raises(ValueError):
        require_feature("teleportation")
    with pytest.raises(ValueError):
        require_action_access("launch_rocket")


# ---------------------------------------------------------------------------
# Lookup failures and authentication
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("error", [
    httpx.ConnectError("connection refused"),
    APIError({"message": "relation users does not exist", "code": "42P01"}),
    RuntimeError("Supabase credentials not configured"),
    ValueError("unexpected row shape"),
])
def test_lookup_failure_is_server_error(client, plan_lookup, error):
    plan_lookup.error = error

    response = client.post("/automation/bulk-optimize", json={"product_ids": _product_ids(1)})

    assert response.status_code == 503
    assert response.json()["error"] == "Unable to verify plan access"


def test_missing_plan_defaults_to_free(client, plan_lookup):
    plan_lookup.plan = None

    response = client.get("/plans/me")

    assert response.status_code == 200
    assert response.json()["tier"] == "free"


def test_missing_token_is_unauthorized(anonymous_client, plan_lookup):
    response = anonymous_client.post("/automation/bulk-optimize", json={"product_ids": _product_ids(1)})

    assert response.status_code == 401
    assert plan_lookup.calls == []


# ---------------------------------------------------------------------------
# get_user_plan_capabilities
# ---------------------------------------------------------------------------

def test_get_user_plan_capabilities_summary():
    summary = get_user_plan_capabilities("user-9", lambda user_id: "Growth")

    assert summary["plan_name"] == "Growth"
    assert summary["tier"] == "growth"
    assert summary["display_name"] == "Growth"
    assert summary["max_bulk_products"] == 50
    assert summary["can_use_bulk_operations"] is True
    assert summary["has_serp_access"] is False
    assert summary["capabilities"]["scheduled_refresh"] is True


def test_get_user_plan_capabilities_raises_on_lookup_failure():
    def broken(user_id):
        raise httpx.ReadTimeout("timed out")

    with pytest.raises(PlanLookupError):
        get_user_plan_capabilities("user-9", broken)


# ---------------------------------------------------------------------------
# UserRepository.get_plan
# ---------------------------------------------------------------------------

def _fake_db(*results):
    db = MagicMock()
    query = db.table.return_value.select.return_value.eq.return_value.maybe_single.return_value
    query.execute.side_effect = list(results)
    return db


@pytest.mark.parametrize("result,expected", [
    (SimpleNamespace(data={"plan": "Starter+"}), "Starter+"),
    (SimpleNamespace(data={"plan": None}), "free"),
    (SimpleNamespace(data=None), "free"),
    (None, "free"),
])
def test_repository_get_plan(monkeypatch, result, expected):
    from app.repositories import user as user_module

    monkeypatch.setattr(user_module, "get_db", lambda: _fake_db(result))

    assert user_module.UserRepository.get_plan("user-1") == expected


def test_repository_get_plan_retries_connection_errors(monkeypatch):
    from app.repositories import user as user_module

    db = _fake_db(httpx.ConnectError("server disconnected"), SimpleNamespace(data={"plan": "scale"}))
    monkeypatch.setattr(user_module, "get_db", lambda: db)

    assert user_module.UserRepository.get_plan("user-1") == "scale"


def test_repository_get_plan_raises_after_retries(monkeypatch):
    from app.repositories import user as user_module

    db = _fake_db(*[httpx.ConnectError("server disconnected")] * 3)
    monkeypatch.setattr(user_module, "get_db", lambda: db)

    with pytest.raises(httpx.ConnectError):
        user_module.UserRepository.get_plan("user-1")
