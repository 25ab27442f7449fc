# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.core.entitlements import get_plan_lookup
from app.core.security import CallerIdentity, get_caller_identity


class FakePlanLookup:
    """Stands in for UserRepository.get_plan and records every call."""

    def __init__(self, plan="free", error=None):
        self.plan = plan
        self.error = error
        self.calls = []

    def __call__(self, user_id):
        self.calls.append(user_id)
        if self.error is not None:
            raise self.error
        return self.plan


@pytest.fixture
def plan_lookup():
    return FakePlanLookup()


@pytest.fixture
def anonymous_client(plan_lookup):
    """Client with the real authentication dependency and a fake plan store."""
    app.dependency_overrides[get_plan_lookup] = lambda: plan_lookup
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(plan_lookup):
    """Client authenticated as user-1 with a fake plan store."""
    app.dependency_overrides[get_plan_lookup] = lambda: plan_lookup
    app.dependency_overrides[get_caller_identity] = lambda: CallerIdentity(id="user-1", email="merchant@example.com")
    yield TestClient(app)
    app.dependency_overrides.clear()
