"""
Integration tests for the usage, chat and profile endpoints.
"""
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from studypal.main import app
from studypal.db.base import Base
from studypal.core.auth_dependency import get_db
from studypal.core.identity import Anonymous
from studypal.core.plan_limits import Plan
from studypal.core.quota_guard import get_ledger, get_plan_source
from studypal.core.security import create_access_token
from studypal.services import ai_service
from studypal.services.ai_service import AIServiceError
from studypal.services.anonymous_usage_service import LocalUsageBackend, MemoryStorage
from studypal.services.profile_service import ProfilePlanSource, update_plan
from studypal.services.usage_service import DatabaseUsageBackend, UsageLedger


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

client = TestClient(app)

QUESTION = {"messages": [{"role": "user", "content": "What is 2+2?"}]}


def override_get_db():
    """Override get_db dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


class BrokenStorage(MemoryStorage):
    def set_item(self, key, value):
        raise OSError("read-only file system")


@pytest.fixture
def ledger():
    return UsageLedger(
        remote=DatabaseUsageBackend(TestSessionLocal),
        local=LocalUsageBackend(MemoryStorage()),
    )


@pytest.fixture(scope="function", autouse=True)
def setup_app(ledger):
    """Fresh tables and dependency overrides for each test."""
    Base.metadata.create_all(bind=test_engine)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_plan_source] = lambda: ProfilePlanSource(TestSessionLocal)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session():
    """Provide a database session for tests."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def auth_headers():
    token = create_access_token("user-1", email="student@example.com")
    return {"Authorization": f"Bearer {token}"}


DEVICE_HEADERS = {"X-Device-Id": "device-1"}


def test_plans_endpoint():
    response = client.get("/plans")

    assert response.status_code == 200
    plans = {p["plan"]: p for p in response.json()["plans"]}
    assert plans["free"]["daily_questions"] == 5
    assert plans["gold"]["price_cents"] == 999
    assert plans["diamond"]["display_name"] == "Diamond Member"


def test_usage_for_new_anonymous_device():
    response = client.get("/me/usage", headers=DEVICE_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["questions_asked"] == 0
    assert data["limit"] == 5
    assert data["remaining"] == 5
    assert data["plan_type"] == "free"
    assert data["can_ask"] is True
    assert data["degraded"] is False


def test_usage_requires_identity():
    assert client.get("/me/usage").status_code == 400


def test_invalid_token_rejected():
    response = client.get("/me/usage", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_usage_uses_profile_plan(auth_headers, db_session):
    update_plan(db_session, "user-1", Plan.GOLD)

    data = client.get("/me/usage", headers=auth_headers).json()

    assert data["limit"] == 150
    assert data["plan_type"] == "gold"


def test_chat_completion_counts_question(auth_headers):
    with patch.object(ai_service, "send_message", new=AsyncMock(return_value="4")):
        response = client.post("/chat/completions", json=QUESTION, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["response"] == "4"
    assert data["usage"]["questions_asked"] == 1
    assert data["usage"]["remaining"] == 4
    assert client.get("/me/usage", headers=auth_headers).json()["questions_asked"] == 1


def test_chat_completion_quota_exceeded(ledger):
    for _ in range(5):
        ledger.record_question(Anonymous(device_id="device-1"), Plan.FREE)

    send = AsyncMock(return_value="unused")
    with patch.object(ai_service, "send_message", new=send):
        response = client.post("/chat/completions", json=QUESTION, headers=DEVICE_HEADERS)

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error"] == "quota_exceeded"
    assert detail["plan"] == "free"
    assert detail["limit"] == 5
    assert detail["used"] == 5
    assert detail["remaining"] == 0
    assert detail["upgrade_hint"] == "gold"
    send.assert_not_called()


def test_chat_completion_storage_unavailable(ledger):
    ledger.local = LocalUsageBackend(BrokenStorage())

    send = AsyncMock(return_value="unused")
    with patch.object(ai_service, "send_message", new=send):
        response = client.post("/chat/completions", json=QUESTION, headers=DEVICE_HEADERS)

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "storage_unavailable"
    send.assert_not_called()


def test_chat_completion_ai_failure_still_counts(auth_headers):
    failing = AsyncMock(side_effect=AIServiceError("The AI service is busy right now."))
    with patch.object(ai_service, "send_message", new=failing):
        response = client.post("/chat/completions", json=QUESTION, headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["detail"]["message"] == "The AI service is busy right now."
    assert client.get("/me/usage", headers=auth_headers).json()["questions_asked"] == 1


def test_invalid_chat_request_is_not_counted():
    send = AsyncMock(return_value="unused")
    with patch.object(ai_service, "send_message", new=send):
        response = client.post("/chat/completions", json={"messages": []}, headers=DEVICE_HEADERS)

    assert response.status_code == 422
    send.assert_not_called()
    assert client.get("/me/usage", headers=DEVICE_HEADERS).json()["questions_asked"] == 0


@pytest.mark.parametrize("messages", [
    [{"role": "user", "content": ""}],
    [{"role": "user", "content": "   "}],
    [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello!"}],
])
def test_chat_request_without_question_is_rejected(messages):
    send = AsyncMock(return_value="unused")
    with patch.object(ai_service, "send_message", new=send):
        response = client.post("/chat/completions", json={"messages": messages}, headers=DEVICE_HEADERS)

    assert response.status_code == 422
    send.assert_not_called()
    assert client.get("/me/usage", headers=DEVICE_HEADERS).json()["questions_asked"] == 0


def test_image_only_question_is_answered():
    question = {"messages": [{
        "role": "user",
        "content": "",
        "image": {"data_url": "data:image/png;base64,AAAA", "name": "hw.png"},
    }]}
    with patch.object(ai_service, "send_message", new=AsyncMock(return_value="A triangle.")):
        response = client.post("/chat/completions", json=question, headers=DEVICE_HEADERS)

    assert response.status_code == 200
    assert response.json()["usage"]["questions_asked"] == 1


def test_profile_created_on_first_request(auth_headers):
    response = client.get("/me/profile", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == "user-1"
    assert data["email"] == "student@example.com"
    assert data["plan_type"] == "free"
    assert data["display_name"] == "Free Member"


def test_profile_requires_sign_in():
    assert client.get("/me/profile", headers=DEVICE_HEADERS).status_code == 401


def test_downgrade(auth_headers, db_session):
    update_plan(db_session, "user-1", Plan.DIAMOND)

    response = client.post("/me/plan/downgrade", json={"plan_type": "gold"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["plan_type"] == "gold"
    assert response.json()["daily_questions"] == 150


def test_downgrade_cannot_upgrade(auth_headers):
    response = client.post("/me/plan/downgrade", json={"plan_type": "diamond"}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_downgrade"


def test_health():
    with patch("studypal.api.routes.health.SessionLocal", TestSessionLocal):
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
