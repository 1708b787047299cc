"""Tests for FastAPI main application."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from portfolio_chat_api.clerk_client import ClerkUser
from portfolio_chat_api.dependencies import (
    get_identity,
    get_job_fit_scorer,
    get_resolver,
    get_session_provisioner,
    get_tracker,
)
from portfolio_chat_api.errors import AnalysisFailed, UpstreamError, UsageStoreUnavailable
from portfolio_chat_api.identity import Identity
from portfolio_chat_api.main import app
from portfolio_chat_api.plans import PlanResolver
from portfolio_chat_api.session_provisioner import SessionProvisioner
from portfolio_chat_api.usage_store import InMemoryUsageStore
from portfolio_chat_api.usage_tracker import UsageTracker

SIGNED_IN = Identity(key="user_2abc", is_guest=False)


@pytest.fixture
def client():
    """Create test client."""
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def sign_in(plan: str | None = None) -> None:
    """Override identity and plan lookup so requests come from a signed-in user."""
    metadata = {"subscriptionPlan": plan} if plan else {}
    lookup = AsyncMock(return_value=ClerkUser(id=SIGNED_IN.key, public_metadata=metadata))
    app.dependency_overrides[get_identity] = lambda: SIGNED_IN
    app.dependency_overrides[get_resolver] = lambda: PlanResolver(lookup)


class UnavailableStore:
    """Usage store whose backend is down."""

    async def get(self, key: str) -> int:
        raise UsageStoreUnavailable("connection refused")

    async def increment_with_ceiling(self, key: str, limit: int) -> int | None:
        raise UsageStoreUnavailable("connection refused")

    async def decrement(self, key: str) -> int:
        raise UsageStoreUnavailable("connection refused")

    async def ping(self) -> bool:
        return False


class FailingChatKit:
    async def create_chatkit_session(self, workflow_id: str, user: str) -> str:
        raise UpstreamError("OpenAI API error (500)", status_code=500, body="server error")


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_check(self, client):
        """Test basic health check."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["usage_store_connected"] is True
        assert data["usage_store_backend"] == "memory"
        assert "version" in data

    def test_health_check_v1(self, client):
        """Test v1 health endpoint."""
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert "status" in response.json()

    def test_trace_id_echoed(self, client):
        response = client.get("/health", headers={"X-Trace-ID": "trace-123"})
        assert response.headers["X-Trace-ID"] == "trace-123"

    def test_trace_id_generated(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Trace-ID"]) > 0


class TestChatSessionEndpoint:
    """Tests for the chat session endpoint."""

    def test_guest_gets_session(self, client):
        response = client.post("/api/v1/chat/session")
        assert response.status_code == 200
        assert response.json()["client_secret"].startswith("mock_secret_")

    def test_guest_limited_to_three(self, client):
        for _ in range(3):
            assert client.post("/api/v1/chat/session").status_code == 200

        response = client.post("/api/v1/chat/session")
        assert response.status_code == 429

        data = response.json()
        assert data["code"] == "quota_exceeded"
        assert data["limit"] == 3
        assert data["tier"] == "free"
        assert data["is_guest"] is True
        assert "Sign in" in data["error"]

    def test_free_user_limited_to_five(self, client):
        sign_in()
        for _ in range(5):
            assert client.post("/api/v1/chat/session").status_code == 200

        response = client.post("/api/v1/chat/session")
        assert response.status_code == 429
        data = response.json()
        assert data["limit"] == 5
        assert data["is_guest"] is False
        assert "Upgrade to Recruiter" in data["error"]

    def test_recruiter_limit(self, client):
        sign_in("recruiter")
        for _ in range(20):
            assert client.post("/api/v1/chat/session").status_code == 200

        response = client.post("/api/v1/chat/session")
        assert response.status_code == 429
        data = response.json()
        assert data["limit"] == 20
        assert data["tier"] == "recruiter"
        assert "Come back tomorrow" in data["error"]

    def test_guests_counted_per_address(self, client):
        for _ in range(3):
            client.post("/api/v1/chat/session", headers={"X-Forwarded-For": "203.0.113.7"})

        blocked = client.post("/api/v1/chat/session", headers={"X-Forwarded-For": "203.0.113.7"})
        other = client.post("/api/v1/chat/session", headers={"X-Forwarded-For": "198.51.100.2"})
        assert blocked.status_code == 429
        assert other.status_code == 200

    def test_missing_workflow_is_500(self, client, mock_settings):
        mock_settings(chatkit_workflow_id="")
        response = client.post("/api/v1/chat/session")
        assert response.status_code == 500
        assert response.json()["code"] == "configuration_error"

    def test_upstream_failure_is_502_and_not_counted(self, client, clock):
        tracker = UsageTracker(InMemoryUsageStore(), timezone="UTC", clock=clock)
        app.dependency_overrides[get_session_provisioner] = lambda: SessionProvisioner(
            tracker=tracker, client=FailingChatKit(), workflow_id="wf_test"
        )

        response = client.post("/api/v1/chat/session")
        assert response.status_code == 502
        assert response.json()["code"] == "upstream_error"

        app.dependency_overrides.pop(get_session_provisioner)
        app.dependency_overrides[get_tracker] = lambda: tracker
        usage = client.get("/api/v1/chat/usage").json()
        assert usage["remaining"] == 3

    def test_usage_store_down_is_503(self, client):
        app.dependency_overrides[get_tracker] = lambda: UsageTracker(UnavailableStore())

        response = client.post("/api/v1/chat/session")
        assert response.status_code == 503
        assert response.json()["code"] == "usage_store_unavailable"


class TestUsageEndpoint:
    def test_guest_usage(self, client):
        data = client.get("/api/v1/chat/usage").json()
        assert data == {"allowed": True, "remaining": 3, "limit": 3, "tier": "free"}

    def test_usage_decreases_after_session(self, client):
        client.post("/api/v1/chat/session")
        data = client.get("/api/v1/chat/usage").json()
        assert data["remaining"] == 2

    def test_usage_does_not_count(self, client):
        for _ in range(5):
            client.get("/api/v1/chat/usage")
        assert client.get("/api/v1/chat/usage").json()["remaining"] == 3

    def test_recruiter_usage(self, client):
        sign_in("recruiter")
        data = client.get("/api/v1/chat/usage").json()
        assert data["limit"] == 20
        assert data["tier"] == "recruiter"


class TestPlanEndpoint:
    def test_guest_is_free(self, client):
        assert client.get("/api/v1/plan").json() == {"tier": "free"}

    def test_recruiter(self, client):
        sign_in("recruiter")
        assert client.get("/api/v1/plan").json() == {"tier": "recruiter"}

    def test_lookup_failure_is_free(self, client):
        app.dependency_overrides[get_identity] = lambda: SIGNED_IN
        app.dependency_overrides[get_resolver] = lambda: PlanResolver(
            AsyncMock(side_effect=RuntimeError("clerk down"))
        )
        response = client.get("/api/v1/plan")
        assert response.status_code == 200
        assert response.json() == {"tier": "free"}


class TestJobFitEndpoint:
    """Tests for the job fit endpoint."""

    @pytest.mark.parametrize("path", ["/api/job-fit", "/api/v1/job-fit"])
    def test_mock_assessment(self, client, path):
        response = client.post(path, json={"jobDescription": "Senior Python engineer, FastAPI, AWS"})
        assert response.status_code == 200

        data = response.json()
        assert 0 <= data["matchScore"] <= 100
        assert data["verdict"] in {"High Match", "Potential Match", "Low Match"}
        assert isinstance(data["strengths"], list)
        assert isinstance(data["gaps"], list)
        assert "match_score" not in data

    def test_blank_description_rejected(self, client):
        response = client.post("/api/job-fit", json={"jobDescription": "   "})
        assert response.status_code == 422

    def test_missing_description_rejected(self, client):
        response = client.post("/api/job-fit", json={})
        assert response.status_code == 422

    def test_analysis_failure_is_500(self, client):
        scorer = AsyncMock()
        scorer.analyze.side_effect = AnalysisFailed("model returned prose")
        app.dependency_overrides[get_job_fit_scorer] = lambda: scorer

        response = client.post("/api/job-fit", json={"jobDescription": "Data engineer"})
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to analyze job fit"

    def test_job_fit_does_not_use_chat_quota(self, client):
        for _ in range(4):
            client.post("/api/job-fit", json={"jobDescription": "Data engineer"})
        assert client.get("/api/v1/chat/usage").json()["remaining"] == 3


class TestMetricsEndpoint:
    """Tests for Prometheus metrics endpoint."""

    def test_metrics_endpoint(self, client):
        """Test that metrics endpoint is available."""
        client.post("/api/v1/chat/session")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "quota_decisions_total" in response.text


class TestCORS:
    """Tests for CORS configuration."""

    def test_cors_headers(self, client):
        """Test that CORS headers are present."""
        response = client.options(
            "/api/v1/chat/session",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert response.status_code == 200
