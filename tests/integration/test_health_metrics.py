"""Integration tests for /healthz, /metrics and /identity endpoints."""

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from backend.billing.db.seed_dev import Seeder
from backend.billing.main import app
from backend.billing.transactions.engine import TransactionEngine
from backend.billing.transactions.executors import get_transaction_engine


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest_asyncio.fixture
async def api_client(transaction_engine: TransactionEngine) -> AsyncGenerator[AsyncClient, None]:
    """Async client whose executors run on the SQLite test engine.

    Runs on the test's event loop so the aiosqlite connections are shared.
    """
    app.dependency_overrides[get_transaction_engine] = lambda: transaction_engine
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestHealthEndpoint:
    """Test /healthz endpoint."""

    @patch("backend.billing.api.routes.health.check_db")
    @patch("backend.billing.api.routes.health.check_redis")
    def test_healthz_returns_200_when_all_ok(
        self,
        mock_check_redis: MagicMock,
        mock_check_db: MagicMock,
        client: TestClient,
    ) -> None:
        """Test /healthz returns 200 when DB and Redis are healthy."""
        mock_check_db.return_value = (True, "ok")
        mock_check_redis.return_value = (True, "ok")

        response = client.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["components"] == {"db": "ok", "redis": "ok"}

    @patch("backend.billing.api.routes.health.check_db")
    @patch("backend.billing.api.routes.health.check_redis")
    def test_healthz_returns_503_when_db_fails(
        self,
        mock_check_redis: MagicMock,
        mock_check_db: MagicMock,
        client: TestClient,
    ) -> None:
        """Test /healthz returns 503 when DB check fails."""
        mock_check_db.return_value = (False, "connection refused")
        mock_check_redis.return_value = (True, "ok")

        response = client.get("/healthz")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["db"] == "connection refused"
        assert data["components"]["redis"] == "ok"

    @patch("backend.billing.api.routes.health.check_db")
    @patch("backend.billing.api.routes.health.check_redis")
    def test_healthz_returns_503_when_redis_fails(
        self,
        mock_check_redis: MagicMock,
        mock_check_db: MagicMock,
        client: TestClient,
    ) -> None:
        """Test /healthz returns 503 when Redis check fails."""
        mock_check_db.return_value = (True, "ok")
        mock_check_redis.return_value = (False, "timeout")

        response = client.get("/healthz")

        assert response.status_code == 503
        assert response.json()["components"]["redis"] == "timeout"

    @patch("backend.billing.api.routes.health.check_db")
    @patch("backend.billing.api.routes.health.check_redis")
    def test_healthz_ok_without_redis_configured(
        self,
        mock_check_redis: MagicMock,
        mock_check_db: MagicMock,
        client: TestClient,
    ) -> None:
        mock_check_db.return_value = (True, "ok")
        mock_check_redis.return_value = (True, "not_configured")

        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["components"]["redis"] == "not_configured"

    def test_health_always_ok(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestMetricsEndpoint:
    """Test /metrics endpoint."""

    def test_metrics_returns_prometheus_format(self, client: TestClient) -> None:
        """Test /metrics returns Prometheus text format."""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "# HELP" in response.text or "# TYPE" in response.text

    def test_metrics_includes_transaction_metrics(self, client: TestClient) -> None:
        """Test /metrics includes executor metrics."""
        from backend.billing.utils.metrics import (
            effects_persisted_total,
            post_commit_failures_total,
            transaction_latency_ms,
            transactions_total,
        )

        transactions_total.labels(kind="admin", outcome="ok").inc()
        transaction_latency_ms.labels(kind="admin").observe(12)
        effects_persisted_total.labels(effect="event").inc()
        post_commit_failures_total.labels(stage="cache_invalidation").inc()

        text = client.get("/metrics").text

        assert "billing_transactions_total" in text
        assert "billing_transaction_latency_ms" in text
        assert "billing_effects_persisted_total" in text
        assert "billing_post_commit_failures_total" in text


class TestIdentityEndpoint:
    """Test /identity resolves credentials through the merchant executor."""

    @pytest.mark.asyncio
    async def test_api_key_resolves_to_merchant_scope(
        self, api_client: AsyncClient, seed: Seeder
    ) -> None:
        org = await seed.organization()
        user = await seed.user()
        await seed.membership(user, org)
        await seed.api_key("sk_test_http", org, livemode=False, user_id=user.id)

        response = await api_client.get(
            "/identity", headers={"Authorization": "Bearer sk_test_http"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "user_id": user.id,
            "organization_id": org.id,
            "customer_id": None,
            "livemode": False,
            "role": "merchant",
        }

    @pytest.mark.asyncio
    async def test_session_cookie_resolves_focused_membership(
        self, api_client: AsyncClient, seed: Seeder
    ) -> None:
        org = await seed.organization()
        user = await seed.user(better_auth_id="ba_http")
        await seed.membership(user, org, focused=True, livemode=True)
        await seed.auth_session("sess_http", "ba_http")

        api_client.cookies.set("session_token", "sess_http")
        response = await api_client.get("/identity")

        assert response.status_code == 200
        assert response.json()["organization_id"] == org.id

    @pytest.mark.asyncio
    async def test_missing_credentials_is_401(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/identity")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json() == {"detail": "No user found for a non-API key transaction"}

    @pytest.mark.asyncio
    async def test_unknown_api_key_is_401(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/identity", headers={"Authorization": "Bearer sk_nope"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_header_is_401(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/identity", headers={"Authorization": "Token abc"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid authorization header format"

    @pytest.mark.asyncio
    async def test_portal_customer_not_found_is_404(
        self, api_client: AsyncClient, seed: Seeder
    ) -> None:
        org = await seed.organization()
        await seed.user(better_auth_id="ba_stranger")
        await seed.auth_session("sess_stranger", "ba_stranger")

        api_client.cookies.set("session_token", "sess_stranger")
        api_client.cookies.set("billing_portal_organization_id", org.id)
        response = await api_client.get("/identity")

        assert response.status_code == 404
        assert response.json() == {"detail": "Not found"}


class TestRootEndpoint:
    """Test root endpoint."""

    def test_root_returns_api_info(self, client: TestClient) -> None:
        """Test root endpoint returns API information."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Billing Transaction Core"
        assert data["version"] == "0.1.0"


class TestShutdown:
    """Shutdown releases the global engine's Redis client."""

    def test_shutdown_closes_transaction_engine(self) -> None:
        close = AsyncMock()

        with patch("backend.billing.main.close_transaction_engine", close):
            with TestClient(app) as client:
                client.get("/health")
                close.assert_not_awaited()

        close.assert_awaited_once()
