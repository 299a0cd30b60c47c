"""Tests for the recognition analytics API endpoint."""

import pytest
from httpx import AsyncClient

from src.events import AuditAction, AuditEvent
from src.main import app

ADMIN_HEADERS = {"X-Tenant-ID": "church-1", "X-API-Key": "admin-key-1"}
PUBLIC_HEADERS = {"X-Tenant-ID": "church-1", "X-API-Key": "test-key-1"}


async def _seed(*actions: tuple[AuditAction, int | None], tenant_id: str = "church-1") -> None:
    for action, confidence in actions:
        await app.state.event_store.append(
            AuditEvent(tenant_id=tenant_id, action=action, confidence=confidence)
        )


class TestAnalytics:
    """Tests for GET /recognition/analytics."""

    @pytest.mark.asyncio
    async def test_reports_tenant_activity(self, client: AsyncClient):
        await _seed(
            (AuditAction.AUTO_FILL, 99),
            (AuditAction.CONFIRM_IDENTITY, 91),
            (AuditAction.CREATE_NEW, None),
            (AuditAction.CREATE_NEW, None),
            (AuditAction.MATCH_CONFIRMED, 91),
            (AuditAction.REVIEW_REJECTED, 75),
        )
        await _seed((AuditAction.AUTO_FILL, 99), tenant_id="church-2")

        response = await client.get("/recognition/analytics", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == "church-1"
        assert data["overview"]["recognition_attempts"] == 4
        assert data["overview"]["recognition_rate"] == 50.0
        assert data["tiers"] == {
            "auto_fill": 1,
            "confirm_identity": 1,
            "admin_review": 0,
            "create_new": 2,
        }
        assert data["user_feedback"]["confirmed"] == 1
        assert data["admin_performance"]["rejected"] == 1
        assert data["admin_performance"]["pending_reviews"] == 0
        assert len(data["trends"]) == 1

    @pytest.mark.asyncio
    async def test_public_key_forbidden(self, client: AsyncClient):
        response = await client.get("/recognition/analytics", headers=PUBLIC_HEADERS)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_tenant_is_bad_request(self, client: AsyncClient):
        response = await client.get(
            "/recognition/analytics", headers={"X-API-Key": "admin-key-1"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 400])
    async def test_days_validated(self, client: AsyncClient, days: int):
        response = await client.get(
            "/recognition/analytics", params={"days": days}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 422
