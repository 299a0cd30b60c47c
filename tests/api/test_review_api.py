"""Tests for the admin review queue API endpoints."""

import pytest
from httpx import AsyncClient

from src.identity.schemas import IdentityRecord, ProfileStatus
from src.main import app

HEADERS = {"X-Tenant-ID": "church-1", "X-API-Key": "admin-key-1"}
PUBLIC_HEADERS = {"X-Tenant-ID": "church-1", "X-API-Key": "test-key-1"}


async def _queue_review(client: AsyncClient, **profile_overrides) -> tuple[IdentityRecord, str]:
    """Seed Robert Smith and trigger an admin_review recognition for Bob Smith."""
    data = {
        "tenant_id": "church-1",
        "first_name": "Robert",
        "last_name": "Smith",
        "confidence": 60,
    }
    data.update(profile_overrides)
    record = IdentityRecord(**data)
    await app.state.profile_repo.save_profile(record)

    response = await client.post(
        "/recognition/recognize",
        json={"data": {"first_name": "Bob", "last_name": "Smith"}},
        headers=HEADERS,
    )
    assert response.json()["tier"] == "admin_review"
    return record, response.json()["review_queue_item_id"]


class TestListQueue:
    """Tests for GET /recognition/review-queue."""

    @pytest.mark.asyncio
    async def test_lists_pending_items(self, client: AsyncClient):
        record, item_id = await _queue_review(client)

        response = await client.get("/recognition/review-queue", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["pagination"]["total"] == 1
        entry = data["items"][0]
        assert entry["item"]["id"] == item_id
        assert entry["suggestion"]["confidence"] == 76
        assert entry["source_profile"]["id"] == record.id

    @pytest.mark.asyncio
    async def test_requires_access(self, client: AsyncClient):
        response = await client.get(
            "/recognition/review-queue",
            headers={"X-Tenant-ID": "church-1", "X-API-Key": "wrong"},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_public_key_forbidden(self, client: AsyncClient):
        """The key embedded in public forms cannot read the admin queue."""
        await _queue_review(client)

        response = await client.get("/recognition/review-queue", headers=PUBLIC_HEADERS)

        assert response.status_code == 403
        assert "source_profile" not in response.text

    @pytest.mark.asyncio
    async def test_limit_validated(self, client: AsyncClient):
        response = await client.get(
            "/recognition/review-queue", params={"limit": 500}, headers=HEADERS
        )

        assert response.status_code == 422


class TestActions:
    """Tests for POST /recognition/review-queue/actions."""

    @pytest.mark.asyncio
    async def test_approve_then_conflict(self, client: AsyncClient):
        _, item_id = await _queue_review(client, member_id=None)

        first = await client.post(
            "/recognition/review-queue/actions",
            json={"action": "approve", "queue_item_id": item_id, "reviewed_by": "admin-1"},
            headers=HEADERS,
        )
        second = await client.post(
            "/recognition/review-queue/actions",
            json={"action": "approve", "queue_item_id": item_id},
            headers=HEADERS,
        )

        assert first.status_code == 200
        assert first.json() == {
            "success": True,
            "message": "Match approved successfully",
            "merged_profile_id": None,
        }
        assert second.status_code == 409

        pending = await client.get("/recognition/review-queue", headers=HEADERS)
        assert pending.json()["pagination"]["total"] == 0

    @pytest.mark.asyncio
    async def test_reject_lowers_confidence(self, client: AsyncClient):
        record, item_id = await _queue_review(client)

        response = await client.post(
            "/recognition/review-queue/actions",
            json={"action": "reject", "queue_item_id": item_id},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Match rejected"
        stored = await app.state.profile_repo.get_profile(record.id, "church-1")
        assert stored.confidence == 30

    @pytest.mark.asyncio
    async def test_merge(self, client: AsyncClient):
        record, item_id = await _queue_review(client)
        source = IdentityRecord(
            tenant_id="church-1", first_name="Bob", last_name="Smith", phone="5550001111"
        )
        await app.state.profile_repo.save_profile(source)

        response = await client.post(
            "/recognition/review-queue/actions",
            json={
                "action": "merge",
                "queue_item_id": item_id,
                "merge_options": {
                    "source_profile_id": source.id,
                    "target_profile_id": record.id,
                    "keep_data": "merge",
                },
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["merged_profile_id"] == record.id
        merged = await app.state.profile_repo.get_profile(record.id, "church-1")
        assert merged.phone == "5550001111"
        assert merged.first_name == "Robert"
        old = await app.state.profile_repo.get_profile(source.id, "church-1")
        assert old.status == ProfileStatus.MERGED

    @pytest.mark.asyncio
    async def test_merge_into_self_is_bad_request(self, client: AsyncClient):
        record, item_id = await _queue_review(client)

        response = await client.post(
            "/recognition/review-queue/actions",
            json={
                "action": "merge",
                "queue_item_id": item_id,
                "merge_options": {
                    "source_profile_id": record.id,
                    "target_profile_id": record.id,
                },
            },
            headers=HEADERS,
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_item_not_found(self, client: AsyncClient):
        response = await client.post(
            "/recognition/review-queue/actions",
            json={"action": "approve", "queue_item_id": "missing"},
            headers=HEADERS,
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, client: AsyncClient):
        response = await client.post(
            "/recognition/review-queue/actions",
            json={"action": "delete", "queue_item_id": "q-1"},
            headers=HEADERS,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_public_key_cannot_act(self, client: AsyncClient):
        record, item_id = await _queue_review(client)

        response = await client.post(
            "/recognition/review-queue/actions",
            json={"action": "reject", "queue_item_id": item_id},
            headers=PUBLIC_HEADERS,
        )

        assert response.status_code == 403
        stored = await app.state.profile_repo.get_profile(record.id, "church-1")
        assert stored.confidence == 60
        pending = await client.get("/recognition/review-queue", headers=HEADERS)
        assert [i["item"]["id"] for i in pending.json()["items"]] == [item_id]
