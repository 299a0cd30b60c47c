"""Tests for RecognitionEngine."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.identity.engine import RecognitionEngine
from src.identity.errors import DependencyUnavailableError, InvalidInputError, NotFoundError
from src.identity.schemas import (
    ChangeSet,
    MatchType,
    ProfileMatchSuggestion,
    ProfileStatus,
    QueuePriority,
    RecognitionInput,
    RecognitionOptions,
    RecognitionResult,
    RecognitionTier,
    ReviewQueueItem,
)


@pytest.fixture
def mock_store() -> MagicMock:
    """Identity store mock with no candidates by default."""
    store = MagicMock()
    store.find_candidates = AsyncMock(return_value=[])
    store.find_family_members = AsyncMock(return_value=[])
    store.get_profile = AsyncMock(return_value=None)
    store.find_pending_suggestion = AsyncMock(return_value=None)
    store.find_queue_item_for_suggestion = AsyncMock(return_value=None)
    store.create_suggestion = AsyncMock(side_effect=lambda s: s.id)
    store.create_queue_item = AsyncMock(side_effect=lambda i: i.id)
    store.apply_changes = AsyncMock()
    return store


@pytest.fixture
def engine(mock_store, cache, audit_sink) -> RecognitionEngine:
    return RecognitionEngine(mock_store, cache, audit_sink, store_timeout_seconds=0.5)


class TestRecognizeValidation:
    """Tests for input validation."""

    @pytest.mark.asyncio
    async def test_requires_identifying_field(self, engine, mock_store):
        with pytest.raises(InvalidInputError):
            await engine.recognize("church-1", RecognitionInput(last_name="Smith"))

        mock_store.find_candidates.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tenant_id", ["", "   ", "church 1", "../etc"])
    async def test_rejects_missing_or_malformed_tenant(self, engine, tenant_id):
        with pytest.raises(InvalidInputError):
            await engine.recognize(tenant_id, RecognitionInput(email="john@example.com"))


class TestRecognizeTiers:
    """End-to-end tier decisions against a mocked store."""

    @pytest.mark.asyncio
    async def test_exact_email_auto_fills(self, engine, mock_store, make_record, audit_sink):
        record = make_record(email="john@x.com", phone=None, family_id="fam-1")
        spouse = make_record(first_name="Jane", email="jane@x.com", relationship="spouse")
        mock_store.find_candidates.return_value = [record]
        mock_store.find_family_members.return_value = [spouse]

        result = await engine.recognize("church-1", RecognitionInput(email="john@x.com"))

        assert result.tier == RecognitionTier.AUTO_FILL
        assert result.confidence == 100
        assert result.match_reasons == ["email matches"]
        assert result.masked_profile.profile_id == record.id
        assert result.masked_profile.email == "j**n@x.com"
        assert [m.first_name for m in result.family_members] == ["Jane"]
        assert result.family_members[0].relationship == "spouse"
        mock_store.find_family_members.assert_awaited_once_with("church-1", "fam-1", record.id)
        assert audit_sink.actions == ["auto_fill"]

    @pytest.mark.asyncio
    async def test_family_skipped_when_not_requested(self, engine, mock_store, make_record):
        mock_store.find_candidates.return_value = [make_record(family_id="fam-1")]

        result = await engine.recognize(
            "church-1",
            RecognitionInput(email="john@example.com"),
            RecognitionOptions(include_family=False),
        )

        assert result.tier == RecognitionTier.AUTO_FILL
        assert result.family_members == []
        mock_store.find_family_members.assert_not_called()

    @pytest.mark.asyncio
    async def test_nickname_and_zip_never_create_new(self, engine, mock_store, make_record):
        record = make_record(first_name="Robert", last_name="Smith", zip_code="62701")
        mock_store.find_candidates.return_value = [record]

        result = await engine.recognize(
            "church-1",
            RecognitionInput(first_name="Bob", last_name="Smith", zip_code="62701"),
        )

        assert result.tier in (
            RecognitionTier.ADMIN_REVIEW,
            RecognitionTier.CONFIRM_IDENTITY,
            RecognitionTier.AUTO_FILL,
        )
        assert result.tier == RecognitionTier.CONFIRM_IDENTITY
        assert result.confidence == 96
        assert "Is this you?" in result.display_message
        assert result.family_members == []

    @pytest.mark.asyncio
    async def test_disclosing_tiers_never_leak_email_or_phone(
        self, engine, mock_store, make_record
    ):
        record = make_record(email="jonathan@example.com", phone="5551234567")
        mock_store.find_candidates.return_value = [record]

        result = await engine.recognize(
            "church-1", RecognitionInput(email="jonathan@example.com", phone="5551234567")
        )

        dumped = result.model_dump_json()
        assert result.is_recognized
        assert "jonathan@example.com" not in dumped
        assert "5551234567" not in dumped
        assert "123-4567" not in dumped

    @pytest.mark.asyncio
    async def test_admin_review_queues_suggestion(self, engine, mock_store, make_record):
        # Nickname + surname only: too little evidence to show the profile
        record = make_record(first_name="Robert", last_name="Smith", member_id="m-1")
        mock_store.find_candidates.return_value = [record]

        result = await engine.recognize(
            "church-1",
            RecognitionInput(first_name="Bob", last_name="Smith"),
        )

        assert result.tier == RecognitionTier.ADMIN_REVIEW
        assert result.masked_profile is None
        assert result.review_queue_item_id is not None

        suggestion: ProfileMatchSuggestion = mock_store.create_suggestion.await_args.args[0]
        assert suggestion.source_profile_id == record.id
        assert suggestion.target_member_id == "m-1"
        assert suggestion.match_type == MatchType.MEMBER_LINK
        item: ReviewQueueItem = mock_store.create_queue_item.await_args.args[0]
        assert item.suggestion_id == suggestion.id
        assert item.id == result.review_queue_item_id
        assert item.priority == QueuePriority.MEDIUM

    @pytest.mark.asyncio
    async def test_admin_review_reuses_pending_suggestion(self, engine, mock_store, make_record):
        record = make_record(first_name="Robert")
        mock_store.find_candidates.return_value = [record]
        existing = ProfileMatchSuggestion(
            tenant_id="church-1",
            source_profile_id=record.id,
            match_type=MatchType.PROFILE_MERGE,
            confidence=73,
        )
        queued = ReviewQueueItem(tenant_id="church-1", suggestion_id=existing.id, title="x")
        mock_store.find_pending_suggestion.return_value = existing
        mock_store.find_queue_item_for_suggestion.return_value = queued

        result = await engine.recognize(
            "church-1",
            RecognitionInput(first_name="Bob", last_name="Smith"),
        )

        assert result.review_queue_item_id == queued.id
        mock_store.create_suggestion.assert_not_called()
        mock_store.create_queue_item.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_review_joins_concurrently_created_suggestion(
        self, engine, mock_store, make_record
    ):
        record = make_record(first_name="Robert")
        mock_store.find_candidates.return_value = [record]
        # Another request stored a pending suggestion for this source first
        mock_store.create_suggestion.side_effect = None
        mock_store.create_suggestion.return_value = "s-first"
        queued = ReviewQueueItem(tenant_id="church-1", suggestion_id="s-first", title="x")
        mock_store.find_queue_item_for_suggestion.return_value = queued

        result = await engine.recognize(
            "church-1",
            RecognitionInput(first_name="Bob", last_name="Smith"),
        )

        assert result.review_queue_item_id == queued.id
        mock_store.find_queue_item_for_suggestion.assert_awaited_with("s-first", "church-1")
        mock_store.create_queue_item.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_review_queues_item_for_existing_suggestion_id(
        self, engine, mock_store, make_record
    ):
        record = make_record(first_name="Robert")
        mock_store.find_candidates.return_value = [record]
        mock_store.create_suggestion.side_effect = None
        mock_store.create_suggestion.return_value = "s-first"

        result = await engine.recognize(
            "church-1",
            RecognitionInput(first_name="Bob", last_name="Smith"),
        )

        item: ReviewQueueItem = mock_store.create_queue_item.await_args.args[0]
        assert item.suggestion_id == "s-first"
        assert result.review_queue_item_id == item.id

    @pytest.mark.asyncio
    async def test_submission_profile_becomes_suggestion_source(
        self, engine, mock_store, make_record
    ):
        record = make_record(first_name="Robert")
        mock_store.find_candidates.return_value = [record]

        await engine.recognize(
            "church-1",
            RecognitionInput(first_name="Bob", last_name="Smith"),
            RecognitionOptions(submission_profile_id="new-profile"),
        )

        suggestion = mock_store.create_suggestion.await_args.args[0]
        assert suggestion.source_profile_id == "new-profile"
        assert suggestion.target_profile_id == record.id
        assert suggestion.match_type == MatchType.PROFILE_MERGE

    @pytest.mark.asyncio
    async def test_queueing_failure_does_not_fail_recognition(
        self, engine, mock_store, make_record
    ):
        mock_store.find_candidates.return_value = [make_record(first_name="Robert")]
        mock_store.create_suggestion.side_effect = DependencyUnavailableError("down")

        result = await engine.recognize(
            "church-1",
            RecognitionInput(first_name="Bob", last_name="Smith"),
        )

        assert result.tier == RecognitionTier.ADMIN_REVIEW
        assert result.review_queue_item_id is None

    @pytest.mark.asyncio
    async def test_weak_match_creates_new(self, engine, mock_store, make_record, audit_sink):
        mock_store.find_candidates.return_value = [make_record()]

        result = await engine.recognize("church-1", RecognitionInput(first_name="John"))

        assert result.tier == RecognitionTier.CREATE_NEW
        assert result.masked_profile is None
        assert audit_sink.actions == ["create_new"]

    @pytest.mark.asyncio
    async def test_no_overlap_candidates_excluded(self, engine, mock_store, make_record):
        mock_store.find_candidates.return_value = [make_record(email=None, phone=None)]

        result = await engine.recognize("church-1", RecognitionInput(email="john@example.com"))

        assert result.tier == RecognitionTier.CREATE_NEW
        assert result.confidence == 0
        assert result.match_reasons == []

    @pytest.mark.asyncio
    async def test_other_tenant_and_merged_records_skipped(
        self, engine, mock_store, make_record
    ):
        mock_store.find_candidates.return_value = [
            make_record(tenant_id="church-2"),
            make_record(status=ProfileStatus.MERGED, merged_into="p-9"),
        ]

        result = await engine.recognize("church-1", RecognitionInput(email="john@example.com"))

        assert result.tier == RecognitionTier.CREATE_NEW

    @pytest.mark.asyncio
    async def test_best_candidate_first_with_alternatives(
        self, engine, mock_store, make_record
    ):
        exact = make_record(id="b-exact", email="john.smith@gmail.com")
        variant = make_record(id="a-variant", email="johnsmith@gmail.com")
        mock_store.find_candidates.return_value = [variant, exact]

        result = await engine.recognize(
            "church-1",
            RecognitionInput(email="john.smith@gmail.com", phone="5551234567"),
            RecognitionOptions(max_matches=3),
        )

        assert result.masked_profile.profile_id == "b-exact"
        assert result.confidence == 100
        assert [p.profile_id for p in result.alternatives] == ["a-variant"]

    @pytest.mark.asyncio
    async def test_privacy_opt_out_shows_address(self, engine, mock_store, make_record):
        mock_store.find_candidates.return_value = [make_record(address="123 Main Street")]

        result = await engine.recognize(
            "church-1",
            RecognitionInput(email="john@example.com"),
            RecognitionOptions(respect_privacy=False),
        )

        assert result.masked_profile.address == "123 Main Street"
        assert result.masked_profile.email == "j**n@example.com"


class TestRecognizeCaching:
    """Tests for cache use and degraded lookups."""

    @pytest.mark.asyncio
    async def test_second_identical_call_hits_cache(
        self, engine, mock_store, make_record, clock, audit_sink
    ):
        mock_store.find_candidates.return_value = [make_record()]
        query = RecognitionInput(email="john@example.com")

        first = await engine.recognize("church-1", query)
        clock.advance(1)
        second = await engine.recognize("church-1", RecognitionInput(email=" JOHN@example.com"))

        assert second == first
        assert mock_store.find_candidates.await_count == 1
        assert [e.cache_hit for e in audit_sink.events] == [False, True]

    @pytest.mark.asyncio
    async def test_cache_hit_audits_like_the_lookup(
        self, engine, mock_store, make_record, audit_sink
    ):
        """An admin_review hit records the same candidates and confidence as the miss."""
        mock_store.find_candidates.return_value = [
            make_record(id="p-robert", first_name="Robert", email=None, phone=None)
        ]
        query = RecognitionInput(first_name="Bob", last_name="Smith")

        await engine.recognize("church-1", query)
        await engine.recognize("church-1", query)

        miss, hit = audit_sink.events
        assert hit.cache_hit is True
        assert hit.action == miss.action
        assert hit.confidence == miss.confidence == 76
        assert hit.candidate_ids_redacted == miss.candidate_ids_redacted
        assert len(hit.candidate_ids_redacted) == 1

    @pytest.mark.asyncio
    async def test_cache_hit_without_candidates_has_no_confidence(
        self, engine, mock_store, audit_sink
    ):
        query = RecognitionInput(email="nobody@example.com")

        await engine.recognize("church-1", query)
        await engine.recognize("church-1", query)

        assert [e.confidence for e in audit_sink.events] == [None, None]
        assert [e.candidate_ids_redacted for e in audit_sink.events] == [[], []]

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self, engine, mock_store, make_record, clock):
        mock_store.find_candidates.return_value = [make_record()]
        query = RecognitionInput(email="john@example.com")

        await engine.recognize("church-1", query)
        clock.advance(31)
        await engine.recognize("church-1", query)

        assert mock_store.find_candidates.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_create_new(self, engine, mock_store, audit_sink):
        async def slow_lookup(*args):
            await asyncio.sleep(5)
            return []

        mock_store.find_candidates.side_effect = slow_lookup

        result = await engine.recognize("church-1", RecognitionInput(email="john@example.com"))

        assert result.tier == RecognitionTier.CREATE_NEW
        assert result.degraded is True
        assert audit_sink.actions == ["recognition_degraded"]

    @pytest.mark.asyncio
    async def test_store_failure_degrades_and_is_not_cached(
        self, engine, mock_store, cache, make_record
    ):
        mock_store.find_candidates.side_effect = DependencyUnavailableError("db down")
        query = RecognitionInput(email="john@example.com")

        result = await engine.recognize("church-1", query)

        assert result.degraded is True
        assert len(cache) == 0

        mock_store.find_candidates.side_effect = None
        mock_store.find_candidates.return_value = [make_record()]
        recovered = await engine.recognize("church-1", query)
        assert recovered.tier == RecognitionTier.AUTO_FILL

    @pytest.mark.asyncio
    async def test_audit_never_contains_raw_ids_or_pii(
        self, engine, mock_store, make_record, audit_sink
    ):
        record = make_record(id="profile-123")
        mock_store.find_candidates.return_value = [record]

        await engine.recognize("church-1", RecognitionInput(email="john@example.com"))

        event = audit_sink.events[0]
        dumped = event.model_dump_json()
        assert "profile-123" not in dumped
        assert "john@example.com" not in dumped
        assert len(event.candidate_ids_redacted) == 1


class TestConfirmMatch:
    """Tests for confirm_match."""

    @pytest.mark.asyncio
    async def test_confirm_verifies_and_links_submission(
        self, engine, mock_store, make_record, cache, audit_sink
    ):
        profile = make_record(confidence=95)
        mock_store.get_profile.return_value = profile
        cache.set("k", "church-1", RecognitionResult(tier=RecognitionTier.CREATE_NEW))

        result = await engine.confirm_match(
            "church-1", profile.id, confirmed=True, submission_id="sub-1"
        )

        assert result.status == "confirmed"
        assert result.profile.profile_id == profile.id
        assert result.profile.email == "j**n@example.com"
        changes: ChangeSet = mock_store.apply_changes.await_args.args[1]
        profile_id, fields = changes.profile_updates[0]
        assert profile_id == profile.id
        assert fields["status"] == ProfileStatus.VERIFIED
        assert fields["confidence"] == 100
        assert changes.submission_link[0] == "sub-1"
        assert changes.submission_link[1].id == profile.id
        assert len(cache) == 0
        assert audit_sink.actions == ["match_confirmed"]

    @pytest.mark.asyncio
    async def test_decline_lowers_confidence(self, engine, mock_store, make_record, audit_sink):
        profile = make_record(confidence=10)
        mock_store.get_profile.return_value = profile

        result = await engine.confirm_match("church-1", profile.id, confirmed=False)

        assert result.status == "rejected"
        assert result.create_new_profile is True
        assert result.profile is None
        changes: ChangeSet = mock_store.apply_changes.await_args.args[1]
        assert changes.profile_updates == [(profile.id, {"confidence": 0})]
        assert changes.submission_link is None
        assert audit_sink.actions == ["match_declined"]

    @pytest.mark.asyncio
    async def test_unknown_profile(self, engine, mock_store):
        with pytest.raises(NotFoundError):
            await engine.confirm_match("church-1", "missing", confirmed=True)

        mock_store.apply_changes.assert_not_called()
