"""Repository for person profiles and the match review workflow.

Implements the IdentityStore contract over SQLite/libSQL (via TursoClient):
person profiles, profile match suggestions, the admin review queue and
the form submissions that point at profiles.
"""

import json
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

import structlog

from src.db.turso import SqlStatement, TursoClient, row_to_dict, rows_to_dicts
from src.identity.errors import AlreadyProcessedError, DependencyUnavailableError
from src.identity.nicknames import name_variants
from src.identity.normalizer import normalize_email, phone_suffix
from src.identity.schemas import (
    ChangeSet,
    IdentityRecord,
    ProfileMatchSuggestion,
    ProfileStatus,
    QueueStatus,
    RecognitionInput,
    ReviewQueueItem,
    ReviewStatus,
)

logger = structlog.get_logger()

PROFILE_COLUMNS = (
    "id", "tenant_id", "member_id", "family_id", "first_name", "last_name",
    "email", "phone", "date_of_birth", "address", "city", "state", "zip_code",
    "relationship", "status", "confidence", "merged_into", "original_profiles",
    "created_at", "updated_at", "verified_at",
)  # fmt: skip

SUGGESTION_COLUMNS = (
    "id", "tenant_id", "source_profile_id", "target_profile_id",
    "target_member_id", "match_type", "confidence", "match_reasons",
    "suggested_action", "review_status", "reviewed_by", "reviewed_at",
    "processing_result", "created_at", "updated_at",
)  # fmt: skip

QUEUE_COLUMNS = (
    "id", "tenant_id", "item_type", "suggestion_id", "title", "description",
    "priority", "status", "review_action", "review_notes", "reviewed_by",
    "reviewed_at", "created_at", "updated_at",
)  # fmt: skip

JSON_COLUMNS = {"original_profiles", "match_reasons", "processing_result"}

# Profiles in these states can be recognized
MATCHABLE_STATUSES = (ProfileStatus.VERIFIED.value, ProfileStatus.UNVERIFIED.value)

DEFAULT_CANDIDATE_LIMIT = 25

LIKE_ESCAPE = "ESCAPE '\\'"


def _to_db(value: Any) -> Any:
    """Convert a Python value to a SQLite-storable value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, list | dict):
        return json.dumps(value, default=str)
    return value


def _from_db(row: dict[str, Any]) -> dict[str, Any]:
    """Decode JSON columns of a fetched row."""
    decoded = dict(row)
    for column in JSON_COLUMNS & decoded.keys():
        raw = decoded[column]
        if raw is None:
            decoded[column] = [] if column != "processing_result" else None
        elif isinstance(raw, str):
            decoded[column] = json.loads(raw)
    return decoded


def _like_literal(value: str) -> str:
    """Escape LIKE wildcards so user input only matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _insert(table: str, columns: tuple[str, ...], data: dict[str, Any]) -> SqlStatement:
    placeholders = ", ".join("?" for _ in columns)
    sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
    return sql, [_to_db(data.get(c)) for c in columns]


def _update(
    table: str,
    allowed: tuple[str, ...],
    row_id: str,
    fields: dict[str, Any],
    tenant_id: str | None = None,
) -> SqlStatement:
    unknown = set(fields) - set(allowed)
    if unknown:
        msg = f"Unknown {table} columns: {sorted(unknown)}"
        raise ValueError(msg)
    fields = {**fields, "updated_at": datetime.now(UTC)}
    assignments = ", ".join(f"{c} = ?" for c in fields)
    params = [_to_db(v) for v in fields.values()]
    sql = f"UPDATE {table} SET {assignments} WHERE id = ?"
    params.append(row_id)
    if tenant_id is not None:
        sql += " AND tenant_id = ?"
        params.append(tenant_id)
    return sql, params


class ProfileRepository:
    """SQLite-backed identity store.

    Every read and write is scoped by tenant id. Database failures surface
    as DependencyUnavailableError.
    """

    def __init__(self, db_client: TursoClient, candidate_limit: int = DEFAULT_CANDIDATE_LIMIT):
        """Initialize repository with database client.

        Args:
            db_client: TursoClient instance for database operations
            candidate_limit: Maximum candidates returned per lookup
        """
        self._db = db_client
        self._candidate_limit = candidate_limit

    async def initialize(self) -> None:
        """Create tables and indexes if they don't exist."""
        await self._db.execute_batch(
            [
                """
            CREATE TABLE IF NOT EXISTS person_profiles (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                member_id TEXT,
                family_id TEXT,
                first_name TEXT,
                last_name TEXT,
                email TEXT,
                phone TEXT,
                date_of_birth TEXT,
                address TEXT,
                city TEXT,
                state TEXT,
                zip_code TEXT,
                relationship TEXT,
                status TEXT NOT NULL DEFAULT 'unverified',
                confidence INTEGER NOT NULL DEFAULT 0,
                merged_into TEXT,
                original_profiles TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                verified_at TEXT
            )
            """,
                """
            CREATE INDEX IF NOT EXISTS idx_profiles_email
            ON person_profiles(tenant_id, email)
            """,
                """
            CREATE INDEX IF NOT EXISTS idx_profiles_name
            ON person_profiles(tenant_id, last_name, first_name)
            """,
                """
            CREATE INDEX IF NOT EXISTS idx_profiles_family
            ON person_profiles(tenant_id, family_id)
            """,
                """
            CREATE TABLE IF NOT EXISTS profile_match_suggestions (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                source_profile_id TEXT NOT NULL,
                target_profile_id TEXT,
                target_member_id TEXT,
                match_type TEXT NOT NULL,
                confidence INTEGER NOT NULL,
                match_reasons TEXT NOT NULL,
                suggested_action TEXT NOT NULL,
                review_status TEXT NOT NULL DEFAULT 'pending',
                reviewed_by TEXT,
                reviewed_at TEXT,
                processing_result TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
                """
            CREATE INDEX IF NOT EXISTS idx_suggestions_source
            ON profile_match_suggestions(tenant_id, source_profile_id, review_status)
            """,
                # At most one pending suggestion per source profile
                """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_suggestions_pending_source
            ON profile_match_suggestions(tenant_id, source_profile_id)
            WHERE review_status = 'pending'
            """,
                # A reviewed suggestion is final
                """
            CREATE TRIGGER IF NOT EXISTS trg_suggestions_reviewed_final
            BEFORE UPDATE ON profile_match_suggestions
            WHEN OLD.review_status != 'pending'
            BEGIN
                SELECT RAISE(ABORT, 'suggestion already reviewed');
            END
            """,
                """
            CREATE TABLE IF NOT EXISTS admin_review_queue (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                item_type TEXT NOT NULL,
                suggestion_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                priority TEXT NOT NULL DEFAULT 'medium',
                status TEXT NOT NULL DEFAULT 'pending',
                review_action TEXT,
                review_notes TEXT,
                reviewed_by TEXT,
                reviewed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
                """
            CREATE INDEX IF NOT EXISTS idx_review_queue_status
            ON admin_review_queue(tenant_id, status, created_at)
            """,
                """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_review_queue_suggestion
            ON admin_review_queue(suggestion_id)
            """,
                # A completed queue item is final
                """
            CREATE TRIGGER IF NOT EXISTS trg_review_queue_completed_final
            BEFORE UPDATE ON admin_review_queue
            WHEN OLD.status = 'completed'
            BEGIN
                SELECT RAISE(ABORT, 'review item already processed');
            END
            """,
                """
            CREATE TABLE IF NOT EXISTS form_submissions (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                person_profile_id TEXT,
                member_id TEXT,
                family_id TEXT,
                is_verified INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT
            )
            """,
                """
            CREATE INDEX IF NOT EXISTS idx_submissions_profile
            ON form_submissions(person_profile_id)
            """,
            ]
        )

    async def _execute(self, sql: str, params: list[Any] | None = None):
        try:
            return await self._db.execute(sql, params)
        except Exception as e:
            logger.error("identity store query failed", error=str(e))
            msg = f"Identity store unavailable: {e}"
            raise DependencyUnavailableError(msg) from e

    async def _execute_batch(self, statements: list[SqlStatement]) -> None:
        try:
            await self._db.execute_batch(statements)
        except Exception as e:
            logger.error("identity store batch failed", error=str(e), statements=len(statements))
            msg = f"Identity store unavailable: {e}"
            raise DependencyUnavailableError(msg) from e

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def save_profile(self, record: IdentityRecord) -> str:
        """Insert or replace a profile.

        Email is stored lowercased and phone as digits so lookups can use
        plain equality.
        """
        data = record.model_dump()
        data["email"] = normalize_email(record.email)
        if record.phone:
            data["phone"] = "".join(ch for ch in record.phone if ch.isdigit()) or None
        sql, params = _insert("person_profiles", PROFILE_COLUMNS, data)
        await self._execute(sql.replace("INSERT", "INSERT OR REPLACE", 1), params)
        return record.id

    async def get_profile(self, profile_id: str, tenant_id: str) -> IdentityRecord | None:
        """Get a profile in any status, or None."""
        result = await self._execute(
            f"SELECT {', '.join(PROFILE_COLUMNS)} FROM person_profiles "
            "WHERE id = ? AND tenant_id = ?",
            [profile_id, tenant_id],
        )
        if not result.rows:
            return None
        return IdentityRecord.model_validate(_from_db(row_to_dict(result)))

    async def find_candidates(
        self,
        tenant_id: str,
        query: RecognitionInput,
    ) -> list[IdentityRecord]:
        """Find plausible matches for a recognition input.

        A profile is a candidate when it shares the email (or its local
        part), the phone suffix, a surname prefix, a given name or one of
        its nicknames, or the date of birth. Exact email/phone hits are
        returned first. Merged profiles are never candidates.

        Args:
            tenant_id: Tenant to search
            query: Normalized recognition input

        Returns:
            Up to candidate_limit identity records
        """
        clauses: list[str] = []
        params: list[Any] = []

        if query.email:
            clauses.append("email = ?")
            params.append(query.email)
            local = query.email.split("@", 1)[0]
            if local and "@" in query.email:
                clauses.append(f"email LIKE ? {LIKE_ESCAPE}")
                params.append(f"{_like_literal(local)}@%")
        suffix = phone_suffix(query.phone)
        if suffix:
            clauses.append("substr(phone, -10) = ?")
            params.append(suffix)
        if query.last_name:
            clauses.append(f"lower(last_name) LIKE ? {LIKE_ESCAPE}")
            params.append(f"{_like_literal(query.last_name.lower())}%")
        if query.first_name:
            variants = sorted(name_variants(query.first_name))
            clauses.append(f"lower(first_name) IN ({', '.join('?' for _ in variants)})")
            params.extend(variants)
            if not query.last_name:
                clauses.append(f"lower(first_name) LIKE ? {LIKE_ESCAPE}")
                params.append(f"{_like_literal(query.first_name.lower())}%")
        if query.date_of_birth:
            clauses.append("date_of_birth = ?")
            params.append(query.date_of_birth.isoformat())

        if not clauses:
            return []

        statuses = ", ".join("?" for _ in MATCHABLE_STATUSES)
        sql = (
            f"SELECT {', '.join(PROFILE_COLUMNS)} FROM person_profiles "
            f"WHERE tenant_id = ? AND status IN ({statuses}) "
            f"AND ({' OR '.join(clauses)}) "
            "ORDER BY CASE WHEN email = ? THEN 0 "
            "WHEN substr(phone, -10) = ? THEN 1 ELSE 2 END, updated_at DESC, id "
            "LIMIT ?"
        )
        all_params = [
            tenant_id,
            *MATCHABLE_STATUSES,
            *params,
            query.email or "",
            suffix or "",
            self._candidate_limit,
        ]
        result = await self._execute(sql, all_params)
        return [IdentityRecord.model_validate(_from_db(r)) for r in rows_to_dicts(result)]

    async def find_family_members(
        self,
        tenant_id: str,
        family_id: str,
        exclude_profile_id: str,
    ) -> list[IdentityRecord]:
        """Other non-merged profiles in the same household."""
        result = await self._execute(
            f"SELECT {', '.join(PROFILE_COLUMNS)} FROM person_profiles "
            "WHERE tenant_id = ? AND family_id = ? AND id != ? AND status != ? "
            "ORDER BY first_name, id LIMIT 10",
            [tenant_id, family_id, exclude_profile_id, ProfileStatus.MERGED.value],
        )
        return [IdentityRecord.model_validate(_from_db(r)) for r in rows_to_dicts(result)]

    async def update_profile(self, profile_id: str, tenant_id: str, fields: dict) -> None:
        sql, params = _update("person_profiles", PROFILE_COLUMNS, profile_id, fields, tenant_id)
        await self._execute(sql, params)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    async def create_suggestion(self, suggestion: ProfileMatchSuggestion) -> str:
        """Insert a suggestion unless its source already has a pending one.

        Returns:
            Id of the stored pending suggestion: the new one, or the
            existing one that won a concurrent insert
        """
        sql, params = _insert(
            "profile_match_suggestions", SUGGESTION_COLUMNS, suggestion.model_dump()
        )
        result = await self._execute(f"{sql} ON CONFLICT DO NOTHING", params)
        if result.rows_affected:
            return suggestion.id
        existing = await self.find_pending_suggestion(
            suggestion.tenant_id, suggestion.source_profile_id
        )
        if existing is None:
            msg = f"Suggestion {suggestion.id} was not stored"
            raise DependencyUnavailableError(msg)
        return existing.id

    async def get_suggestion(
        self,
        suggestion_id: str,
        tenant_id: str,
    ) -> ProfileMatchSuggestion | None:
        result = await self._execute(
            f"SELECT {', '.join(SUGGESTION_COLUMNS)} FROM profile_match_suggestions "
            "WHERE id = ? AND tenant_id = ?",
            [suggestion_id, tenant_id],
        )
        if not result.rows:
            return None
        return ProfileMatchSuggestion.model_validate(_from_db(row_to_dict(result)))

    async def find_pending_suggestion(
        self,
        tenant_id: str,
        source_profile_id: str,
    ) -> ProfileMatchSuggestion | None:
        """Most recent pending suggestion for a source profile, if any."""
        result = await self._execute(
            f"SELECT {', '.join(SUGGESTION_COLUMNS)} FROM profile_match_suggestions "
            "WHERE tenant_id = ? AND source_profile_id = ? AND review_status = ? "
            "ORDER BY created_at DESC LIMIT 1",
            [tenant_id, source_profile_id, ReviewStatus.PENDING.value],
        )
        if not result.rows:
            return None
        return ProfileMatchSuggestion.model_validate(_from_db(row_to_dict(result)))

    async def update_suggestion(self, suggestion_id: str, fields: dict) -> None:
        sql, params = _update(
            "profile_match_suggestions", SUGGESTION_COLUMNS, suggestion_id, fields
        )
        await self._execute(sql, params)

    # ------------------------------------------------------------------
    # Review queue
    # ------------------------------------------------------------------

    async def create_queue_item(self, item: ReviewQueueItem) -> str:
        """Insert a queue item unless its suggestion is already queued.

        Returns:
            Id of the queue item for the suggestion
        """
        sql, params = _insert("admin_review_queue", QUEUE_COLUMNS, item.model_dump())
        result = await self._execute(f"{sql} ON CONFLICT DO NOTHING", params)
        if result.rows_affected:
            return item.id
        existing = await self.find_queue_item_for_suggestion(item.suggestion_id, item.tenant_id)
        if existing is None:
            msg = f"Review item {item.id} was not stored"
            raise DependencyUnavailableError(msg)
        return existing.id

    async def get_queue_item(self, item_id: str, tenant_id: str) -> ReviewQueueItem | None:
        result = await self._execute(
            f"SELECT {', '.join(QUEUE_COLUMNS)} FROM admin_review_queue "
            "WHERE id = ? AND tenant_id = ?",
            [item_id, tenant_id],
        )
        if not result.rows:
            return None
        return ReviewQueueItem.model_validate(_from_db(row_to_dict(result)))

    async def find_queue_item_for_suggestion(
        self,
        suggestion_id: str,
        tenant_id: str,
    ) -> ReviewQueueItem | None:
        result = await self._execute(
            f"SELECT {', '.join(QUEUE_COLUMNS)} FROM admin_review_queue "
            "WHERE suggestion_id = ? AND tenant_id = ? LIMIT 1",
            [suggestion_id, tenant_id],
        )
        if not result.rows:
            return None
        return ReviewQueueItem.model_validate(_from_db(row_to_dict(result)))

    async def update_queue_item(self, item_id: str, fields: dict) -> None:
        sql, params = _update("admin_review_queue", QUEUE_COLUMNS, item_id, fields)
        await self._execute(sql, params)

    async def list_queue_items(
        self,
        tenant_id: str,
        status: QueueStatus,
        limit: int,
        offset: int,
    ) -> tuple[list[ReviewQueueItem], int]:
        """Page of queue items, newest first, with the total count."""
        result = await self._execute(
            f"SELECT {', '.join(QUEUE_COLUMNS)} FROM admin_review_queue "
            "WHERE tenant_id = ? AND status = ? AND item_type = 'profile_match' "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [tenant_id, _to_db(status), limit, offset],
        )
        count = await self._execute(
            "SELECT COUNT(*) FROM admin_review_queue "
            "WHERE tenant_id = ? AND status = ? AND item_type = 'profile_match'",
            [tenant_id, _to_db(status)],
        )
        items = [ReviewQueueItem.model_validate(_from_db(r)) for r in rows_to_dicts(result)]
        return items, int(count.rows[0][0])

    # ------------------------------------------------------------------
    # Dependents
    # ------------------------------------------------------------------

    async def create_submission(
        self,
        submission_id: str,
        tenant_id: str,
        person_profile_id: str | None = None,
    ) -> str:
        """Record a form submission (optionally already pointing at a profile)."""
        await self._execute(
            "INSERT INTO form_submissions (id, tenant_id, person_profile_id, created_at) "
            "VALUES (?, ?, ?, ?)",
            [submission_id, tenant_id, person_profile_id, datetime.now(UTC).isoformat()],
        )
        return submission_id

    async def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        result = await self._execute(
            "SELECT id, tenant_id, person_profile_id, member_id, family_id, is_verified "
            "FROM form_submissions WHERE id = ?",
            [submission_id],
        )
        if not result.rows:
            return None
        row = row_to_dict(result)
        row["is_verified"] = bool(row["is_verified"])
        return row

    async def repoint_dependents(self, source_id: str, target_id: str) -> None:
        sql, params = self._repoint_statement(source_id, target_id)
        await self._execute(sql, params)

    async def link_submission(
        self,
        tenant_id: str,
        submission_id: str,
        profile: IdentityRecord,
    ) -> None:
        sql, params = self._link_submission_statement(tenant_id, submission_id, profile)
        await self._execute(sql, params)

    @staticmethod
    def _repoint_statement(source_id: str, target_id: str) -> SqlStatement:
        return (
            "UPDATE form_submissions SET person_profile_id = ?, updated_at = ? "
            "WHERE person_profile_id = ?",
            [target_id, datetime.now(UTC).isoformat(), source_id],
        )

    @staticmethod
    def _link_submission_statement(
        tenant_id: str,
        submission_id: str,
        profile: IdentityRecord,
    ) -> SqlStatement:
        return (
            "UPDATE form_submissions SET person_profile_id = ?, member_id = ?, "
            "family_id = ?, is_verified = 1, updated_at = ? "
            "WHERE id = ? AND tenant_id = ?",
            [
                profile.id,
                profile.member_id,
                profile.family_id,
                datetime.now(UTC).isoformat(),
                submission_id,
                tenant_id,
            ],
        )

    # ------------------------------------------------------------------
    # Atomic change sets
    # ------------------------------------------------------------------

    async def apply_changes(self, tenant_id: str, changes: ChangeSet) -> None:
        """Apply all mutations of a review or confirmation in one transaction.

        Suggestion and queue updates run first. Reviewed suggestions and
        completed queue items are final (enforced by triggers), so a second
        review of the same item aborts the whole batch before any profile is
        touched.

        Raises:
            AlreadyProcessedError: If a suggestion or queue item in the change
                set was closed by a concurrent review; nothing is applied
            DependencyUnavailableError: If the batch fails; nothing is applied
        """
        statements: list[SqlStatement] = []
        for suggestion_id, fields in changes.suggestion_updates:
            statements.append(
                _update(
                    "profile_match_suggestions",
                    SUGGESTION_COLUMNS,
                    suggestion_id,
                    fields,
                    tenant_id,
                )
            )
        for item_id, fields in changes.queue_updates:
            statements.append(
                _update("admin_review_queue", QUEUE_COLUMNS, item_id, fields, tenant_id)
            )
        for profile_id, fields in changes.profile_updates:
            statements.append(
                _update("person_profiles", PROFILE_COLUMNS, profile_id, fields, tenant_id)
            )
        if changes.repoint:
            statements.append(self._repoint_statement(*changes.repoint))
        if changes.submission_link:
            submission_id, profile = changes.submission_link
            statements.append(
                self._link_submission_statement(tenant_id, submission_id, profile)
            )

        if not statements:
            return
        try:
            await self._execute_batch(statements)
        except DependencyUnavailableError as e:
            closed = await self._closed_by_other_review(tenant_id, changes)
            if closed:
                raise AlreadyProcessedError(f"{closed} was already processed") from e
            raise
        logger.debug("change set applied", tenant_id=tenant_id, statements=len(statements))

    async def _closed_by_other_review(self, tenant_id: str, changes: ChangeSet) -> str | None:
        """Name the first queue item or suggestion in the set that is no longer open."""
        for item_id, _ in changes.queue_updates:
            item = await self.get_queue_item(item_id, tenant_id)
            if item is not None and item.status == QueueStatus.COMPLETED:
                return f"Review item {item_id}"
        for suggestion_id, _ in changes.suggestion_updates:
            suggestion = await self.get_suggestion(suggestion_id, tenant_id)
            if suggestion is not None and suggestion.review_status != ReviewStatus.PENDING:
                return f"Suggestion {suggestion_id}"
        return None
