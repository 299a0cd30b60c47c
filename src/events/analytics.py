"""Recognition analytics for church administrators.

Aggregates a tenant's audit events into the figures an admin dashboard
shows: how often returning submitters are recognized, how confident the
matches are, how users and admins respond to them, and how this moves
day by day. Everything is computed from the audit log, so no figure can
reveal more than the redacted events themselves.
"""

from datetime import UTC, datetime, timedelta

import structlog
from pydantic import BaseModel, Field

from src.db.turso import TursoClient
from src.events.types import AuditAction
from src.identity.errors import DependencyUnavailableError, InvalidInputError
from src.identity.schemas import QueueStatus
from src.identity.store import IdentityStore

logger = structlog.get_logger()

DEFAULT_WINDOW_DAYS = 30
MAX_WINDOW_DAYS = 365
# Form time an auto-filled or confirmed submission saves
MINUTES_SAVED_PER_RECOGNITION = 2

TIER_ACTIONS = (
    AuditAction.AUTO_FILL,
    AuditAction.CONFIRM_IDENTITY,
    AuditAction.ADMIN_REVIEW,
    AuditAction.CREATE_NEW,
)
RECOGNIZED_ACTIONS = (AuditAction.AUTO_FILL, AuditAction.CONFIRM_IDENTITY)

# (label, lowest confidence) from the top down
CONFIDENCE_RANGES = (
    ("90-100", 90),
    ("80-89", 80),
    ("70-79", 70),
    ("60-69", 60),
    ("0-59", 0),
)


def _sql_list(actions: tuple[AuditAction, ...]) -> str:
    return ", ".join(f"'{a.value}'" for a in actions)


def _rate(part: int, whole: int) -> float:
    """Percentage rounded to one decimal, 0 for an empty denominator."""
    return round(100 * part / whole, 1) if whole else 0.0


def _count(by_action: dict[str, dict[str, int]], action: AuditAction) -> int:
    return by_action.get(action.value, {}).get("count", 0)


_BUCKET_SQL = "CASE " + " ".join(
    f"WHEN confidence >= {low} THEN '{label}'" for label, low in CONFIDENCE_RANGES[:-1]
) + f" ELSE '{CONFIDENCE_RANGES[-1][0]}' END"

# Flattens the JSON payload of one tenant's events inside the window
_WINDOW_SQL = """
    SELECT
        json_extract(event_data, '$.action') AS action,
        json_extract(event_data, '$.confidence') AS confidence,
        json_extract(event_data, '$.cache_hit') AS cache_hit,
        substr(timestamp, 1, 10) AS day
    FROM audit_events
    WHERE tenant_id = ? AND timestamp >= ?
"""


class AnalyticsOverview(BaseModel):
    """Headline figures for the window."""

    recognition_attempts: int = 0
    recognized: int = 0
    recognition_rate: float = 0.0
    average_confidence: float = 0.0
    cache_hits: int = 0
    cache_hit_rate: float = 0.0
    degraded: int = 0
    estimated_minutes_saved: int = 0


class TierBreakdown(BaseModel):
    auto_fill: int = 0
    confirm_identity: int = 0
    admin_review: int = 0
    create_new: int = 0


class ConfidenceBucket(BaseModel):
    """Recognitions whose top candidate scored inside a confidence range."""

    range: str
    count: int = 0
    recognized: int = 0
    recognition_rate: float = 0.0


class UserFeedback(BaseModel):
    """How submitters answered "is this you?" prompts."""

    confirmed: int = 0
    declined: int = 0
    confirmation_rate: float = 0.0


class AdminPerformance(BaseModel):
    """Review queue outcomes.

    A merge accepts the suggested match, so it counts towards the
    approval rate together with approvals.
    """

    approved: int = 0
    rejected: int = 0
    merged: int = 0
    approval_rate: float = 0.0
    pending_reviews: int | None = None


class DailyTrend(BaseModel):
    date: str
    attempts: int
    recognized: int
    average_confidence: float


class RecognitionAnalyticsReport(BaseModel):
    """Recognition analytics for one tenant over a trailing window."""

    tenant_id: str
    period_start: datetime
    period_end: datetime
    overview: AnalyticsOverview
    tiers: TierBreakdown
    confidence_distribution: list[ConfidenceBucket] = Field(default_factory=list)
    user_feedback: UserFeedback
    admin_performance: AdminPerformance
    trends: list[DailyTrend] = Field(default_factory=list)


class RecognitionAnalytics:
    """Builds analytics reports from the audit_events table.

    Aggregation happens in SQL with a handful of grouped queries rather
    than by reading events one by one.
    """

    def __init__(self, client: TursoClient, identity_store: IdentityStore | None = None):
        """Initialize analytics.

        Args:
            client: Database holding the audit_events table
            identity_store: Optional store to count pending review items
        """
        self.client = client
        self._identity_store = identity_store

    async def summarize(
        self,
        tenant_id: str,
        days: int = DEFAULT_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> RecognitionAnalyticsReport:
        """Aggregate a tenant's recognition activity over the last `days` days.

        Raises:
            InvalidInputError: If days is outside 1..365
            DependencyUnavailableError: If the audit store cannot be queried
        """
        if not 1 <= days <= MAX_WINDOW_DAYS:
            msg = f"days must be between 1 and {MAX_WINDOW_DAYS}"
            raise InvalidInputError(msg)

        end = now or datetime.now(UTC)
        start = end - timedelta(days=days)
        params = [tenant_id, start.isoformat()]

        by_action = await self._by_action(params)
        overview = self._overview(by_action)
        report = RecognitionAnalyticsReport(
            tenant_id=tenant_id,
            period_start=start,
            period_end=end,
            overview=overview,
            tiers=TierBreakdown(**{a.value: _count(by_action, a) for a in TIER_ACTIONS}),
            confidence_distribution=await self._confidence_distribution(params),
            user_feedback=self._feedback(by_action),
            admin_performance=await self._admin_performance(tenant_id, by_action),
            trends=await self._trends(params),
        )
        logger.info(
            "recognition analytics computed",
            tenant_id=tenant_id,
            days=days,
            attempts=overview.recognition_attempts,
        )
        return report

    async def _query(self, sql: str, params: list):
        try:
            return await self.client.execute(sql, params)
        except Exception as e:
            logger.error("analytics query failed", error=str(e))
            msg = f"Audit store unavailable: {e}"
            raise DependencyUnavailableError(msg) from e

    async def _by_action(self, params: list) -> dict[str, dict[str, int]]:
        result = await self._query(
            f"""
            SELECT action,
                   COUNT(*),
                   COUNT(CASE WHEN cache_hit = 1 THEN 1 END),
                   COUNT(confidence),
                   COALESCE(SUM(confidence), 0)
            FROM ({_WINDOW_SQL})
            GROUP BY action
            """,
            params,
        )
        return {
            row[0]: {
                "count": row[1],
                "cache_hits": row[2],
                "scored": row[3],
                "confidence_sum": row[4],
            }
            for row in result.rows
        }

    @staticmethod
    def _overview(by_action: dict[str, dict[str, int]]) -> AnalyticsOverview:
        tiers = [by_action.get(a.value, {}) for a in TIER_ACTIONS]
        degraded = _count(by_action, AuditAction.RECOGNITION_DEGRADED)
        attempts = sum(t.get("count", 0) for t in tiers) + degraded
        recognized = sum(_count(by_action, a) for a in RECOGNIZED_ACTIONS)
        cache_hits = sum(t.get("cache_hits", 0) for t in tiers)
        scored = sum(t.get("scored", 0) for t in tiers)
        confidence_sum = sum(t.get("confidence_sum", 0) for t in tiers)
        return AnalyticsOverview(
            recognition_attempts=attempts,
            recognized=recognized,
            recognition_rate=_rate(recognized, attempts),
            average_confidence=round(confidence_sum / scored, 1) if scored else 0.0,
            cache_hits=cache_hits,
            cache_hit_rate=_rate(cache_hits, attempts),
            degraded=degraded,
            estimated_minutes_saved=recognized * MINUTES_SAVED_PER_RECOGNITION,
        )

    async def _confidence_distribution(self, params: list) -> list[ConfidenceBucket]:
        result = await self._query(
            f"""
            SELECT {_BUCKET_SQL} AS bucket,
                   COUNT(*),
                   COUNT(CASE WHEN action IN ({_sql_list(RECOGNIZED_ACTIONS)}) THEN 1 END)
            FROM ({_WINDOW_SQL})
            WHERE action IN ({_sql_list(TIER_ACTIONS)}) AND confidence IS NOT NULL
            GROUP BY bucket
            """,
            params,
        )
        counts = {row[0]: (row[1], row[2]) for row in result.rows}
        buckets = []
        for label, _ in CONFIDENCE_RANGES:
            count, recognized = counts.get(label, (0, 0))
            buckets.append(
                ConfidenceBucket(
                    range=label,
                    count=count,
                    recognized=recognized,
                    recognition_rate=_rate(recognized, count),
                )
            )
        return buckets

    @staticmethod
    def _feedback(by_action: dict[str, dict[str, int]]) -> UserFeedback:
        confirmed = _count(by_action, AuditAction.MATCH_CONFIRMED)
        declined = _count(by_action, AuditAction.MATCH_DECLINED)
        return UserFeedback(
            confirmed=confirmed,
            declined=declined,
            confirmation_rate=_rate(confirmed, confirmed + declined),
        )

    async def _admin_performance(
        self, tenant_id: str, by_action: dict[str, dict[str, int]]
    ) -> AdminPerformance:
        approved = _count(by_action, AuditAction.REVIEW_APPROVED)
        rejected = _count(by_action, AuditAction.REVIEW_REJECTED)
        merged = _count(by_action, AuditAction.REVIEW_MERGED)

        pending = None
        if self._identity_store is not None:
            _, pending = await self._identity_store.list_queue_items(
                tenant_id, QueueStatus.PENDING, 1, 0
            )
        return AdminPerformance(
            approved=approved,
            rejected=rejected,
            merged=merged,
            approval_rate=_rate(approved + merged, approved + rejected + merged),
            pending_reviews=pending,
        )

    async def _trends(self, params: list) -> list[DailyTrend]:
        result = await self._query(
            f"""
            SELECT day,
                   COUNT(*),
                   COUNT(CASE WHEN action IN ({_sql_list(RECOGNIZED_ACTIONS)}) THEN 1 END),
                   AVG(confidence)
            FROM ({_WINDOW_SQL})
            WHERE action IN ({_sql_list(TIER_ACTIONS)})
            GROUP BY day
            ORDER BY day
            """,
            params,
        )
        return [
            DailyTrend(
                date=row[0],
                attempts=row[1],
                recognized=row[2],
                average_confidence=round(row[3], 1) if row[3] is not None else 0.0,
            )
            for row in result.rows
        ]
