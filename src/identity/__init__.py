"""Progressive recognition of returning form submitters.

This module provides:
- RecognitionEngine: tiered recognition (auto_fill -> confirm_identity ->
  admin_review -> create_new) with caching and auditing
- Field-level fuzzy matching (nicknames, typos, unit/zip variations)
- Weighted multi-field confidence calculation
- Privacy masking for unauthenticated callers
- ReviewQueueManager: admin approve / reject / merge workflow
"""

from src.identity.cache import RecognitionCache
from src.identity.confidence import calculate_confidence
from src.identity.engine import RecognitionEngine, classify_confidence
from src.identity.fuzzy_matcher import FieldMatcher
from src.identity.review_queue import ReviewQueueManager
from src.identity.schemas import (
    RecognitionInput,
    RecognitionOptions,
    RecognitionResult,
    RecognitionTier,
)
from src.identity.store import AuditSink, IdentityStore

__all__ = [
    "AuditSink",
    "FieldMatcher",
    "IdentityStore",
    "RecognitionCache",
    "RecognitionEngine",
    "RecognitionInput",
    "RecognitionOptions",
    "RecognitionResult",
    "RecognitionTier",
    "ReviewQueueManager",
    "calculate_confidence",
    "classify_confidence",
]
