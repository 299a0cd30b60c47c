"""Audit event infrastructure for progressive recognition.

Provides:
- Event: Base class for all audit events
- AuditEvent: Recognition decisions and review actions
- EventStore: Append-only event persistence
- EventAuditSink: Fire-and-forget sink writing to the EventStore
"""

from src.events.audit_sink import EventAuditSink
from src.events.base import Event
from src.events.store import EventStore
from src.events.types import AuditAction, AuditEvent

__all__ = [
    # Base
    "Event",
    # Infrastructure
    "EventStore",
    "EventAuditSink",
    # Event types
    "AuditAction",
    "AuditEvent",
]
