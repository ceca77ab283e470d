"""Domain Event definitions.

Represents significant occurrences inside the dispatch layer (tasks settling,
retries, credential status changes) that a presentation layer may react to.
"""

from .dispatch_events import (
    BatchCompleted,
    CredentialFailover,
    CredentialStatusChanged,
    DomainEvent,
    EventSink,
    PoolExhausted,
    RetryScheduled,
    TaskFailed,
    TaskStarted,
    TaskSucceeded,
    dispatch_event,
)

__all__ = [
    "BatchCompleted",
    "CredentialFailover",
    "CredentialStatusChanged",
    "DomainEvent",
    "EventSink",
    "PoolExhausted",
    "RetryScheduled",
    "TaskFailed",
    "TaskStarted",
    "TaskSucceeded",
    "dispatch_event",
]
