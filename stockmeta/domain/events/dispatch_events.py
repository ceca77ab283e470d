"""Domain Events related to batch dispatch and credential resilience.

Examples include events for when tasks start or fail, retries are scheduled,
and credentials change status or get rotated out.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


EventSink = Callable[[DomainEvent], None]


def dispatch_event(sink: Optional[EventSink], event: DomainEvent) -> None:
    """Logs the event and forwards it to the sink, if one is attached.

    A failing sink is reported but never interrupts dispatch.
    """
    logger.debug(f"EVENT: {event}")
    if sink is None:
        return
    try:
        sink(event)
    except Exception as e:
        logger.error(f"Event sink failed while handling {type(event).__name__}: {e}", exc_info=True)


# --- Task Events ---

@dataclass
class TaskStarted(DomainEvent):
    """Event triggered when a worker claims a batch item."""
    index: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class TaskSucceeded(DomainEvent):
    """Event triggered when a worker returns for a batch item."""
    index: int
    duration_s: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class TaskFailed(DomainEvent):
    """Event triggered when a worker raises for a batch item."""
    index: int
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class BatchCompleted(DomainEvent):
    """Event triggered when every lane of a batch has settled."""
    total: int
    succeeded: int
    failed: int
    cancelled: int
    timestamp: float = field(default_factory=time.time)


# --- Resilience Events ---

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed operation."""
    attempt_number: int
    delay_seconds: float
    error_type: str
    rate_limited: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class CredentialStatusChanged(DomainEvent):
    """Event triggered when a credential moves to a new status."""
    provider: str
    credential_id: str
    old_status: str
    new_status: str
    source: str  # 'validate' or 'outcome'
    timestamp: float = field(default_factory=time.time)


@dataclass
class CredentialFailover(DomainEvent):
    """Event triggered when a call rotates away from a failing credential."""
    provider: str
    credential_id: str
    reason: str
    item: Optional[Any] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class PoolExhausted(DomainEvent):
    """Event triggered when no eligible credential remains for a provider."""
    provider: str
    candidates_tried: int
    timestamp: float = field(default_factory=time.time)
