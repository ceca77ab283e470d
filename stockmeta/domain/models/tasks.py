"""Domain models for batch tasks and the policies that drive them."""

from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import BatchItemFailure, ConfigurationError


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Task:
    """One unit of work inside a batch. Mutated only by the scheduler."""
    index: int
    item: Any
    state: TaskState = TaskState.PENDING
    value: Any = None
    error: Optional[BatchItemFailure] = None
    attempts: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def result(self) -> Any:
        """Value on success, the failure marker on failure, otherwise None."""
        if self.state is TaskState.SUCCEEDED:
            return self.value
        if self.state is TaskState.FAILED:
            return self.error
        return None

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


# Task whose worker call is running in the current context (set by the scheduler)
current_task: ContextVar[Optional[Task]] = ContextVar("stockmeta_current_task", default=None)


def record_retry() -> None:
    """Counts one more attempt against the task being worked on, if any."""
    task = current_task.get()
    if task is not None:
        task.attempts += 1


# --- Policies ---

@dataclass(frozen=True)
class RetryPolicy:
    """Value Object representing retry backoff configuration.

    Attempts total ``max_retries + 1``. Delay for attempt ``n`` (0-indexed) is
    ``base_delay * multiplier ** n``, capped at ``max_delay``, scaled by
    ``rate_limit_multiplier`` for rate-limit errors, plus a jitter sampled
    uniformly in ``[0, jitter_bound)``. All durations are in seconds.
    """
    max_retries: int = 3
    base_delay: float = 2.0
    multiplier: float = 2.0
    jitter_bound: float = 0.5
    rate_limit_multiplier: float = 4.0
    max_delay: Optional[float] = None
    should_retry: Optional[Callable[[BaseException], bool]] = None  # None -> default classification

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0 or self.jitter_bound < 0:
            raise ConfigurationError("Retry delays must be non-negative")
        if self.multiplier < 1 or self.rate_limit_multiplier < 1:
            raise ConfigurationError("Backoff multipliers must be >= 1")
        if self.max_delay is not None and self.max_delay < 0:
            raise ConfigurationError(f"max_delay must be >= 0, got {self.max_delay}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


SAFE_MODE_CONCURRENCY = 2
SAFE_MODE_DELAY_S = 2.0
NORMAL_CONCURRENCY = 5
NORMAL_DELAY_S = 0.2


@dataclass(frozen=True)
class SchedulerConfig:
    """Immutable scheduler settings applied to a whole batch.

    Out-of-range values are clamped rather than rejected: a concurrency limit
    below 1 becomes 1 and a negative delay becomes 0.
    """
    concurrency_limit: int = NORMAL_CONCURRENCY
    inter_task_delay: float = NORMAL_DELAY_S
    jitter_bound: float = 0.2
    stagger_start: bool = True
    task_timeout: Optional[float] = None
    raise_on_failure: bool = False

    def __post_init__(self):
        # Frozen dataclass: clamp through object.__setattr__
        if self.concurrency_limit < 1:
            object.__setattr__(self, "concurrency_limit", 1)
        if self.inter_task_delay < 0:
            object.__setattr__(self, "inter_task_delay", 0.0)
        if self.jitter_bound < 0:
            object.__setattr__(self, "jitter_bound", 0.0)
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ConfigurationError(f"task_timeout must be positive, got {self.task_timeout}")

    @classmethod
    def for_safe_mode(cls, safe_mode: bool, **overrides: Any) -> "SchedulerConfig":
        """Scheduler values selected by the externally owned safe-mode flag."""
        if safe_mode:
            values = dict(concurrency_limit=SAFE_MODE_CONCURRENCY, inter_task_delay=SAFE_MODE_DELAY_S)
        else:
            values = dict(concurrency_limit=NORMAL_CONCURRENCY, inter_task_delay=NORMAL_DELAY_S)
        values.update(overrides)
        return cls(**values)
