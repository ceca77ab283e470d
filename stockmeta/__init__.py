"""stockmeta: concurrent, credential-aware dispatch of AI metadata requests.

Drives many unreliable, rate-limited provider calls for a batch of assets
through a bounded worker pool, a retry engine and a rotating credential pool.
"""

from stockmeta.core.services import (
    CredentialPoolManager,
    DispatchService,
    TaskScheduler,
    process_with_concurrency,
)
from stockmeta.domain.models.credentials import Credential, CredentialStatus, Provider
from stockmeta.domain.models.tasks import RetryPolicy, SchedulerConfig, Task, TaskState
from stockmeta.infrastructure.resilience.api_retry import RetryEngine, retry_with_backoff

__version__ = "0.1.0"

__all__ = [
    "Credential",
    "CredentialPoolManager",
    "CredentialStatus",
    "DispatchService",
    "Provider",
    "RetryEngine",
    "RetryPolicy",
    "SchedulerConfig",
    "Task",
    "TaskScheduler",
    "TaskState",
    "process_with_concurrency",
    "retry_with_backoff",
]
