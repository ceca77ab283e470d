"""Core services of the dispatch layer."""

from .credential_pool import CredentialPoolManager, status_from_probe
from .dispatch_service import DispatchService
from .task_scheduler import TaskScheduler, process_with_concurrency

__all__ = [
    "CredentialPoolManager",
    "DispatchService",
    "TaskScheduler",
    "process_with_concurrency",
    "status_from_probe",
]
