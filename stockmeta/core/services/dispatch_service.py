"""Core service dispatching one item's external call across a credential pool.

For a single item it walks the provider's eligible credentials in preference
order. Credential failures (401/402/429) are recorded in the pool and the
next credential is tried at once, without spending a retry attempt. The
whole walk is wrapped in the retry engine for transient failures such as
network blips or malformed output.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from stockmeta.domain.errors import PoolExhaustedError, is_credential_failure
from stockmeta.domain.events import CredentialFailover, EventSink, PoolExhausted, dispatch_event
from stockmeta.domain.interfaces.request_executor import RequestExecutor
from stockmeta.domain.models.tasks import RetryPolicy
from stockmeta.infrastructure.resilience.api_retry import RetryEngine
from .credential_pool import CredentialPoolManager, ProviderRef
from .task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)


class DispatchService:
    """Per-item glue between the credential pool, the executor and the retry engine."""

    def __init__(
        self,
        pool: CredentialPoolManager,
        executor: RequestExecutor,
        retry_engine: Optional[RetryEngine] = None,
        retry_policy: Optional[RetryPolicy] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the DispatchService.

        Args:
            pool: Shared credential pools.
            executor: Performs the external call for (item, credential).
            retry_engine: Retry loop around each item; a default engine if None.
            retry_policy: Policy handed to the retry engine; defaults if None.
            event_sink: Optional receiver for failover/exhaustion events.
        """
        self.pool = pool
        self.executor = executor
        self.retry_engine = retry_engine or RetryEngine(event_sink=event_sink)
        self.retry_policy = retry_policy or RetryPolicy()
        self.event_sink = event_sink

    async def attempt(self, provider: ProviderRef, item: Any) -> Any:
        """One pass over the provider's eligible credentials for ``item``.

        Raises:
            PoolExhaustedError: If no candidate was eligible or every candidate
                failed with a credential error.
            Exception: Any non-credential error from the executor, unchanged.
        """
        candidates = self.pool.eligible(provider)
        last_error: Optional[BaseException] = None
        tried = 0

        for candidate in candidates:
            # Another in-flight item may have demoted it since the snapshot.
            if not candidate.is_eligible:
                continue
            tried += 1
            try:
                result = await self.executor.execute(item, candidate)
            except Exception as e:
                if not is_credential_failure(e):
                    raise
                self.pool.record_outcome(provider, candidate.id, e)
                last_error = e
                logger.warning(f"Credential {candidate.masked} failed ({type(e).__name__}); rotating to next credential")
                dispatch_event(self.event_sink, CredentialFailover(
                    provider=candidate.provider, credential_id=candidate.id, reason=type(e).__name__, item=item,
                ))
                continue
            self.pool.record_outcome(provider, candidate.id, 200)
            return result

        name = candidates[0].provider if candidates else str(getattr(provider, "value", provider))
        logger.error(f"Credential pool exhausted for {name} after {tried} candidate(s)")
        dispatch_event(self.event_sink, PoolExhausted(provider=name, candidates_tried=tried))
        if last_error is not None:
            raise PoolExhaustedError(name, last_error) from last_error
        raise PoolExhaustedError(name)

    async def dispatch(self, provider: ProviderRef, item: Any) -> Any:
        """``attempt`` wrapped by the retry engine."""
        async def dispatch_item() -> Any:
            return await self.attempt(provider, item)

        return await self.retry_engine.execute(dispatch_item, self.retry_policy)

    def worker(self, provider: ProviderRef) -> Callable[[Any], Awaitable[Any]]:
        """A one-argument worker for the task scheduler bound to ``provider``."""
        async def dispatch_worker(item: Any) -> Any:
            return await self.dispatch(provider, item)

        return dispatch_worker

    async def run_batch(
        self,
        provider: ProviderRef,
        items: Sequence[Any],
        scheduler: Optional[TaskScheduler] = None,
        cancel_event: Optional[Any] = None,
    ) -> List[Any]:
        """Dispatches every item through ``scheduler``; results are index-aligned."""
        scheduler = scheduler or TaskScheduler(event_sink=self.event_sink)
        return await scheduler.run(items, self.worker(provider), cancel_event)
