"""Core service running a batch of items through a worker with bounded concurrency.

Up to ``concurrency_limit`` lanes pull items from one shared cursor. After
each item a lane throttles for ``inter_task_delay`` plus jitter before
claiming the next. Worker failures are captured per item and never stop the
other lanes: one poisoned item must not block the rest of the batch. Results
are always index-aligned with the submitted items.
"""

import asyncio
import inspect
import logging
import random
import threading
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Set, Union

from stockmeta.domain.errors import BatchFailedError, BatchItemFailure
from stockmeta.domain.events import (
    BatchCompleted,
    EventSink,
    TaskFailed,
    TaskStarted,
    TaskSucceeded,
    dispatch_event,
)
from stockmeta.domain.models.tasks import SchedulerConfig, Task, TaskState, current_task

logger = logging.getLogger(__name__)

Worker = Callable[[Any], Union[Awaitable[Any], Any]]


class TaskScheduler:
    """Bounded-concurrency worker pool for one batch at a time."""

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        event_sink: Optional[EventSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the TaskScheduler.

        Args:
            config: Immutable batch settings; ``SchedulerConfig()`` if None.
            event_sink: Optional receiver for task and batch events.
            sleep: Awaitable sleep used for throttling (replaceable in tests).
            rng: Random source for jitter; the module-level generator if None.
        """
        self.config = config or SchedulerConfig()
        self.event_sink = event_sink
        self._sleep = sleep
        self._rng = rng or random
        self._cancel_lock = threading.Lock()
        self._active_runs: Set[threading.Event] = set()
        self._cancel_next = False

    def cancel(self) -> None:
        """Stops claiming new items. Workers already running finish naturally.

        Applies to every batch currently running on this scheduler; with none
        running, the next batch starts cancelled.
        """
        logger.info("Batch cancellation requested")
        with self._cancel_lock:
            if not self._active_runs:
                self._cancel_next = True
            for stop in self._active_runs:
                stop.set()

    async def run(self, items: Sequence[Any], worker: Worker, cancel_event: Optional[Any] = None) -> List[Any]:
        """Runs ``worker`` over ``items`` and returns index-aligned results.

        Each slot holds the worker's value on success, a ``BatchItemFailure``
        on failure, or None if the batch was cancelled before the item was
        claimed.
        """
        tasks = await self.run_tasks(items, worker, cancel_event)
        return [task.result for task in tasks]

    async def run_tasks(self, items: Sequence[Any], worker: Worker, cancel_event: Optional[Any] = None) -> List[Task]:
        """Runs the batch and returns the full task records.

        Args:
            items: The ordered batch.
            worker: ``worker(item)``; coroutine function or plain callable.
            cancel_event: Optional ``threading.Event``/``asyncio.Event``; once
                set, no further items are claimed.

        Raises:
            BatchFailedError: Only when ``config.raise_on_failure`` is set and
                at least one item failed, after the whole batch settled.
        """
        tasks = [Task(index=i, item=item) for i, item in enumerate(items)]
        if not tasks:
            return tasks

        config = self.config
        cursor = 0
        cursor_lock = asyncio.Lock()
        burst = min(config.concurrency_limit, len(tasks))
        stop = threading.Event()

        def is_cancelled() -> bool:
            return stop.is_set() or (cancel_event is not None and cancel_event.is_set())

        async def claim() -> Optional[Task]:
            nonlocal cursor
            async with cursor_lock:
                if is_cancelled() or cursor >= len(tasks):
                    return None
                task = tasks[cursor]
                cursor += 1
                task.state = TaskState.RUNNING
                return task

        def has_unclaimed() -> bool:
            return cursor < len(tasks) and not is_cancelled()

        async def lane(lane_index: int) -> None:
            if lane_index and config.stagger_start and burst > 1 and config.inter_task_delay > 0:
                await self._sleep(lane_index * config.inter_task_delay / burst)
            while True:
                task = await claim()
                if task is None:
                    return
                await self._run_one(task, worker)
                if not has_unclaimed():
                    return
                await self._sleep(self._throttle_delay())

        logger.info(
            f"Starting batch of {len(tasks)} items: concurrency={config.concurrency_limit}, "
            f"delay={config.inter_task_delay}s"
        )
        with self._cancel_lock:
            if self._cancel_next:
                stop.set()
                self._cancel_next = False
            self._active_runs.add(stop)
        try:
            await asyncio.gather(*(lane(i) for i in range(burst)))
        finally:
            with self._cancel_lock:
                self._active_runs.discard(stop)

        for task in tasks:
            if task.state is TaskState.PENDING:
                task.state = TaskState.CANCELLED

        failures = [task.error for task in tasks if task.state is TaskState.FAILED]
        succeeded = sum(1 for task in tasks if task.state is TaskState.SUCCEEDED)
        cancelled = sum(1 for task in tasks if task.state is TaskState.CANCELLED)
        logger.info(f"Batch finished: {succeeded} succeeded, {len(failures)} failed, {cancelled} cancelled")
        dispatch_event(self.event_sink, BatchCompleted(
            total=len(tasks), succeeded=succeeded, failed=len(failures), cancelled=cancelled,
        ))

        if failures and config.raise_on_failure:
            raise BatchFailedError(failures, [task.result for task in tasks])
        return tasks

    def _throttle_delay(self) -> float:
        delay = self.config.inter_task_delay
        if self.config.jitter_bound > 0:
            delay += self._rng.uniform(0, self.config.jitter_bound)
        return delay

    async def _run_one(self, task: Task, worker: Worker) -> None:
        task.started_at = time.monotonic()
        task.attempts = 1
        dispatch_event(self.event_sink, TaskStarted(index=task.index))
        token = current_task.set(task)
        try:
            task.value = await self._invoke(worker, task.item)
            task.state = TaskState.SUCCEEDED
        except Exception as e:
            task.error = BatchItemFailure(task.index, task.item, e)
            task.state = TaskState.FAILED
            logger.error(f"Error processing item {task.index}: {type(e).__name__}: {e}")
            logger.debug(f"Traceback for item {task.index}", exc_info=True)
            dispatch_event(self.event_sink, TaskFailed(
                index=task.index, error_type=type(e).__name__, error_message=task.error.message,
            ))
        finally:
            current_task.reset(token)
            task.finished_at = time.monotonic()
        if task.state is TaskState.SUCCEEDED:
            dispatch_event(self.event_sink, TaskSucceeded(index=task.index, duration_s=task.duration or 0.0))

    async def _invoke(self, worker: Worker, item: Any) -> Any:
        async def call() -> Any:
            result = worker(item)
            if inspect.isawaitable(result):
                result = await result
            return result

        if self.config.task_timeout is None:
            return await call()
        return await asyncio.wait_for(call(), timeout=self.config.task_timeout)


async def process_with_concurrency(
    items: Sequence[Any],
    worker: Worker,
    concurrency_limit: int,
    inter_task_delay: float = 0.0,
    cancel_event: Optional[Any] = None,
    **options: Any,
) -> List[Any]:
    """Processes ``items`` with at most ``concurrency_limit`` concurrent ``worker`` calls.

    Extra keyword options are forwarded to ``SchedulerConfig`` (jitter_bound,
    task_timeout, raise_on_failure, stagger_start).
    """
    config = SchedulerConfig(concurrency_limit=concurrency_limit, inter_task_delay=inter_task_delay, **options)
    return await TaskScheduler(config).run(items, worker, cancel_event)
