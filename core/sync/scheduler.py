"""
Periodic job scheduler for the sync engine.

Each maintenance concern runs as its own asyncio job on a fixed delay: the
next run is scheduled after the previous one finishes, so a job never
overlaps with itself. A failing run is logged and counted; it never stops
the job or affects the other jobs. All jobs share one semaphore that caps
how many run at the same time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..models.config import RetentionConfig, SchedulerConfig
from ..storage.client import QdrantIndexStore
from .errors import IndexWriteError
from .event_log import ChangeEventLog
from .intake import ChangeIntake
from .processor import TaskProcessor
from .retry import RetryPolicy
from .task_queue import SyncTaskQueue

logger = logging.getLogger(__name__)


class JobState(Enum):
    """State of a periodic job"""
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass
class JobMetrics:
    """Execution metrics for one periodic job"""
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    consecutive_failures: int = 0
    last_run_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    last_failure_time: Optional[datetime] = None
    last_execution_duration_seconds: float = 0.0
    total_execution_time_seconds: float = 0.0

    def update_success(self, execution_time: float) -> None:
        self.total_runs += 1
        self.successful_runs += 1
        self.consecutive_failures = 0
        self.last_run_time = self.last_success_time = datetime.now()
        self.last_execution_duration_seconds = execution_time
        self.total_execution_time_seconds += execution_time

    def update_failure(self, execution_time: float) -> None:
        self.total_runs += 1
        self.failed_runs += 1
        self.consecutive_failures += 1
        self.last_run_time = self.last_failure_time = datetime.now()
        self.last_execution_duration_seconds = execution_time
        self.total_execution_time_seconds += execution_time

    @property
    def average_execution_time_seconds(self) -> float:
        if self.total_runs == 0:
            return 0.0
        return self.total_execution_time_seconds / self.total_runs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "consecutive_failures": self.consecutive_failures,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_success_time": self.last_success_time.isoformat() if self.last_success_time else None,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "last_execution_duration_seconds": self.last_execution_duration_seconds,
            "average_execution_time_seconds": self.average_execution_time_seconds
        }


class PeriodicJob:
    """
    One named action run on a fixed delay in a background asyncio task.

    Runs of the same job are serialized, including runs started through
    ``trigger_now``.
    """

    def __init__(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        initial_delay_seconds: float = 0.0,
        semaphore: Optional[asyncio.Semaphore] = None
    ):
        self.name = name
        self.action = action
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.semaphore = semaphore

        self.state = JobState.STOPPED
        self.metrics = JobMetrics()
        self.last_result: Any = None
        self._last_error: Optional[str] = None
        self._start_time: Optional[datetime] = None

        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._pause_event = asyncio.Event()
        self._run_lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()

    async def start(self) -> bool:
        async with self._lifecycle_lock:
            if self.state != JobState.STOPPED:
                logger.warning(f"Job '{self.name}' is already {self.state.value}")
                return False

            self._shutdown_event.clear()
            self._pause_event.set()
            self._task = asyncio.create_task(self._run_loop())
            self.state = JobState.RUNNING
            self._start_time = datetime.now()

            logger.info(f"Started job '{self.name}' (every {self.interval_seconds}s)")
            return True

    async def stop(self) -> None:
        async with self._lifecycle_lock:
            if self.state == JobState.STOPPED:
                return

            self._shutdown_event.set()
            self._pause_event.set()
            self.state = JobState.STOPPED

            if self._task and not self._task.done():
                self._task.cancel()
                try:
                    await asyncio.wait_for(self._task, timeout=5.0)
                except (asyncio.CancelledError, asyncio.TimeoutError):
                    logger.debug(f"Job '{self.name}' cancelled during shutdown")

            self._task = None
            logger.info(f"Stopped job '{self.name}'")

    async def pause(self) -> None:
        if self.state == JobState.RUNNING:
            self._pause_event.clear()
            self.state = JobState.PAUSED
            logger.info(f"Job '{self.name}' paused")

    async def resume(self) -> None:
        if self.state == JobState.PAUSED:
            self._pause_event.set()
            self.state = JobState.RUNNING
            logger.info(f"Job '{self.name}' resumed")

    async def trigger_now(self) -> Dict[str, Any]:
        """Run the action once outside the schedule, whether or not the job is started"""
        logger.info(f"Triggering job '{self.name}' immediately")
        success = await self._execute()
        return {
            "success": success,
            "result": self.last_result if success else None,
            "error": None if success else self._last_error,
            "execution_time_seconds": self.metrics.last_execution_duration_seconds
        }

    async def _execute(self) -> bool:
        async with self._run_lock:
            start_time = time.perf_counter()
            try:
                if self.semaphore is not None:
                    async with self.semaphore:
                        result = await self.action()
                else:
                    result = await self.action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                execution_time = time.perf_counter() - start_time
                self.metrics.update_failure(execution_time)
                self._last_error = f"{type(e).__name__}: {e}"
                logger.error(f"Job '{self.name}' failed after {execution_time:.2f}s: {e}")
                return False

            execution_time = time.perf_counter() - start_time
            self.metrics.update_success(execution_time)
            self.last_result = result
            logger.debug(f"Job '{self.name}' finished in {execution_time:.2f}s: {result}")
            return True

    async def _wait_or_shutdown(self, seconds: float) -> bool:
        """Sleep for ``seconds``; True if shutdown was requested meanwhile"""
        if seconds <= 0:
            return self._shutdown_event.is_set()
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run_loop(self) -> None:
        if await self._wait_or_shutdown(self.initial_delay_seconds):
            return

        while not self._shutdown_event.is_set():
            await self._pause_event.wait()
            if self._shutdown_event.is_set():
                break

            await self._execute()

            if await self._wait_or_shutdown(self.interval_seconds):
                break

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "interval_seconds": self.interval_seconds,
            "start_time": self._start_time.isoformat() if self._start_time else None,
            "last_error": self._last_error,
            "metrics": self.metrics.to_dict()
        }


class SyncScheduler:
    """Owns the periodic maintenance jobs of the sync engine"""

    DRAIN = "drain"
    RETRY_RECOVERY = "retry_recovery"
    TIMEOUT_SWEEP = "timeout_sweep"
    DEPRECATED_PURGE = "deprecated_purge"
    HISTORY_CLEANUP = "history_cleanup"
    EVENT_REPLAY = "event_replay"

    def __init__(
        self,
        config: SchedulerConfig,
        retention: RetentionConfig,
        task_queue: SyncTaskQueue,
        event_log: ChangeEventLog,
        processor: TaskProcessor,
        intake: ChangeIntake,
        index: QdrantIndexStore,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.config = config
        self.retention = retention
        self.task_queue = task_queue
        self.event_log = event_log
        self.processor = processor
        self.intake = intake
        self.index = index
        self.retry_policy = retry_policy or RetryPolicy()

        self.semaphore = asyncio.Semaphore(config.worker_pool_size)
        self.jobs: Dict[str, PeriodicJob] = {}
        for name, action, interval in (
            (self.DRAIN, self.drain, config.drain_interval_seconds),
            (self.RETRY_RECOVERY, self.recover_failed, config.retry_interval_seconds),
            (self.TIMEOUT_SWEEP, self.sweep_timeouts, config.timeout_sweep_interval_seconds),
            (self.DEPRECATED_PURGE, self.purge_deprecated, config.purge_interval_seconds),
            (self.HISTORY_CLEANUP, self.cleanup_history, config.cleanup_interval_seconds),
            (self.EVENT_REPLAY, self.replay_events, config.replay_interval_seconds),
        ):
            self.jobs[name] = PeriodicJob(
                name, action, interval,
                initial_delay_seconds=config.initial_delay_seconds,
                semaphore=self.semaphore
            )

    # Job actions

    async def drain(self) -> Dict[str, Any]:
        result = await self.processor.drain_once(self.config.batch_size)
        return result.to_dict()

    async def recover_failed(self) -> Dict[str, int]:
        """Re-arm failed tasks within the retry ceiling and abandon the rest"""
        rearmed = await self.task_queue.rearm_failed(
            self.config.max_retries,
            backoff=self.retry_policy.delay_for
        )
        abandoned = await self.task_queue.abandon_exhausted(self.config.max_retries)
        return {"rearmed": rearmed, "abandoned": len(abandoned)}

    async def sweep_timeouts(self) -> Dict[str, int]:
        reset = await self.task_queue.reset_timed_out(self.config.task_timeout)
        return {"reset": reset}

    async def purge_deprecated(self) -> Dict[str, int]:
        result = await self.index.purge_deprecated(self.retention.deprecated_document_retention)
        if not result.success:
            raise IndexWriteError(result.error or "purge of deprecated documents failed")
        return {"purged": result.affected_count}

    async def cleanup_history(self) -> Dict[str, int]:
        now = datetime.now()
        tasks = await self.task_queue.delete_completed_older_than(now - self.retention.completed_task_retention)
        events = await self.event_log.delete_processed_older_than(now - self.retention.processed_event_retention)
        if tasks or events:
            logger.info(f"History cleanup removed {tasks} completed tasks and {events} processed events")
        return {"tasks_deleted": tasks, "events_deleted": events}

    async def replay_events(self) -> Dict[str, int]:
        replayed = await self.intake.replay_unprocessed(
            self.config.replay_grace_seconds,
            limit=self.config.batch_size
        )
        return {"replayed": replayed}

    # Lifecycle

    async def start(self) -> None:
        for job in self.jobs.values():
            await job.start()
        logger.info(f"Scheduler started {len(self.jobs)} jobs (pool size {self.config.worker_pool_size})")

    async def stop(self) -> None:
        await asyncio.gather(*(job.stop() for job in self.jobs.values()))
        logger.info("Scheduler stopped")

    async def run_job(self, name: str) -> Dict[str, Any]:
        """Run one job immediately; raises KeyError for unknown job names"""
        return await self.jobs[name].trigger_now()

    def job_names(self) -> List[str]:
        return list(self.jobs)

    def get_status(self) -> Dict[str, Any]:
        return {name: job.get_status() for name, job in self.jobs.items()}
