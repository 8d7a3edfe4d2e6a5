"""
Runs claimed sync tasks through the pipeline and records their outcome.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .events import SyncTask
from .pipeline import SyncOutcome, VectorizationPipeline
from .retry import RetryPolicy
from .task_queue import SyncTaskQueue

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    """Summary of one drain pass"""
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claimed": self.claimed,
            "completed": self.completed,
            "failed": self.failed,
            "outcomes": dict(self.outcomes),
            "duration_seconds": self.duration_seconds
        }


class TaskProcessor:
    """Processes sync tasks sequentially with retries on transient errors"""

    def __init__(
        self,
        task_queue: SyncTaskQueue,
        pipeline: VectorizationPipeline,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.task_queue = task_queue
        self.pipeline = pipeline
        self.retry_policy = retry_policy or RetryPolicy()

    async def process(self, task: SyncTask) -> Optional[SyncOutcome]:
        """
        Run one claimed task to completion or failure.

        Returns:
            The pipeline outcome, or None if the task failed
        """
        try:
            outcome = await self.retry_policy.call(
                self.pipeline.sync,
                task.entity_type,
                task.entity_id,
                task.operation,
                task.target_version,
                description=str(task)
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"{task} failed: {error}")
            await self.task_queue.fail(task.task_id, error)
            return None

        await self.task_queue.complete(task.task_id)
        logger.debug(f"{task} completed: {outcome.value}")
        return outcome

    async def process_by_id(self, task_id: int) -> Optional[SyncOutcome]:
        """Claim and process one task immediately; None if it could not be claimed or failed"""
        task = await self.task_queue.claim(task_id)
        if task is None:
            logger.debug(f"Task #{task_id} is no longer PENDING; leaving it to its owner")
            return None
        return await self.process(task)

    async def drain_once(self, batch_size: int) -> DrainResult:
        """Claim a batch of PENDING tasks and process them in order"""
        start_time = time.perf_counter()
        result = DrainResult()

        tasks: List[SyncTask] = await self.task_queue.claim_batch(batch_size)
        result.claimed = len(tasks)

        for task in tasks:
            outcome = await self.process(task)
            if outcome is None:
                result.failed += 1
            else:
                result.completed += 1
                result.outcomes[outcome.value] = result.outcomes.get(outcome.value, 0) + 1

        result.duration_seconds = time.perf_counter() - start_time
        if tasks:
            logger.info(
                f"Drained {result.claimed} tasks: {result.completed} completed, "
                f"{result.failed} failed in {result.duration_seconds:.2f}s"
            )
        return result
