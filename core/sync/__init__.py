"""
Vector index synchronization.

Key Components:
- ChangeEventLog: Durable record of entity changes
- SyncTaskQueue: Deduplicated, retryable (re)indexing work
- ChangeEventChannel: Bounded priority handoff from intake to task derivation
- ChangeIntake: Write-path entry points that never fail the caller
- VectorizationPipeline: Versioned chunking and index writes
- TaskProcessor: Runs claimed tasks with retries
- SyncScheduler: Periodic drain, recovery, purge and cleanup jobs
- VectorSyncEngine: Central coordinator
"""

from .errors import (
    ContentUnavailableError,
    IndexWriteError,
    SyncError,
    TaskNotFoundError,
    TransientSyncError,
)
from .events import ChangeEvent, ChangeKind, ChangePriority, SyncOperation, SyncTask, TaskStatus
from .event_log import ChangeEventLog
from .task_queue import SyncTaskQueue
from .queue import ChangeEventChannel
from .retry import RetryPolicy
from .inflight import InFlightRegistry
from .pipeline import SyncOutcome, VectorizationPipeline
from .processor import DrainResult, TaskProcessor
from .intake import ChangeIntake, content_changed
from .scheduler import JobState, PeriodicJob, SyncScheduler
from .engine import VectorSyncEngine

__all__ = [
    "ChangeEvent",
    "ChangeEventChannel",
    "ChangeEventLog",
    "ChangeIntake",
    "ChangeKind",
    "ChangePriority",
    "ContentUnavailableError",
    "DrainResult",
    "InFlightRegistry",
    "IndexWriteError",
    "JobState",
    "PeriodicJob",
    "RetryPolicy",
    "SyncError",
    "SyncOperation",
    "SyncOutcome",
    "SyncScheduler",
    "SyncTask",
    "SyncTaskQueue",
    "TaskNotFoundError",
    "TaskProcessor",
    "TaskStatus",
    "TransientSyncError",
    "VectorSyncEngine",
    "VectorizationPipeline",
    "content_changed",
]
