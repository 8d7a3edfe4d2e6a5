"""
Change Event and Sync Task Models.

Defines change kinds, task operations, statuses, and the records stored
in the change event log and the sync task queue.
"""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional
from pydantic import BaseModel, Field, field_validator

from ..models.entities import EntityType, entity_key


class ChangeKind(Enum):
    """Kinds of entity mutations observed by write paths"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangePriority(IntEnum):
    """
    Priority levels for event handoff.

    Lower numeric values = higher priority, so deletions are derived first
    and stale documents stop being served as early as possible.
    """
    CRITICAL = 1   # Deletions
    HIGH = 2       # Updates
    MEDIUM = 3     # Creations


PRIORITY_BY_KIND = {
    ChangeKind.DELETE: ChangePriority.CRITICAL,
    ChangeKind.UPDATE: ChangePriority.HIGH,
    ChangeKind.CREATE: ChangePriority.MEDIUM,
}


class SyncOperation(Enum):
    """Operations the vectorization pipeline can perform"""
    INDEX = "INDEX"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def for_change(cls, kind: ChangeKind) -> 'SyncOperation':
        """Map a change kind to the operation that brings the index up to date"""
        if kind == ChangeKind.DELETE:
            return cls.DELETE
        if kind == ChangeKind.UPDATE:
            return cls.UPDATE
        return cls.INDEX


class TaskStatus(Enum):
    """Sync task state machine"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.ABANDONED)


LIVE_STATUSES = (TaskStatus.PENDING, TaskStatus.PROCESSING, TaskStatus.FAILED)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class ChangeEvent(BaseModel):
    """
    A durable record of an observed entity change.

    Immutable once recorded apart from the ``processed`` flag, which is set
    once a sync task has been derived from it.
    """

    event_id: Optional[int] = None
    entity_type: EntityType
    entity_id: int
    change_kind: ChangeKind
    version: int = Field(ge=0)
    project_id: Optional[int] = None
    urgent: bool = False

    occurred_at: datetime = Field(default_factory=datetime.now)
    processed: bool = False
    processed_at: Optional[datetime] = None

    @field_validator('entity_type', mode='before')
    @classmethod
    def parse_entity_type(cls, v):
        return EntityType.parse(v)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'ChangeEvent':
        """Build an event from a change_events row"""
        return cls(
            event_id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            change_kind=ChangeKind(row["change_kind"]),
            version=row["version"],
            project_id=row["project_id"],
            urgent=bool(row["urgent"]),
            occurred_at=_parse_timestamp(row["occurred_at"]),
            processed=bool(row["processed"]),
            processed_at=_parse_timestamp(row["processed_at"])
        )

    @property
    def priority(self) -> ChangePriority:
        return PRIORITY_BY_KIND[self.change_kind]

    @property
    def entity_key(self) -> str:
        return entity_key(self.entity_type, self.entity_id)

    @property
    def operation(self) -> SyncOperation:
        return SyncOperation.for_change(self.change_kind)

    @property
    def should_process_immediately(self) -> bool:
        """Urgent events and deletions bypass the drain interval"""
        return self.urgent or self.change_kind == ChangeKind.DELETE

    @property
    def age_seconds(self) -> float:
        return (datetime.now() - self.occurred_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization"""
        return {
            "event_id": self.event_id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "change_kind": self.change_kind.value,
            "version": self.version,
            "project_id": self.project_id,
            "urgent": self.urgent,
            "occurred_at": self.occurred_at.isoformat(),
            "processed": self.processed
        }

    def __str__(self) -> str:
        return f"{self.change_kind.value}: {self.entity_key} v{self.version} [P{self.priority}]"

    def __lt__(self, other: 'ChangeEvent') -> bool:
        """Order events for the priority channel (lower priority value first)"""
        if not isinstance(other, ChangeEvent):
            return NotImplemented

        if self.priority != other.priority:
            return self.priority < other.priority

        # FIFO within the same priority
        if self.occurred_at != other.occurred_at:
            return self.occurred_at < other.occurred_at
        return (self.event_id or 0) < (other.event_id or 0)


class SyncTask(BaseModel):
    """A unit of (re)indexing work derived from a change event"""

    task_id: int
    entity_type: EntityType
    entity_id: int
    operation: SyncOperation
    target_version: Optional[int] = None
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = 0
    error_message: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    claimed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @field_validator('entity_type', mode='before')
    @classmethod
    def parse_entity_type(cls, v):
        return EntityType.parse(v)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'SyncTask':
        """Build a task from a sync_tasks row"""
        return cls(
            task_id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            operation=SyncOperation(row["operation"]),
            target_version=row["target_version"],
            status=TaskStatus(row["status"]),
            retry_count=row["retry_count"],
            error_message=row["error_message"],
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
            claimed_at=_parse_timestamp(row["claimed_at"]),
            processed_at=_parse_timestamp(row["processed_at"])
        )

    @property
    def entity_key(self) -> str:
        return entity_key(self.entity_type, self.entity_id)

    def __str__(self) -> str:
        version = f" v{self.target_version}" if self.target_version is not None else ""
        return f"task#{self.task_id} {self.operation.value} {self.entity_key}{version} [{self.status.value}]"
