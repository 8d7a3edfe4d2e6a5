"""
Configuration models for novel-vector-sync.

Handles Qdrant connection, chunking, scheduling, retry and retention settings.
"""

from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class QdrantConfig(BaseModel):
    """Qdrant vector database configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Connection settings; ":memory:" runs an embedded local instance
    url: str = "http://localhost:6333"
    api_key: Optional[str] = None
    timeout: float = 60.0

    # Collection settings
    collection_name: str = "novel-knowledge"
    vector_size: int = Field(default=256, ge=1)
    distance_metric: str = "cosine"

    # Performance settings
    batch_size: int = Field(default=100, ge=1, le=1000)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Qdrant URL format"""
        if v == ":memory:":
            return v
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Qdrant URL must start with http://, https:// or be ":memory:"')
        return v.rstrip('/')

    @field_validator('distance_metric')
    @classmethod
    def validate_distance_metric(cls, v: str) -> str:
        """Validate distance metric"""
        valid_metrics = {'cosine', 'euclidean', 'dot'}
        if v.lower() not in valid_metrics:
            raise ValueError(f'Distance metric must be one of: {valid_metrics}')
        return v.lower()

    @property
    def is_local(self) -> bool:
        return self.url == ":memory:"


class ChunkingConfig(BaseModel):
    """Text chunking configuration for the vectorization pipeline"""
    chunk_size: int = Field(default=500, ge=1)
    chunk_overlap: int = Field(default=100, ge=0)

    @model_validator(mode='after')
    def validate_overlap(self) -> 'ChunkingConfig':
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError('chunk_overlap must be smaller than chunk_size')
        return self


class RetryConfig(BaseModel):
    """Retry policy for transient sync failures"""
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_seconds: float = Field(default=60.0, ge=0.0)


class SchedulerConfig(BaseModel):
    """Periodic job intervals and worker sizing"""
    batch_size: int = Field(default=50, ge=1, le=1000)
    worker_pool_size: int = Field(default=4, ge=1, le=16)
    max_retries: int = Field(default=3, ge=0)
    task_timeout_seconds: int = Field(default=2 * 60 * 60, ge=1)

    # Job intervals (fixed delay between runs)
    drain_interval_seconds: float = Field(default=30.0, gt=0)
    retry_interval_seconds: float = Field(default=300.0, gt=0)
    timeout_sweep_interval_seconds: float = Field(default=600.0, gt=0)
    purge_interval_seconds: float = Field(default=3600.0, gt=0)
    cleanup_interval_seconds: float = Field(default=86400.0, gt=0)
    replay_interval_seconds: float = Field(default=60.0, gt=0)

    # Unprocessed events younger than this are left to the intake channel
    replay_grace_seconds: float = Field(default=30.0, ge=0)
    initial_delay_seconds: float = Field(default=0.0, ge=0)

    # Intake channel
    channel_max_size: int = Field(default=1000, ge=1)
    channel_batch_size: int = Field(default=50, ge=1)

    @property
    def task_timeout(self) -> timedelta:
        return timedelta(seconds=self.task_timeout_seconds)


class RetentionConfig(BaseModel):
    """How long terminal records and deprecated documents are kept"""
    deprecated_document_hours: float = Field(default=24.0, ge=0)
    completed_task_days: float = Field(default=7.0, ge=0)
    processed_event_days: float = Field(default=3.0, ge=0)

    @property
    def deprecated_document_retention(self) -> timedelta:
        return timedelta(hours=self.deprecated_document_hours)

    @property
    def completed_task_retention(self) -> timedelta:
        return timedelta(days=self.completed_task_days)

    @property
    def processed_event_retention(self) -> timedelta:
        return timedelta(days=self.processed_event_days)


class DatabaseConfig(BaseModel):
    """SQLite location for the change event log and task queue"""
    path: str = str(Path.home() / ".novel-vector-sync" / "sync.db")

    @property
    def is_memory(self) -> bool:
        return self.path == ":memory:"


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    file: Optional[str] = None

    @field_validator('level', mode='before')
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class SyncSettings(BaseModel):
    """Complete engine configuration"""
    model_config = ConfigDict(validate_assignment=True)

    qdrant: QdrantConfig = Field(default_factory=QdrantConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return self.model_dump(mode='json')


class GlobalSettings(BaseSettings):
    """Global application settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="NOVEL_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Default locations
    config_file: Optional[Path] = None
    global_config_dir: Path = Field(
        default_factory=lambda: Path.home() / ".novel-vector-sync"
    )

    @property
    def default_config_file(self) -> Path:
        """Config file used when none is given explicitly"""
        return self.config_file or (self.global_config_dir / "config.json")
