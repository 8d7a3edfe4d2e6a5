"""
Default configuration values for novel-vector-sync.

Centralized defaults that can be overridden by environment variables or config files.
"""

from pathlib import Path
from typing import Any, Dict

# Global default settings
DEFAULT_SETTINGS: Dict[str, Any] = {
    # Qdrant configuration
    "qdrant": {
        "url": "http://localhost:6333",
        "api_key": None,
        "timeout": 60.0,
        "collection_name": "novel-knowledge",
        "vector_size": 256,
        "distance_metric": "cosine",
        "batch_size": 100
    },

    # Vectorization pipeline
    "chunking": {
        "chunk_size": 500,
        "chunk_overlap": 100
    },

    # Transient failure retries (per task run)
    "retry": {
        "max_attempts": 3,
        "base_delay_seconds": 1.0,
        "multiplier": 2.0,
        "max_delay_seconds": 60.0
    },

    # Periodic jobs
    "scheduler": {
        "batch_size": 50,
        "worker_pool_size": 4,
        "max_retries": 3,
        "task_timeout_seconds": 7200,
        "drain_interval_seconds": 30.0,
        "retry_interval_seconds": 300.0,
        "timeout_sweep_interval_seconds": 600.0,
        "purge_interval_seconds": 3600.0,
        "cleanup_interval_seconds": 86400.0,
        "replay_interval_seconds": 60.0,
        "replay_grace_seconds": 30.0,
        "initial_delay_seconds": 0.0,
        "channel_max_size": 1000,
        "channel_batch_size": 50
    },

    # Retention windows
    "retention": {
        "deprecated_document_hours": 24.0,
        "completed_task_days": 7.0,
        "processed_event_days": 3.0
    },

    # Event log and task queue storage
    "database": {
        "path": str(Path.home() / ".novel-vector-sync" / "sync.db")
    },

    "logging": {
        "level": "INFO",
        "file": None
    }
}

# Environment variable mappings
ENV_VAR_MAPPING = {
    'NOVEL_SYNC_QDRANT_URL': 'qdrant.url',
    'NOVEL_SYNC_QDRANT_API_KEY': 'qdrant.api_key',
    'NOVEL_SYNC_QDRANT_TIMEOUT': 'qdrant.timeout',
    'NOVEL_SYNC_COLLECTION': 'qdrant.collection_name',
    'NOVEL_SYNC_VECTOR_SIZE': 'qdrant.vector_size',
    'NOVEL_SYNC_CHUNK_SIZE': 'chunking.chunk_size',
    'NOVEL_SYNC_CHUNK_OVERLAP': 'chunking.chunk_overlap',
    'NOVEL_SYNC_BATCH_SIZE': 'scheduler.batch_size',
    'NOVEL_SYNC_WORKERS': 'scheduler.worker_pool_size',
    'NOVEL_SYNC_MAX_RETRIES': 'scheduler.max_retries',
    'NOVEL_SYNC_TASK_TIMEOUT': 'scheduler.task_timeout_seconds',
    'NOVEL_SYNC_DB_PATH': 'database.path',
    'NOVEL_SYNC_LOG_LEVEL': 'logging.level',
    'NOVEL_SYNC_LOG_FILE': 'logging.file'
}

# Values that must stay strings even when they look numeric or boolean
STRING_SETTINGS = {
    'qdrant.url',
    'qdrant.api_key',
    'qdrant.collection_name',
    'database.path',
    'logging.level',
    'logging.file'
}
