"""
Exceptions raised by the synchronization layer.
"""


class SyncError(Exception):
    """Base class for synchronization failures"""


class TransientSyncError(SyncError):
    """A failure that is expected to succeed when retried"""


class IndexWriteError(TransientSyncError):
    """The vector index rejected or failed a write"""


class ContentUnavailableError(SyncError):
    """
    The system-of-record could not produce readable content for an entity.

    Treated as a successful no-op by the pipeline: there is nothing to index.
    """


class TaskNotFoundError(SyncError):
    """A task id does not exist in the queue"""
