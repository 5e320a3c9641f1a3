"""
Content generation worker.
"""

from .worker import ContentWorker, WorkerOptions, WorkerResult, ProgressEvent

__all__ = [
    "ContentWorker",
    "WorkerOptions",
    "WorkerResult",
    "ProgressEvent",
]
