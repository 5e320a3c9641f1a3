"""Queue error types. Redis connection errors are not wrapped and propagate as-is."""


class QueueError(Exception):
    """Base class for queue errors."""
    pass


class BatchNotFoundError(QueueError):
    def __init__(self, batch_id: str):
        super().__init__(f"Batch not found: {batch_id}")
        self.batch_id = batch_id


class EmptyBatchError(QueueError):
    pass


class BatchTooLargeError(QueueError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Batch of {size} items exceeds the limit of {limit}")
        self.size = size
        self.limit = limit
