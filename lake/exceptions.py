class BaseLakeError(Exception):
    """
    The base class for all lake errors.
    """
    pass


class StorageError(BaseLakeError):
    """
    Raised when the object store fails a request in a way that retrying will not fix,
    e.g. access denied or a missing bucket.
    """
    pass


class ObjectNotFound(StorageError):
    """
    Raised when a requested object does not exist (yet) in the bucket.
    """
    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(f"Object {key} not found in bucket {bucket}")
        self.bucket = bucket
        self.key = key


class TransientStorageError(StorageError):
    """
    Raised when a storage request failed for a reason that is expected to go away:
    throttling, timeouts, dropped connections, server side errors.
    """
    pass


class MalformedContent(BaseLakeError):
    """
    Raised when an object was read but its payload could not be decoded into the
    expected structure.
    """
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Malformed content in {key}: {reason}")
        self.key = key
        self.reason = reason


class RetriesExhausted(BaseLakeError):
    """
    Raised when a retried storage operation kept failing. The last failure is chained as
    ``__cause__``.
    """
    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(f"Gave up on {operation} after {attempts} attempts")
        self.operation = operation
        self.attempts = attempts


class PreloadPoolClosed(BaseLakeError):
    """
    Raised by the preload pool when waiting on it is pointless because the pipeline that
    fills it has stopped.
    """
    pass


class PipelineStateError(BaseLakeError):
    """
    Raised when the streaming pipeline is asked to make a state transition that its
    lifecycle does not allow.
    """
    pass
