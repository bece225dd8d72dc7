"""Exception hierarchy for the memory engine."""


class StrataError(Exception):
    """Base class for engine errors."""

    pass


class NotInitializedError(StrataError):
    """Engine used before start() completed."""

    pass


class FeatureExtractionError(StrataError):
    """The feature supplier failed; the calling operation is aborted."""

    pass


class IngestionError(StrataError):
    """No memory layer accepted the observation."""

    def __init__(self, message: str, failed_layers: list[str] | None = None):
        super().__init__(message)
        self.failed_layers = failed_layers or []


class ConsolidationError(StrataError):
    """A layer failed to consolidate. Retried on the next scheduled run."""

    def __init__(self, layer: str, message: str):
        super().__init__(f"{layer}: {message}")
        self.layer = layer


class SnapshotIOError(StrataError):
    """Snapshot load or save failed. The engine keeps running in memory."""

    pass


class OperationTimeoutError(StrataError, TimeoutError):
    """Deadline expired before the operation finished."""

    pass
