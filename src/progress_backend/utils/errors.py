class ProgressEngineError(Exception):
    """Base class for the progress and reward engine's domain errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInputError(ProgressEngineError, ValueError):
    """Out-of-range percentages, score > maxScore, malformed identifiers. Raised before any mutation."""


class ResourceNotFoundError(ProgressEngineError):
    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class PreconditionFailedError(ProgressEngineError):
    """
    The requested transition is not valid from the current state
    (enrolling twice, pausing a non-active enrollment, ...).
    Carries the current state so callers can show it instead of a failure.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class ConsistencyError(ProgressEngineError):
    """A guarded one-time write observed state it should not have. The losing write is discarded."""
