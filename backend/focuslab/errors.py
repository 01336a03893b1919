"""Error taxonomy shared by the engine and the HTTP layer.

Every error has a stable ``kind`` string and a human-readable message.
Nothing storage-specific is put in the message; the original exception is
kept as ``__cause__`` for logs only.
"""


class EngineError(Exception):
    """Base class for all errors raised by the engine."""
    kind = "engine_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(EngineError):
    """Malformed input, e.g. a custom-mode session without durations."""
    kind = "validation_error"


class NotFound(EngineError):
    """Unknown session, habit or job id (or one owned by someone else)."""
    kind = "not_found"


class InvalidTransition(EngineError):
    """Illegal move in the session state machine."""
    kind = "invalid_transition"

    def __init__(self, operation: str, status: str):
        super().__init__(f"cannot {operation} a session that is {status.lower()}")
        self.operation = operation
        self.status = status


class ConflictError(EngineError):
    """A concurrent writer won the race for the same entity."""
    kind = "conflict"


class DependencyUnavailable(EngineError):
    """Persistence store or insight generator could not be reached."""
    kind = "dependency_unavailable"


class OperationCancelled(EngineError):
    """A report computation was cancelled or ran past its deadline."""
    kind = "cancelled"
