"""Error taxonomy shared by the analysis core and its collaborators."""

from __future__ import annotations


class SignalEngineError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(SignalEngineError):
    """Invalid input at construction time or mismatched identities."""


class InvalidStateTransition(ValidationError):
    def __init__(self, entity: str, current: str, action: str) -> None:
        super().__init__(f"Cannot {action} {entity} in state {current}")
        self.entity = entity
        self.current = current
        self.action = action


class ComputationError(SignalEngineError):
    """Degenerate numeric input; the current tick is skipped."""


class InsufficientDataError(ComputationError):
    def __init__(self, what: str, required: int, actual: int) -> None:
        super().__init__(f"Not enough data for {what}: need {required}, got {actual}")
        self.what = what
        self.required = required
        self.actual = actual


class GenerationRejected(SignalEngineError):
    """A gate decided that no signal should be emitted."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class DeliveryError(SignalEngineError):
    retryable = True


class AuthenticationError(DeliveryError):
    retryable = False


class NotFoundError(DeliveryError):
    retryable = False


class PayloadRejectedError(DeliveryError):
    retryable = False


class RepositoryError(SignalEngineError):
    pass


class ResourceNotFoundError(RepositoryError):
    pass


class ExchangeError(SignalEngineError):
    pass
