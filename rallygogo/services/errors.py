"""
Error kinds raised by the service layer.

Routes translate them to HTTP status codes; nothing in the services knows
about HTTP.
"""


class ValidationError(ValueError):
    """Malformed or missing input. Nothing was mutated."""


class ConflictError(ValueError):
    """A precondition no longer holds because shared state changed.

    Callers should refresh and retry the whole operation.
    """


class NotFoundError(ConflictError):
    """The target row is gone (usually removed by a concurrent cancel)."""


class PermissionDeniedError(PermissionError):
    """The actor may not perform the requested transition."""


class DependencyError(RuntimeError):
    """The underlying store failed or was unreachable. Not retried here."""
