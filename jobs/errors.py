# jobs/errors.py
"""
Failure taxonomy for job handlers.

Handlers only classify; the poll loop hands every failure to the
retry controller, which reads `retryable` to decide between requeue
and terminal failure.
"""
from __future__ import annotations


class HandlerError(Exception):
    """Base class for failures raised while handling a job."""

    retryable: bool = True

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class TransientNetworkError(HandlerError):
    """Provider, storage or download endpoint unreachable or timed out."""


class ProviderError(HandlerError):
    """The provider accepted the request but the prediction failed."""


class NoOutputs(HandlerError):
    """The provider succeeded but nothing extractable came back."""

    def __init__(self, message: str = "Provider returned no usable outputs", **kwargs):
        super().__init__(message, **kwargs)


class InvalidOutput(HandlerError):
    """An extracted output could not be turned into image bytes."""


class DownloadError(HandlerError):
    """A remote image URL answered with a non-retryable HTTP status."""


class StorageError(HandlerError):
    """Object storage rejected an operation."""


class DbError(HandlerError):
    """A database write failed."""


class EntityNotFound(HandlerError):
    """The owning subject or photoshoot no longer exists."""

    retryable = False


class MissingReference(HandlerError):
    """The owning entity has no reference image to generate from."""

    retryable = False


class UnknownJobType(HandlerError):
    retryable = False

    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}", retryable=False)
        self.job_type = job_type


def is_retryable(exc: BaseException) -> bool:
    """Undeclared exceptions are retried like declared ones."""
    return getattr(exc, "retryable", True) is not False
