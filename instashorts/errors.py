"""Failure taxonomy for pipeline stages.

Stages raise these to the queue fabric, which decides between a retry with
backoff and exhaustion based on ``retryable``.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error a stage surfaces to the fabric."""

    retryable = True


class PreconditionError(PipelineError):
    """Input the stage cannot work with (missing job, empty script or prompt)."""

    retryable = False


class GenerationError(PipelineError):
    """A generation adapter call failed (network, non-2xx, empty output)."""


class GenerationParseError(PipelineError):
    """A text-generation call returned output that is not the expected structure."""

    retryable = False


class StorageError(PipelineError):
    """A blob upload failed."""


class RenderError(PipelineError):
    """The compositor failed or exceeded its wall-clock budget."""


def is_retryable(exc: BaseException) -> bool:
    return getattr(exc, "retryable", True)
