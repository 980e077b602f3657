"""
Error taxonomy for the update pipeline.

- ResolutionError: an image reference cannot be mapped to a pullable form.
  Recorded per image, the batch continues.
- EngineCallError: a container/image/network engine call failed. Carries the
  operation and its target so logs and results say what was being done.
- SelfUpdateError: the self-replacement protocol failed after rolling back.
- EngineConnectionError: the engine cannot be reached at startup. Fatal.
"""

from typing import Optional


class UpdaterError(Exception):
    """Base class for all update pipeline errors."""


class ResolutionError(UpdaterError):
    """Image reference could not be resolved to a tag or digest."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"cannot resolve image {reference}: {reason}")


class EngineCallError(UpdaterError):
    """A container engine operation failed."""

    def __init__(self, operation: str, target: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.target = target
        self.cause = cause
        message = f"{operation} {target} failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class SelfUpdateError(UpdaterError):
    """Self-replacement failed; the previous instance was restored where possible."""


class EngineConnectionError(UpdaterError):
    """Container engine is unreachable."""
