"""Error taxonomy for the grading workflow."""

from __future__ import annotations

from typing import Optional


class GradingError(Exception):
    """Base class for every error raised by gradewise."""


class ValidationFailure(GradingError):
    """A precondition of a transition or request was not met; nothing was invoked."""


class CapabilityFailure(GradingError):
    """An inference capability was invoked and did not return a valid result."""

    def __init__(self, capability: str, cause: BaseException):
        self.capability = capability
        self.cause = cause
        super().__init__(f"{capability} failed: {cause}")


class StageFailure(GradingError):
    """A pipeline stage failed because one of its capability calls failed."""

    def __init__(self, stage: str, failure: CapabilityFailure):
        self.stage = stage
        self.failure = failure
        super().__init__(f"{stage} stage failed: {failure}")

    @property
    def capability(self) -> str:
        return self.failure.capability


class EmptyExtractionResult(GradingError):
    """Extraction succeeded but the document contained no questions."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "Could not find any questions in the uploaded document. Please try another file."
        )
