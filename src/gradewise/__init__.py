"""GradeWise: grade scanned answer sheets against AI-generated model answers."""

from .agents import GradingAgent, QuestionExtractionAgent
from .capabilities import CapabilityAdapter
from .errors import (
    CapabilityFailure,
    EmptyExtractionResult,
    GradingError,
    StageFailure,
    ValidationFailure,
)
from .pipeline import GradingWorkflow, InMemoryGradeRecorder, JsonReportRecorder
from .schemas import DocumentPayload, ExtractionResult, QuestionRecord, WorkflowState
from .session import GradingSession

__all__ = [
    "CapabilityAdapter",
    "CapabilityFailure",
    "DocumentPayload",
    "EmptyExtractionResult",
    "ExtractionResult",
    "GradingAgent",
    "GradingError",
    "GradingSession",
    "GradingWorkflow",
    "InMemoryGradeRecorder",
    "JsonReportRecorder",
    "QuestionExtractionAgent",
    "QuestionRecord",
    "StageFailure",
    "ValidationFailure",
    "WorkflowState",
]
