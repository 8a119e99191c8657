from __future__ import annotations

import base64
import mimetypes
import re
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ContractModel(BaseModel):
    """Base for every boundary shape: camelCase on the wire, immutable in memory."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )


# ── Documents ───────────────────────────────────────────────────────────

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[^;,]+)*;base64,(?P<data>.*)$", re.DOTALL)


class DocumentPayload(ContractModel):
    """An uploaded document: raw bytes plus the media type they were declared with."""

    data: bytes = Field(min_length=1, description="Raw document bytes")
    mime_type: str = Field(description="Declared media type, e.g. 'application/pdf'")

    @field_validator("mime_type")
    @classmethod
    def _check_mime_type(cls, value: str) -> str:
        value = value.strip().lower()
        if "/" not in value:
            raise ValueError(f"Not a media type: {value!r}")
        return value

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "DocumentPayload":
        if mime_type is None:
            mime_type, _ = mimetypes.guess_type(path.name)
        if not mime_type:
            raise ValueError(f"Cannot determine media type of {str(path)!r}.")
        return cls(data=path.read_bytes(), mime_type=mime_type)

    @classmethod
    def from_data_uri(cls, uri: str) -> "DocumentPayload":
        match = _DATA_URI_RE.match(uri.strip())
        if not match:
            raise ValueError("Expected 'data:<mimetype>;base64,<encoded_data>'.")
        return cls(data=base64.b64decode(match.group("data")), mime_type=match.group("mime"))

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


# ── Question extraction ─────────────────────────────────────────────────

class Rubric(ContractModel):
    keywords: List[str] = Field(
        default_factory=list,
        description="Short, specific keywords or phrases expected in a complete answer",
    )


class QuestionRecord(ContractModel):
    """One question or sub-question found on a question paper."""

    id: str = Field(min_length=1, description="Unique question ID in document order, e.g. 'Q1a'")
    text: str = Field(min_length=1, description="The full text of the question or sub-question")
    max_marks: float = Field(
        gt=0,
        allow_inf_nan=False,
        description="Maximum marks; estimated from context when the paper does not state them",
    )
    model_answer: str = Field(min_length=1, description="A concise, textbook-quality model answer")
    rubric: Rubric = Field(default_factory=Rubric, description="The grading rubric")


class ExtractionResult(ContractModel):
    questions: List[QuestionRecord] = Field(
        description="All extracted questions in the order they appear in the document"
    )

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "ExtractionResult":
        seen = set()
        for question in self.questions:
            if question.id in seen:
                raise ValueError(f"Duplicate question id {question.id!r}.")
            seen.add(question.id)
        return self

    def get(self, question_id: str) -> Optional[QuestionRecord]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


class ExtractQuestionsRequest(ContractModel):
    document: DocumentPayload
    subject: Optional[str] = Field(default=None, description="Subject or course name for context")


# ── OCR ─────────────────────────────────────────────────────────────────

class ExtractTextRequest(ContractModel):
    document: DocumentPayload


class ExtractTextResult(ContractModel):
    extracted_text: str = Field(description="The text read from the scanned document")


# ── Similarity & feedback ───────────────────────────────────────────────

class AnswerAssessmentRequest(ContractModel):
    """Shared input of the similarity and feedback capabilities."""

    student_answer: str = Field(description="The answer provided by the student")
    model_answer: str = Field(min_length=1, description="The expected answer or key points")
    question: str = Field(min_length=1, description="The question that was asked")
    rubric: Optional[str] = Field(default=None, description="Optional rubric for grading the answer")


class SimilarityResult(ContractModel):
    similarity_score: float = Field(
        ge=0.0,
        le=1.0,
        allow_inf_nan=False,
        description="Semantic similarity between student and model answers, 0 to 1",
    )
    justification: str = Field(
        description="Why the answer was scored as it was, naming key similarities and differences"
    )


class FeedbackResult(ContractModel):
    feedback: str = Field(description="Short, constructive feedback for the student")


# ── Grading outputs ─────────────────────────────────────────────────────

class GradingOutcome(ContractModel):
    """Everything one successful grading attempt produced."""

    extracted_text: str
    similarity_score: float = Field(ge=0.0, le=1.0, allow_inf_nan=False)
    justification: str
    feedback: str


class FinalGrade(ContractModel):
    score: int = Field(ge=0)
    feedback: str


class GradeRecord(ContractModel):
    """What the external recorder receives on save."""

    question_id: str
    final_score: int
    final_feedback: str


# ── Session state ───────────────────────────────────────────────────────

class WorkflowState(str, Enum):
    IDLE = "idle"
    PAPER_ANALYZING = "paper_analyzing"
    QUESTIONS_READY = "questions_ready"
    GRADING = "grading"
    REVIEWING = "reviewing"


class WorkflowError(ContractModel):
    """A displayable failure: which capability (if any) and a readable message."""

    kind: Literal["capability", "empty_result", "validation", "interrupted"]
    message: str
    capability: Optional[str] = None


class Attempt(ContractModel):
    """Identity an in-flight stage run was issued under."""

    session_id: str
    attempt_id: str
    question_id: Optional[str] = None
