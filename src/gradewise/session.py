"""Grading session state and its transitions.

A :class:`GradingSession` is an immutable value. Every transition takes the current
session and returns the next one; nothing here performs I/O or inference calls.
Transitions that start a stage also return the :class:`Attempt` the stage run is
bound to. A stage result is applied only while the session still holds that same
attempt, which is how results of abandoned runs get dropped.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, List, Optional, Tuple

from pydantic import Field

from .errors import ValidationFailure
from .schemas import (
    Attempt,
    ContractModel,
    DocumentPayload,
    ExtractionResult,
    FinalGrade,
    GradeRecord,
    GradingOutcome,
    QuestionRecord,
    WorkflowError,
    WorkflowState,
)
from .scoring import derive_final_grade

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


_CLEARED_STUDENT_FIELDS = {
    "student_document": None,
    "extracted_text": None,
    "similarity_score": None,
    "justification": None,
    "feedback": None,
    "final_score": None,
    "final_feedback": None,
}


class GradingSession(ContractModel):
    session_id: str = Field(default_factory=_new_id)
    state: WorkflowState = WorkflowState.IDLE

    subject: Optional[str] = None
    paper: Optional[DocumentPayload] = None
    extraction: Optional[ExtractionResult] = None
    active_question: Optional[QuestionRecord] = None

    student_document: Optional[DocumentPayload] = None
    extracted_text: Optional[str] = None
    similarity_score: Optional[float] = None
    justification: Optional[str] = None
    feedback: Optional[str] = None
    final_score: Optional[int] = None
    final_feedback: Optional[str] = None

    pending: Optional[Attempt] = None
    error: Optional[WorkflowError] = None

    @property
    def questions(self) -> List[QuestionRecord]:
        return list(self.extraction.questions) if self.extraction else []

    @property
    def final_grade(self) -> Optional[FinalGrade]:
        if self.final_score is None:
            return None
        return FinalGrade(score=self.final_score, feedback=self.final_feedback or "")

    def owns(self, attempt: Attempt) -> bool:
        return self.pending is not None and self.pending == attempt

    def _update(self, **changes) -> "GradingSession":
        return self.model_copy(update=changes)


def _require_state(session: GradingSession, allowed: Iterable[WorkflowState], action: str) -> None:
    allowed = tuple(allowed)
    if session.state not in allowed:
        names = ", ".join(state.value for state in allowed)
        raise ValidationFailure(
            f"Cannot {action} while {session.state.value}; expected one of: {names}."
        )


def _is_current(session: GradingSession, attempt: Attempt) -> bool:
    if session.owns(attempt):
        return True
    logger.info(
        "Discarding stale attempt %s (session %s, question %s)",
        attempt.attempt_id,
        attempt.session_id,
        attempt.question_id,
    )
    return False


def new_session() -> GradingSession:
    return GradingSession()


def reset(session: GradingSession) -> GradingSession:
    # A fresh session id makes every in-flight attempt stale.
    return GradingSession()


# ── Paper analysis ──────────────────────────────────────────────────────

def submit_paper(
    session: GradingSession,
    document: Optional[DocumentPayload],
    subject: Optional[str] = None,
) -> Tuple[GradingSession, Attempt]:
    _require_state(session, [WorkflowState.IDLE], "analyze a question paper")
    if document is None:
        raise ValidationFailure("Please upload a question paper to analyze.")

    attempt = Attempt(session_id=session.session_id, attempt_id=_new_id())
    updated = session._update(
        state=WorkflowState.PAPER_ANALYZING,
        paper=document,
        subject=(subject or "").strip() or None,
        extraction=None,
        active_question=None,
        pending=attempt,
        error=None,
        **_CLEARED_STUDENT_FIELDS,
    )
    return updated, attempt


def complete_paper_analysis(
    session: GradingSession, attempt: Attempt, result: ExtractionResult
) -> GradingSession:
    if not _is_current(session, attempt):
        return session
    return session._update(
        state=WorkflowState.QUESTIONS_READY,
        extraction=result,
        pending=None,
        error=None,
    )


def fail_paper_analysis(
    session: GradingSession, attempt: Attempt, error: WorkflowError
) -> GradingSession:
    if not _is_current(session, attempt):
        return session
    # The paper and subject stay so the user can retry or swap the file.
    return session._update(state=WorkflowState.IDLE, pending=None, error=error)


# ── Question selection & grading ────────────────────────────────────────

def select_question(session: GradingSession, question_id: str) -> GradingSession:
    """Make ``question_id`` the active question, discarding any student-specific state.

    Selecting while a grading run is in flight abandons that run.
    """
    _require_state(
        session, [WorkflowState.QUESTIONS_READY, WorkflowState.GRADING], "select a question"
    )
    question = session.extraction.get(question_id) if session.extraction else None
    if question is None:
        raise ValidationFailure(f"Unknown question id {question_id!r}.")
    return session._update(
        state=WorkflowState.QUESTIONS_READY,
        active_question=question,
        pending=None,
        error=None,
        **_CLEARED_STUDENT_FIELDS,
    )


def submit_student_sheet(
    session: GradingSession, document: Optional[DocumentPayload]
) -> Tuple[GradingSession, Attempt]:
    if session.state is WorkflowState.GRADING:
        raise ValidationFailure("A grading attempt is already in progress for this session.")
    _require_state(session, [WorkflowState.QUESTIONS_READY], "grade a student answer sheet")
    if session.active_question is None or document is None:
        raise ValidationFailure("Please select a question and upload a student answer sheet.")

    attempt = Attempt(
        session_id=session.session_id,
        attempt_id=_new_id(),
        question_id=session.active_question.id,
    )
    updated = session._update(
        state=WorkflowState.GRADING,
        pending=attempt,
        error=None,
        **{**_CLEARED_STUDENT_FIELDS, "student_document": document},
    )
    return updated, attempt


def complete_grading(
    session: GradingSession, attempt: Attempt, outcome: GradingOutcome
) -> GradingSession:
    if not _is_current(session, attempt):
        return session
    grade = derive_final_grade(outcome, session.active_question.max_marks)
    return session._update(
        state=WorkflowState.REVIEWING,
        extracted_text=outcome.extracted_text,
        similarity_score=outcome.similarity_score,
        justification=outcome.justification,
        feedback=outcome.feedback,
        final_score=grade.score,
        final_feedback=grade.feedback,
        pending=None,
        error=None,
    )


def fail_grading(session: GradingSession, attempt: Attempt, error: WorkflowError) -> GradingSession:
    if not _is_current(session, attempt):
        return session
    return session._update(
        state=WorkflowState.QUESTIONS_READY,
        pending=None,
        error=error,
        **_CLEARED_STUDENT_FIELDS,
    )


# ── Review ──────────────────────────────────────────────────────────────

def edit_grade(
    session: GradingSession,
    score: Optional[int] = None,
    feedback: Optional[str] = None,
) -> GradingSession:
    """Override the final score and/or feedback; AI output is not consulted again."""
    _require_state(session, [WorkflowState.REVIEWING], "edit the final grade")
    changes = {}
    if score is not None:
        max_marks = session.active_question.max_marks
        if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= max_marks:
            raise ValidationFailure(f"Final score must be a whole number between 0 and {max_marks:g}.")
        changes["final_score"] = score
    if feedback is not None:
        changes["final_feedback"] = feedback
    return session._update(**changes)


def save(session: GradingSession) -> Tuple[GradingSession, GradeRecord]:
    _require_state(session, [WorkflowState.REVIEWING], "save a grade")
    record = GradeRecord(
        question_id=session.active_question.id,
        final_score=session.final_score,
        final_feedback=session.final_feedback or "",
    )
    updated = session._update(
        state=WorkflowState.QUESTIONS_READY,
        active_question=None,
        error=None,
        **_CLEARED_STUDENT_FIELDS,
    )
    return updated, record


def grade_another(session: GradingSession) -> GradingSession:
    _require_state(session, [WorkflowState.REVIEWING], "grade another sheet")
    return session._update(
        state=WorkflowState.QUESTIONS_READY,
        error=None,
        **_CLEARED_STUDENT_FIELDS,
    )
