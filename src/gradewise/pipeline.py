from __future__ import annotations

import csv
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from . import session as transitions
from .agents import GradingAgent, Invoker, QuestionExtractionAgent
from .errors import CapabilityFailure, EmptyExtractionResult, StageFailure, ValidationFailure
from .schemas import DocumentPayload, GradeRecord, WorkflowError, WorkflowState
from .session import GradingSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


# ── Grade recorders ─────────────────────────────────────────────────────

class GradeRecorder(Protocol):
    def record(self, record: GradeRecord) -> None:
        ...


class InMemoryGradeRecorder:
    def __init__(self) -> None:
        self.records: List[GradeRecord] = []

    def record(self, record: GradeRecord) -> None:
        self.records.append(record)


class JsonReportRecorder:
    """Writes one JSON report per saved grade and appends a row to a CSV summary."""

    fieldnames = ["question_id", "final_score", "final_feedback", "saved_at"]

    def __init__(self, output_dir: Path, summary_name: str = "grades_summary.csv"):
        self.output_dir = output_dir
        self.summary_path = output_dir / summary_name

    def record(self, record: GradeRecord) -> None:
        saved_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        payload: Dict[str, Any] = {**record.model_dump(by_alias=True), "savedAt": saved_at}

        self.output_dir.mkdir(parents=True, exist_ok=True)
        report_path = self._next_report_path(record.question_id)
        report_path.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")

        write_header = not self.summary_path.exists()
        with self.summary_path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.fieldnames)
            if write_header:
                writer.writeheader()
            writer.writerow(
                {
                    "question_id": record.question_id,
                    "final_score": record.final_score,
                    "final_feedback": record.final_feedback,
                    "saved_at": saved_at,
                }
            )
        logger.info("Saved grade for %s to %s", record.question_id, report_path)

    def _next_report_path(self, question_id: str) -> Path:
        safe_id = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in question_id)
        pattern = re.compile(rf"^{re.escape(safe_id)}_(\d+)_grade\.json$")
        numbers = [
            int(match.group(1))
            for match in (pattern.match(path.name) for path in self.output_dir.iterdir())
            if match
        ]
        return self.output_dir / f"{safe_id}_{max(numbers, default=0) + 1:03d}_grade.json"


# ── Workflow ────────────────────────────────────────────────────────────

def _capability_error(failure: CapabilityFailure) -> WorkflowError:
    return WorkflowError(kind="capability", capability=failure.capability, message=str(failure))


class GradingWorkflow:
    """Drives one grading session through paper analysis, grading and review.

    The current :class:`GradingSession` is replaced wholesale by each transition.
    Capability failures never raise out of here; they land on ``session.error`` and
    the session falls back to its last stable state. Unmet preconditions raise
    :class:`ValidationFailure` before anything is invoked.
    """

    def __init__(
        self,
        adapter: Invoker,
        recorder: Optional[GradeRecorder] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.extraction_agent = QuestionExtractionAgent(adapter)
        self.grading_agent = GradingAgent(adapter)
        self.recorder = recorder if recorder is not None else InMemoryGradeRecorder()
        self.on_progress = on_progress
        self._session = transitions.new_session()

    @property
    def session(self) -> GradingSession:
        return self._session

    @property
    def state(self) -> WorkflowState:
        return self._session.state

    def _apply(self, session: GradingSession) -> GradingSession:
        previous = self._session
        if previous.state is not session.state:
            logger.info("Session %s: %s -> %s", session.session_id, previous.state.value, session.state.value)
        self._session = session
        return session

    def _progress(self, message: str) -> None:
        if self.on_progress is not None:
            self.on_progress(message)

    async def analyze_paper(
        self, document: Optional[DocumentPayload], subject: Optional[str] = None
    ) -> GradingSession:
        session, attempt = transitions.submit_paper(self._session, document, subject)
        self._apply(session)
        self._progress("Analyzing question paper... This may take a moment.")

        try:
            result = await self.extraction_agent.run(document=session.paper, subject=session.subject)
        except EmptyExtractionResult as e:
            error = WorkflowError(kind="empty_result", message=str(e))
            return self._apply(transitions.fail_paper_analysis(self._session, attempt, error))
        except CapabilityFailure as e:
            return self._apply(transitions.fail_paper_analysis(self._session, attempt, _capability_error(e)))
        except ValidationFailure as e:
            error = WorkflowError(kind="validation", message=str(e))
            return self._apply(transitions.fail_paper_analysis(self._session, attempt, error))
        return self._apply(transitions.complete_paper_analysis(self._session, attempt, result))

    def select_question(self, question_id: str) -> GradingSession:
        return self._apply(transitions.select_question(self._session, question_id))

    async def grade(self, document: Optional[DocumentPayload]) -> GradingSession:
        session, attempt = transitions.submit_student_sheet(self._session, document)
        self._apply(session)

        try:
            outcome = await self.grading_agent.run(
                question=session.active_question,
                document=session.student_document,
                on_progress=self.on_progress,
            )
        except StageFailure as e:
            return self._apply(transitions.fail_grading(self._session, attempt, _capability_error(e.failure)))
        except ValidationFailure as e:
            error = WorkflowError(kind="validation", message=str(e))
            return self._apply(transitions.fail_grading(self._session, attempt, error))
        return self._apply(transitions.complete_grading(self._session, attempt, outcome))

    def edit_grade(self, score: Optional[int] = None, feedback: Optional[str] = None) -> GradingSession:
        return self._apply(transitions.edit_grade(self._session, score=score, feedback=feedback))

    def save(self) -> GradingSession:
        session, record = transitions.save(self._session)
        # A recorder error propagates and leaves the session in review.
        self.recorder.record(record)
        return self._apply(session)

    def grade_another(self) -> GradingSession:
        return self._apply(transitions.grade_another(self._session))

    def reset(self) -> GradingSession:
        return self._apply(transitions.reset(self._session))

    def restore(self, session: GradingSession) -> GradingSession:
        """Resume a previously serialized session.

        A run that was in flight when the session was captured cannot be resumed;
        the session falls back to the stable state before it.
        """
        if session.pending is not None:
            error = WorkflowError(
                kind="interrupted", message="The previous request was interrupted. Please resubmit."
            )
            if session.state is WorkflowState.PAPER_ANALYZING:
                session = transitions.fail_paper_analysis(session, session.pending, error)
            elif session.state is WorkflowState.GRADING:
                session = transitions.fail_grading(session, session.pending, error)
        self._session = session
        logger.info("Restored session %s in state %s", session.session_id, session.state.value)
        return session
