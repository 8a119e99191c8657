from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from .capabilities import EXTRACT_QUESTIONS, EXTRACT_TEXT, GENERATE_FEEDBACK, SCORE_SIMILARITY
from .errors import CapabilityFailure, EmptyExtractionResult, StageFailure
from .schemas import (
    AnswerAssessmentRequest,
    ContractModel,
    DocumentPayload,
    ExtractionResult,
    ExtractQuestionsRequest,
    ExtractTextRequest,
    GradingOutcome,
    QuestionRecord,
)
from .scoring import render_rubric

logger = logging.getLogger(__name__)


class Invoker(Protocol):
    async def invoke(
        self, capability: str, request: Union[ContractModel, Mapping[str, Any]]
    ) -> ContractModel:
        ...


class QuestionExtractionAgent:
    """Turns a question paper into structured question records."""

    def __init__(self, adapter: Invoker):
        self.adapter = adapter

    async def run(self, *, document: DocumentPayload, subject: Optional[str] = None) -> ExtractionResult:
        # A CapabilityFailure propagates unchanged.
        result = await self.adapter.invoke(
            EXTRACT_QUESTIONS, ExtractQuestionsRequest(document=document, subject=subject or None)
        )

        if not result.questions:
            raise EmptyExtractionResult()
        logger.info("Extracted %d question(s): %s", len(result.questions), [q.id for q in result.questions])
        # Extraction order is authoritative; returned as-is.
        return result


class GradingAgent:
    """Grades one student sheet against one question.

    OCR runs first because both downstream calls need its text. Similarity and
    feedback are then issued together and joined: the stage waits for both to
    settle even when one has already failed, so no call outlives the stage.
    """

    stage = "grading"

    def __init__(self, adapter: Invoker):
        self.adapter = adapter

    async def run(
        self,
        *,
        question: QuestionRecord,
        document: DocumentPayload,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> GradingOutcome:
        progress = on_progress or (lambda message: None)

        progress("Extracting text from scan...")
        try:
            ocr = await self.adapter.invoke(EXTRACT_TEXT, ExtractTextRequest(document=document))
        except CapabilityFailure as failure:
            raise StageFailure(self.stage, failure) from failure

        progress("Scoring similarity and generating feedback...")
        request = AnswerAssessmentRequest(
            student_answer=ocr.extracted_text,
            model_answer=question.model_answer,
            question=question.text,
            rubric=render_rubric(question.rubric.keywords),
        )
        similarity, feedback = await asyncio.gather(
            self.adapter.invoke(SCORE_SIMILARITY, request),
            self.adapter.invoke(GENERATE_FEEDBACK, request),
            return_exceptions=True,
        )
        for result in (similarity, feedback):
            if isinstance(result, CapabilityFailure):
                raise StageFailure(self.stage, result) from result
            if isinstance(result, BaseException):
                raise result

        return GradingOutcome(
            extracted_text=ocr.extracted_text,
            similarity_score=similarity.similarity_score,
            justification=similarity.justification,
            feedback=feedback.feedback,
        )
