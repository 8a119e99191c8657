from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Type, Union

from langchain_core.output_parsers import PydanticOutputParser
from pydantic import ValidationError

from .errors import CapabilityFailure, ValidationFailure
from .llm_client import LLMClient
from .schemas import (
    AnswerAssessmentRequest,
    ContractModel,
    ExtractionResult,
    ExtractQuestionsRequest,
    ExtractTextRequest,
    ExtractTextResult,
    FeedbackResult,
    SimilarityResult,
)

logger = logging.getLogger(__name__)

EXTRACT_QUESTIONS = "extractQuestions"
EXTRACT_TEXT = "extractText"
SCORE_SIMILARITY = "scoreSimilarity"
GENERATE_FEEDBACK = "generateFeedback"


EXTRACT_QUESTIONS_SYSTEM_PROMPT = """You analyze a question paper and structure its content.
Extract every question, including subparts, and generate grading metadata for each.

Hard rules:
1) Identify all questions and subparts in the order they appear in the document.
2) Assign each a unique id (e.g. Q1, Q1a, Q1b, Q2). Never reuse an id.
3) maxMarks is the maximum marks for the subquestion. If not stated, estimate a reasonable
   positive value from the question's complexity and the other questions on the paper.
4) modelAnswer is a concise, accurate answer based on standard textbook knowledge.
5) rubric.keywords lists short, specific keywords or phrases essential for a complete answer.
6) When details are unclear, use the subject (if given) and the other questions to fill gaps.
7) Ignore text that is not part of a question: faculty names, course codes, time limits,
   general instructions.
8) If the document contains no questions, return an empty questions list.
9) Return a valid JSON object only (no markdown).
"""

EXTRACT_TEXT_SYSTEM_PROMPT = """You transcribe scanned answer sheets.
Extract all handwritten or printed text from the attached document, preserving the
student's wording and order. Do not correct, grade or summarize the content.
Return a valid JSON object only (no markdown).
"""

SCORE_SIMILARITY_SYSTEM_PROMPT = """You evaluate the semantic similarity between a student's answer
and a model answer, considering the question and an optional grading rubric.

Hard rules:
1) similarityScore is a number between 0 and 1, where 1 is a perfect match.
2) If a rubric is provided it should heavily influence the score.
3) justification briefly explains the score, naming key similarities and differences.
4) Reward only what is present in studentAnswer. No pity points.
5) Return a valid JSON object only (no markdown).
"""

GENERATE_FEEDBACK_SYSTEM_PROMPT = """You give constructive feedback to students.
Given the question, the student's answer, the model answer and an optional rubric, write a
short, helpful and encouraging feedback comment. Use the rubric, if provided, to inform it.
Return a valid JSON object only (no markdown).
"""


@dataclass(frozen=True)
class Capability:
    """One named inference operation with a fixed request and response schema."""

    name: str
    request_model: Type[ContractModel]
    response_model: Type[ContractModel]
    system_prompt: str
    instruction: str
    max_output_tokens: int = 2048

    def validate_request(self, request: Union[ContractModel, Mapping[str, Any]]) -> ContractModel:
        if isinstance(request, self.request_model):
            return request
        if isinstance(request, ContractModel):
            request = request.model_dump(by_alias=True)
        try:
            return self.request_model.model_validate(request)
        except ValidationError as e:
            raise ValidationFailure(f"Invalid {self.name} request: {e}") from e

    def build_user_prompt(self, request: ContractModel) -> str:
        # The document travels as an inline part, everything else as structured JSON.
        payload = request.model_dump(by_alias=True, exclude={"document"}, exclude_none=True)
        prompt = f"{self.instruction}\n"
        if payload:
            prompt += f"\nRequest (JSON):\n{json.dumps(payload, ensure_ascii=True, indent=2)}\n"
        return prompt

    def build_system_prompt(self, parser: PydanticOutputParser) -> str:
        return f"{self.system_prompt}\n## Format Instructions\n{parser.get_format_instructions()}\n"


CAPABILITIES: Dict[str, Capability] = {
    capability.name: capability
    for capability in (
        Capability(
            name=EXTRACT_QUESTIONS,
            request_model=ExtractQuestionsRequest,
            response_model=ExtractionResult,
            system_prompt=EXTRACT_QUESTIONS_SYSTEM_PROMPT,
            instruction="Analyze the attached question paper.",
            max_output_tokens=8192,
        ),
        Capability(
            name=EXTRACT_TEXT,
            request_model=ExtractTextRequest,
            response_model=ExtractTextResult,
            system_prompt=EXTRACT_TEXT_SYSTEM_PROMPT,
            instruction="Extract the text from the attached document.",
            max_output_tokens=4096,
        ),
        Capability(
            name=SCORE_SIMILARITY,
            request_model=AnswerAssessmentRequest,
            response_model=SimilarityResult,
            system_prompt=SCORE_SIMILARITY_SYSTEM_PROMPT,
            instruction="Score the student's answer against the model answer.",
        ),
        Capability(
            name=GENERATE_FEEDBACK,
            request_model=AnswerAssessmentRequest,
            response_model=FeedbackResult,
            system_prompt=GENERATE_FEEDBACK_SYSTEM_PROMPT,
            instruction="Write feedback for the student's answer.",
        ),
    )
}


class CapabilityAdapter:
    """Uniform ``invoke(capability, request)`` over the Gemini-backed capabilities.

    Requests are validated before any call is made; responses are parsed against the
    capability's output schema. Anything that goes wrong after the call is issued
    surfaces as a single :class:`CapabilityFailure`.
    """

    def __init__(self, client: LLMClient, capabilities: Optional[Mapping[str, Capability]] = None):
        self.client = client
        self.capabilities = dict(capabilities or CAPABILITIES)

    async def invoke(
        self,
        capability: str,
        request: Union[ContractModel, Mapping[str, Any]],
    ) -> ContractModel:
        definition = self.capabilities.get(capability)
        if definition is None:
            raise ValidationFailure(f"Unknown capability {capability!r}.")
        request = definition.validate_request(request)
        parser = PydanticOutputParser(pydantic_object=definition.response_model)

        logger.info("Invoking %s", capability)
        try:
            text = await self.client.generate_json(
                system_prompt=definition.build_system_prompt(parser),
                user_prompt=definition.build_user_prompt(request),
                document=getattr(request, "document", None),
                temperature=0.0,
                max_output_tokens=definition.max_output_tokens,
            )
            result = parser.parse(text)
        except Exception as e:
            logger.warning("%s failed: %s", capability, e)
            raise CapabilityFailure(capability, e) from e

        logger.info("%s completed", capability)
        return result
