import inspect
from typing import Any, Dict, List, Tuple

import pytest
from pydantic import ValidationError

from gradewise.capabilities import (
    CAPABILITIES,
    EXTRACT_QUESTIONS,
    EXTRACT_TEXT,
    GENERATE_FEEDBACK,
    SCORE_SIMILARITY,
)
from gradewise.errors import CapabilityFailure
from gradewise.schemas import DocumentPayload


PAPER_PAYLOAD = {
    "questions": [
        {
            "id": "Q1a",
            "text": "Define photosynthesis.",
            "maxMarks": 5,
            "modelAnswer": "Plants convert light energy, water and CO2 into glucose and oxygen.",
            "rubric": {"keywords": ["light energy", "glucose", "oxygen"]},
        },
        {
            "id": "Q1b",
            "text": "Explain the role of chlorophyll.",
            "maxMarks": 10,
            "modelAnswer": "Chlorophyll absorbs light, mainly red and blue wavelengths.",
            "rubric": {"keywords": ["absorbs light", "red", "blue"]},
        },
    ]
}


class ScriptedAdapter:
    """Stands in for CapabilityAdapter.

    Requests go through the real request validation. Each capability answers with a
    scripted value: a dict (validated against the response schema), an exception
    (raised as a CapabilityFailure) or a callable taking the request, sync or async.
    """

    def __init__(self, responses: Dict[str, Any]):
        self.responses = dict(responses)
        self.calls: List[Tuple[str, Any]] = []
        # Requests exactly as the caller passed them, before validation.
        self.sent: List[Tuple[str, Any]] = []

    def calls_to(self, capability: str) -> List[Any]:
        return [request for name, request in self.calls if name == capability]

    async def invoke(self, capability, request):
        self.sent.append((capability, request))
        definition = CAPABILITIES[capability]
        request = definition.validate_request(request)
        self.calls.append((capability, request))

        response = self.responses[capability]
        if callable(response):
            response = response(request)
            if inspect.isawaitable(response):
                response = await response
        if isinstance(response, BaseException):
            raise CapabilityFailure(capability, response)
        if isinstance(response, dict):
            try:
                return definition.response_model.model_validate(response)
            except ValidationError as e:
                raise CapabilityFailure(capability, e) from e
        return response


class FakeLLMClient:
    """Replays canned JSON replies in order and records every call."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def generate_json(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def make_document(data: bytes = b"%PDF-1.4 scan", mime_type: str = "application/pdf") -> DocumentPayload:
    return DocumentPayload(data=data, mime_type=mime_type)


def default_responses(**overrides) -> Dict[str, Any]:
    responses = {
        EXTRACT_QUESTIONS: PAPER_PAYLOAD,
        EXTRACT_TEXT: {"extractedText": "Chlorophyll absorbs red and blue light."},
        SCORE_SIMILARITY: {"similarityScore": 0.8, "justification": "Mentions absorption of red and blue."},
        GENERATE_FEEDBACK: {"feedback": "Good answer; mention the green reflection too."},
    }
    responses.update(overrides)
    return responses


@pytest.fixture
def paper():
    return make_document(b"%PDF-1.4 question paper")


@pytest.fixture
def student_sheet():
    return make_document(b"\x89PNG student sheet", "image/png")
