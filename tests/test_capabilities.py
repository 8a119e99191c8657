import asyncio
import json

import pytest

from gradewise.capabilities import (
    EXTRACT_QUESTIONS,
    EXTRACT_TEXT,
    GENERATE_FEEDBACK,
    SCORE_SIMILARITY,
    CapabilityAdapter,
)
from gradewise.errors import CapabilityFailure, ValidationFailure
from gradewise.schemas import ExtractQuestionsRequest, ExtractTextRequest

from conftest import PAPER_PAYLOAD, FakeLLMClient, make_document


ASSESSMENT = {
    "studentAnswer": "Chlorophyll absorbs light.",
    "modelAnswer": "Chlorophyll absorbs red and blue light.",
    "question": "Explain the role of chlorophyll.",
    "rubric": "Keywords: absorbs light, red, blue",
}


def test_extract_questions_parses_response_and_sends_document():
    client = FakeLLMClient(json.dumps(PAPER_PAYLOAD))
    adapter = CapabilityAdapter(client)
    document = make_document()

    request = ExtractQuestionsRequest(document=document, subject="Biology")
    result = asyncio.run(adapter.invoke(EXTRACT_QUESTIONS, request))

    assert [q.id for q in result.questions] == ["Q1a", "Q1b"]
    call = client.calls[0]
    assert call["document"] == document
    assert call["temperature"] == 0.0
    assert '"subject": "Biology"' in call["user_prompt"]
    assert "Format Instructions" in call["system_prompt"]
    assert "maxMarks" in call["system_prompt"]


def test_missing_subject_is_omitted_from_request():
    client = FakeLLMClient(json.dumps(PAPER_PAYLOAD))
    request = ExtractQuestionsRequest(document=make_document())
    asyncio.run(CapabilityAdapter(client).invoke(EXTRACT_QUESTIONS, request))
    assert "subject" not in client.calls[0]["user_prompt"]


def test_assessment_request_is_sent_as_structured_json():
    client = FakeLLMClient('{"similarityScore": 0.75, "justification": "Partial."}')
    result = asyncio.run(CapabilityAdapter(client).invoke(SCORE_SIMILARITY, ASSESSMENT))

    assert result.similarity_score == 0.75
    prompt = client.calls[0]["user_prompt"]
    payload = json.loads(prompt[prompt.index("{"):])
    assert payload == ASSESSMENT
    assert client.calls[0]["document"] is None


def test_fenced_json_is_accepted():
    client = FakeLLMClient('```json\n{"feedback": "Well done."}\n```')
    result = asyncio.run(CapabilityAdapter(client).invoke(GENERATE_FEEDBACK, ASSESSMENT))
    assert result.feedback == "Well done."


@pytest.mark.parametrize("score", [1.4, -0.2])
def test_out_of_range_similarity_is_a_capability_failure(score):
    client = FakeLLMClient(json.dumps({"similarityScore": score, "justification": "?"}))
    with pytest.raises(CapabilityFailure) as excinfo:
        asyncio.run(CapabilityAdapter(client).invoke(SCORE_SIMILARITY, ASSESSMENT))
    assert excinfo.value.capability == SCORE_SIMILARITY


def test_structurally_invalid_response_is_a_capability_failure():
    client = FakeLLMClient('{"text": "no extractedText field"}')
    request = ExtractTextRequest(document=make_document())
    with pytest.raises(CapabilityFailure) as excinfo:
        asyncio.run(CapabilityAdapter(client).invoke(EXTRACT_TEXT, request))
    assert excinfo.value.capability == EXTRACT_TEXT


def test_duplicate_question_ids_are_a_capability_failure():
    payload = {"questions": [PAPER_PAYLOAD["questions"][0]] * 2}
    client = FakeLLMClient(json.dumps(payload))
    request = ExtractQuestionsRequest(document=make_document())
    with pytest.raises(CapabilityFailure):
        asyncio.run(CapabilityAdapter(client).invoke(EXTRACT_QUESTIONS, request))


def test_client_error_is_wrapped_with_capability_name():
    cause = RuntimeError("Gemini generation timed out after 120s")
    client = FakeLLMClient(cause)
    request = ExtractTextRequest(document=make_document())
    with pytest.raises(CapabilityFailure) as excinfo:
        asyncio.run(CapabilityAdapter(client).invoke(EXTRACT_TEXT, request))
    assert excinfo.value.capability == EXTRACT_TEXT
    assert excinfo.value.cause is cause
    assert "timed out" in str(excinfo.value)


def test_invalid_request_fails_before_any_call():
    client = FakeLLMClient()
    adapter = CapabilityAdapter(client)
    with pytest.raises(ValidationFailure):
        asyncio.run(adapter.invoke(SCORE_SIMILARITY, {"studentAnswer": "x"}))
    with pytest.raises(ValidationFailure):
        asyncio.run(adapter.invoke(EXTRACT_QUESTIONS, {"document": None}))
    with pytest.raises(ValidationFailure):
        asyncio.run(adapter.invoke("translate", {}))
    assert client.calls == []
