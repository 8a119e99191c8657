import asyncio
import logging
import os
from typing import Optional

from google import genai
from google.genai import types

from .schemas import DocumentPayload

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT_SECONDS = 120.0


class LLMClient:
    """Minimal async wrapper around the Gemini API returning raw JSON text.

    One call per request: no retries, no caching. The timeout is enforced here so
    callers only ever see a settled result or an exception.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.model_name = model or os.environ.get("GRADEWISE_MODEL") or DEFAULT_MODEL
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY")
        if not self.api_key:
            raise RuntimeError("GEMINI_API_KEY is required.")
        if timeout is None:
            timeout = float(os.environ.get("GRADEWISE_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
        self.timeout = timeout

        self._client = genai.Client(api_key=self.api_key)

    async def generate_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        document: Optional[DocumentPayload] = None,
        temperature: float = 0.0,
        max_output_tokens: int = 4096,
    ) -> str:
        contents = []
        if document is not None:
            contents.append(types.Part.from_bytes(data=document.data, mime_type=document.mime_type))
        contents.append(user_prompt)

        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self.model_name,
                    contents=contents,
                    config=types.GenerateContentConfig(
                        system_instruction=system_prompt,
                        temperature=temperature,
                        max_output_tokens=max_output_tokens,
                        response_mime_type="application/json",
                    ),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise RuntimeError(f"Gemini generation timed out after {self.timeout:g}s") from e
        except Exception as e:
            raise RuntimeError(f"Gemini generation failed: {e}") from e

        text = response.text
        if not text:
            raise RuntimeError("Gemini returned an empty response.")
        return text
