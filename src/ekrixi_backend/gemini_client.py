"""Gemini Upstream Client

Forwards generation calls to Google's Gemini API using the google-genai SDK.
Request payloads are passed to the SDK untouched; responses are serialized
back to the camelCase JSON the browser client expects.
"""

import logging
from typing import Any

from google import genai
from google.genai import types

from ekrixi_backend.upstream import (
    ContentGenerationCall,
    GenerationOutput,
    TextGenerationCall,
    UpstreamClient,
    UpstreamError,
)

logger = logging.getLogger(__name__)

# Finish reasons that mean the answer was withheld, not completed
BLOCKING_FINISH_REASONS = ("SAFETY", "RECITATION", "LANGUAGE")


class GeminiClient(UpstreamClient):
    """Upstream client for Google Gemini models.

    The SDK client is created on first use and reused for every request.
    """

    def __init__(self, api_key: str, timeout_seconds: float | None = None):
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._client = None

    def _get_client(self):
        """Lazily initialize the Gemini client."""
        if self._client is None:
            http_options = None
            if self._timeout_seconds is not None:
                # HttpOptions.timeout is in milliseconds
                http_options = types.HttpOptions(
                    timeout=int(self._timeout_seconds * 1000)
                )
            self._client = genai.Client(
                api_key=self._api_key, http_options=http_options
            )
        return self._client

    async def generate_text(self, call: TextGenerationCall) -> GenerationOutput:
        logger.info(f"Gemini text generation: model={call.model}")

        response = await self._get_client().aio.models.generate_content(
            model=call.model,
            contents=call.prompt,
            config=build_generation_config(call.system_instruction, None),
        )
        return to_generation_output(response)

    async def generate_content(
        self, call: ContentGenerationCall
    ) -> GenerationOutput:
        logger.info(
            f"Gemini content generation: model={call.model}, "
            f"turns={len(call.contents)}"
        )

        response = await self._get_client().aio.models.generate_content(
            model=call.model,
            contents=call.contents,
            config=build_generation_config(
                call.system_instruction, call.generation_config
            ),
        )
        return to_generation_output(response)


def build_generation_config(
    system_instruction: Any, generation_config: dict[str, Any] | None
) -> dict[str, Any] | None:
    """Merge the system instruction into the caller's generation config.

    The SDK config model accepts both camelCase and snake_case keys, so the
    browser's generationConfig is forwarded as-is.
    """
    if not system_instruction and not generation_config:
        return None

    config = dict(generation_config or {})
    if system_instruction:
        config["system_instruction"] = system_instruction
    return config


def to_generation_output(response: types.GenerateContentResponse) -> GenerationOutput:
    """Reduce an SDK response to JSON-ready text, candidates and usage.

    Raises UpstreamError when there is no candidate to read from, or when
    the first candidate was stopped for a blocking finish reason.
    """
    candidates = response.candidates
    if not candidates:
        feedback = response.prompt_feedback
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason:
            raise UpstreamError(
                f"Prompt was blocked by the model: {_enum_value(block_reason)}"
            )
        raise UpstreamError("Model returned no candidates")

    finish_reason = _enum_value(candidates[0].finish_reason)
    if finish_reason in BLOCKING_FINISH_REASONS:
        raise UpstreamError(f"Candidate was blocked due to {finish_reason}")

    usage = response.usage_metadata
    return GenerationOutput(
        text=response.text or "",
        candidates=[_dump(candidate) for candidate in candidates],
        usage_metadata=_dump(usage) if usage is not None else None,
    )


def _enum_value(value):
    return getattr(value, "value", value)


def _dump(value) -> dict[str, Any]:
    return value.model_dump(mode="json", by_alias=True, exclude_none=True)
