"""Upstream Generation Client Base Class

Base class for the clients that forward generation calls to a generative
language model provider. The HTTP handlers never talk to a provider SDK
directly: they build a call object, hand it to an ``UpstreamClient`` through
``invoke_upstream``, and translate the returned ``UpstreamResult`` into a
response.

Example:
    class EchoClient(UpstreamClient):
        async def generate_text(self, call):
            return GenerationOutput(text=call.prompt)

        async def generate_content(self, call):
            return GenerationOutput(text="", candidates=[])

    result = await invoke_upstream(
        lambda: client.generate_text(call), "Failed to generate text"
    )
    if result.ok:
        print(result.output.text)
"""

import logging
import traceback
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "Unknown error"


class UpstreamError(Exception):
    """Raised when the provider answers with something the proxy cannot use."""


class TextGenerationCall:
    """Single-turn generation: one prompt in, text out."""

    def __init__(
        self,
        model: str,
        prompt: str,
        system_instruction: Any = None,
    ):
        self.model = model
        self.prompt = prompt
        self.system_instruction = system_instruction


class ContentGenerationCall:
    """Multi-turn/structured generation.

    ``contents`` and ``generation_config`` are provider-defined JSON values and
    are forwarded exactly as the client sent them.
    """

    def __init__(
        self,
        model: str,
        contents: list[Any],
        system_instruction: Any = None,
        generation_config: dict[str, Any] | None = None,
    ):
        self.model = model
        self.contents = contents
        self.system_instruction = system_instruction
        self.generation_config = generation_config


class GenerationOutput:
    """What a provider returned, already reduced to JSON-ready values."""

    def __init__(
        self,
        text: str,
        candidates: list[dict[str, Any]] | None = None,
        usage_metadata: dict[str, Any] | None = None,
    ):
        self.text = text
        self.candidates = candidates
        self.usage_metadata = usage_metadata


class UpstreamResult:
    """Outcome of one upstream call: an output, or a failure category + detail."""

    def __init__(
        self,
        output: GenerationOutput | None = None,
        category: str | None = None,
        message: str | None = None,
    ):
        self.output = output
        self.category = category
        self.message = message

    @property
    def ok(self) -> bool:
        return self.output is not None

    @classmethod
    def success(cls, output: GenerationOutput) -> "UpstreamResult":
        return cls(output=output)

    @classmethod
    def failure(cls, category: str, message: str) -> "UpstreamResult":
        return cls(category=category, message=message)


class UpstreamClient(ABC):
    """Base class for upstream generation clients.

    Implementations raise on any failure; ``invoke_upstream`` is responsible
    for turning exceptions into ``UpstreamResult`` failures.
    """

    @abstractmethod
    async def generate_text(self, call: TextGenerationCall) -> GenerationOutput:
        """Generate text from a single prompt.

        Args:
            call: TextGenerationCall with model, prompt and system instruction

        Returns:
            GenerationOutput whose ``text`` holds the primary candidate's text

        Raises:
            Exception: If the provider call fails
        """
        raise NotImplementedError(
            "UpstreamClient.generate_text() must be implemented by subclass"
        )

    @abstractmethod
    async def generate_content(
        self, call: ContentGenerationCall
    ) -> GenerationOutput:
        """Generate from a structured, possibly multi-turn conversation.

        Args:
            call: ContentGenerationCall with contents and generation config

        Returns:
            GenerationOutput with text, candidates and usage metadata

        Raises:
            Exception: If the provider call fails
        """
        raise NotImplementedError(
            "UpstreamClient.generate_content() must be implemented by subclass"
        )


def extract_error_message(error: BaseException) -> str:
    """Best-effort human-readable message for an upstream exception."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) or UNKNOWN_ERROR_MESSAGE


async def invoke_upstream(
    call: Callable[[], Awaitable[GenerationOutput]], category: str
) -> UpstreamResult:
    """Await an upstream call and fold any exception into a failure result.

    Args:
        call: Zero-argument callable returning the upstream coroutine
        category: Stable error category reported to the client on failure

    Returns:
        UpstreamResult with either the output or category + message
    """
    try:
        output = await call()
    except Exception as e:
        logger.error(f"{category}: {e!r}")
        logger.error(traceback.format_exc())
        return UpstreamResult.failure(category, extract_error_message(e))
    return UpstreamResult.success(output)
