"""Shared fixtures: settings, a recording stub upstream, and test clients."""

import pytest
from fastapi.testclient import TestClient

from ekrixi_backend.app import create_app
from ekrixi_backend.config import Settings
from ekrixi_backend.upstream import (
    ContentGenerationCall,
    GenerationOutput,
    TextGenerationCall,
    UpstreamClient,
)


class StubUpstream(UpstreamClient):
    """Deterministic upstream that records every call it receives."""

    def __init__(self):
        self.text_calls: list[TextGenerationCall] = []
        self.content_calls: list[ContentGenerationCall] = []

    @property
    def call_count(self) -> int:
        return len(self.text_calls) + len(self.content_calls)

    async def generate_text(self, call: TextGenerationCall) -> GenerationOutput:
        self.text_calls.append(call)
        if call.model == "broken-model":
            raise RuntimeError("model broken-model is not available")
        if call.prompt == "Say hi":
            return GenerationOutput(text="Hello world")
        return GenerationOutput(text=f"echo: {call.prompt}")

    async def generate_content(
        self, call: ContentGenerationCall
    ) -> GenerationOutput:
        self.content_calls.append(call)
        if call.model == "broken-model":
            raise RuntimeError("model broken-model is not available")
        return GenerationOutput(
            text="Once upon a time",
            candidates=[
                {
                    "content": {
                        "role": "model",
                        "parts": [{"text": "Once upon a time"}],
                    },
                    "finishReason": "STOP",
                }
            ],
            usage_metadata={
                "promptTokenCount": 4,
                "candidatesTokenCount": 4,
                "totalTokenCount": 8,
            },
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-api-key")


@pytest.fixture
def stub_upstream() -> StubUpstream:
    return StubUpstream()


@pytest.fixture
def client(settings, stub_upstream) -> TestClient:
    return TestClient(create_app(settings, upstream=stub_upstream))


@pytest.fixture
def make_client(stub_upstream):
    """Build a client for custom settings, sharing the stub upstream."""

    def _make(**overrides) -> TestClient:
        custom = Settings(api_key="test-api-key", **overrides)
        return TestClient(create_app(custom, upstream=stub_upstream))

    return _make
