"""
Ekrixi Backend - Gemini generation proxy.

Forwards text and structured content generation requests from the Ekrixi
writing app to Google Gemini, keeping the API key on the server.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Union

from fastapi import APIRouter, Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ekrixi_backend import __version__
from ekrixi_backend.config import Settings
from ekrixi_backend.gemini_client import GeminiClient
from ekrixi_backend.middleware import (
    BodySizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from ekrixi_backend.rate_limit import (
    ApiRateLimitMiddleware,
    build_limiter,
    make_key_func,
)
from ekrixi_backend.upstream import (
    ContentGenerationCall,
    TextGenerationCall,
    UpstreamClient,
    invoke_upstream,
)

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"

# Error categories. The browser client branches on these; keep them stable.
PROMPT_REQUIRED = "Prompt is required"
CONTENTS_REQUIRED = "Contents array is required"
TEXT_GENERATION_FAILED = "Failed to generate text"
CONTENT_GENERATION_FAILED = "Failed to generate content"
INVALID_REQUEST_BODY = "Invalid request body"


# --- Pydantic Models ---


class TextGenerationRequest(BaseModel):
    """Request body for the text generation endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prompt: Optional[str] = None
    system_instruction: Optional[Union[str, dict[str, Any]]] = Field(
        default=None, alias="systemInstruction"
    )
    model: Optional[str] = None


class ContentGenerationRequest(BaseModel):
    """Request body for the structured content generation endpoint.

    contents and generationConfig belong to the Gemini API and are not
    validated here beyond "contents must be an array".
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: Optional[str] = None
    system_instruction: Optional[Union[str, dict[str, Any]]] = Field(
        default=None, alias="systemInstruction"
    )
    contents: Any = None
    generation_config: Optional[dict[str, Any]] = Field(
        default=None, alias="generationConfig"
    )


# --- Helpers ---


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds, e.g. 2025-01-01T12:00:00.000Z."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def error_response(
    status_code: int, error: str, message: Optional[str] = None
) -> JSONResponse:
    content = {"error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{location}: {msg}" if location else msg)
    return "; ".join(parts) or "Malformed request body"


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = format_validation_errors(exc)
    logger.info(f"Rejected malformed body on {request.url.path}: {message}")
    return error_response(400, INVALID_REQUEST_BODY, message)


def parse_body(model: type[BaseModel], body: Any) -> Any:
    """Validate a JSON body against ``model``.

    Anything other than a JSON object (an array, a string, no body at all)
    is treated as an empty payload, so the route reports its missing field.
    """
    if not isinstance(body, dict):
        return model()
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e


# --- Routes ---

router = APIRouter()


@router.get(HEALTH_PATH)
async def health():
    """Liveness check. Never touches the upstream API."""
    return {"status": "ok", "timestamp": utc_timestamp()}


@router.post("/api/generate-text")
async def generate_text(request: Request, body: Any = Body(default=None)):
    """Generate text from a single prompt."""
    payload: TextGenerationRequest = parse_body(TextGenerationRequest, body)
    if not payload.prompt:
        return error_response(400, PROMPT_REQUIRED)

    settings: Settings = request.app.state.settings
    upstream: UpstreamClient = request.app.state.upstream

    call = TextGenerationCall(
        model=payload.model or settings.default_text_model,
        prompt=payload.prompt,
        system_instruction=payload.system_instruction,
    )
    logger.info(
        f"Generate text request: model={call.model}, "
        f"prompt length={len(call.prompt)}"
    )

    result = await invoke_upstream(
        lambda: upstream.generate_text(call), TEXT_GENERATION_FAILED
    )
    if not result.ok:
        return error_response(500, result.category, result.message)

    return {"text": result.output.text}


@router.post("/api/generate-content")
async def generate_content(request: Request, body: Any = Body(default=None)):
    """
    Generate from a structured, possibly multi-turn conversation.

    Used by the chat and structured-output features; contents and
    generationConfig are forwarded to Gemini unchanged.
    """
    payload: ContentGenerationRequest = parse_body(ContentGenerationRequest, body)
    if not isinstance(payload.contents, list):
        return error_response(400, CONTENTS_REQUIRED)

    settings: Settings = request.app.state.settings
    upstream: UpstreamClient = request.app.state.upstream

    call = ContentGenerationCall(
        model=payload.model or settings.default_content_model,
        contents=payload.contents,
        system_instruction=payload.system_instruction,
        generation_config=payload.generation_config,
    )
    logger.info(
        f"Generate content request: model={call.model}, "
        f"turns={len(call.contents)}, "
        f"generation_config={'yes' if call.generation_config else 'no'}"
    )

    result = await invoke_upstream(
        lambda: upstream.generate_content(call), CONTENT_GENERATION_FAILED
    )
    if not result.ok:
        return error_response(500, result.category, result.message)

    output = result.output
    response_body: dict[str, Any] = {"text": output.text}
    if output.candidates is not None:
        response_body["candidates"] = output.candidates
    if output.usage_metadata is not None:
        response_body["usageMetadata"] = output.usage_metadata
    return response_body


# --- App factory ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info(f"Ekrixi AI backend running on port {settings.port}")
    logger.info(f"Health check: http://localhost:{settings.port}{HEALTH_PATH}")
    logger.info(
        f"API key configured: {'yes' if settings.api_key else 'no'}"
    )
    yield


def create_app(
    settings: Settings, upstream: Optional[UpstreamClient] = None
) -> FastAPI:
    """Build the proxy application.

    Args:
        settings: Validated settings (see Settings.load)
        upstream: Client to forward generation calls to. Defaults to a
            GeminiClient built from settings; tests pass a stub.

    Returns:
        A FastAPI app with its own limiter, middleware chain and routes
    """
    app = FastAPI(title="Ekrixi Backend", version=__version__, lifespan=lifespan)

    limiter = build_limiter(settings)
    app.state.settings = settings
    app.state.limiter = limiter
    app.state.upstream = upstream or GeminiClient(
        api_key=settings.api_key,
        timeout_seconds=settings.upstream_timeout_seconds,
    )

    app.include_router(router)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Last added runs first: security headers -> CORS -> body size -> rate limit
    app.add_middleware(
        ApiRateLimitMiddleware,
        limiter=limiter,
        rate_limit=settings.rate_limit,
        key_func=make_key_func(settings.trust_proxy),
    )
    app.add_middleware(
        BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    return app


def app_from_environment() -> FastAPI:
    """Factory for `uvicorn --factory ekrixi_backend.app:app_from_environment`."""
    return create_app(Settings.load())
