"""OpenAI-compatible HTTP API in front of the inference bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from picolm_gateway import __version__
from picolm_gateway.config import GatewayConfig
from picolm_gateway.inference.engine import InferenceEngine, InferenceRequest
from picolm_gateway.inference.errors import ErrorKind, InferenceError
from picolm_gateway.server.middleware import install_request_logging
from picolm_gateway.server.schemas import (
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChunkChoice,
    ErrorDetail,
    ErrorResponse,
    ModelInfo,
    ModelList,
)

logger = logging.getLogger(__name__)

MODEL_CREATED = 1704067200
MODEL_OWNER = "picolm"

# How often a non-streaming request checks whether its client is still there
_DISCONNECT_POLL_SECONDS = 0.5

_GATEWAY_TIMEOUT_KINDS = (ErrorKind.TIMEOUT, ErrorKind.CANCELLED)


def status_for(exc: InferenceError) -> int:
    """HTTP status for a bridge failure, decided by its kind alone."""
    return 504 if exc.kind in _GATEWAY_TIMEOUT_KINDS else 500


def error_body(message: str, error_type: str, code: str | None = None) -> dict:
    return ErrorResponse(error=ErrorDetail(message=message, type=error_type, code=code)).model_dump(
        exclude_none=True
    )


def _completion_id() -> str:
    return "chatcmpl-" + uuid.uuid4().hex[:24]


def create_app(config: GatewayConfig, engine: InferenceEngine) -> FastAPI:
    """Build the FastAPI application around an inference engine."""
    app = FastAPI(
        title="PicoLM Gateway",
        version=__version__,
        description="OpenAI-compatible chat completions backed by a PicoLM subprocess.",
    )
    app.state.config = config
    app.state.engine = engine

    if config.logging.log_requests:
        install_request_logging(app, config.logging)

    # ── Errors ──────────────────────────────────────────────────────────────

    @app.exception_handler(InferenceError)
    async def handle_inference_error(request: Request, exc: InferenceError) -> JSONResponse:
        return JSONResponse(
            status_code=status_for(exc),
            content=error_body(str(exc), "internal_error", exc.kind.value),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=error_body(f"invalid request body: {exc.errors()}", "invalid_request_error"),
        )

    @app.exception_handler(HTTPException)
    async def handle_http_error(request: Request, exc: HTTPException) -> JSONResponse:
        error_type = "authentication_error" if exc.status_code == 401 else "invalid_request_error"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), error_type),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500, content=error_body("internal server error", "internal_error")
        )

    # ── Auth ────────────────────────────────────────────────────────────────

    async def require_auth(authorization: str | None = Header(default=None)) -> None:
        api_key = config.server.api_key
        if not api_key:
            return
        if not authorization:
            raise HTTPException(status_code=401, detail="missing authorization header")
        if not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="invalid authorization header")
        if authorization.removeprefix("Bearer ") != api_key:
            raise HTTPException(status_code=401, detail="invalid api key")

    # ── Routes ──────────────────────────────────────────────────────────────

    model_name = engine.engine_info().model_name

    def model_info() -> ModelInfo:
        return ModelInfo(id=model_name, created=MODEL_CREATED, owned_by=MODEL_OWNER, root=model_name)

    @app.get("/health", tags=["Status"])
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/v1/models", dependencies=[Depends(require_auth)], tags=["Models"])
    async def list_models() -> ModelList:
        return ModelList(data=[model_info()])

    @app.get("/v1/models/{model_id}", dependencies=[Depends(require_auth)], tags=["Models"])
    async def get_model(model_id: str) -> ModelInfo:
        if model_id != model_name:
            raise HTTPException(status_code=404, detail="model not found")
        return model_info()

    @app.post("/v1/chat/completions", dependencies=[Depends(require_auth)], tags=["Chat"])
    async def chat_completions(body: ChatCompletionRequest, request: Request):
        model = body.model or model_name
        inference_request = body.to_inference_request()

        if body.stream:
            return StreamingResponse(
                _stream_events(engine, inference_request, model),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        cancel = asyncio.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel))
        try:
            result = await engine.chat(inference_request, cancel)
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        response = ChatCompletionResponse.from_result(
            result, _completion_id(), int(time.time()), model
        )
        return response.model_dump(exclude_none=True)

    return app


async def _watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    """Set ``cancel`` once the client has gone away."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling inference")
            cancel.set()
            return
        await asyncio.sleep(_DISCONNECT_POLL_SECONDS)


def _sse(payload: str) -> str:
    return f"data: {payload}\n\n"


async def _stream_events(
    engine: InferenceEngine,
    inference_request: InferenceRequest,
    model: str,
) -> AsyncIterator[str]:
    """Run the engine in a task and relay its increments as SSE events.

    Closing the generator (client disconnect) sets the cancellation event,
    which stops the engine; the task is always awaited before returning.
    """
    completion_id = _completion_id()
    created = int(time.time())
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    cancel = asyncio.Event()

    async def sink(content: str, finish_reason: str) -> None:
        if finish_reason:
            choice = ChunkChoice(delta={}, finish_reason=finish_reason)
        else:
            choice = ChunkChoice(delta={"content": content})
        chunk = ChatCompletionChunk(id=completion_id, created=created, model=model, choices=[choice])
        await queue.put(_sse(chunk.model_dump_json()))

    async def produce() -> None:
        try:
            await engine.stream_chat(inference_request, sink, cancel)
        except InferenceError as exc:
            # Headers are already sent; report the failure in-band
            body = ErrorResponse(
                error=ErrorDetail(message=str(exc), type="internal_error", code=exc.kind.value)
            )
            await queue.put(_sse(body.model_dump_json(exclude_none=True)))
        finally:
            await queue.put(None)

    task = asyncio.create_task(produce())
    try:
        while (event := await queue.get()) is not None:
            yield event
        yield _sse("[DONE]")
    finally:
        cancel.set()
        await task
