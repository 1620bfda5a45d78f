"""PicoLM inference bridge — OpenAI-style chat on top of a command-line engine."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from picolm_gateway.config import PicoLMConfig
from picolm_gateway.inference.engine import (
    EngineInfo,
    InferenceRequest,
    InferenceResult,
    StreamSink,
)
from picolm_gateway.inference.errors import (
    ConfigurationError,
    InferenceCancelled,
    InferenceError,
)
from picolm_gateway.inference.output import interpret
from picolm_gateway.inference.process import (
    RunHandle,
    build_args,
    resolve_sampling,
    resolve_timeout,
    run,
)
from picolm_gateway.inference.prompt import compile_prompt
from picolm_gateway.inference.streaming import stream_output

logger = logging.getLogger(__name__)


class PicoLMBridge:
    """Stateless facade: every call compiles, runs, and interprets one request."""

    def __init__(self, config: PicoLMConfig) -> None:
        self.config = config

    def engine_info(self) -> EngineInfo:
        return EngineInfo(
            model_name=self.config.model_name,
            model_path=self.config.model_path,
            binary=self.config.binary,
            context_length=self.config.context_length,
        )

    def validate(self) -> None:
        """Check the engine binary and model file. Raises ConfigurationError."""
        binary = self.config.binary
        if not binary:
            raise ConfigurationError("binary path is required")
        path = Path(binary)
        if not path.exists():
            raise ConfigurationError(f"binary not found at {binary!r}")
        if path.is_dir():
            raise ConfigurationError(f"binary path {binary!r} is a directory")
        if not os.access(path, os.X_OK):
            raise ConfigurationError(f"binary {binary!r} is not executable")

        model = self.config.model_path
        if not model:
            raise ConfigurationError("model path is required")
        path = Path(model)
        if not path.exists():
            raise ConfigurationError(f"model not found at {model!r}")
        if path.is_dir():
            raise ConfigurationError(f"model path {model!r} is a directory")

    def _require_paths(self) -> None:
        if not self.config.binary:
            raise ConfigurationError("picolm binary not configured")
        if not self.config.model_path:
            raise ConfigurationError("picolm model path not configured")

    def _prepare(self, request: InferenceRequest) -> tuple[str, list[str], float, int]:
        self._require_paths()
        prompt = compile_prompt(request.messages, request.tools)
        params = resolve_sampling(request, self.config)
        args = build_args(self.config.model_path, params)
        timeout = resolve_timeout(params.max_tokens, self.config)
        return prompt, args, timeout, params.max_tokens

    async def chat(
        self,
        request: InferenceRequest,
        cancel: asyncio.Event | None = None,
    ) -> InferenceResult:
        """Run one completion and return the interpreted result.

        ``cancel`` is the caller's cancellation signal (e.g. client
        disconnect). Raises InferenceError subclasses.
        """
        prompt, args, timeout, max_tokens = self._prepare(request)
        try:
            output = await run(self.config.binary, args, prompt, timeout, max_tokens, cancel)
        except InferenceError as exc:
            _log_failure(exc)
            raise

        result = interpret(
            output.stdout, prompt, bool(request.tools), self.config.chars_per_token
        )
        logger.info(
            "Completion finished in %.2fs (finish_reason=%s, ~%d tokens)",
            output.elapsed, result.finish_reason, result.usage.completion_tokens,
        )
        return result

    async def stream_chat(
        self,
        request: InferenceRequest,
        sink: StreamSink,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Stream one completion into ``sink``. Raises InferenceError subclasses."""
        prompt, args, timeout, max_tokens = self._prepare(request)
        handle = RunHandle(self.config.binary, args, prompt, timeout, max_tokens, cancel)
        try:
            async with handle:
                output = await stream_output(handle, sink, bool(request.tools))
        except InferenceError as exc:
            _log_failure(exc)
            raise

        logger.info(
            "Stream finished in %.2fs (~%d tokens)",
            handle.elapsed, len(output) // self.config.chars_per_token,
        )


def _log_failure(exc: InferenceError) -> None:
    # A client going away is not a server fault
    if isinstance(exc, InferenceCancelled):
        logger.info("Inference cancelled: %s", exc)
    else:
        logger.warning("Inference failed (%s): %s", exc.kind.value, exc)
