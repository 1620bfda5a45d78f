"""Headless (non-interactive) mode — single-shot completion from the CLI.

Usage: picolm-gateway --prompt "summarize this" | less

Streamed content goes to stdout (pipeable), everything else to stderr.
"""

from __future__ import annotations

import sys

from picolm_gateway.inference.engine import InferenceEngine, InferenceRequest, Message
from picolm_gateway.inference.errors import InferenceError


async def run_headless(engine: InferenceEngine, prompt: str, system: str | None = None) -> int:
    """Stream one completion for ``prompt`` to stdout.

    Returns:
        Exit code (0 = success, 1 = error).
    """
    messages = [Message(role="system", content=system)] if system else []
    messages.append(Message(role="user", content=prompt))

    async def _sink(content: str, finish_reason: str) -> None:
        if finish_reason:
            print(flush=True)
            _err(f"[finish_reason] {finish_reason}")
        else:
            print(content, end="", flush=True)

    try:
        await engine.stream_chat(InferenceRequest(messages=messages), _sink)
    except InferenceError as exc:
        _err(f"[error] {exc}")
        return 1
    return 0


def _err(msg: str) -> None:
    """Print a message to stderr."""
    print(msg, file=sys.stderr, flush=True)
