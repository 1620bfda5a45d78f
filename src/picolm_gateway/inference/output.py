"""Interpret raw engine output: framing cleanup, tool-call extraction, usage."""

from __future__ import annotations

import json
import logging
from typing import Any

from picolm_gateway.inference.engine import (
    FINISH_STOP,
    FINISH_TOOL_CALLS,
    InferenceResult,
    ToolCall,
    Usage,
)
from picolm_gateway.inference.errors import MalformedOutput
from picolm_gateway.inference.prompt import (
    ASSISTANT_TOKEN,
    END_TOKEN,
    SYSTEM_TOKEN,
    USER_TOKEN,
)

logger = logging.getLogger(__name__)

# The engine may run past its turn and echo the next turn's framing
TRUNCATE_TOKENS = (USER_TOKEN, ASSISTANT_TOKEN, END_TOKEN)
FRAMING_TOKENS = (USER_TOKEN, ASSISTANT_TOKEN, END_TOKEN, SYSTEM_TOKEN, "<|end|>")


def contains_framing_token(text: str) -> bool:
    return any(token in text for token in FRAMING_TOKENS)


def clean_response(output: str) -> str:
    """Cut at the first turn marker, drop leftover framing tokens, trim."""
    cut = len(output)
    for token in TRUNCATE_TOKENS:
        idx = output.find(token)
        if idx != -1 and idx < cut:
            cut = idx
    output = output[:cut]

    for token in FRAMING_TOKENS:
        output = output.replace(token, "")
    return output.strip()


def parse_tool_document(text: str) -> dict[str, Any]:
    """Parse ``text`` as a JSON object with a non-empty ``tool_calls`` array.

    Raises MalformedOutput when it is anything else.
    """
    try:
        doc = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MalformedOutput(f"output is not JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise MalformedOutput("output is not a JSON object")
    calls = doc.get("tool_calls")
    if not isinstance(calls, list) or not calls:
        raise MalformedOutput("no tool_calls array")
    return doc


def _tool_call_from_dict(data: Any) -> ToolCall:
    if not isinstance(data, dict):
        raise MalformedOutput(f"tool call is not an object: {data!r}")
    func = data.get("function") or {}
    if not isinstance(func, dict):
        raise MalformedOutput(f"tool call function is not an object: {func!r}")
    arguments = func.get("arguments", "")
    if not isinstance(arguments, str):
        raise MalformedOutput("tool call arguments must be a JSON-encoded string")
    return ToolCall(
        id=str(data.get("id", "")),
        type=str(data.get("type", "function")),
        name=str(func.get("name", "")),
        arguments=arguments,
    )


def extract_tool_calls(text: str) -> list[ToolCall]:
    """Return the tool calls embedded in ``text``; [] if there are none or they are malformed."""
    try:
        doc = parse_tool_document(text)
        return [_tool_call_from_dict(tc) for tc in doc["tool_calls"]]
    except MalformedOutput as exc:
        if text.lstrip().startswith("{"):
            logger.debug("Treating output as plain text: %s", exc)
        return []


def strip_tool_calls(text: str) -> str:
    """Content to return alongside tool calls: the sibling ``content`` field, else the raw text."""
    try:
        doc = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text
    if isinstance(doc, dict):
        content = doc.get("content")
        if isinstance(content, str) and content:
            return content
    return text


def estimate_usage(prompt: str, output: str, chars_per_token: int = 4) -> Usage:
    """Approximate token usage from character counts. No tokenizer is involved."""
    return Usage(
        prompt_tokens=len(prompt) // chars_per_token,
        completion_tokens=len(output) // chars_per_token,
        total_tokens=(len(prompt) + len(output)) // chars_per_token,
    )


def interpret(
    raw_output: str,
    prompt: str = "",
    tool_aware: bool = False,
    chars_per_token: int = 4,
) -> InferenceResult:
    """Turn raw engine stdout into an InferenceResult.

    Tool-call extraction only runs in tool-aware mode (the request carried
    tools); otherwise a JSON document is returned as plain text.

    Pure function: the same input always yields an equal result.
    """
    output = raw_output.strip()
    if not output:
        return InferenceResult(content="", finish_reason=FINISH_STOP)

    tool_calls = extract_tool_calls(output) if tool_aware else []
    if tool_calls:
        finish_reason = FINISH_TOOL_CALLS
        content = strip_tool_calls(output).strip()
    else:
        finish_reason = FINISH_STOP
        content = clean_response(output)

    return InferenceResult(
        content=content,
        tool_calls=tool_calls,
        finish_reason=finish_reason,
        usage=estimate_usage(prompt, output, chars_per_token),
    )
