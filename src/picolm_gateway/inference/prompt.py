"""Compile a chat conversation into PicoLM's flat special-token prompt."""

from __future__ import annotations

import json

from picolm_gateway.inference.engine import Message, ToolSpec

SYSTEM_TOKEN = "<|system|>"
USER_TOKEN = "<|user|>"
ASSISTANT_TOKEN = "<|assistant|>"
END_TOKEN = "</s>"

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

_TOOL_CALL_EXAMPLE = (
    '{"tool_calls":[{"id":"call_xxx","type":"function",'
    '"function":{"name":"tool_name","arguments":"{...}"}}]}'
)


def format_tools_for_prompt(tools: list[ToolSpec]) -> str:
    """Format tool schemas as plain text for the system block.

    The engine has no native tool support, so the model is told to answer
    with a bare JSON envelope when it wants to call one.
    """
    lines = [
        "## Available Tools",
        "",
        "When you need to use a tool, respond with ONLY a JSON object:",
        "",
        "```json",
        _TOOL_CALL_EXAMPLE,
        "```",
        "",
        "CRITICAL: The 'arguments' field MUST be a JSON-encoded STRING.",
        "",
        "### Tool Definitions:",
        "",
    ]

    for tool in tools:
        if tool.type != "function":
            continue
        lines.append(f"#### {tool.name}")
        if tool.description:
            lines.append(f"Description: {tool.description}")
        if tool.parameters:
            params = json.dumps(tool.parameters, separators=(",", ":"))
            lines.append("Parameters:")
            lines.append("```json")
            lines.append(params)
            lines.append("```")
        lines.append("")

    return "\n".join(lines) + "\n"


def build_system_block(messages: list[Message], tools: list[ToolSpec]) -> str:
    """Join system messages (and the tool preamble) into one block; never empty."""
    parts = [m.content for m in messages if m.role == "system" and m.content]
    if tools:
        parts.append(format_tools_for_prompt(tools))
    if not parts:
        parts.append(DEFAULT_SYSTEM_PROMPT)
    return "\n\n".join(parts)


def compile_prompt(messages: list[Message], tools: list[ToolSpec] | None = None) -> str:
    """Render the conversation in turn order, ending on an open assistant turn.

    The trailing ``<|assistant|>`` has no newline after it: the engine is
    sensitive to whitespace around the generation cue.
    """
    tools = tools or []
    out = [f"{SYSTEM_TOKEN}\n{build_system_block(messages, tools)}{END_TOKEN}\n"]

    for msg in messages:
        match msg.role:
            case "system":
                pass  # already in the system block
            case "user":
                out.append(f"{USER_TOKEN}\n{msg.content}{END_TOKEN}\n")
            case "assistant":
                out.append(f"{ASSISTANT_TOKEN}\n{msg.content}{END_TOKEN}\n")
            case "tool":
                # No tool-result role in the grammar; present it as user context
                out.append(
                    f"{USER_TOKEN}\n[Tool Result for {msg.tool_call_id or ''}]: "
                    f"{msg.content}{END_TOKEN}\n"
                )

    out.append(ASSISTANT_TOKEN)
    return "".join(out)
