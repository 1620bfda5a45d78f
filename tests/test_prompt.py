"""Tests for prompt compilation."""

from __future__ import annotations

import json

from picolm_gateway.inference.engine import Message, ToolSpec
from picolm_gateway.inference.prompt import (
    DEFAULT_SYSTEM_PROMPT,
    build_system_block,
    compile_prompt,
    format_tools_for_prompt,
)

WEATHER = ToolSpec(
    name="get_weather",
    description="Current weather for a city",
    parameters={
        "type": "object",
        "properties": {"location": {"type": "string"}},
        "required": ["location"],
    },
)


def _conversation() -> list[Message]:
    return [
        Message(role="system", content="Be brief."),
        Message(role="user", content="What's the weather in NYC?"),
        Message(role="assistant", content="Let me check."),
        Message(role="tool", content='{"temp": 21}', tool_call_id="call_1"),
        Message(role="user", content="Thanks!"),
    ]


# ─── System block ────────────────────────────────────────────────────────────


class TestSystemBlock:
    def test_default_when_empty(self):
        prompt = compile_prompt([Message(role="user", content="hi")])
        assert prompt.startswith(f"<|system|>\n{DEFAULT_SYSTEM_PROMPT}</s>\n")

    def test_default_when_system_content_empty(self):
        messages = [Message(role="system", content=""), Message(role="user", content="hi")]
        assert build_system_block(messages, []) == DEFAULT_SYSTEM_PROMPT
        assert compile_prompt(messages).startswith(f"<|system|>\n{DEFAULT_SYSTEM_PROMPT}</s>\n")

    def test_empty_system_messages_skipped_when_joining(self):
        messages = [
            Message(role="system", content=""),
            Message(role="system", content="Be brief."),
            Message(role="user", content="hi"),
        ]
        assert build_system_block(messages, []) == "Be brief."

    def test_system_messages_joined_in_order(self):
        messages = [
            Message(role="system", content="First."),
            Message(role="user", content="hi"),
            Message(role="system", content="Second."),
        ]
        assert build_system_block(messages, []) == "First.\n\nSecond."

    def test_tools_replace_default(self):
        block = build_system_block([Message(role="user", content="hi")], [WEATHER])
        assert DEFAULT_SYSTEM_PROMPT not in block
        assert "## Available Tools" in block

    def test_tools_appended_after_system(self):
        block = build_system_block([Message(role="system", content="Be brief.")], [WEATHER])
        assert block.startswith("Be brief.\n\n## Available Tools")


# ─── Tool preamble ──────────────────────────────────────────────────────────


class TestToolPreamble:
    def test_contains_name_description_and_schema(self):
        text = format_tools_for_prompt([WEATHER])
        assert "#### get_weather" in text
        assert "Description: Current weather for a city" in text
        assert json.dumps(WEATHER.parameters, separators=(",", ":")) in text

    def test_envelope_instructions(self):
        text = format_tools_for_prompt([WEATHER])
        assert '{"tool_calls":[' in text
        assert "JSON-encoded STRING" in text

    def test_no_parameters_section_when_empty(self):
        text = format_tools_for_prompt([ToolSpec(name="ping")])
        assert "#### ping" in text
        assert "Parameters:" not in text
        assert "Description:" not in text

    def test_non_function_tools_skipped(self):
        text = format_tools_for_prompt([ToolSpec(name="retrieval", type="retrieval")])
        assert "retrieval" not in text


# ─── Turn framing ───────────────────────────────────────────────────────────


class TestCompilePrompt:
    def test_exact_layout(self):
        prompt = compile_prompt(
            [
                Message(role="system", content="Be brief."),
                Message(role="user", content="Hi"),
                Message(role="assistant", content="Hello"),
                Message(role="tool", content="42", tool_call_id="call_9"),
            ]
        )
        assert prompt == (
            "<|system|>\nBe brief.</s>\n"
            "<|user|>\nHi</s>\n"
            "<|assistant|>\nHello</s>\n"
            "<|user|>\n[Tool Result for call_9]: 42</s>\n"
            "<|assistant|>"
        )

    def test_ends_with_open_assistant_turn(self):
        prompt = compile_prompt([Message(role="user", content="hi")])
        assert prompt.endswith("</s>\n<|assistant|>")
        assert not prompt.endswith("\n<|assistant|>\n")

    def test_deterministic(self):
        assert compile_prompt(_conversation(), [WEATHER]) == compile_prompt(
            _conversation(), [WEATHER]
        )

    def test_messages_kept_in_order(self):
        messages = _conversation()
        prompt = compile_prompt(messages, [WEATHER])
        pos = 0
        for msg in messages:
            if msg.role == "system":
                continue
            idx = prompt.find(msg.content, pos)
            assert idx >= pos, f"{msg.content!r} missing or out of order"
            pos = idx + len(msg.content)

    def test_system_messages_not_repeated_as_turns(self):
        prompt = compile_prompt(_conversation())
        assert prompt.count("Be brief.") == 1

    def test_inputs_not_mutated(self):
        messages = _conversation()
        before = [(m.role, m.content) for m in messages]
        compile_prompt(messages, [WEATHER])
        assert [(m.role, m.content) for m in messages] == before
