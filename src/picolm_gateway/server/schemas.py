"""OpenAI-compatible wire models for the chat completion API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from picolm_gateway.inference.engine import (
    InferenceRequest,
    InferenceResult,
    Message,
    ToolCall,
    ToolSpec,
)

Role = Literal["system", "user", "assistant", "tool"]


class CallFunction(BaseModel):
    name: str
    arguments: str = ""


class ToolCallModel(BaseModel):
    id: str
    type: str = "function"
    function: CallFunction

    @classmethod
    def from_tool_call(cls, tc: ToolCall) -> ToolCallModel:
        return cls(id=tc.id, type=tc.type, function=CallFunction(name=tc.name, arguments=tc.arguments))


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Role
    content: str | list[dict[str, Any]] | None = None
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCallModel] | None = None

    def text(self) -> str:
        """Content as plain text; text parts of multi-part content are joined."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.get("text", "") for part in self.content if part.get("type") == "text"
        )


class FunctionDef(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class ToolDefinition(BaseModel):
    type: str = "function"
    function: FunctionDef


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str = ""
    messages: list[ChatMessage] = Field(..., min_length=1)
    temperature: float | None = Field(default=None, ge=0, le=1)
    top_p: float | None = Field(default=None, ge=0, le=1)
    max_tokens: int | None = Field(default=None, ge=0)
    n: int | None = None
    stream: bool = False
    stop: str | list[str] | None = None
    tools: list[ToolDefinition] | None = None
    tool_choice: Any = None
    user: str | None = None

    def to_inference_request(self) -> InferenceRequest:
        messages = [
            Message(
                role=m.role,
                content=m.text(),
                tool_call_id=m.tool_call_id,
                tool_calls=[
                    ToolCall(
                        id=tc.id,
                        type=tc.type,
                        name=tc.function.name,
                        arguments=tc.function.arguments,
                    )
                    for tc in m.tool_calls or []
                ],
            )
            for m in self.messages
        ]
        tools = [
            ToolSpec(
                name=t.function.name,
                description=t.function.description,
                parameters=t.function.parameters,
                type=t.type,
            )
            for t in self.tools or []
        ]
        return InferenceRequest(
            messages=messages,
            tools=tools,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
        )


class UsageModel(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ResponseMessage(BaseModel):
    role: Role = "assistant"
    content: str
    tool_calls: list[ToolCallModel] | None = None


class Choice(BaseModel):
    index: int = 0
    message: ResponseMessage
    finish_reason: str


class ChatCompletionResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: list[Choice]
    usage: UsageModel

    @classmethod
    def from_result(
        cls, result: InferenceResult, completion_id: str, created: int, model: str
    ) -> ChatCompletionResponse:
        message = ResponseMessage(
            content=result.content,
            tool_calls=[ToolCallModel.from_tool_call(tc) for tc in result.tool_calls] or None,
        )
        return cls(
            id=completion_id,
            created=created,
            model=model,
            choices=[Choice(message=message, finish_reason=result.finish_reason)],
            usage=UsageModel(
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            ),
        )


class ChunkChoice(BaseModel):
    index: int = 0
    delta: dict[str, Any]
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChunkChoice]


class ModelInfo(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str
    permission: list[Any] = Field(default_factory=list)
    root: str = ""


class ModelList(BaseModel):
    object: str = "list"
    data: list[ModelInfo]


class ErrorDetail(BaseModel):
    message: str
    type: str
    code: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
