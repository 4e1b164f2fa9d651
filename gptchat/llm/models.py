"""
Data models for chat-completion requests and responses.

This module defines the Pydantic models exchanged with the chat-completion
endpoint: role-tagged messages, request parameters, buffered responses and
the delta payloads carried by a streamed response.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gptchat.constants import DEFAULT_MODEL


class Role(str, Enum):
    """Author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """
    A single role-tagged chat message.

    Messages are immutable: once appended to a conversation they can only be
    removed or replaced as a whole.

    Parameters
    ----------
    role : Role
        Author of the message.
    content : str, default=""
        Message text.
    name : str | None, optional
        Optional participant name.

    Examples
    --------
    >>> message = Message(role=Role.USER, content="Hello")
    >>> message.to_dict()
    {'role': 'user', 'content': 'Hello'}
    """

    model_config = ConfigDict(frozen=True)

    role: Role = Field(description="Message role")
    content: str = Field(default="", description="Message content")
    name: str | None = Field(default=None, description="Participant name")

    def to_dict(self) -> dict[str, Any]:
        """
        Convert message to the dictionary format expected by the API.

        Returns
        -------
        dict[str, Any]
            ``{"role", "content"}`` plus ``"name"`` when set.
        """
        return self.model_dump(mode="json", exclude_none=True)


class MessageDelta(BaseModel):
    """
    Incremental fragment of a streamed message.

    Parameters
    ----------
    role : Role | None, optional
        Role, present only on the first fragment of a choice.
    content : str | None, optional
        Text fragment to append.
    """

    model_config = ConfigDict(extra="allow")

    role: Role | None = Field(default=None, description="Message role")
    content: str | None = Field(default=None, description="Content fragment")


class TokenUsage(BaseModel):
    """
    Token usage statistics reported with a buffered response.

    Examples
    --------
    >>> usage = TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150)
    >>> usage.total_tokens
    150
    """

    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = Field(default=0, ge=0, description="Prompt tokens")
    completion_tokens: int = Field(default=0, ge=0, description="Completion tokens")
    total_tokens: int = Field(default=0, ge=0, description="Total tokens")


class Choice(BaseModel):
    """One completed choice of a response."""

    model_config = ConfigDict(extra="allow")

    index: int = Field(default=0, ge=0, description="Choice index")
    message: Message = Field(description="Assembled message")
    finish_reason: str | None = Field(default=None, description="Finish reason")


class CompletionResponse(BaseModel):
    """
    A complete chat-completion response.

    Unknown keys sent by the server (``id``, ``model``, ``created`` and the
    like) are kept so that a buffered response round-trips unmodified.

    Parameters
    ----------
    choices : list[Choice]
        Independently indexed choices.
    usage : TokenUsage | None, optional
        Token usage, when reported.

    Examples
    --------
    >>> response = CompletionResponse.model_validate(
    ...     {"choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi"},
    ...                   "finish_reason": "stop"}]}
    ... )
    >>> response.content
    'Hi'
    """

    model_config = ConfigDict(extra="allow")

    choices: list[Choice] = Field(default_factory=list, description="Choices")
    usage: TokenUsage | None = Field(default=None, description="Token usage")

    @property
    def content(self) -> str:
        """Content of the first choice, or an empty string."""
        if self.choices:
            return self.choices[0].message.content
        return ""


class ChoiceDelta(BaseModel):
    """One choice fragment of a streamed payload."""

    model_config = ConfigDict(extra="allow")

    index: int = Field(default=0, ge=0, description="Choice index")
    delta: MessageDelta = Field(default_factory=MessageDelta, description="Fragment")
    finish_reason: str | None = Field(default=None, description="Finish reason")


class CompletionChunk(BaseModel):
    """A single JSON payload of a streamed response."""

    model_config = ConfigDict(extra="allow")

    choices: list[ChoiceDelta] = Field(description="Choice fragments")


class ChatCompletionParams(BaseModel):
    """
    Recognized chat-completion request options.

    Options left unset are not sent; everything else is forwarded verbatim.
    ``messages`` and ``stream`` are supplied by the client itself.

    Examples
    --------
    >>> params = ChatCompletionParams(temperature=0.2, max_tokens=256)
    >>> params.to_request_body()
    {'model': 'gpt-3.5-turbo', 'temperature': 0.2, 'max_tokens': 256}
    """

    model_config = ConfigDict(extra="forbid")

    model: str = Field(default=DEFAULT_MODEL, description="Model identifier")
    temperature: float | None = Field(default=None, description="Sampling temperature")
    top_p: float | None = Field(default=None, description="Nucleus sampling mass")
    n: int | None = Field(default=None, ge=1, description="Number of choices")
    stop: Union[str, list[str], None] = Field(default=None, description="Stop sequences")
    max_tokens: int | None = Field(default=None, ge=1, description="Completion limit")
    presence_penalty: float | None = Field(default=None, description="Presence penalty")
    frequency_penalty: float | None = Field(default=None, description="Frequency penalty")
    logit_bias: dict[str, float] | None = Field(default=None, description="Logit bias")
    user: str | None = Field(default=None, description="End-user identifier")

    @field_validator("logit_bias", mode="before")
    @classmethod
    def stringify_token_ids(cls, v: Any) -> Any:
        """Accept integer token IDs; JSON object keys are strings."""
        if isinstance(v, dict):
            return {str(token_id): bias for token_id, bias in v.items()}
        return v

    def to_request_body(self) -> dict[str, Any]:
        """
        Build the option part of the request body.

        Returns
        -------
        dict[str, Any]
            Options that are set, with ``model`` always present.
        """
        body: dict[str, Any] = self.model_dump(exclude_none=True)
        if not body.get("model"):
            body["model"] = DEFAULT_MODEL
        return body
