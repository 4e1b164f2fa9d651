"""Shared fixtures for the gpt-chat test suite."""

import json
from typing import Any, Callable

import httpx
import pytest

from gptchat.llm.client import CompletionClient
from gptchat.llm.models import (
    Choice,
    CompletionResponse,
    Message,
    MessageDelta,
    Role,
)
from gptchat.llm.retry import RetryStrategy


class WordTokenizer:
    """Counts whitespace-separated words, so budgets are easy to reason about."""

    def count_tokens(self, text: str) -> int:
        return len(text.split())


def sse_body(*payloads: Any, done: bool = True) -> str:
    """Render payloads as a ``text/event-stream`` body."""
    frames: list[str] = [
        f"data: {payload if isinstance(payload, str) else json.dumps(payload)}\n\n"
        for payload in payloads
    ]
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames)


def completion_body(content: str, role: str = "assistant") -> dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {"role": role, "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
    }


@pytest.fixture
def tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Replace the backoff sleep and record the requested delays."""
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("gptchat.llm.retry.asyncio.sleep", fake_sleep)
    return delays


@pytest.fixture
def make_client() -> Callable[..., CompletionClient]:
    """Build a client whose HTTP traffic is served by ``handler``."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        max_retries: int | None = 0,
    ) -> CompletionClient:
        return CompletionClient(
            "sk-test",
            base_url="https://api.test",
            retry=RetryStrategy(max_retries=max_retries),
            transport=httpx.MockTransport(handler),
        )

    return factory


def reply(content: str) -> CompletionResponse:
    return CompletionResponse(
        choices=[Choice(index=0, message=Message(role=Role.ASSISTANT, content=content))],
    )


class FakeClient:
    """Completion client answering with canned replies and recording requests."""

    def __init__(self, *replies: str, error: BaseException | None = None) -> None:
        self.replies: list[str] = list(replies)
        self.error: BaseException | None = error
        self.requests: list[list[Message]] = []
        self.params: list[Any] = []

    async def complete(self, messages, params=None, delta_sink=None):
        self.requests.append(list(messages))
        self.params.append(params)
        if self.error is not None:
            raise self.error

        content = self.replies.pop(0)
        if delta_sink is not None:
            delta_sink(MessageDelta(role=Role.ASSISTANT), 0)
            for word in content.split(" "):
                delta_sink(MessageDelta(content=word), 0)
            delta_sink(MessageDelta(content="other choice"), 1)
        return reply(content)


