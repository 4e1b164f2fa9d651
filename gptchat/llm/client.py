"""
Chat-completion client for gpt-chat.

This module provides an async client for the chat-completion endpoint,
supporting buffered and streamed responses. Streamed responses are decoded
from server-sent events and reassembled per choice while every fragment is
forwarded to a caller-supplied sink. Establishing a request is retried on
transient failures.
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping, Sequence

import httpx
import pydantic

from gptchat.constants import CHAT_COMPLETIONS_PATH, DEFAULT_BASE_URL
from gptchat.exceptions import (
    APIError,
    ConnectionError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)
from gptchat.llm.models import (
    ChatCompletionParams,
    Choice,
    CompletionChunk,
    CompletionResponse,
    Message,
    Role,
)
from gptchat.llm.retry import RetryStrategy
from gptchat.llm.sse import ServerSentEvent, SSEDecoder
from gptchat.types import DeltaCallback

if TYPE_CHECKING:
    from gptchat.config.schema import Configuration

logger = logging.getLogger(__name__)


@dataclass
class _ChoiceAccumulator:
    """Mutable state of one choice while its stream is being received."""

    index: int
    role: Role | None = None
    content_parts: list[str] = field(default_factory=list)
    finish_reason: str | None = None

    def to_choice(self) -> Choice:
        return Choice(
            index=self.index,
            message=Message(
                role=self.role or Role.ASSISTANT,
                content="".join(self.content_parts),
            ),
            finish_reason=self.finish_reason,
        )


class CompletionClient:
    """
    Client for the chat-completion endpoint.

    The client holds no conversational state: apart from its credential and
    retry configuration every call is independent, so one instance can be
    shared by concurrent conversations.

    Parameters
    ----------
    api_key : str
        Bearer credential sent with every request.
    base_url : str, default="https://api.openai.com"
        Root URL of the API.
    retry : RetryStrategy | None, optional
        Retry strategy; defaults to :class:`RetryStrategy` with its defaults.
    timeout : float | None, default=None
        Client-side timeout in seconds. ``None`` leaves requests unbounded.
    transport : httpx.AsyncBaseTransport | None, optional
        Custom transport for the underlying ``httpx.AsyncClient``.

    Examples
    --------
    >>> async with CompletionClient(api_key) as client:
    ...     response = await client.complete([Message(role=Role.USER, content="Hello")])
    ...     print(response.content)
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        retry: RetryStrategy | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key: str = api_key
        self.base_url: str = base_url.rstrip("/")
        self.timeout: float | None = timeout
        self._retry_strategy: RetryStrategy = retry or RetryStrategy()
        self._transport: httpx.AsyncBaseTransport | None = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: Configuration,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> CompletionClient:
        """
        Create a client from the application configuration.

        Parameters
        ----------
        config : Configuration
            Configuration supplying base URL, timeout and retry policy.
        api_key : str | None, optional
            Credential; defaults to the key found in the environment.
        transport : httpx.AsyncBaseTransport | None, optional
            Custom transport, mainly for tests.

        Returns
        -------
        CompletionClient
            Configured client.
        """
        return cls(
            api_key or config.api_key or "",
            base_url=config.base_url,
            retry=RetryStrategy.from_config(config.retry),
            timeout=config.timeout,
            transport=transport,
        )

    @property
    def retry_strategy(self) -> RetryStrategy:
        return self._retry_strategy

    def _get_client(self) -> httpx.AsyncClient:
        """
        Get or create the HTTP client instance.

        Returns
        -------
        httpx.AsyncClient
            The pooled HTTP client.

        Raises
        ------
        ConnectionError
            If no API key is configured.
        """
        if self._client is None:
            if not self.api_key:
                raise ConnectionError(
                    "API key not configured. Set the OPENAI_API_KEY environment variable.",
                    endpoint=self.base_url,
                )

            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
            logger.debug("Completion client initialized")

        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release pooled connections."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("Completion client closed")

    async def __aenter__(self) -> CompletionClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _headers(self, stream: bool) -> dict[str, str]:
        headers: dict[str, str] = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    async def fetch(self, path: str, body: Mapping[str, Any]) -> dict[str, Any]:
        """
        Perform a buffered request and return the decoded JSON response.

        Parameters
        ----------
        path : str
            Resource path relative to the base URL.
        body : Mapping[str, Any]
            JSON request body; ``stream`` is forced to ``False``.

        Returns
        -------
        dict[str, Any]
            Decoded response body.

        Raises
        ------
        APIError
            If the final response has a non-success status or invalid JSON.
        ConnectionError
            If no response could be obtained.
        RequestTimeoutError
            If the request timed out.
        """
        client: httpx.AsyncClient = self._get_client()
        payload: dict[str, Any] = {**body, "stream": False}

        async def send() -> httpx.Response:
            response = await client.post(path, json=payload, headers=self._headers(False))
            if not response.is_success:
                raise _error_from_response(response)
            return response

        response: httpx.Response = await self._retry_strategy.execute(send)
        try:
            return response.json()
        except ValueError as e:
            raise APIError(
                "Response body is not valid JSON",
                status_code=response.status_code,
                body=response.text,
                cause=e,
            ) from e

    async def stream(
        self,
        path: str,
        body: Mapping[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Perform a streamed request and yield each decoded event payload.

        Only establishing the stream is retried. Events whose data is not
        valid JSON (such as the ``[DONE]`` sentinel) are skipped. The response
        is closed when the stream ends, fails or is abandoned.

        Parameters
        ----------
        path : str
            Resource path relative to the base URL.
        body : Mapping[str, Any]
            JSON request body; ``stream`` is forced to ``True``.

        Yields
        ------
        dict[str, Any]
            Parsed JSON payload of each event, in arrival order.
        """
        client: httpx.AsyncClient = self._get_client()
        payload: dict[str, Any] = {**body, "stream": True}

        async def open_stream() -> httpx.Response:
            request = client.build_request(
                "POST",
                path,
                json=payload,
                headers=self._headers(True),
            )
            response = await client.send(request, stream=True)
            if not response.is_success:
                try:
                    await response.aread()
                finally:
                    await response.aclose()
                raise _error_from_response(response)
            return response

        response: httpx.Response = await self._retry_strategy.execute(open_stream)
        decoder = SSEDecoder()
        try:
            async for text in response.aiter_text():
                for event in decoder.feed(text):
                    data = _parse_event(event)
                    if data is not None:
                        yield data
            decoder.flush()
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Stream timed out: {e}", cause=e) from e
        except httpx.TransportError as e:
            raise ConnectionError(
                f"Stream interrupted: {e}",
                endpoint=self.base_url,
                cause=e,
            ) from e
        finally:
            await response.aclose()

    def _build_body(
        self,
        messages: Sequence[Message],
        params: ChatCompletionParams | Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        if not messages:
            raise ValidationError("At least one message is required", field="messages")

        if params is None:
            params = ChatCompletionParams()
        elif not isinstance(params, ChatCompletionParams):
            try:
                params = ChatCompletionParams.model_validate(dict(params))
            except pydantic.ValidationError as e:
                raise ValidationError(
                    f"Invalid request parameters: {e}",
                    field="params",
                    cause=e,
                ) from e

        body: dict[str, Any] = params.to_request_body()
        body["messages"] = [message.to_dict() for message in messages]
        return body

    async def complete(
        self,
        messages: Sequence[Message],
        params: ChatCompletionParams | Mapping[str, Any] | None = None,
        delta_sink: DeltaCallback | None = None,
    ) -> CompletionResponse:
        """
        Generate a chat completion.

        Parameters
        ----------
        messages : Sequence[Message]
            Non-empty ordered list of messages to send.
        params : ChatCompletionParams | Mapping[str, Any] | None, optional
            Request options; unset options are not sent and ``model`` falls
            back to the default model.
        delta_sink : DeltaCallback | None, optional
            If given, the response is streamed and ``delta_sink(delta, index)``
            is called for every received choice fragment, in arrival order.

        Returns
        -------
        CompletionResponse
            The buffered response as received, or the choices reassembled
            from the stream ordered by index.

        Raises
        ------
        ValidationError
            If ``messages`` is empty or ``params`` holds unknown options.
        APIError
            If the API answered with a non-success status.
        ConnectionError
            If no response could be obtained.
        RequestTimeoutError
            If the request timed out.

        Examples
        --------
        >>> def on_delta(delta, index):
        ...     if index == 0 and delta.content:
        ...         print(delta.content, end="")
        >>> response = await client.complete(messages, {"temperature": 0.5}, on_delta)
        """
        body: dict[str, Any] = self._build_body(messages, params)

        if delta_sink is None:
            data: dict[str, Any] = await self.fetch(CHAT_COMPLETIONS_PATH, body)
            try:
                return CompletionResponse.model_validate(data)
            except pydantic.ValidationError as e:
                raise APIError(
                    f"Unexpected response shape: {e}",
                    body=json.dumps(data),
                    cause=e,
                ) from e

        accumulators: dict[int, _ChoiceAccumulator] = {}
        async with aclosing(self.stream(CHAT_COMPLETIONS_PATH, body)) as payloads:
            async for payload in payloads:
                try:
                    chunk = CompletionChunk.model_validate(payload)
                except pydantic.ValidationError as e:
                    logger.debug(f"Skipping malformed stream payload: {e}")
                    continue

                for choice in chunk.choices:
                    accumulator = accumulators.get(choice.index)
                    if accumulator is None:
                        accumulator = accumulators[choice.index] = _ChoiceAccumulator(
                            index=choice.index,
                        )

                    delta = choice.delta
                    if delta.role is not None and accumulator.role is None:
                        accumulator.role = delta.role
                    if delta.content:
                        accumulator.content_parts.append(delta.content)
                    if choice.finish_reason:
                        accumulator.finish_reason = choice.finish_reason

                    delta_sink(delta, choice.index)

        return CompletionResponse(
            choices=[accumulators[index].to_choice() for index in sorted(accumulators)],
        )


def _parse_event(event: ServerSentEvent) -> dict[str, Any] | None:
    try:
        data = json.loads(event.data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping non-JSON stream event: {event.data[:80]!r}")
        return None
    if not isinstance(data, dict):
        logger.debug(f"Skipping non-object stream event: {event.data[:80]!r}")
        return None
    return data


def _error_from_response(response: httpx.Response) -> APIError:
    """Build the exception for a non-success response."""
    body: str = response.text
    message: str = f"HTTP {response.status_code}"
    try:
        error = response.json().get("error")
        if isinstance(error, dict) and error.get("message"):
            message = f"{message}: {error['message']}"
    except (ValueError, AttributeError):
        if body:
            message = f"{message}: {body[:200]}"

    if response.status_code == 429:
        retry_after: float | None = None
        header: str | None = response.headers.get("retry-after")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        return RateLimitError(message, body=body, retry_after=retry_after)

    return APIError(message, status_code=response.status_code, body=body)
