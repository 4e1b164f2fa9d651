"""
Protocol definitions for the seams of gpt-chat.

The conversation state talks to the completion client and the tokenizer only
through these protocols, so either can be replaced, for example by test
doubles.
"""

from typing import Any, Mapping, Protocol, Sequence

from gptchat.llm.models import ChatCompletionParams, CompletionResponse, Message
from gptchat.types import DeltaCallback


class CompletionClientProtocol(Protocol):
    """
    Protocol for chat-completion clients.

    Implementations must stream when ``delta_sink`` is given, calling it once
    per received choice fragment, and otherwise return the buffered response.
    """

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
            Ordered messages to send.
        params : ChatCompletionParams | Mapping[str, Any] | None, optional
            Request options.
        delta_sink : DeltaCallback | None, optional
            Receives ``(delta, index)`` for every streamed fragment.

        Returns
        -------
        CompletionResponse
            The completed response.
        """
        ...


class TokenizerProtocol(Protocol):
    """Protocol for tokenizers used to budget the conversation."""

    def count_tokens(self, text: str) -> int:
        """
        Count the number of tokens in the given text.

        Parameters
        ----------
        text : str
            The text to count tokens for.

        Returns
        -------
        int
            The number of tokens in the text.
        """
        ...
