"""
Token-budgeted conversation state.

This module provides the :class:`Persona`, which owns the system-role
persona, the standing instructions and the rolling conversation history. It
decides what is sent to the completion client, keeps the conversation within
the model's context window by forgetting the oldest turns, and rolls the
history back when an exchange fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from gptchat.constants import DEFAULT_MAX_CONTEXT_TOKEN_COUNT
from gptchat.context.models import (
    CountedMessages,
    PersonaSnapshot,
    to_messages,
)
from gptchat.exceptions import ValidationError
from gptchat.interfaces import CompletionClientProtocol, TokenizerProtocol
from gptchat.llm.models import (
    ChatCompletionParams,
    CompletionResponse,
    Message,
    MessageDelta,
    Role,
)
from gptchat.types import DeltaCallback, MessagesLike, TextDeltaSink
from gptchat.utils.text import Tokenizer

logger = logging.getLogger(__name__)

Condenser = Callable[["Persona"], Any]


def _first_choice_text(sink: TextDeltaSink) -> DeltaCallback:
    """Adapt a text sink to receive only the content of choice 0."""

    def on_delta(delta: MessageDelta, index: int) -> None:
        if index == 0 and delta.content:
            sink(delta.content)

    return on_delta


@dataclass
class RespondOptions:
    """
    Options for :meth:`Persona.respond`.

    Attributes
    ----------
    request_params : ChatCompletionParams | Mapping[str, Any] | None
        Options forwarded to the completion request.
    additional_instructions : MessagesLike | None
        One-time system messages appended after the instructions.
    freeze_history : bool
        Leave no trace of the exchange in the stored history.
    condenser : Condenser | None
        Replaces :meth:`Persona.condense` for this call.
    """

    request_params: ChatCompletionParams | Mapping[str, Any] | None = None
    additional_instructions: MessagesLike | None = None
    freeze_history: bool = False
    condenser: Condenser | None = None


class Persona:
    """
    Conversation state with a token budget.

    The persona keeps three message sequences: the system-role ``persona``
    preamble, the ``history`` of user and assistant turns, and the
    system-role ``instructions`` suffix. Their combined size is kept within
    ``max_context_token_count`` by dropping the oldest history entries.

    Parameters
    ----------
    persona : MessagesLike | None, optional
        Persona text or messages; strings become system messages.
    history : MessagesLike | None, optional
        Initial history.
    instructions : MessagesLike | None, optional
        Instruction text or messages; strings become system messages.
    max_context_token_count : int, default=3968
        Token budget for everything sent. ``0`` or less disables trimming.
    tokenizer : TokenizerProtocol | None, optional
        Tokenizer used for budgeting; defaults to :class:`Tokenizer`.

    Examples
    --------
    >>> persona = Persona("You are a terse assistant.")
    >>> async with CompletionClient(api_key) as client:
    ...     reply = await persona.respond(client, "Hello!")
    """

    def __init__(
        self,
        persona: MessagesLike | None = None,
        *,
        history: MessagesLike | None = None,
        instructions: MessagesLike | None = None,
        max_context_token_count: int = DEFAULT_MAX_CONTEXT_TOKEN_COUNT,
        tokenizer: TokenizerProtocol | None = None,
    ) -> None:
        self._tokenizer: TokenizerProtocol = tokenizer or Tokenizer()
        self.max_context_token_count: int = max_context_token_count

        self._persona: CountedMessages = CountedMessages(self._tokenizer)
        self._history: CountedMessages = CountedMessages(self._tokenizer)
        self._instructions: CountedMessages = CountedMessages(self._tokenizer)

        if persona is not None:
            self.persona = persona
        if history is not None:
            self._history.replace(to_messages(Role.USER, history))
        if instructions is not None:
            self.instructions = instructions

    @classmethod
    def from_snapshot(
        cls,
        snapshot: PersonaSnapshot | Mapping[str, Any],
        **kwargs: Any,
    ) -> Persona:
        """
        Reconstruct a persona from its serialized form.

        Parameters
        ----------
        snapshot : PersonaSnapshot | Mapping[str, Any]
            ``{persona, history?, instructions?}``, as produced by
            :meth:`to_dict`.
        **kwargs : Any
            Passed on to the constructor (budget, tokenizer).

        Returns
        -------
        Persona
            The reconstructed persona.
        """
        if isinstance(snapshot, PersonaSnapshot):
            return cls(
                snapshot.persona,
                history=snapshot.history,
                instructions=snapshot.instructions,
                **kwargs,
            )
        if not isinstance(snapshot, Mapping):
            raise ValidationError(
                f"Unsupported snapshot type: {type(snapshot).__name__}",
                field="snapshot",
            )
        return cls(
            snapshot.get("persona"),
            history=snapshot.get("history"),
            instructions=snapshot.get("instructions"),
            **kwargs,
        )

    @property
    def persona(self) -> list[Message]:
        return self._persona.messages

    @persona.setter
    def persona(self, value: MessagesLike) -> None:
        self._persona.replace(to_messages(Role.SYSTEM, value))

    @property
    def instructions(self) -> list[Message]:
        return self._instructions.messages

    @instructions.setter
    def instructions(self, value: MessagesLike) -> None:
        self._instructions.replace(to_messages(Role.SYSTEM, value))

    @property
    def history(self) -> list[Message]:
        return self._history.messages

    @property
    def persona_token_count(self) -> int:
        return self._persona.token_count

    @property
    def history_token_count(self) -> int:
        return self._history.token_count

    @property
    def instruction_token_count(self) -> int:
        return self._instructions.token_count

    @property
    def token_count(self) -> int:
        """Combined token count of persona, history and instructions."""
        return (
            self._persona.token_count
            + self._history.token_count
            + self._instructions.token_count
        )

    def is_context_too_long(self) -> bool:
        return self.token_count > self.max_context_token_count

    def clear_persona(self) -> None:
        self._persona.clear()

    def clear_history(self) -> None:
        self._history.clear()

    def clear_instructions(self) -> None:
        self._instructions.clear()

    def clear(self) -> None:
        """Reset persona, instructions and history."""
        self.clear_persona()
        self.clear_instructions()
        self.clear_history()

    def _overflow(self, token_count: int, keep_latest: int = 0) -> tuple[int, int]:
        """
        Find how many of the oldest history entries must go to fit the budget.

        Parameters
        ----------
        token_count : int
            Total tokens that would be sent with the full history.
        keep_latest : int, default=0
            Number of newest entries that may not be dropped.

        Returns
        -------
        tuple[int, int]
            Number of entries to drop and their token count.
        """
        limit: int = self.max_context_token_count
        droppable: int = len(self._history) - keep_latest
        skip: int = 0
        removed: int = 0

        while limit > 0 and skip < droppable and token_count - removed > limit:
            removed += self._history.token_count_at(skip)
            skip += 1

        return skip, removed

    def get_api_messages(
        self,
        additional_instructions: MessagesLike | None = None,
        *,
        keep_latest: int = 0,
    ) -> list[Message]:
        """
        Build the message list to send to the completion client.

        The oldest history entries are left out while everything together
        exceeds the budget. Stored history is not modified.

        Parameters
        ----------
        additional_instructions : MessagesLike | None, optional
            One-time system messages appended at the end.
        keep_latest : int, default=0
            Number of newest history entries always included.

        Returns
        -------
        list[Message]
            ``persona + remaining history + instructions + additional``.

        Examples
        --------
        >>> persona.get_api_messages("Answer in French.")
        """
        extra: list[Message] = (
            to_messages(Role.SYSTEM, additional_instructions)
            if additional_instructions is not None
            else []
        )
        token_count: int = self.token_count + self._history.count_all(extra)
        skip, _ = self._overflow(token_count, keep_latest)

        return [
            *self._persona.messages,
            *self._history.messages[skip:],
            *self._instructions.messages,
            *extra,
        ]

    def push_message(self, value: MessagesLike) -> None:
        """
        Append messages to the history.

        Parameters
        ----------
        value : MessagesLike
            Message or messages; strings are treated as user messages.
        """
        self._history.extend(to_messages(Role.USER, value))

    def push_response(self, value: CompletionResponse | MessagesLike) -> str:
        """
        Append a response to the history.

        Parameters
        ----------
        value : CompletionResponse | MessagesLike
            A completion response, whose first choice is appended, or
            message-like values, where strings are treated as assistant
            messages.

        Returns
        -------
        str
            Content of the appended assistant messages, newline-joined.

        Raises
        ------
        ValidationError
            If a response carries no choices.
        """
        if isinstance(value, CompletionResponse):
            if not value.choices:
                raise ValidationError(
                    "Completion response contains no choices",
                    field="choices",
                )
            messages: list[Message] = [value.choices[0].message]
        else:
            messages = to_messages(Role.ASSISTANT, value)

        self._history.extend(messages)
        return "\n".join(
            message.content for message in messages if message.role == Role.ASSISTANT
        )

    def condense(self) -> bool:
        """
        Forget the oldest history entries until the conversation fits.

        Returns
        -------
        bool
            Whether any entry was removed.
        """
        skip, removed = self._overflow(self.token_count)
        if not skip:
            return False

        self._history.drop_prefix(skip)
        logger.debug(f"Condensed history: dropped {skip} messages ({removed} tokens)")
        return True

    async def respond(
        self,
        client: CompletionClientProtocol,
        message: MessagesLike,
        options: RespondOptions | None = None,
        delta_sink: TextDeltaSink | None = None,
    ) -> str:
        """
        Send a user message and record the reply.

        The request always contains the new message in full, even when it
        alone exceeds the budget; condensation only affects what is kept for
        later turns. If anything fails, the history is restored to exactly
        its state before the call and the error is re-raised.

        Parameters
        ----------
        client : CompletionClientProtocol
            Client performing the exchange.
        message : MessagesLike
            The user's message or messages.
        options : RespondOptions | None, optional
            Request parameters, one-time instructions, history freezing and
            a custom condenser.
        delta_sink : TextDeltaSink | None, optional
            If given, the reply is streamed and each text fragment of the
            first choice is passed to it.

        Returns
        -------
        str
            The reply text.

        Examples
        --------
        >>> reply = await persona.respond(
        ...     client,
        ...     "Summarize our chat.",
        ...     RespondOptions(freeze_history=True),
        ...     delta_sink=lambda text: print(text, end=""),
        ... )
        """
        options = options or RespondOptions()
        condenser: Condenser = options.condenser or Persona.condense

        new_messages: list[Message] = to_messages(Role.USER, message)
        snapshot = self._history.snapshot()

        try:
            self.push_message(new_messages)
            request: list[Message] = self.get_api_messages(
                options.additional_instructions,
                keep_latest=len(new_messages),
            )
            if self.is_context_too_long():
                condenser(self)

            response: CompletionResponse = await client.complete(
                request,
                options.request_params,
                _first_choice_text(delta_sink) if delta_sink is not None else None,
            )
            reply: str = self.push_response(response)
        except BaseException:
            # Includes cancellation: the turn must leave no trace.
            self._history.restore(snapshot)
            raise

        if options.freeze_history:
            self._history.restore(snapshot)

        condenser(self)
        return reply

    def to_snapshot(self) -> PersonaSnapshot:
        """Capture the three message sequences."""
        return PersonaSnapshot(
            persona=self._persona.messages,
            history=self._history.messages,
            instructions=self._instructions.messages,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize to ``{persona, history, instructions}``.

        Examples
        --------
        >>> Persona.from_snapshot(persona.to_dict()).history == persona.history
        True
        """
        return self.to_snapshot().to_dict()

    def __repr__(self) -> str:
        return (
            f"<Persona persona={len(self._persona)} history={len(self._history)} "
            f"instructions={len(self._instructions)} tokens={self.token_count}"
            f"/{self.max_context_token_count}>"
        )
