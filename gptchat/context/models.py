"""
Data models for conversation state.

This module defines the counted message sequence used by the persona for
its three message lists, the snapshot types used for rollback and
serialization, and helpers turning message-like values into messages.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Iterator, NamedTuple

import pydantic
from pydantic import BaseModel, Field

from gptchat.exceptions import ValidationError
from gptchat.interfaces import TokenizerProtocol
from gptchat.llm.models import Message, Role
from gptchat.types import MessageLike, MessagesLike

logger = logging.getLogger(__name__)


def to_message(default_role: Role, value: MessageLike) -> Message:
    """
    Convert a message-like value into a :class:`Message`.

    Parameters
    ----------
    default_role : Role
        Role given to bare strings.
    value : MessageLike
        A string, a :class:`Message`, or a mapping with ``role`` and
        ``content``.

    Returns
    -------
    Message
        The converted message.

    Raises
    ------
    ValidationError
        If the value is of an unsupported type or an invalid mapping.

    Examples
    --------
    >>> to_message(Role.USER, "Hello")
    Message(role=<Role.USER: 'user'>, content='Hello', name=None)
    """
    if isinstance(value, Message):
        return value
    if isinstance(value, str):
        return Message(role=default_role, content=value)
    if isinstance(value, Mapping):
        try:
            return Message.model_validate(dict(value))
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid message: {e}",
                field="message",
                cause=e,
            ) from e
    raise ValidationError(
        f"Unsupported message type: {type(value).__name__}",
        field="message",
    )


def to_messages(default_role: Role, value: MessagesLike) -> list[Message]:
    """
    Convert one or many message-like values into a list of messages.

    Examples
    --------
    >>> [m.content for m in to_messages(Role.SYSTEM, ["a", "b"])]
    ['a', 'b']
    """
    if isinstance(value, (str, Message, Mapping)):
        return [to_message(default_role, value)]
    if isinstance(value, Sequence):
        return [to_message(default_role, item) for item in value]
    raise ValidationError(
        f"Unsupported message type: {type(value).__name__}",
        field="message",
    )


class HistorySnapshot(NamedTuple):
    """Exact state of a :class:`CountedMessages`, for rollback."""

    messages: tuple[Message, ...]
    token_counts: tuple[int, ...]
    token_count: int


class CountedMessages:
    """
    Ordered message sequence with a cached total token count.

    Every mutation updates the messages, their individual counts and the
    total together, so ``token_count`` always equals the sum of the token
    counts of the contained messages.

    Parameters
    ----------
    tokenizer : TokenizerProtocol
        Tokenizer used to count message content.
    messages : Sequence[Message], optional
        Initial messages.

    Examples
    --------
    >>> history = CountedMessages(Tokenizer())
    >>> history.extend([Message(role=Role.USER, content="Hello")])
    1
    >>> history.token_count
    1
    """

    def __init__(
        self,
        tokenizer: TokenizerProtocol,
        messages: Sequence[Message] = (),
    ) -> None:
        self._tokenizer: TokenizerProtocol = tokenizer
        self._messages: list[Message] = []
        self._token_counts: list[int] = []
        self._token_count: int = 0
        if messages:
            self.replace(messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def __repr__(self) -> str:
        return f"<CountedMessages len={len(self)} tokens={self._token_count}>"

    @property
    def messages(self) -> list[Message]:
        """Copy of the contained messages."""
        return list(self._messages)

    @property
    def token_count(self) -> int:
        """Total token count of the contained messages."""
        return self._token_count

    def count(self, message: Message) -> int:
        """Token count of a single message."""
        return self._tokenizer.count_tokens(message.content)

    def count_all(self, messages: Sequence[Message]) -> int:
        """Token count of a list of messages; 0 when empty."""
        return sum(self.count(message) for message in messages)

    def token_count_at(self, index: int) -> int:
        """Cached token count of the message at ``index``."""
        return self._token_counts[index]

    def replace(self, messages: Sequence[Message]) -> None:
        """Replace the whole sequence and recount."""
        counts: list[int] = [self.count(message) for message in messages]
        self._messages = list(messages)
        self._token_counts = counts
        self._token_count = sum(counts)

    def extend(self, messages: Sequence[Message]) -> int:
        """
        Append messages to the end of the sequence.

        Returns
        -------
        int
            Token count of the appended messages.
        """
        counts: list[int] = [self.count(message) for message in messages]
        self._messages.extend(messages)
        self._token_counts.extend(counts)
        added: int = sum(counts)
        self._token_count += added
        return added

    def drop_prefix(self, length: int) -> int:
        """
        Remove the ``length`` oldest messages.

        Returns
        -------
        int
            Token count of the removed messages.
        """
        if length <= 0:
            return 0
        removed: int = sum(self._token_counts[:length])
        del self._messages[:length]
        del self._token_counts[:length]
        self._token_count -= removed
        return removed

    def clear(self) -> None:
        self._messages = []
        self._token_counts = []
        self._token_count = 0

    def snapshot(self) -> HistorySnapshot:
        """Capture the current state for a later :meth:`restore`."""
        return HistorySnapshot(
            messages=tuple(self._messages),
            token_counts=tuple(self._token_counts),
            token_count=self._token_count,
        )

    def restore(self, snapshot: HistorySnapshot) -> None:
        """Return exactly to a state captured by :meth:`snapshot`."""
        self._messages = list(snapshot.messages)
        self._token_counts = list(snapshot.token_counts)
        self._token_count = snapshot.token_count


class PersonaSnapshot(BaseModel):
    """
    Serialized conversation state.

    Parameters
    ----------
    persona : list[Message]
        System-role preamble.
    history : list[Message], default=[]
        Conversation turns.
    instructions : list[Message], default=[]
        System-role suffix.

    Examples
    --------
    >>> snapshot = PersonaSnapshot.model_validate(
    ...     {"persona": [{"role": "system", "content": "Be brief."}]}
    ... )
    >>> snapshot.history
    []
    """

    persona: list[Message] = Field(default_factory=list, description="Persona messages")
    history: list[Message] = Field(default_factory=list, description="History messages")
    instructions: list[Message] = Field(
        default_factory=list,
        description="Instruction messages",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON-compatible snapshot format."""
        return {
            "persona": [message.to_dict() for message in self.persona],
            "history": [message.to_dict() for message in self.history],
            "instructions": [message.to_dict() for message in self.instructions],
        }
