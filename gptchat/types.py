"""
Type definitions and aliases for gpt-chat.

This module provides common type aliases used throughout the codebase.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence, Union

if TYPE_CHECKING:
    from gptchat.llm.models import Message, MessageDelta

# Message types for LLM interactions
MessageLike = Union[str, "Message", Mapping[str, Any]]
MessagesLike = Union[MessageLike, Sequence[MessageLike]]

# Streaming callbacks
DeltaCallback = Callable[["MessageDelta", int], None]
TextDeltaSink = Callable[[str], None]

# Path types
PathLike = Union[str, Path]
