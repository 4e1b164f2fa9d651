"""
Token counting for conversation budgeting.

This module counts tokens the way the chat model does, using ``tiktoken``,
so that the conversation state can keep its messages within the model's
context window.
"""

import logging
from typing import Callable

import tiktoken

from gptchat.constants import (
    DEFAULT_CHARS_PER_TOKEN,
    DEFAULT_MODEL,
    DEFAULT_TOKENIZER_ENCODING,
    MIN_TOKEN_COUNT,
)

logger = logging.getLogger(__name__)


class Tokenizer:
    """
    Tokenizer for counting tokens in message text.

    The encoding is resolved lazily on first use, so creating a tokenizer
    never touches the encoding cache. If the encoding cannot be loaded the
    tokenizer switches to a characters-per-token estimate for good.

    Parameters
    ----------
    model : str, default="gpt-3.5-turbo"
        Model name used to pick the encoding.

    Examples
    --------
    >>> tokenizer = Tokenizer(model="gpt-3.5-turbo")
    >>> tokenizer.count_tokens("Hello, world!")
    4
    """

    def __init__(self, model: str = DEFAULT_MODEL) -> None:
        self.model: str = model
        self._counter: Callable[[str], int] | None = None

    def _load_encoding(self) -> tiktoken.Encoding:
        try:
            encoding = tiktoken.encoding_for_model(self.model)
            logger.debug(f"Initialized tokenizer for model: {self.model}")
        except KeyError:
            logger.warning(
                f"No encoding known for model {self.model}, "
                f"falling back to {DEFAULT_TOKENIZER_ENCODING}",
            )
            encoding = tiktoken.get_encoding(DEFAULT_TOKENIZER_ENCODING)
        return encoding

    def _get_counter(self) -> Callable[[str], int]:
        if self._counter is None:
            try:
                encoding = self._load_encoding()
            except Exception as e:
                logger.warning(f"Tokenizer unavailable, using estimation: {e}")
                self._counter = self._estimate_tokens
            else:
                encode = encoding.encode
                # Special-token markers in user text are counted as plain text.
                self._counter = lambda text: len(encode(text, disallowed_special=()))

        return self._counter

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
            Number of tokens; 0 for empty text.
        """
        if not text:
            return 0
        return self._get_counter()(text)

    def _estimate_tokens(self, text: str) -> int:
        """Estimate token count using a characters-per-token ratio."""
        return max(MIN_TOKEN_COUNT, len(text) // DEFAULT_CHARS_PER_TOKEN)
