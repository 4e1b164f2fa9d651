"""
Console factory for creating rich console instances.

This module provides the shared rich Console configured with the gpt-chat
theme.
"""

from rich.console import Console

from gptchat.ui.theme import GPT_CHAT_THEME

# Singleton console instance
_console: Console | None = None


def get_console() -> Console:
    """
    Get the shared rich Console instance.

    Returns
    -------
    Console
        Console configured with the gpt-chat theme.

    Examples
    --------
    >>> console = get_console()
    >>> console.print("[highlight]gpt-chat[/highlight]")
    """
    global _console
    if _console is None:
        _console = Console(theme=GPT_CHAT_THEME, highlight=False)
    return _console
