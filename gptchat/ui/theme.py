"""
Theme definition for rich console styling.

This module defines the color theme of the gpt-chat terminal shell,
optimized for dark terminals.
"""

from rich.theme import Theme

GPT_CHAT_THEME = Theme(
    {
        # General styles
        "info": "cyan",
        "warning": "yellow",
        "error": "bright_red bold",
        "success": "green",
        "dim": "dim",
        "muted": "grey50",
        "border": "grey35",
        "highlight": "bold cyan",
        # Role styles
        "user": "bright_blue bold",
        "assistant": "bright_white",
        # Token report
        "tokens.available": "bold green",
        "tokens.exceeded": "bold bright_red",
        "code": "white",
    },
)
