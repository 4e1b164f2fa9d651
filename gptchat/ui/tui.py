"""
Text User Interface for the gpt-chat shell.

This module provides the TUI class that renders the welcome panel, streamed
replies, token usage reports and help text with rich console formatting.
"""

import logging

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gptchat.context.persona import Persona

logger = logging.getLogger(__name__)

USER_PROMPT: str = "User> "
ASSISTANT_PROMPT: str = "AI> "


class TUI:
    """
    Text User Interface for interactive chat sessions.

    Parameters
    ----------
    console : Console
        Rich console instance for output.

    Examples
    --------
    >>> tui = TUI(get_console())
    >>> tui.begin_assistant()
    >>> tui.stream_assistant_delta("Hello")
    >>> tui.end_assistant()
    """

    def __init__(self, console: Console) -> None:
        self.console: Console = console
        self._assistant_stream_open: bool = False

    def print_welcome(
        self,
        title: str,
        lines: list[str] | None = None,
    ) -> None:
        """
        Print welcome message with title and information lines.

        Parameters
        ----------
        title : str
            Welcome title.
        lines : list[str] | None, optional
            Additional information lines to display.
        """
        body: str = "\n".join(lines) if lines else ""
        self.console.print(
            Panel(
                Text(body, style="code"),
                title=Text(title, style="highlight"),
                title_align="left",
                border_style="border",
                box=box.ROUNDED,
                padding=(1, 2),
            ),
        )

    def prompt(self, label: str = USER_PROMPT, password: bool = False) -> str:
        """Read one line of input."""
        return self.console.input(f"[user]{label}[/user]", password=password)

    def begin_assistant(self) -> None:
        self.console.print(Text(ASSISTANT_PROMPT, style="assistant"), end="")
        self._assistant_stream_open = True

    def stream_assistant_delta(self, content: str) -> None:
        """
        Stream a fragment of the reply.

        The first fragment of a reply opens the assistant section and is
        stripped of leading whitespace.

        Parameters
        ----------
        content : str
            Text content to stream.
        """
        if not self._assistant_stream_open:
            self.begin_assistant()
            content = content.lstrip()
        self.console.print(content, end="", markup=False)

    def end_assistant(self) -> None:
        """End the assistant output section, if one is open."""
        if self._assistant_stream_open:
            self.console.print()
        self._assistant_stream_open = False

    def show_error(self, error: Exception) -> None:
        self.end_assistant()
        self.console.print(f"[error]Error: {error}[/error]", markup=True)

    def show_token_usage(self, persona: Persona) -> None:
        """
        Report how much of the context budget is in use.

        Parameters
        ----------
        persona : Persona
            Conversation whose counts are reported.
        """
        fixed_count: int = persona.persona_token_count + persona.instruction_token_count
        max_history_count: int = persona.max_context_token_count - fixed_count
        available_count: int = max_history_count - persona.history_token_count
        available_style: str = "tokens.available" if available_count >= 0 else "tokens.exceeded"

        table = Table(box=box.SIMPLE, show_header=False)
        table.add_column(style="muted")
        table.add_column(justify="right")
        table.add_row("Available", Text(str(available_count), style=available_style))
        table.add_row("Persona", str(persona.persona_token_count))
        table.add_row("Instructions", str(persona.instruction_token_count))
        table.add_row("History", str(persona.history_token_count))
        table.add_row("Budget", str(persona.max_context_token_count))
        self.console.print(table)

    def show_help(self) -> None:
        """Display help information with available commands."""
        help_text: str = """
## Commands

- `/help` - Show this help
- `/exit` or `/quit` - Exit
- `/persona [text]` - Replace the persona
- `/inst [text]` - Replace the standing instructions
- `/reset` - Clear persona, instructions and history
- `/clear` or `/restart` - Clear the conversation history
- `/save [path]` - Save the conversation as a persona file
- `/tokens` - Show token usage

## Tips

- An empty line exits
- Start a message with `//` to send a literal `/`
"""
        self.console.print(Markdown(help_text))
