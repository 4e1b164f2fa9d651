"""
Main entry point for the gpt-chat terminal shell.

This module provides the command-line interface: it resolves the API key
and persona, then runs an interactive chat loop with slash commands.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv

from gptchat.config.loader import load_configuration
from gptchat.config.schema import Configuration
from gptchat.constants import DEFAULT_PERSONA
from gptchat.context.persistence import load_persona, save_persona
from gptchat.context.persona import Persona, RespondOptions
from gptchat.exceptions import ConfigurationError, GptChatError
from gptchat.llm.client import CompletionClient
from gptchat.ui.console import get_console
from gptchat.ui.tui import TUI
from gptchat.utils.text import Tokenizer

logger = logging.getLogger(__name__)

console = get_console()


class CLI:
    """
    Interactive chat shell.

    Parameters
    ----------
    config : Configuration
        Configuration object.
    persona : Persona
        Conversation driven by the shell.
    client : CompletionClient
        Client used for every turn.

    Examples
    --------
    >>> cli = CLI(config, Persona(DEFAULT_PERSONA), client)
    >>> await cli.run_interactive()
    """

    def __init__(
        self,
        config: Configuration,
        persona: Persona,
        client: CompletionClient,
    ) -> None:
        self.config: Configuration = config
        self.persona: Persona = persona
        self.client: CompletionClient = client
        self.tui: TUI = TUI(console)

    async def run_interactive(self) -> None:
        """Run the chat loop until the user exits."""
        self.tui.print_welcome(
            "gpt-chat",
            lines=[
                f"model: {self.config.model_name}",
                f"context budget: {self.persona.max_context_token_count} tokens",
                "commands: /help /persona /inst /clear /save /tokens /exit",
            ],
        )

        async with self.client:
            while True:
                try:
                    user_input: str = self.tui.prompt()
                except (EOFError, KeyboardInterrupt):
                    break

                if not user_input:
                    break

                if user_input.startswith("//"):
                    user_input = user_input[1:]
                elif user_input.startswith("/"):
                    if not self._handle_command(user_input):
                        break
                    continue

                await self._process_message(user_input)

    async def _process_message(self, message: str) -> str | None:
        """
        Send one user turn and stream the reply.

        Parameters
        ----------
        message : str
            User message.

        Returns
        -------
        str | None
            The reply, or None if the turn failed.
        """
        try:
            return await self.persona.respond(
                self.client,
                message,
                RespondOptions(request_params=self.config.request_params()),
                delta_sink=self.tui.stream_assistant_delta,
            )
        except GptChatError as e:
            logger.debug(f"Turn failed: {e!r}")
            self.tui.show_error(e)
            return None
        finally:
            self.tui.end_assistant()

    def _ask(self, args: list[str], question: str) -> str:
        text: str = " ".join(args).strip()
        if text:
            return text
        try:
            return self.tui.prompt(f"{question}: ").strip()
        except (EOFError, KeyboardInterrupt):
            return ""

    def _handle_command(self, command: str) -> bool:
        """
        Handle slash commands.

        Parameters
        ----------
        command : str
            Command line, including the leading slash.

        Returns
        -------
        bool
            True to continue, False to exit.
        """
        parts: list[str] = command[1:].split(" ")
        cmd_name: str = parts[0].lower()
        cmd_args: list[str] = parts[1:]

        if cmd_name in ("exit", "quit"):
            return False
        elif cmd_name == "help":
            self.tui.show_help()
        elif cmd_name == "persona":
            new_persona: str = self._ask(cmd_args, "Input a new persona")
            if new_persona:
                self.persona.persona = new_persona
                console.print("[success]The new persona has been assigned.[/success]")
        elif cmd_name in ("inst", "instruction", "instructions"):
            new_instructions: str = self._ask(cmd_args, "Input a new instruction")
            if new_instructions:
                self.persona.instructions = new_instructions
                console.print("[success]The new instruction has been assigned.[/success]")
        elif cmd_name == "reset":
            self.persona.clear()
            console.print("[success]The persona has been reset.[/success]")
        elif cmd_name in ("clear", "restart"):
            self.persona.clear_history()
            console.print("[success]The history has been cleared.[/success]")
        elif cmd_name == "save":
            save_path: str = self._ask(cmd_args, "Path to save")
            if save_path:
                try:
                    written: Path = save_persona(self.persona, save_path)
                    console.print(f"[success]Saved to {written}[/success]")
                except GptChatError as e:
                    self.tui.show_error(e)
        elif cmd_name in ("count", "token", "tokens"):
            self.tui.show_token_usage(self.persona)
        else:
            console.print(f"[error]Unknown command: /{cmd_name}[/error]")

        return True


def _resolve_api_key(tui: TUI, key: str | None, config: Configuration) -> str:
    api_key: str = (key or config.api_key or "").strip()
    if not api_key:
        console.print("An OpenAI API key is required to use this program. Please enter the key below.")
        console.print("[dim](You can also provide an API key with the OPENAI_API_KEY environment variable.)[/dim]")
        api_key = tui.prompt("OpenAI API key: ", password=True).strip()
    return api_key


def _build_persona(config: Configuration) -> Persona:
    kwargs: dict[str, Any] = {
        "max_context_token_count": config.model.max_context_token_count,
        "tokenizer": Tokenizer(config.model_name),
    }
    if config.persona_file is not None:
        return load_persona(config.persona_file, **kwargs)
    return Persona(DEFAULT_PERSONA, **kwargs)


@click.command()
@click.option("--key", "-k", help="API key. Defaults to the OPENAI_API_KEY environment variable.")
@click.option(
    "--persona",
    "-p",
    "persona_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Persona text or JSON snapshot file.",
)
@click.option("--model", "-m", help="Model name.")
@click.option(
    "--cwd",
    "-c",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory to look for .gpt-chat/config.toml in.",
)
def main(
    key: str | None,
    persona_file: Path | None,
    model: str | None,
    cwd: Path | None,
) -> None:
    """A simple client for chat-completion APIs."""
    load_dotenv()

    overrides: dict[str, Any] = {}
    if persona_file is not None:
        overrides["persona_file"] = str(persona_file)
    if model:
        overrides["model"] = {"name": model}

    try:
        config: Configuration = load_configuration(cwd=cwd, overrides=overrides)
    except ConfigurationError as e:
        console.print(f"[error]Configuration Error: {e}[/error]")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    tui = TUI(console)
    try:
        api_key: str = _resolve_api_key(tui, key, config)
    except (EOFError, KeyboardInterrupt):
        sys.exit(1)

    try:
        persona: Persona = _build_persona(config)
    except GptChatError as e:
        console.print(f"[error]{e}[/error]")
        sys.exit(1)

    client = CompletionClient.from_config(config, api_key=api_key)
    cli = CLI(config, persona, client)
    asyncio.run(cli.run_interactive())


if __name__ == "__main__":
    main()
