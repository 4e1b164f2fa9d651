"""Tests for the interactive shell commands and reply rendering."""

import io

import pytest
from rich.console import Console

from gptchat.config.schema import Configuration
from gptchat.context.persona import Persona
from gptchat.exceptions import APIError
from gptchat.ui.theme import GPT_CHAT_THEME
from gptchat.ui.tui import TUI
from main import CLI
from tests.conftest import FakeClient, WordTokenizer


def recording_tui() -> tuple[TUI, io.StringIO]:
    output = io.StringIO()
    console = Console(file=output, theme=GPT_CHAT_THEME, force_terminal=False, width=80)
    return TUI(console), output


@pytest.fixture
def cli(tmp_path) -> CLI:
    persona = Persona("p", instructions="i", tokenizer=WordTokenizer(), max_context_token_count=50)
    shell = CLI(Configuration(cwd=tmp_path), persona, FakeClient("one", "two"))
    shell.tui, _ = recording_tui()
    return shell


def test_stream_left_trims_first_fragment():
    tui, output = recording_tui()
    tui.stream_assistant_delta("  \nHello")
    tui.stream_assistant_delta(" world")
    tui.end_assistant()

    assert output.getvalue() == "AI> Hello world\n"


def test_token_usage_report():
    tui, output = recording_tui()
    persona = Persona(
        "a b",
        instructions="c",
        tokenizer=WordTokenizer(),
        max_context_token_count=10,
    )
    persona.push_message("d e f")

    tui.show_token_usage(persona)

    lines = [line.split() for line in output.getvalue().splitlines() if line.strip()]
    assert ["Available", "4"] in lines
    assert ["History", "3"] in lines


class TestCommands:
    def test_exit(self, cli):
        assert cli._handle_command("/exit") is False
        assert cli._handle_command("/QUIT") is False

    def test_persona_and_instructions(self, cli):
        assert cli._handle_command("/persona You are a cat.") is True
        assert cli._handle_command("/inst Meow only.") is True
        assert [m.content for m in cli.persona.persona] == ["You are a cat."]
        assert [m.content for m in cli.persona.instructions] == ["Meow only."]

    def test_clear_and_reset(self, cli):
        cli.persona.push_message("hello")
        cli._handle_command("/clear")
        assert cli.persona.history == []
        assert cli.persona.persona_token_count == 1

        cli._handle_command("/reset")
        assert cli.persona.token_count == 0

    def test_save(self, cli, tmp_path):
        target = tmp_path / "saved.json"
        cli._handle_command(f"/save {target}")
        assert target.is_file()

    def test_unknown_command_continues(self, cli):
        assert cli._handle_command("/frobnicate") is True


class TestProcessMessage:
    @pytest.mark.asyncio
    async def test_reply_recorded(self, cli):
        assert await cli._process_message("hello") == "one"
        assert [m.content for m in cli.persona.history] == ["hello", "one"]

    @pytest.mark.asyncio
    async def test_error_reported_and_history_kept(self, cli):
        cli.client = FakeClient(error=APIError("HTTP 500", status_code=500))
        cli.persona.push_message("earlier")

        assert await cli._process_message("hello") is None
        assert [m.content for m in cli.persona.history] == ["earlier"]
