"""Tests for the token-budgeted conversation state."""

import asyncio
from typing import Any

import pytest

from gptchat.context.models import CountedMessages, PersonaSnapshot
from gptchat.context.persona import Persona, RespondOptions
from gptchat.exceptions import APIError, ValidationError
from gptchat.llm.models import CompletionResponse, Message, Role
from tests.conftest import FakeClient, WordTokenizer, reply


def words(count: int, word: str = "w") -> str:
    return " ".join([word] * count)


def make_persona(**kwargs: Any) -> Persona:
    kwargs.setdefault("tokenizer", WordTokenizer())
    return Persona(**kwargs)


def assert_counts_consistent(persona: Persona) -> None:
    tokenizer = WordTokenizer()
    expected = sum(
        tokenizer.count_tokens(message.content)
        for message in [*persona.persona, *persona.history, *persona.instructions]
    )
    assert persona.token_count == expected
    assert persona.history_token_count == sum(
        tokenizer.count_tokens(message.content) for message in persona.history
    )


class TestCountedMessages:
    def test_counts_follow_mutations(self, tokenizer):
        messages = CountedMessages(tokenizer)
        added = messages.extend([
            Message(role=Role.USER, content="one two"),
            Message(role=Role.ASSISTANT, content="three"),
        ])
        assert added == 3
        assert messages.token_count == 3

        assert messages.drop_prefix(1) == 2
        assert messages.token_count == 1
        assert len(messages) == 1

        messages.clear()
        assert messages.token_count == 0

    def test_snapshot_restore(self, tokenizer):
        messages = CountedMessages(tokenizer, [Message(role=Role.USER, content="a b")])
        snapshot = messages.snapshot()
        messages.extend([Message(role=Role.USER, content="c")])
        messages.drop_prefix(1)

        messages.restore(snapshot)
        assert [m.content for m in messages] == ["a b"]
        assert messages.token_count == 2

    def test_messages_returns_copy(self, tokenizer):
        messages = CountedMessages(tokenizer, [Message(role=Role.USER, content="a")])
        messages.messages.clear()
        assert len(messages) == 1


class TestState:
    def test_strings_wrapped_as_system(self):
        persona = make_persona(persona="Be nice.", instructions=["Be brief.", "No emoji."])
        assert persona.persona == [Message(role=Role.SYSTEM, content="Be nice.")]
        assert [m.role for m in persona.instructions] == [Role.SYSTEM, Role.SYSTEM]

    def test_counts_consistent_after_mutations(self):
        persona = make_persona(persona="a b c", instructions="d e")
        assert_counts_consistent(persona)

        persona.push_message("hello there")
        persona.push_response("general kenobi")
        assert_counts_consistent(persona)

        persona.persona = "x"
        persona.instructions = ["y z", {"role": "system", "content": "w"}]
        assert_counts_consistent(persona)

        persona.clear_history()
        assert_counts_consistent(persona)
        assert persona.history == []

        persona.clear()
        assert persona.token_count == 0

    def test_history_is_read_only_copy(self):
        persona = make_persona()
        persona.push_message("hi")
        persona.history.append(Message(role=Role.USER, content="sneaky"))
        assert len(persona.history) == 1

    def test_invalid_message_rejected(self):
        persona = make_persona()
        with pytest.raises(ValidationError):
            persona.push_message(42)
        with pytest.raises(ValidationError):
            persona.push_message({"role": "wizard", "content": "x"})

    def test_is_context_too_long(self):
        persona = make_persona(persona=words(3), max_context_token_count=5)
        assert not persona.is_context_too_long()
        persona.push_message(words(3))
        assert persona.is_context_too_long()


class TestPushResponse:
    def test_completion_response(self):
        persona = make_persona()
        assert persona.push_response(reply("Hello!")) == "Hello!"
        assert persona.history == [Message(role=Role.ASSISTANT, content="Hello!")]

    def test_empty_response_rejected(self):
        persona = make_persona()
        with pytest.raises(ValidationError):
            persona.push_response(CompletionResponse(choices=[]))
        assert persona.history == []

    def test_message_like_values(self):
        persona = make_persona()
        text = persona.push_response([
            "first",
            {"role": "user", "content": "ignored"},
            Message(role=Role.ASSISTANT, content="second"),
        ])
        assert text == "first\nsecond"
        assert len(persona.history) == 3


class TestBudget:
    def test_get_api_messages_order(self):
        persona = make_persona(persona="p", instructions="i")
        persona.push_message("u")
        persona.push_response("a")

        messages = persona.get_api_messages("extra")
        assert [m.content for m in messages] == ["p", "u", "a", "i", "extra"]
        assert messages[-1].role == Role.SYSTEM

    def test_get_api_messages_skips_oldest_without_mutation(self):
        persona = make_persona(persona=words(3), max_context_token_count=10)
        for word in ["a", "b", "c"]:
            persona.push_message(words(4, word))

        messages = persona.get_api_messages()
        assert [m.content for m in messages] == [words(3), words(4, "c")]
        assert len(persona.history) == 3

    def test_get_api_messages_counts_additional_instructions(self):
        persona = make_persona(max_context_token_count=6)
        persona.push_message(words(3, "a"))
        persona.push_message(words(3, "b"))

        assert len(persona.get_api_messages()) == 2
        assert [m.content for m in persona.get_api_messages("x")] == [words(3, "b"), "x"]

    def test_condense_drops_oldest_prefix(self):
        persona = make_persona(persona=words(3), max_context_token_count=10)
        for word in ["a", "b", "c"]:
            persona.push_message(words(4, word))

        assert persona.condense() is True
        assert [m.content for m in persona.history] == [words(4, "c")]
        assert persona.token_count == 7
        assert_counts_consistent(persona)

    def test_condense_idempotent(self):
        persona = make_persona(persona=words(3), max_context_token_count=10)
        for word in ["a", "b", "c"]:
            persona.push_message(words(4, word))

        persona.condense()
        history = persona.history
        assert persona.condense() is False
        assert persona.history == history

    def test_condense_may_empty_history(self):
        persona = make_persona(persona=words(8), max_context_token_count=10)
        persona.push_message(words(5))

        assert persona.condense() is True
        assert persona.history == []
        assert persona.persona_token_count == 8

    def test_non_positive_budget_disables_trimming(self):
        persona = make_persona(max_context_token_count=0)
        persona.push_message(words(100))
        assert persona.condense() is False
        assert len(persona.get_api_messages()) == 1


class TestSnapshot:
    def test_round_trip(self):
        persona = make_persona(persona="p", instructions="i")
        persona.push_message("hello")
        persona.push_response("hi")

        restored = Persona.from_snapshot(persona.to_dict(), tokenizer=WordTokenizer())
        assert restored.persona == persona.persona
        assert restored.history == persona.history
        assert restored.instructions == persona.instructions
        assert restored.token_count == persona.token_count

    def test_snapshot_format(self):
        persona = make_persona(persona="p")
        persona.push_message("hello")
        assert persona.to_dict() == {
            "persona": [{"role": "system", "content": "p"}],
            "history": [{"role": "user", "content": "hello"}],
            "instructions": [],
        }

    def test_from_snapshot_model(self):
        snapshot = PersonaSnapshot.model_validate({"persona": [{"role": "system", "content": "p"}]})
        persona = Persona.from_snapshot(snapshot, tokenizer=WordTokenizer())
        assert persona.history == []
        assert persona.persona_token_count == 1

    def test_from_snapshot_rejects_other_types(self):
        with pytest.raises(ValidationError):
            Persona.from_snapshot(["not", "a", "snapshot"])


class TestRespond:
    @pytest.mark.asyncio
    async def test_records_exchange(self):
        persona = make_persona(persona="p", instructions="i")
        client = FakeClient("Hi there")

        result = await persona.respond(client, "Hello", RespondOptions(request_params={"n": 1}))

        assert result == "Hi there"
        assert [m.content for m in client.requests[0]] == ["p", "Hello", "i"]
        assert client.params == [{"n": 1}]
        assert persona.history == [
            Message(role=Role.USER, content="Hello"),
            Message(role=Role.ASSISTANT, content="Hi there"),
        ]
        assert_counts_consistent(persona)

    @pytest.mark.asyncio
    async def test_additional_instructions_not_stored(self):
        persona = make_persona(instructions="i")
        client = FakeClient("ok")

        await persona.respond(client, "q", RespondOptions(additional_instructions="once"))

        assert [m.content for m in client.requests[0]] == ["q", "i", "once"]
        assert [m.content for m in persona.instructions] == ["i"]

    @pytest.mark.asyncio
    async def test_freeze_history(self):
        persona = make_persona()
        persona.push_message("before")
        client = FakeClient("answer")

        result = await persona.respond(client, "what?", RespondOptions(freeze_history=True))

        assert result == "answer"
        assert [m.content for m in client.requests[0]] == ["before", "what?"]
        assert [m.content for m in persona.history] == ["before"]

    @pytest.mark.asyncio
    async def test_rollback_on_failure(self):
        persona = make_persona()
        persona.push_message("before")
        client = FakeClient(error=APIError("HTTP 500", status_code=500))

        with pytest.raises(APIError):
            await persona.respond(client, "question")

        assert [m.content for m in persona.history] == ["before"]
        assert_counts_consistent(persona)

    @pytest.mark.asyncio
    async def test_rollback_after_condensation(self):
        persona = make_persona(persona=words(3), max_context_token_count=10)
        for word in ["a", "b"]:
            persona.push_message(words(3, word))
        before = persona.history
        client = FakeClient(error=APIError("HTTP 503", status_code=503))

        with pytest.raises(APIError):
            await persona.respond(client, words(3, "c"))

        assert persona.history == before
        assert persona.token_count == 9
        assert_counts_consistent(persona)

    @pytest.mark.asyncio
    async def test_rollback_on_cancellation(self):
        persona = make_persona()
        client = FakeClient(error=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await persona.respond(client, "question")

        assert persona.history == []

    @pytest.mark.asyncio
    async def test_newest_message_always_sent(self):
        persona = make_persona(persona=words(3), max_context_token_count=5)
        persona.push_message("old")
        client = FakeClient("short")

        await persona.respond(client, words(20, "big"))

        sent = [m.content for m in client.requests[0]]
        assert sent == [words(3), words(20, "big")]
        # The oversized message does not survive the condensation that follows.
        assert persona.history == [Message(role=Role.ASSISTANT, content="short")]
        assert_counts_consistent(persona)

    @pytest.mark.asyncio
    async def test_condenses_after_reply(self):
        persona = make_persona(persona=words(2), max_context_token_count=8)
        client = FakeClient(words(3, "r"), words(3, "s"))

        await persona.respond(client, words(2, "q"))
        await persona.respond(client, words(2, "t"))

        assert not persona.is_context_too_long()
        assert persona.history[-1].content == words(3, "s")

    @pytest.mark.asyncio
    async def test_custom_condenser(self):
        calls: list[int] = []

        def condenser(target: Persona) -> None:
            calls.append(len(target.history))

        persona = make_persona(max_context_token_count=1)
        await persona.respond(FakeClient("a b"), "x y", RespondOptions(condenser=condenser))

        assert calls == [1, 2]
        assert len(persona.history) == 2

    @pytest.mark.asyncio
    async def test_delta_sink_receives_first_choice_text(self):
        persona = make_persona()
        fragments: list[str] = []

        result = await persona.respond(
            FakeClient("streamed reply"),
            "go",
            delta_sink=fragments.append,
        )

        assert fragments == ["streamed", "reply"]
        assert result == "streamed reply"
