"""AI responder tests with a recording chat completions client"""
import asyncio
from types import SimpleNamespace

import pytest

from ai_responder import CARE_SYSTEM_PROMPT, TITLE_SYSTEM_PROMPT, AIResponder
from errors import UpstreamError


def run(coro):
    return asyncio.run(coro)


class RecordingCompletions:
    def __init__(self, contents):
        self.contents = contents
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        choices = [SimpleNamespace(message=SimpleNamespace(content=c)) for c in self.contents]
        return SimpleNamespace(choices=choices)


def responder_with(contents):
    completions = RecordingCompletions(contents)
    responder = AIResponder(api_key="test-key", model="care-model")
    responder._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return responder, completions


class TestUnconfigured:
    @pytest.mark.parametrize("key", ["", "   "])
    def test_missing_key_fails_fast(self, key):
        responder = AIResponder(api_key=key)
        assert responder.configured is False

        with pytest.raises(UpstreamError):
            run(responder.complete([{"role": "user", "content": "hello"}]))
        with pytest.raises(UpstreamError):
            run(responder.title_for("hello", "hi there", []))


class TestComplete:
    def test_system_prompt_leads_history(self):
        responder, completions = responder_with(["Take it with food."])
        history = [
            {"role": "user", "content": "When do I take aspirin?"},
            {"role": "assistant", "content": "In the morning."},
            {"role": "user", "content": "With food?"},
        ]

        reply = run(responder.complete(history))

        assert reply == "Take it with food."
        sent = completions.calls[0]
        assert sent["model"] == "care-model"
        assert sent["messages"][0] == {"role": "system", "content": CARE_SYSTEM_PROMPT}
        assert sent["messages"][1:] == history
        print("✓ Care system prompt sent ahead of the conversation")

    def test_no_choices_returns_empty(self):
        responder, _ = responder_with([])
        assert run(responder.complete([{"role": "user", "content": "hello"}])) == ""

    def test_null_content_returns_empty(self):
        responder, _ = responder_with([None])
        assert run(responder.complete([{"role": "user", "content": "hello"}])) == ""


class TestTitle:
    def test_title_prompt_and_quote_stripping(self):
        responder, completions = responder_with(['  "Aspirin Timing Help"\n'])

        title = run(responder.title_for("When do I take aspirin?", "In the morning.", ["Walking Routine Tips"]))

        assert title == "Aspirin Timing Help"
        sent = completions.calls[0]
        assert sent["max_tokens"] == 20
        assert sent["messages"][0] == {"role": "system", "content": TITLE_SYSTEM_PROMPT}
        assert "When do I take aspirin?" in sent["messages"][1]["content"]
        assert "Walking Routine Tips" in sent["messages"][1]["content"]

    def test_no_choices_returns_empty_title(self):
        responder, _ = responder_with([])
        assert run(responder.title_for("hello", "hi", [])) == ""
