import dataclasses
import logging
from types import SimpleNamespace

import pytest
from openai import OpenAIError

import chat
from chat import (
    EMPTY_REPLY_FALLBACK,
    ERROR_REPLY,
    SYSTEM_PROMPT,
    CompletionClient,
    CompletionError,
    Message,
    Role,
    TranscriptController,
)
from tests.fakes import FakeCompletionClient


def test_role_is_closed_to_three_values():
    assert [r.value for r in Role] == ["system", "user", "assistant"]


def test_message_is_immutable():
    message = Message(Role.USER, "hi")
    with pytest.raises(dataclasses.FrozenInstanceError):
        message.content = "changed"
    assert message.to_dict() == {"role": "user", "content": "hi"}


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_input_is_ignored(fake_client, text):
    controller = TranscriptController(fake_client)
    assert controller.submit(text) is None
    assert controller.messages == ()
    assert controller.busy is False
    assert fake_client.calls == []


def test_user_message_is_appended_before_the_reply_arrives():
    seen = {}
    controller = None

    def on_call(system, messages):
        seen["messages"] = controller.messages
        seen["busy"] = controller.busy
        seen["input"] = controller.input

    client = FakeCompletionClient(replies=["Hello!"], on_call=on_call)
    controller = TranscriptController(client)
    controller.input = "hi"
    controller.submit()

    assert seen["messages"] == (Message(Role.USER, "hi"),)
    assert seen["busy"] is True
    assert seen["input"] == ""


def test_successful_reply_is_appended(fake_client):
    controller = TranscriptController(fake_client)
    reply = controller.submit("hi")

    assert reply == Message(Role.ASSISTANT, "Hello!")
    assert controller.messages == (Message(Role.USER, "hi"), Message(Role.ASSISTANT, "Hello!"))
    assert controller.busy is False


def test_empty_reply_uses_fallback():
    controller = TranscriptController(FakeCompletionClient(replies=[""]))
    controller.submit("hi")
    assert controller.messages[-1] == Message(Role.ASSISTANT, EMPTY_REPLY_FALLBACK)


def test_client_error_appends_error_reply_and_clears_busy(failing_client, caplog):
    controller = TranscriptController(failing_client)
    with caplog.at_level(logging.ERROR, logger="chat"):
        reply = controller.submit("hi")

    assert reply == Message(Role.ASSISTANT, ERROR_REPLY)
    assert controller.messages == (Message(Role.USER, "hi"), Message(Role.ASSISTANT, ERROR_REPLY))
    assert controller.busy is False
    assert "Completion request failed" in caplog.text


def test_any_client_exception_appends_error_reply(caplog):
    controller = TranscriptController(FakeCompletionClient(replies=[RuntimeError("bug")]))
    with caplog.at_level(logging.ERROR, logger="chat"):
        reply = controller.submit("hi")

    assert reply == Message(Role.ASSISTANT, ERROR_REPLY)
    assert controller.messages == (Message(Role.USER, "hi"), Message(Role.ASSISTANT, ERROR_REPLY))
    assert controller.busy is False
    assert "RuntimeError: bug" in caplog.text


def test_payload_is_system_then_prior_messages_then_new_input():
    client = FakeCompletionClient(replies=["m2", "ok"])
    controller = TranscriptController(client)
    controller.submit("m1")
    controller.submit("x")

    system, sent = client.calls[-1]
    assert system == SYSTEM_PROMPT
    assert sent == [
        Message(Role.USER, "m1"),
        Message(Role.ASSISTANT, "m2"),
        Message(Role.USER, "x"),
    ]


def test_reply_superseded_by_newer_submit_is_discarded():
    controller = None

    def on_call(system, messages):
        if len(client.calls) == 1:
            controller.submit("second")

    client = FakeCompletionClient(replies=["first reply", "second reply"], on_call=on_call)
    controller = TranscriptController(client)
    assert controller.submit("first") is None

    assert controller.messages == (
        Message(Role.USER, "first"),
        Message(Role.USER, "second"),
        Message(Role.ASSISTANT, "second reply"),
    )
    assert controller.generation == 2
    assert controller.busy is False


def test_reset_discards_outstanding_reply():
    controller = None

    def on_call(system, messages):
        controller.reset()

    client = FakeCompletionClient(replies=["late"], on_call=on_call)
    controller = TranscriptController(client)
    assert controller.submit("hi") is None
    assert controller.messages == ()
    assert controller.busy is False


class _FakeCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def _install_fake_openai(monkeypatch, completions):
    created = {}

    def fake_openai(**kwargs):
        created.update(kwargs)
        return SimpleNamespace(chat=SimpleNamespace(completions=completions))

    monkeypatch.setattr(chat, "OpenAI", fake_openai)
    return created


def _response(*contents):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=c)) for c in contents]
    )


def test_completion_client_sends_system_prompt_first(monkeypatch):
    completions = _FakeCompletions(response=_response("Hello!", "ignored"))
    created = _install_fake_openai(monkeypatch, completions)
    client = CompletionClient("https://api.example.com", "sk-test", "deepseek-chat")

    text = client.complete("be nice", [Message(Role.USER, "hi")])

    assert text == "Hello!"
    assert created["base_url"] == "https://api.example.com"
    assert created["api_key"] == "sk-test"
    assert completions.kwargs == {
        "model": "deepseek-chat",
        "messages": [
            {"role": "system", "content": "be nice"},
            {"role": "user", "content": "hi"},
        ],
    }


@pytest.mark.parametrize("response", [_response(None), SimpleNamespace(choices=[])])
def test_completion_client_returns_empty_text_for_empty_response(monkeypatch, response):
    _install_fake_openai(monkeypatch, _FakeCompletions(response=response))
    client = CompletionClient("https://api.example.com", "sk-test", "deepseek-chat")
    assert client.complete(SYSTEM_PROMPT, []) == ""


def test_completion_client_wraps_sdk_errors(monkeypatch):
    _install_fake_openai(monkeypatch, _FakeCompletions(error=OpenAIError("boom")))
    client = CompletionClient("https://api.example.com", "sk-test", "deepseek-chat")
    with pytest.raises(CompletionError, match="boom"):
        client.complete(SYSTEM_PROMPT, [Message(Role.USER, "hi")])


def test_completion_client_without_key_fails_at_call_time():
    client = CompletionClient("https://api.example.com", None, "deepseek-chat")
    with pytest.raises(CompletionError):
        client.complete(SYSTEM_PROMPT, [Message(Role.USER, "hi")])
