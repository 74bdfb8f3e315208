import tempfile
from pathlib import Path

import pytest

from chat_core.agents.orchestrator import ChatOrchestrator, OrchestratorConfig
from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.domain.models import ChatResult, ChatChoice, ChatMessage, ChatUsage
from chat_core.domain.exceptions import ApiError, RateLimitError, StorageError, ValidationError


class FakeProvider:
    name = "fake"

    def __init__(self, reply="done", error=None, choices=True):
        self.reply = reply
        self.error = error
        self.choices = choices
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        choices = [ChatChoice(index=0, message=ChatMessage(role="assistant", content=self.reply))] if self.choices else []
        return ChatResult(
            provider="fake",
            model="chat",
            choices=choices,
            usage=ChatUsage(prompt_tokens=3, completion_tokens=1, total_tokens=4),
            raw={},
        )


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as d:
        yield JsonConversationStore(root=Path(d) / ".storage")


def _orchestrator(store, provider, **cfg):
    return ChatOrchestrator(store=store, provider_client=provider, config=OrchestratorConfig(provider="fake", **cfg))


def test_handle_message_persists_both_turns(store):
    provider = FakeProvider(reply="Hello there")
    orch = _orchestrator(store, provider)
    result = orch.handle_message("sess", "  Hi  ")

    assert result.reply == "Hello there"
    assert result.conversation_id
    assert result.usage.total_tokens == 4
    history = store.load_history("sess", result.conversation_id)
    assert [(m.role, m.content) for m in history] == [("user", "Hi"), ("assistant", "Hello there")]


def test_prompt_contains_system_history_and_new_message(store):
    provider = FakeProvider()
    orch = _orchestrator(store, provider, temperature=0.2, max_tokens=321)
    first = orch.handle_message("sess", "first")
    orch.handle_message("sess", "second", conversation_id=first.conversation_id)

    req = provider.requests[-1]
    assert [m.role for m in req.messages] == ["system", "user", "assistant", "user"]
    assert "helpful AI assistant" in req.messages[0].content
    assert [m.content for m in req.messages[1:]] == ["first", "done", "second"]
    assert req.temperature == 0.2
    assert req.max_tokens == 321


def test_conversation_id_resolution(store):
    orch = _orchestrator(store, FakeProvider())
    assert orch.handle_message("s", "x", conversation_id="explicit", current_conversation_id="current").conversation_id == "explicit"
    assert orch.handle_message("s", "x", current_conversation_id="current").conversation_id == "current"
    minted = orch.handle_message("s", "x").conversation_id
    assert minted not in ("explicit", "current")


@pytest.mark.parametrize("text, code", [("", "EMPTY_MESSAGE"), ("   \n", "EMPTY_MESSAGE"), (None, "EMPTY_MESSAGE"), ("x" * 4001, "MESSAGE_TOO_LONG")])
def test_validation_errors(store, text, code):
    provider = FakeProvider()
    orch = _orchestrator(store, provider)
    with pytest.raises(ValidationError) as exc:
        orch.handle_message("s", text, conversation_id="c")
    assert exc.value.code == code
    assert exc.value.http_status == 400
    assert provider.requests == []
    assert store.load_history("s", "c") == []


def test_max_length_boundary_accepted(store):
    orch = _orchestrator(store, FakeProvider())
    result = orch.handle_message("s", "x" * 4000)
    assert len(store.load_history("s", result.conversation_id)) == 2


def test_provider_error_propagates_without_persisting(store):
    orch = _orchestrator(store, FakeProvider(error=RateLimitError(code="RATE_LIMIT", message="slow down")))
    with pytest.raises(RateLimitError):
        orch.handle_message("s", "hello", conversation_id="c")
    assert store.load_history("s", "c") == []


def test_missing_choices_is_service_error(store):
    orch = _orchestrator(store, FakeProvider(choices=False))
    with pytest.raises(ApiError) as exc:
        orch.handle_message("s", "hello", conversation_id="c")
    assert exc.value.code == "EMPTY_RESPONSE"
    assert store.load_history("s", "c") == []


def test_crash_between_saves_leaves_unanswered_turn(store, monkeypatch):
    orch = _orchestrator(store, FakeProvider())
    real_append = store.append_message
    calls = []

    def flaky_append(session_id, conversation_id, message):
        calls.append(message.role)
        if message.role == "assistant":
            raise StorageError(code="STORE_WRITE_ERROR", message="disk full")
        return real_append(session_id, conversation_id, message)

    monkeypatch.setattr(store, "append_message", flaky_append)
    with pytest.raises(StorageError):
        orch.handle_message("s", "hello", conversation_id="c")
    assert calls == ["user", "assistant"]

    monkeypatch.setattr(store, "append_message", real_append)
    history = store.load_history("s", "c")
    assert [(m.role, m.content) for m in history] == [("user", "hello")]
    # 下一轮对话照常进行
    result = orch.handle_message("s", "again", conversation_id="c")
    assert result.reply == "done"
    assert [m.role for m in store.load_history("s", "c")] == ["user", "user", "assistant"]
