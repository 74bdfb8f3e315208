import json
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.domain.conversation import MessageRecord
from chat_core.domain.exceptions import NotFoundError, StorageError, ValidationError


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as d:
        yield JsonConversationStore(root=Path(d) / ".storage", max_messages=50, ttl_seconds=3600)


def test_json_store_append_and_history(store):
    before = datetime.now(timezone.utc)
    msg = MessageRecord(role="user", content="hello")
    conv = store.append_message("sess-1", "conv-1", msg)
    after = datetime.now(timezone.utc)
    assert conv.title == "hello"
    assert len(conv.messages) == 1

    history = store.load_history("sess-1", "conv-1")
    last = history[-1]
    assert (last.role, last.content) == ("user", "hello")
    assert before <= last.timestamp <= after


def test_json_store_load_missing_returns_empty(store):
    assert store.load_history("nobody", "nothing") == []
    assert store.get_conversation("nobody", "nothing") is None


def test_json_store_history_limit_and_order(store):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    # 故意乱序写入，读取时按时间升序
    for i in [2, 0, 1, 3]:
        store.append_message("s", "c", MessageRecord(role="user", content=f"m{i}", timestamp=base + timedelta(seconds=i)))
    assert [m.content for m in store.load_history("s", "c")] == ["m0", "m1", "m2", "m3"]
    assert [m.content for m in store.load_history("s", "c", limit=2)] == ["m2", "m3"]
    assert len(store.load_history("s", "c", limit=0)) == 4
    # 非正数 limit 视为不限制
    assert [m.content for m in store.load_history("s", "c", limit=-1)] == ["m0", "m1", "m2", "m3"]


def test_json_store_title_set_once_from_user(store):
    store.append_message("s", "c", MessageRecord(role="system", content="be nice"))
    assert store.get_conversation("s", "c").title is None
    store.append_message("s", "c", MessageRecord(role="user", content="First question"))
    store.append_message("s", "c", MessageRecord(role="user", content="Second question"))
    assert store.get_conversation("s", "c").title == "First question"


def test_json_store_trims_to_max_keeping_system():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d), max_messages=5)
        store.append_message("s", "c", MessageRecord(role="system", content="sys"))
        for i in range(10):
            role = "user" if i % 2 == 0 else "assistant"
            conv = store.append_message("s", "c", MessageRecord(role=role, content=f"m{i}"))
            assert len(conv.messages) <= 5
        contents = [m.content for m in store.load_history("s", "c")]
        assert contents == ["sys", "m6", "m7", "m8", "m9"]


def test_json_store_rejects_system_overflow():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d), max_messages=2)
        store.append_message("s", "c", MessageRecord(role="system", content="a"))
        store.append_message("s", "c", MessageRecord(role="system", content="b"))
        with pytest.raises(ValidationError) as exc:
            store.append_message("s", "c", MessageRecord(role="system", content="c"))
        assert exc.value.code == "SYSTEM_MESSAGE_LIMIT"
        assert len(store.load_history("s", "c")) == 2


def test_json_store_validates_and_truncates_content():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d), max_content_length=10)
        with pytest.raises(ValidationError):
            store.append_message("s", "c", MessageRecord(role="user", content=""))
        with pytest.raises(ValidationError):
            store.append_message("s", "c", MessageRecord(role="user", content="  \n\t "))
        with pytest.raises(ValidationError):
            store.append_message("s", "c", MessageRecord(role="tool", content="x"))
        conv = store.append_message("s", "c", MessageRecord(role="assistant", content="0123456789abcdef"))
        assert conv.messages[-1].content == "0123456789"


def test_json_store_keys_are_scoped_by_session(store):
    store.append_message("alice", "shared", MessageRecord(role="user", content="from alice"))
    store.append_message("bob", "shared", MessageRecord(role="user", content="from bob"))
    assert [m.content for m in store.load_history("alice", "shared")] == ["from alice"]
    assert [m.content for m in store.load_history("bob", "shared")] == ["from bob"]


def test_json_store_list_conversations_sorted(store):
    store.append_message("s", "old", MessageRecord(role="user", content="old chat"))
    store.append_message("s", "new", MessageRecord(role="user", content="new chat"))
    store.append_message("s", "new", MessageRecord(role="assistant", content="y" * 120))
    store.append_message("other", "x", MessageRecord(role="user", content="not mine"))

    items = store.list_conversations("s")
    assert [i.conversation_id for i in items] == ["new", "old"]
    assert items[0].title == "new chat"
    assert items[0].message_count == 2
    assert items[0].last_message == "y" * 100 + "..."
    assert items[1].last_message == "old chat..."
    assert store.list_conversations("empty") == []


def test_json_store_delete_conversation(store):
    store.append_message("s", "c", MessageRecord(role="user", content="bye"))
    store.delete_conversation("s", "c")
    assert store.load_history("s", "c") == []
    with pytest.raises(NotFoundError):
        store.delete_conversation("s", "c")


def test_json_store_delete_missing_raises_not_found(store):
    with pytest.raises(NotFoundError) as exc:
        store.delete_conversation("s", "missing")
    assert exc.value.code == "CONVERSATION_NOT_FOUND"


def test_json_store_clear_session(store):
    assert store.clear_session("s") == 0
    store.append_message("s", "a", MessageRecord(role="user", content="1"))
    store.append_message("s", "b", MessageRecord(role="user", content="2"))
    store.append_message("t", "a", MessageRecord(role="user", content="3"))
    assert store.clear_session("s") == 2
    assert store.list_conversations("s") == []
    assert len(store.list_conversations("t")) == 1
    assert store.clear_session("s") == 0


def test_json_store_expiry(store):
    old = datetime.now(timezone.utc) - timedelta(hours=2)
    store.append_message("s", "stale", MessageRecord(role="user", content="old"))
    store.append_message("s", "fresh", MessageRecord(role="user", content="new"))
    # 手工把 created_at 改到 TTL 之前
    path = store._conv_path("s", "stale")
    data = json.loads(path.read_text(encoding="utf-8"))
    data["created_at"] = old.isoformat()
    path.write_text(json.dumps(data), encoding="utf-8")

    # 过期清理前，读写接口已经把它当作不存在
    assert store.load_history("s", "stale") == []
    assert [i.conversation_id for i in store.list_conversations("s")] == ["fresh"]

    assert store.purge_expired() == 1
    assert not path.exists()
    assert store.load_history("s", "stale") == []
    with pytest.raises(NotFoundError):
        store.delete_conversation("s", "stale")
    assert store.purge_expired() == 0


def test_json_store_append_replaces_expired(store):
    store.append_message("s", "c", MessageRecord(role="user", content="ancient"))
    path = store._conv_path("s", "c")
    data = json.loads(path.read_text(encoding="utf-8"))
    data["created_at"] = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    path.write_text(json.dumps(data), encoding="utf-8")

    conv = store.append_message("s", "c", MessageRecord(role="user", content="fresh start"))
    assert [m.content for m in conv.messages] == ["fresh start"]
    assert conv.title == "fresh start"


def test_json_store_corrupt_document_raises_storage_error(store):
    store.append_message("s", "c", MessageRecord(role="user", content="ok"))
    store._conv_path("s", "c").write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError) as exc:
        store.load_history("s", "c")
    assert exc.value.code == "STORE_READ_ERROR"
    # 列表接口跳过损坏的文档
    assert store.list_conversations("s") == []


def test_json_store_lock_timeout():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d), lock_timeout=0.05)
        path = store._conv_path("s", "c")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.with_suffix(".lock").write_text("", encoding="utf-8")
        with pytest.raises(StorageError) as exc:
            store.append_message("s", "c", MessageRecord(role="user", content="blocked"))
        assert exc.value.code == "STORE_LOCK_TIMEOUT"


def test_json_store_concurrent_appends_not_lost(store):
    barrier = threading.Barrier(8)

    def append(i):
        barrier.wait()
        store.append_message("s", "race", MessageRecord(role="user", content=f"msg-{i}"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(append, range(8)))

    contents = {m.content for m in store.load_history("s", "race")}
    assert contents == {f"msg-{i}" for i in range(8)}


def test_json_store_blank_message_does_not_claim_title(store):
    with pytest.raises(ValidationError) as exc:
        store.append_message("s", "c", MessageRecord(role="user", content="   "))
    assert exc.value.code == "EMPTY_CONTENT"
    conv = store.append_message("s", "c", MessageRecord(role="user", content="first real question"))
    store.append_message("s", "c", MessageRecord(role="user", content="second"))
    assert conv.title == "first real question"
    assert store.get_conversation("s", "c").title == "first real question"
