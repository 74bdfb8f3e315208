"""基于本地 JSON 文件的会话存储。

目录结构::

    <root>/conversations/<sha256(session_id)>/<sha256(conversation_id)>.json

每个 (session_id, conversation_id) 只对应一个文件，键对唯一性由路径保证。
append_message 在文件锁（O_CREAT | O_EXCL 创建的 .lock 文件）保护下
完成「读-改-写」，写入走临时文件 + os.replace，保证同一会话并发追加不丢消息。

已知限制：锁是建议性的，只在支持原子 O_EXCL 的本地文件系统上可靠；
部分网络文件系统上同一会话的并发写仍可能冲突。
"""

import hashlib
import json
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    Conversation,
    ConversationStore,
    ConversationSummary,
    MessageRecord,
    trim_messages,
    utcnow,
)
from chat_core.domain.exceptions import NotFoundError, StorageError, ValidationError
from chat_core.domain.models import ROLES
from chat_core.domain.title import generate_title
from chat_core.infrastructure.logging.logger import logger, short_id

# 超过该时长仍未释放的锁视为进程崩溃遗留
STALE_LOCK_SECONDS = 30.0
_LOCK_POLL_SECONDS = 0.01


def _key(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _dump_dt(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _load_dt(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    def __init__(
        self,
        root: str | Path | None = None,
        max_messages: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
        max_content_length: Optional[int] = None,
        lock_timeout: Optional[float] = None,
    ):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self.max_messages = max_messages or settings.max_chat_history
        self.ttl_seconds = ttl_seconds or settings.conversation_ttl
        self.max_content_length = max_content_length or settings.max_stored_content_length
        self._lock_timeout = lock_timeout or settings.storage_lock_timeout

    # ---- 写 ----

    def append_message(self, session_id: str, conversation_id: str, message: MessageRecord) -> Conversation:
        message = self._validate_message(message)
        path = self._conv_path(session_id, conversation_id)
        with self._locked(path):
            conv = self._read(path)
            if conv is not None and conv.is_expired(self.ttl_seconds):
                conv = None
            if conv is None:
                now = utcnow()
                conv = Conversation(
                    session_id=session_id,
                    conversation_id=conversation_id,
                    created_at=now,
                    updated_at=now,
                )
            if message.role == "system" and conv.system_count + 1 > self.max_messages:
                raise ValidationError(
                    code="SYSTEM_MESSAGE_LIMIT",
                    message=f"system messages alone would exceed {self.max_messages}",
                )
            conv.messages.append(message)
            if not conv.title and message.role == "user":
                conv.title = generate_title(message.content)
            if len(conv.messages) > self.max_messages:
                before = len(conv.messages)
                conv.messages = trim_messages(conv.messages, self.max_messages)
                logger.info(
                    "Trimmed conversation history",
                    extra={"extra": {
                        "session_id": short_id(session_id),
                        "conversation_id": short_id(conversation_id),
                        "removed": before - len(conv.messages),
                    }},
                )
            conv.updated_at = utcnow()
            self._write(path, conv)
        return conv

    def delete_conversation(self, session_id: str, conversation_id: str) -> None:
        path = self._conv_path(session_id, conversation_id)
        with self._locked(path):
            conv = self._read(path)
            if conv is None:
                raise NotFoundError(code="CONVERSATION_NOT_FOUND", message="Conversation not found")
            self._unlink(path)
            if conv.is_expired(self.ttl_seconds):
                raise NotFoundError(code="CONVERSATION_NOT_FOUND", message="Conversation not found")

    def clear_session(self, session_id: str) -> int:
        sdir = self._conv_root / _key(session_id)
        if not sdir.exists():
            return 0
        deleted = 0
        for path in sorted(sdir.glob("*.json")):
            with self._locked(path):
                if path.exists():
                    self._unlink(path)
                    deleted += 1
        self._remove_if_empty(sdir)
        return deleted

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """删除所有已过期的会话，返回删除数量。"""

        now = now or utcnow()
        purged = 0
        for sdir in sorted(p for p in self._conv_root.iterdir() if p.is_dir()):
            for path in sorted(sdir.glob("*.json")):
                with self._locked(path):
                    try:
                        conv = self._read(path)
                    except StorageError as e:
                        logger.warning("Skip unreadable conversation", extra={"extra": {"file": path.name[:8], "error": e.message}})
                        continue
                    if conv is not None and conv.is_expired(self.ttl_seconds, now):
                        self._unlink(path)
                        purged += 1
            self._remove_if_empty(sdir)
        if purged:
            logger.info("Purged expired conversations", extra={"extra": {"count": purged}})
        return purged

    # ---- 读 ----

    def get_conversation(self, session_id: str, conversation_id: str) -> Optional[Conversation]:
        conv = self._read(self._conv_path(session_id, conversation_id))
        if conv is None or conv.is_expired(self.ttl_seconds):
            return None
        return conv

    def load_history(
        self, session_id: str, conversation_id: str, limit: Optional[int] = None
    ) -> List[MessageRecord]:
        conv = self.get_conversation(session_id, conversation_id)
        if conv is None:
            return []
        messages = sorted(conv.messages, key=lambda m: m.timestamp)
        if limit is not None and limit > 0 and len(messages) > limit:
            messages = messages[-limit:]
        return messages

    def list_conversations(self, session_id: str) -> List[ConversationSummary]:
        sdir = self._conv_root / _key(session_id)
        items: List[ConversationSummary] = []
        if not sdir.exists():
            return items
        for path in sdir.glob("*.json"):
            try:
                conv = self._read(path)
            except StorageError as e:
                logger.warning(
                    "Skip unreadable conversation",
                    extra={"extra": {"session_id": short_id(session_id), "error": e.message}},
                )
                continue
            if conv is None or conv.is_expired(self.ttl_seconds):
                continue
            items.append(conv.summary())
        items.sort(key=lambda s: s.updated_at, reverse=True)
        return items

    # ---- 辅助方法 ----

    def _conv_path(self, session_id: str, conversation_id: str) -> Path:
        return self._conv_root / _key(session_id) / f"{_key(conversation_id)}.json"

    def _validate_message(self, message: MessageRecord) -> MessageRecord:
        if message.role not in ROLES:
            raise ValidationError(code="INVALID_ROLE", message=f"Unsupported role: {message.role!r}")
        if not message.content or not message.content.strip():
            raise ValidationError(code="EMPTY_CONTENT", message="Message content is required")
        if len(message.content) > self.max_content_length:
            return MessageRecord(
                role=message.role,
                content=message.content[: self.max_content_length],
                timestamp=message.timestamp,
            )
        return message

    @contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        lock_path = path.with_suffix(".lock")
        deadline = time.monotonic() + self._lock_timeout
        while True:
            try:
                lock_path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.close(fd)
                break
            except FileExistsError:
                self._break_stale_lock(lock_path)
                if time.monotonic() >= deadline:
                    raise StorageError(code="STORE_LOCK_TIMEOUT", message=f"Timed out waiting for {lock_path.name}")
                time.sleep(_LOCK_POLL_SECONDS)
            except FileNotFoundError:
                # 会话目录刚被 clear_session / purge_expired 删除，重建后重试
                if time.monotonic() >= deadline:
                    raise StorageError(code="STORE_LOCK_TIMEOUT", message=f"Timed out waiting for {lock_path.name}")
            except OSError as e:
                raise StorageError(code="STORE_WRITE_ERROR", message=str(e))
        try:
            yield
        finally:
            lock_path.unlink(missing_ok=True)

    @staticmethod
    def _break_stale_lock(lock_path: Path) -> None:
        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > STALE_LOCK_SECONDS:
            lock_path.unlink(missing_ok=True)

    def _read(self, path: Path) -> Optional[Conversation]:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return self._to_conversation(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e))

    def _write(self, path: Path, conv: Conversation) -> None:
        tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
        obj = {
            "session_id": conv.session_id,
            "conversation_id": conv.conversation_id,
            "title": conv.title,
            "created_at": _dump_dt(conv.created_at),
            "updated_at": _dump_dt(conv.updated_at),
            "messages": [
                {"role": m.role, "content": m.content, "timestamp": _dump_dt(m.timestamp)}
                for m in conv.messages
            ],
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e))

    @staticmethod
    def _remove_if_empty(sdir: Path) -> None:
        try:
            sdir.rmdir()
        except OSError:
            # 目录非空或已被删除
            pass

    def _to_conversation(self, data: Dict[str, Any]) -> Conversation:
        return Conversation(
            session_id=data["session_id"],
            conversation_id=data["conversation_id"],
            title=data.get("title") or None,
            created_at=_load_dt(data["created_at"]),
            updated_at=_load_dt(data["updated_at"]),
            messages=[
                MessageRecord(
                    role=m["role"],
                    content=m.get("content") or "",
                    timestamp=_load_dt(m["timestamp"]),
                )
                for m in data.get("messages") or []
            ],
        )
