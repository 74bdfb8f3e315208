"""会话聚合与消息记录。

- MessageRecord: 写入后不可变的单条消息。
- Conversation: 一个 (session_id, conversation_id) 下的全部消息与元数据。
- ConversationSummary: 会话列表页使用的摘要。
- trim_messages: 超出上限时的裁剪规则。
- ConversationStore: 存储层协议。
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Protocol

from .models import Role

UNTITLED = "Untitled Conversation"
NO_MESSAGES = "No messages"
PREVIEW_LENGTH = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MessageRecord:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class ConversationSummary:
    conversation_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    last_message: str


@dataclass
class Conversation:
    session_id: str
    conversation_id: str
    messages: List[MessageRecord] = field(default_factory=list)
    title: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def system_count(self) -> int:
        return sum(1 for m in self.messages if m.role == "system")

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        """created_at + ttl 已过即视为过期。"""

        now = now or utcnow()
        return self.created_at + timedelta(seconds=ttl_seconds) <= now

    def summary(self) -> ConversationSummary:
        if self.messages:
            last_message = self.messages[-1].content[:PREVIEW_LENGTH] + "..."
        else:
            last_message = NO_MESSAGES
        return ConversationSummary(
            conversation_id=self.conversation_id,
            title=self.title or UNTITLED,
            created_at=self.created_at,
            updated_at=self.updated_at,
            message_count=len(self.messages),
            last_message=last_message,
        )


def trim_messages(messages: List[MessageRecord], max_messages: int) -> List[MessageRecord]:
    """裁剪到 max_messages 条以内。

    system 消息全部保留；其余消息只保留最近的 max_messages - system 条数
    （不足时按 0 处理）。保留下来的消息维持原有相对顺序。
    """

    if len(messages) <= max_messages:
        return list(messages)
    system_count = sum(1 for m in messages if m.role == "system")
    keep_other = max(0, max_messages - system_count)
    other_total = len(messages) - system_count
    drop = other_total - keep_other
    trimmed: List[MessageRecord] = []
    for m in messages:
        if m.role != "system" and drop > 0:
            drop -= 1
            continue
        trimmed.append(m)
    return trimmed


class ConversationStore(Protocol):
    def append_message(self, session_id: str, conversation_id: str, message: MessageRecord) -> Conversation:
        ...

    def load_history(
        self, session_id: str, conversation_id: str, limit: Optional[int] = None
    ) -> List[MessageRecord]:
        ...

    def get_conversation(self, session_id: str, conversation_id: str) -> Optional[Conversation]:
        ...

    def list_conversations(self, session_id: str) -> List[ConversationSummary]:
        ...

    def delete_conversation(self, session_id: str, conversation_id: str) -> None:
        ...

    def clear_session(self, session_id: str) -> int:
        ...

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        ...
