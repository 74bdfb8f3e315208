"""对外 API 服务模块。

ChatService 是 UI / HTTP 层调用的唯一入口，返回可直接序列化为 JSON 的字典。
会话 ID 由调用方（会话 Cookie 层）提供，返回的 conversation_id 也由调用方
自行保存，本模块不读写任何 session 状态。
"""

from typing import Optional, Dict, Any
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import ConversationStore, ConversationSummary, MessageRecord
from chat_core.agents.orchestrator import ChatOrchestrator, OrchestratorConfig
from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.infrastructure.logging.logger import logger, short_id
from chat_core.providers import create_provider


def _iso(value) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _message_to_dict(m: MessageRecord) -> Dict[str, Any]:
    return {"role": m.role, "content": m.content, "timestamp": _iso(m.timestamp)}


def _summary_to_dict(s: ConversationSummary) -> Dict[str, Any]:
    return {
        "conversation_id": s.conversation_id,
        "title": s.title,
        "created_at": _iso(s.created_at),
        "updated_at": _iso(s.updated_at),
        "message_count": s.message_count,
        "last_message": s.last_message,
    }


class ChatService:
    def __init__(self, store: ConversationStore, orchestrator: ChatOrchestrator):
        self._store = store
        self._orchestrator = orchestrator

    def send_message(
        self,
        session_id: str,
        text: Optional[str],
        conversation_id: Optional[str] = None,
        current_conversation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """发送一条消息并返回助手回复。

        Returns:
            包含 reply、conversation_id、timestamp、usage 的字典

        Raises:
            各种 domain.exceptions 中定义的异常
        """
        result = self._orchestrator.handle_message(
            session_id,
            text,
            conversation_id=conversation_id,
            current_conversation_id=current_conversation_id,
        )
        return {
            "reply": result.reply,
            "conversation_id": result.conversation_id,
            "timestamp": _iso(result.timestamp),
            "usage": {
                "prompt_tokens": result.usage.prompt_tokens,
                "completion_tokens": result.usage.completion_tokens,
                "total_tokens": result.usage.total_tokens,
            },
        }

    def get_history(self, session_id: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
        """获取会话的消息历史；未指定会话时返回空列表。"""
        if not conversation_id:
            return {"messages": [], "conversation_id": None, "count": 0}
        messages = self._store.load_history(session_id, conversation_id)
        return {
            "messages": [_message_to_dict(m) for m in messages],
            "conversation_id": conversation_id,
            "count": len(messages),
        }

    def list_conversations(self, session_id: str) -> Dict[str, Any]:
        conversations = self._store.list_conversations(session_id)
        return {
            "conversations": [_summary_to_dict(s) for s in conversations],
            "count": len(conversations),
        }

    def delete_conversation(self, session_id: str, conversation_id: str) -> Dict[str, Any]:
        try:
            self._store.delete_conversation(session_id, conversation_id)
        except Exception as e:
            logger.error("Failed to delete conversation", extra={"extra": {
                "session_id": short_id(session_id),
                "conversation_id": short_id(conversation_id),
                "error": str(e),
            }})
            raise
        logger.info("Conversation deleted", extra={"extra": {
            "session_id": short_id(session_id),
            "conversation_id": short_id(conversation_id),
        }})
        return {"conversation_id": conversation_id}

    def new_conversation(self, session_id: str) -> Dict[str, Any]:
        """生成新的会话 ID；首条消息保存时才会真正落盘。"""
        conversation_id = str(uuid4())
        logger.info("New conversation created", extra={"extra": {
            "session_id": short_id(session_id),
            "conversation_id": short_id(conversation_id),
        }})
        return {"conversation_id": conversation_id}

    def clear_session(self, session_id: str) -> Dict[str, Any]:
        deleted = self._store.clear_session(session_id)
        logger.info("Session conversations cleared", extra={"extra": {
            "session_id": short_id(session_id),
            "deleted": deleted,
        }})
        return {"deleted": deleted}

    def purge_expired(self) -> Dict[str, Any]:
        """清理所有过期会话（跨浏览器会话），由 Web 层定期调用。"""
        return {"purged": self._store.purge_expired()}


_service: Optional[ChatService] = None


def build_service(store: Optional[ConversationStore] = None, provider_name: Optional[str] = None) -> ChatService:
    """按配置装配 store、provider 与编排器。"""
    store = store or JsonConversationStore(root=settings.storage_root)
    provider = create_provider(provider_name)
    orchestrator = ChatOrchestrator(
        store=store,
        provider_client=provider,
        config=OrchestratorConfig.from_settings(provider=provider.name),
    )
    return ChatService(store=store, orchestrator=orchestrator)


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        _service = build_service()
    return _service
