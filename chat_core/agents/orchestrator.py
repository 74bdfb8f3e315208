"""对话编排核心模块。

单次请求的处理流程：校验输入、确定会话 ID、读取历史、拼装 prompt、
调用 provider、依次保存用户消息与助手回复。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4
import time
import logging

from chat_core.config.settings import settings
from chat_core.domain.conversation import ConversationStore, MessageRecord, utcnow
from chat_core.domain.exceptions import ApiError, BusinessError, ValidationError
from chat_core.domain.models import ChatMessage, ChatRequest, ChatResult, ChatUsage
from chat_core.providers.base import ProviderClient
from chat_core.prompts import load_system_prompt
from chat_core.infrastructure.logging.logger import logger, short_id


@dataclass
class OrchestratorConfig:
    provider: str
    model: str = "chat"
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: Optional[int] = 1000
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    max_message_length: int = 4000  # 用户单条输入上限

    @classmethod
    def from_settings(cls, provider: Optional[str] = None, cfg=settings) -> "OrchestratorConfig":
        return cls(
            provider=provider or cfg.default_provider,
            model=cfg.default_model,
            temperature=cfg.llm_temperature,
            top_p=cfg.llm_top_p,
            max_tokens=cfg.llm_max_tokens,
            frequency_penalty=cfg.llm_frequency_penalty,
            presence_penalty=cfg.llm_presence_penalty,
            max_message_length=cfg.max_message_length,
        )


@dataclass
class ChatReply:
    """一次对话的返回结果。

    conversation_id 由调用方（会话层）自行写回 session。
    """

    reply: str
    conversation_id: str
    timestamp: datetime
    usage: ChatUsage = field(default_factory=ChatUsage)


class ChatOrchestrator:
    def __init__(
        self,
        store: ConversationStore,
        provider_client: ProviderClient,
        config: Optional[OrchestratorConfig] = None,
    ):
        self._store = store
        self._provider_client = provider_client
        self._config = config or OrchestratorConfig(provider=provider_client.name)

    def handle_message(
        self,
        session_id: str,
        text: Optional[str],
        conversation_id: Optional[str] = None,
        current_conversation_id: Optional[str] = None,
    ) -> ChatReply:
        """处理一条用户消息并返回助手回复。

        Args:
            session_id: 浏览器会话 ID
            text: 用户输入
            conversation_id: 显式指定的会话 ID（可选）
            current_conversation_id: session 中记录的当前会话 ID（可选）

        Returns:
            ChatReply，包含回复文本、最终使用的会话 ID 与 token 统计

        Raises:
            ValidationError: 输入为空或过长
            ServiceUnavailable / AuthError / ApiError: provider 调用失败
            StorageError: 保存消息失败
        """
        start_time = time.time()
        conv_id = conversation_id or current_conversation_id or str(uuid4())
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "session_id": short_id(session_id),
            "conversation_id": short_id(conv_id),
        }

        try:
            user_input = self._validate(text)

            # 1. 读取历史并拼装 prompt
            history = self._store.load_history(session_id, conv_id)
            chat_messages = self._build_prompt(history, user_input)
            received_at = utcnow()

            # 2. 调用 provider
            result = self._call_provider(chat_messages, log_ctx)
            reply_text = self._extract_reply(result)
            usage = result.usage or ChatUsage()

            # 3. 先存用户消息，再存助手回复（两次写入，不是一个事务）
            self._store.append_message(
                session_id, conv_id, MessageRecord(role="user", content=user_input, timestamp=received_at)
            )
            replied_at = utcnow()
            self._store.append_message(
                session_id, conv_id, MessageRecord(role="assistant", content=reply_text, timestamp=replied_at)
            )
        except BusinessError as e:
            self._log(
                logging.WARNING if isinstance(e, ValidationError) else logging.ERROR,
                "Chat completion error",
                log_ctx,
                code=e.code,
                error=e.message,
                error_type=type(e).__name__,
            )
            raise

        self._log(
            logging.INFO,
            "Chat completion successful",
            log_ctx,
            history_length=len(history),
            message_length=len(user_input),
            response_length=len(reply_text),
            tokens_used=usage.total_tokens,
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return ChatReply(reply=reply_text, conversation_id=conv_id, timestamp=replied_at, usage=usage)

    def _validate(self, text: Optional[str]) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError(
                code="EMPTY_MESSAGE",
                message="Message is required and must be a non-empty string",
            )
        if len(text) > self._config.max_message_length:
            raise ValidationError(
                code="MESSAGE_TOO_LONG",
                message=f"Message is too long. Maximum length is {self._config.max_message_length} characters.",
            )
        return text.strip()

    def _build_prompt(self, history: List[MessageRecord], user_input: str) -> List[ChatMessage]:
        chat_messages = [ChatMessage(role="system", content=load_system_prompt())]
        for mr in history:
            chat_messages.append(ChatMessage(role=mr.role, content=mr.content))
        chat_messages.append(ChatMessage(role="user", content=user_input))
        return chat_messages

    def _call_provider(self, chat_messages: List[ChatMessage], log_ctx: Dict[str, Any]) -> ChatResult:
        req = ChatRequest(
            provider=self._config.provider,
            model=self._config.model,
            messages=chat_messages,
            temperature=self._config.temperature,
            top_p=self._config.top_p,
            max_tokens=self._config.max_tokens,
            frequency_penalty=self._config.frequency_penalty,
            presence_penalty=self._config.presence_penalty,
        )
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=self._config.provider,
            model=self._config.model,
            message_count=len(chat_messages),
        )
        return self._provider_client.chat(req)

    def _extract_reply(self, result: ChatResult) -> str:
        if not result.choices:
            raise ApiError(code="EMPTY_RESPONSE", message=f"No response from {result.provider}")
        content = result.choices[0].message.content
        if not content:
            raise ApiError(code="EMPTY_RESPONSE", message=f"Empty reply from {result.provider}")
        return content

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
