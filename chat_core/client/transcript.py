"""UI 侧的对话记录。

界面在发送时先乐观地插入用户消息；请求最终失败时撤回这条消息，
保证界面展示的内容与已持久化的内容一致（不会出现重复或孤立的消息）。
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from chat_core.domain.exceptions import BusinessError

# send(text, conversation_id) -> ChatService.send_message 的返回结构
SendFn = Callable[[str, Optional[str]], Dict[str, Any]]

GENERIC_SEND_ERROR = "Failed to send message. Please try again."


class ChatTranscript:
    def __init__(self, send: SendFn, conversation_id: Optional[str] = None):
        self._send = send
        self.conversation_id = conversation_id
        self.messages: List[Dict[str, Any]] = []
        self.sending = False
        self.last_error: Optional[str] = None

    def send(self, text: str) -> Dict[str, Any]:
        """发送一条消息；失败时撤回乐观插入的用户消息并重新抛出异常。"""

        if self.sending:
            raise RuntimeError("A message is already being sent")
        optimistic = {
            "role": "user",
            "content": text.strip(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        self.messages.append(optimistic)
        self.sending = True
        self.last_error = None
        try:
            result = self._send(text, self.conversation_id)
        except Exception as e:
            self.messages.remove(optimistic)
            self.last_error = e.user_message if isinstance(e, BusinessError) else GENERIC_SEND_ERROR
            raise
        finally:
            self.sending = False
        self.conversation_id = result["conversation_id"]
        self.messages.append({"role": "assistant", "content": result["reply"], "timestamp": result["timestamp"]})
        return result

    def load(self, history: Dict[str, Any]) -> None:
        """用 ChatService.get_history 的结果替换当前展示内容。"""

        self.messages = list(history.get("messages") or [])
        self.conversation_id = history.get("conversation_id") or self.conversation_id

    def reset(self, conversation_id: Optional[str] = None) -> None:
        self.messages = []
        self.conversation_id = conversation_id
        self.last_error = None
