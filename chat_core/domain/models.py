"""LLM 边界的统一数据模型。

本模块定义了对话编排层与各 Provider 之间共享的标准数据结构：

- ChatMessage: 一条发给/来自模型的消息（system/user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

所有 Provider 适配器都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import Literal, Optional, List


# 消息角色类型（与 OpenAI / Azure OpenAI 的 role 字段对应）
Role = Literal["system", "user", "assistant"]

ROLES = ("system", "user", "assistant")


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。"""

    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    编排层拼好 system + 历史 + 新消息后生成 ChatRequest，再交给具体 ProviderClient。
    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    """

    provider: str  # 逻辑 Provider 名，如 "azure"
    model: str  # 逻辑模型名，如 "chat"（再由 registry 映射为真实模型/部署名）
    messages: List[ChatMessage]
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: Optional[int] = 1000
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatChoice:
    """单个候选回答（目前只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - provider: 逻辑 Provider 名（如 "azure"）。
    - model: 逻辑模型名（如 "chat"）。
    - choices: 一个或多个候选回答。
    - usage: token 使用统计，缺省时为全 0。
    - raw: 原始响应 JSON，用于调试。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
