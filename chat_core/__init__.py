"""Chat Core 顶层包。

该包提供会话式聊天应用的核心实现，
包括配置加载、领域模型、Provider 适配、对话编排、
会话持久化存储以及 HTTP 接口等能力。
"""

from chat_core.api.service import ChatService, build_service, get_default_service

__all__ = ["ChatService", "build_service", "get_default_service"]
