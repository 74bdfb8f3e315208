"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (azure_client、openai_client)。
"""

from typing import Dict, Optional, Type

from chat_core.config.settings import settings
from chat_core.providers.base import ProviderClient
from chat_core.providers.azure_client import AzureOpenAIClient
from chat_core.providers.openai_client import OpenAIClient
from chat_core.providers.registry import get_provider_config

_CLIENTS: Dict[str, Type[ProviderClient]] = {
    "azure": AzureOpenAIClient,
    "openai": OpenAIClient,
}


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。

    未注册的名称抛出 KeyError，不会回退到默认 Provider。
    """

    cfg = get_provider_config(name or getattr(settings, "default_provider", "azure"))
    return _CLIENTS[cfg.name](settings)
