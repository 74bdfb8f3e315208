"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "chat"。
- provider_model：厂商实际提供的模型 ID 或 Azure 部署名，例如 "gpt-4"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置；
Azure 的部署名、OpenAI 的模型名可以再由 settings 覆盖。"""

from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]

    def model(self, logical_name: str, override: Optional[str] = None) -> ModelConfig:
        """按逻辑名取模型配置；override 非空时替换厂商模型名。"""

        try:
            cfg = self.models[logical_name]
        except KeyError:
            raise KeyError(f"Unknown model {logical_name!r} for provider {self.name!r}")
        if override:
            cfg = replace(cfg, provider_model=override)
        return cfg


# Azure OpenAI 配置（base_url 为空，必须由 settings.azure_openai_endpoint 提供）
AZURE_CONFIG = ProviderConfig(
    name="azure",
    base_url="",
    models={
        "chat": ModelConfig(
            logical_name="chat",
            provider_model="gpt-4",
            max_tokens=1000,
            default_temperature=0.7,
        )
    },
)

# OpenAI 兼容接口配置
OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models={
        "chat": ModelConfig(
            logical_name="chat",
            provider_model="gpt-4o-mini",
            max_tokens=1000,
            default_temperature=0.7,
        )
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "azure": AZURE_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
