"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- LLM Provider ----
    default_provider: str = Field(
        default="azure",
        description="默认使用的 Provider 名称，例如 azure、openai",
    )
    default_model: str = Field(
        default="chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型/部署",
    )

    # Azure OpenAI
    azure_openai_endpoint: Optional[str] = Field(default=None, description="Azure OpenAI 资源地址")
    azure_openai_api_key: Optional[str] = Field(default=None, description="Azure OpenAI API 密钥")
    azure_openai_deployment: str = Field(default="gpt-4", description="Azure 部署名")
    azure_openai_api_version: str = Field(default="2023-05-15", description="Azure API 版本")

    # OpenAI 兼容接口
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI 模型名")

    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # 生成参数
    llm_max_tokens: int = Field(default=1000, ge=1, description="单次回复最大 token 数")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    llm_frequency_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    llm_presence_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)

    # ---- 会话存储 ----
    max_chat_history: int = Field(default=50, ge=1, description="单个会话最多保存的消息数")
    conversation_ttl: int = Field(
        default=30 * 24 * 60 * 60,
        ge=1,
        description="会话过期时间（秒），从 created_at 起算",
    )
    max_message_length: int = Field(default=4000, ge=1, description="用户单条输入最大长度")
    max_stored_content_length: int = Field(default=10000, ge=1, description="存储消息内容最大长度")
    storage_root: str = Field(default=".storage", description="存储根目录")
    storage_lock_timeout: float = Field(default=5.0, gt=0, description="会话文件锁等待时间（秒）")
    purge_interval: float = Field(
        default=3600.0,
        ge=0,
        description="过期会话清理间隔（秒），0 表示只在启动时清理一次",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- Web 会话 ----
    session_secret: str = Field(default="dev-session-secret-change-me", description="会话 Cookie 签名密钥")
    session_max_age: int = Field(default=24 * 60 * 60, ge=60, description="会话 Cookie 有效期（秒）")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("azure_openai_api_key", "openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("azure_openai_endpoint")
    @classmethod
    def strip_endpoint(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
