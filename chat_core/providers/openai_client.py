"""OpenAI Provider 适配器。

- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

也可指向任意 OpenAI 兼容网关（修改 OPENAI_BASE_URL 即可）。
"""

from typing import Dict

from chat_core.domain.exceptions import AuthError
from chat_core.domain.models import ChatRequest
from chat_core.providers.openai_compatible import OpenAICompatibleClient
from chat_core.providers.registry import OPENAI_CONFIG, ModelConfig


class OpenAIClient(OpenAICompatibleClient):
    name = "openai"

    def _model_config(self, req: ChatRequest) -> ModelConfig:
        if not getattr(self._settings, "openai_api_key", None):
            raise AuthError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set", provider=self.name)
        return OPENAI_CONFIG.model(req.model, getattr(self._settings, "openai_model", None))

    def _endpoint(self, model_cfg: ModelConfig) -> str:
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        return f"{base.rstrip('/')}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.openai_api_key}",
            "Content-Type": "application/json",
        }
