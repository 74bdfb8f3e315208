"""Azure OpenAI Provider 适配器。

- URL: {endpoint}/openai/deployments/{deployment}/chat/completions?api-version=...
- 认证: api-key: <api_key>

逻辑模型名映射为部署名，settings.azure_openai_deployment 优先。
"""

from typing import Dict

from chat_core.domain.exceptions import ApiError, AuthError
from chat_core.domain.models import ChatRequest
from chat_core.providers.openai_compatible import OpenAICompatibleClient
from chat_core.providers.registry import AZURE_CONFIG, ModelConfig


class AzureOpenAIClient(OpenAICompatibleClient):
    """Azure OpenAI 客户端实现。"""

    name = "azure"

    def _model_config(self, req: ChatRequest) -> ModelConfig:
        if not getattr(self._settings, "azure_openai_api_key", None):
            raise AuthError(code="MISSING_API_KEY", message="AZURE_OPENAI_API_KEY not set", provider=self.name)
        if not getattr(self._settings, "azure_openai_endpoint", None):
            raise ApiError(code="MISSING_ENDPOINT", message="AZURE_OPENAI_ENDPOINT not set", provider=self.name)
        return AZURE_CONFIG.model(req.model, getattr(self._settings, "azure_openai_deployment", None))

    def _endpoint(self, model_cfg: ModelConfig) -> str:
        base = self._settings.azure_openai_endpoint.rstrip("/")
        version = getattr(self._settings, "azure_openai_api_version", None) or "2023-05-15"
        return f"{base}/openai/deployments/{model_cfg.provider_model}/chat/completions?api-version={version}"

    def _headers(self) -> Dict[str, str]:
        return {
            "api-key": self._settings.azure_openai_api_key,
            "Content-Type": "application/json",
        }
