"""OpenAI 风格 chat/completions 接口的公共实现。

Azure OpenAI 与 OpenAI 的请求/响应 JSON 完全一致，只在 URL 与认证头上不同，
因此由本模块负责：

1. 把 ChatRequest 转成请求 JSON。
2. 发送请求并把网络错误、超时、限流、鉴权失败等映射为业务异常。
3. 把响应 JSON 解析为统一的 ChatResult。

子类只需实现 _endpoint / _headers / _model_config。
"""

from typing import Any, Dict, List

import httpx

from chat_core.domain.exceptions import (
    ApiError,
    AuthError,
    NetworkError,
    RateLimitError,
    ServiceUnavailable,
)
from chat_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from chat_core.providers.registry import ModelConfig

# 网关类错误视为服务暂不可用
_UNAVAILABLE_STATUSES = {502, 503, 504}


class OpenAICompatibleClient:
    """OpenAI 风格 Provider 客户端基类。"""

    name = "openai-compatible"

    def __init__(self, settings):
        # Settings 里包含 endpoint、api_key、超时等配置
        self._settings = settings

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 读取模型配置（logical model -> provider model）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 使用统一的解析函数构造 ChatResult。
        """

        model_cfg = self._model_config(req)
        payload = self._build_payload(req, model_cfg)
        url = self._endpoint(model_cfg)
        headers = self._headers()
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=f"{self.name} request timed out: {e}", provider=self.name)
        except httpx.RequestError as e:
            # DNS 失败、连接被拒等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        self._raise_for_status(resp)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="INVALID_RESPONSE", message=f"{self.name} returned non-JSON body: {e}", provider=self.name)
        return self._parse_response(data, req)

    # ---- 子类实现 ----

    def _model_config(self, req: ChatRequest) -> ModelConfig:
        raise NotImplementedError

    def _endpoint(self, model_cfg: ModelConfig) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    # ---- 辅助方法 ----

    def _raise_for_status(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        if status == 429:
            # 限流错误交给上层做重试/退避
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit", provider=self.name)
        if status in (401, 403):
            raise AuthError(code="AUTH_ERROR", message=resp.text, provider=self.name, status_code=status)
        if status in _UNAVAILABLE_STATUSES:
            raise ServiceUnavailable(
                code="UPSTREAM_UNAVAILABLE", message=resp.text, provider=self.name, status_code=status
            )
        raise ApiError(code="API_ERROR", message=resp.text, provider=self.name, status_code=status)

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        return {
            "model": model_cfg.provider_model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "temperature": model_cfg.default_temperature if req.temperature is None else req.temperature,
            "top_p": req.top_p,
            "frequency_penalty": req.frequency_penalty,
            "presence_penalty": req.presence_penalty,
        }

    def _parse_response(self, data: Dict[str, Any], req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult。"""

        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role=msg.get("role") or "assistant", content=msg.get("content") or ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=self._parse_usage(data.get("usage") or {}),
            raw=data,
        )

    @staticmethod
    def _parse_usage(usage_raw: Dict[str, Any]) -> ChatUsage:
        # 兼容 snake_case 与部分 SDK 返回的 camelCase
        return ChatUsage(
            prompt_tokens=int(usage_raw.get("prompt_tokens", usage_raw.get("promptTokens", 0)) or 0),
            completion_tokens=int(usage_raw.get("completion_tokens", usage_raw.get("completionTokens", 0)) or 0),
            total_tokens=int(usage_raw.get("total_tokens", usage_raw.get("totalTokens", 0)) or 0),
        )
