"""HTTP 接口（FastAPI）。

路由：
- POST   /api/chat                     发送消息
- GET    /api/chat/history             当前（或指定）会话的历史
- DELETE /api/chat/history             删除当前（或指定）会话
- GET    /api/sessions                 列出本浏览器会话下的所有对话
- POST   /api/sessions                 新建对话
- DELETE /api/sessions/{id}            删除指定对话
- GET    /api/sessions/current         当前会话信息
- GET    /api/health                   健康检查

浏览器会话由 Starlette SessionMiddleware 的签名 Cookie 维护：
sid 为会话 ID，conversation_id 为当前对话指针。

应用启动时清理一次过期会话，之后每隔 purge_interval 秒再清理一次。

运行：

    uvicorn chat_core.api.web:app
    python -m chat_core.api.web
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.middleware.sessions import SessionMiddleware

from chat_core.api.service import ChatService, get_default_service
from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError, NotFoundError
from chat_core.infrastructure.logging.logger import logger, short_id

SESSION_ID_KEY = "sid"
CONVERSATION_KEY = "conversation_id"

router = APIRouter(prefix="/api")


class SendMessageBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


def get_chat_service() -> ChatService:
    return get_default_service()


def _session_id(request: Request) -> str:
    sid = request.session.get(SESSION_ID_KEY)
    if not sid:
        sid = uuid4().hex
        request.session[SESSION_ID_KEY] = sid
    return sid


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.post("/chat")
def send_message(
    body: SendMessageBody,
    request: Request,
    service: ChatService = Depends(get_chat_service),
) -> Dict[str, Any]:
    sid = _session_id(request)
    result = service.send_message(
        sid,
        body.message,
        conversation_id=body.conversation_id,
        current_conversation_id=request.session.get(CONVERSATION_KEY),
    )
    request.session[CONVERSATION_KEY] = result["conversation_id"]
    return result


@router.get("/chat/history")
def get_history(
    request: Request,
    conversation_id: Optional[str] = None,
    service: ChatService = Depends(get_chat_service),
) -> Dict[str, Any]:
    sid = _session_id(request)
    return service.get_history(sid, conversation_id or request.session.get(CONVERSATION_KEY))


@router.delete("/chat/history")
def clear_history(
    request: Request,
    conversation_id: Optional[str] = None,
    service: ChatService = Depends(get_chat_service),
) -> Dict[str, Any]:
    sid = _session_id(request)
    target = conversation_id or request.session.get(CONVERSATION_KEY)
    if not target:
        return {"message": "No conversation to clear"}
    try:
        service.delete_conversation(sid, target)
    except NotFoundError:
        # 尚未保存过消息的新会话，视为已清空
        pass
    return {"message": "Chat history cleared successfully", "conversation_id": target}


@router.get("/sessions")
def list_conversations(
    request: Request,
    service: ChatService = Depends(get_chat_service),
) -> Dict[str, Any]:
    sid = _session_id(request)
    result = service.list_conversations(sid)
    result["current_session"] = short_id(sid)
    return result


@router.post("/sessions")
def new_conversation(
    request: Request,
    service: ChatService = Depends(get_chat_service),
) -> Dict[str, Any]:
    sid = _session_id(request)
    result = service.new_conversation(sid)
    request.session[CONVERSATION_KEY] = result["conversation_id"]
    return {**result, "message": "New conversation created", "timestamp": _now()}


@router.delete("/sessions/{conversation_id}")
def delete_conversation(
    conversation_id: str,
    request: Request,
    service: ChatService = Depends(get_chat_service),
) -> Dict[str, Any]:
    sid = _session_id(request)
    service.delete_conversation(sid, conversation_id)
    if request.session.get(CONVERSATION_KEY) == conversation_id:
        request.session.pop(CONVERSATION_KEY, None)
    return {"message": "Conversation deleted successfully", "conversation_id": conversation_id}


@router.get("/sessions/current")
def current_session(request: Request) -> Dict[str, Any]:
    sid = _session_id(request)
    conversation_id = request.session.get(CONVERSATION_KEY)
    return {
        "session_id": short_id(sid),
        "conversation_id": conversation_id,
        "is_new": not conversation_id,
        "timestamp": _now(),
    }


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "timestamp": _now()}


async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
    logger.error(
        "Request failed",
        extra={"extra": {
            "path": request.url.path,
            "code": exc.code,
            "error_type": type(exc).__name__,
            "error": exc.message,
            "session_id": short_id(request.session.get(SESSION_ID_KEY)),
        }},
    )
    return JSONResponse(status_code=exc.http_status, content={"error": exc.user_message, "code": exc.code})


async def _purge(service: ChatService) -> None:
    try:
        await asyncio.to_thread(service.purge_expired)
    except BusinessError as e:
        logger.error(
            "Failed to purge expired conversations",
            extra={"extra": {"code": e.code, "error": e.message}},
        )


async def _purge_periodically(service: ChatService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await _purge(service)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # 测试中通过 dependency_overrides 替换的服务同样用于清理
    factory = app.dependency_overrides.get(get_chat_service, get_chat_service)
    service = factory()
    interval = app.state.purge_interval
    await _purge(service)
    task = asyncio.create_task(_purge_periodically(service, interval)) if interval > 0 else None
    logger.info("Application startup", extra={"extra": {"purge_interval": interval}})
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        logger.info("Application shutdown")


def create_app(secret_key: Optional[str] = None, purge_interval: Optional[float] = None) -> FastAPI:
    app = FastAPI(title="chat-core", lifespan=lifespan)
    app.state.purge_interval = settings.purge_interval if purge_interval is None else purge_interval
    app.include_router(router)
    app.add_exception_handler(BusinessError, business_error_handler)
    app.add_middleware(
        SessionMiddleware,
        secret_key=secret_key or settings.session_secret,
        max_age=settings.session_max_age,
        same_site="lax",
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("chat_core.api.web:app", host="127.0.0.1", port=8000)
