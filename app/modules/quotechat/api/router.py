import logging
import re
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.modules.quotechat.schema.events import EVENT_SESSION
from app.modules.quotechat.services.errors import ChatErrorCode, http_error_body
from app.modules.quotechat.services.orchestrator import ChatOrchestrator
from app.modules.quotechat.services.rate_limiter import RateLimiter, RateLimitResult
from app.modules.quotechat.services.response_cache import ResponseCache
from app.modules.quotechat.services.sse_encoder import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    EventChannel,
    SSESender,
)
from app.modules.quotechat.services.validation import RequestValidationFailed, validate_chat_request
from core.config import get_orchestrator, get_response_cache, settings

logger = logging.getLogger(__name__)

v1 = APIRouter(prefix=settings.FASTAPI_API_V1_PATH, tags=["Quote Chat"])
router = v1

_UUID4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.I)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def get_chat_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.chat_rate_limiter


def get_recovery_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.recovery_rate_limiter


def _error_response(code: ChatErrorCode, status_code: int, detail: str | None = None, headers=None) -> JSONResponse:
    body: Dict[str, Any] = http_error_body(code)
    if detail:
        body["detail"] = detail
    return JSONResponse(body, status_code=status_code, headers=headers)


def _rate_limited(result: RateLimitResult) -> JSONResponse:
    headers = result.headers()
    headers["Retry-After"] = str(result.retry_after())
    return _error_response(ChatErrorCode.RATE_LIMITED, 429, headers=headers)


@v1.post("/chat")
async def chat(
    request: Request,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    limiter: RateLimiter = Depends(get_chat_rate_limiter),
):
    """Stream an answer as server-sent events. The response id is sent first for recovery."""
    ip = client_ip(request)
    limit = await limiter.check(ip)
    if not limit.allowed:
        logger.info(f"Chat rate limit hit for {ip}")
        return _rate_limited(limit)

    try:
        body = await request.json()
    except ValueError:
        return _error_response(ChatErrorCode.VALIDATION_ERROR, 400, "Request body must be valid JSON")

    try:
        chat_request = validate_chat_request(body, settings)
    except RequestValidationFailed as exc:
        logger.info(f"Rejected chat request from {ip}: {exc}")
        return _error_response(ChatErrorCode.VALIDATION_ERROR, 400, str(exc))

    response_id = str(uuid.uuid4())
    channel = EventChannel()
    sender = SSESender(channel)

    # live-only, never recorded in the replay log
    await sender.send(EVENT_SESSION, {"responseId": response_id})
    orchestrator.launch(chat_request, response_id, sender)

    headers = {**SSE_HEADERS, **limit.headers(), "X-Response-ID": response_id}
    return StreamingResponse(channel.frames(), media_type=SSE_MEDIA_TYPE, headers=headers)


@v1.get("/chat/recover")
async def recover(
    request: Request,
    id: str | None = Query(default=None),
    cache: ResponseCache = Depends(get_response_cache),
    limiter: RateLimiter = Depends(get_recovery_rate_limiter),
):
    """Replay the cached events of a response after a dropped connection."""
    limit = await limiter.check(client_ip(request))
    if not limit.allowed:
        return _rate_limited(limit)

    if not id or not _UUID4.match(id):
        return _error_response(ChatErrorCode.VALIDATION_ERROR, 400, "Invalid or missing id parameter")

    cached = await cache.get(id)
    if cached is None:
        return JSONResponse({"error": "Response not found"}, status_code=404)

    return cached.model_dump()
