"""
Core Configuration and Services
Consolidated configuration settings and service wiring for the Quote Chat API
"""

import logging
from functools import lru_cache
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request
from openai import AsyncOpenAI
from pydantic_settings import BaseSettings, SettingsConfigDict
from qdrant_client import AsyncQdrantClient

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Quote Chat API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    DEBUG_RAG: bool = False  # verbose marker / prompt logging

    # OpenAI
    OPENAI_API_KEY: str | None = None
    OPENAI_TIMEOUT_SECS: int = 60
    LLM_MODEL: str = "gpt-5-mini"
    LLM_REASONING_EFFORT: str = "medium"
    LLM_THINKING_REASONING_EFFORT: str = "high"
    UTILITY_REASONING_EFFORT: str = "low"
    EMBEDDING_MODEL: str = "text-embedding-3-small"

    # Pricing per 1M tokens (cost estimate in logs only)
    INPUT_COST_PER_1M: float = 0.25
    OUTPUT_COST_PER_1M: float = 2.0

    # Qdrant
    QDRANT_MODE: str = "cloud"
    QDRANT_URL: str = "http://localhost:6333"
    QDRANT_API_KEY: str | None = None
    QDRANT_COLLECTION: str = "ra_material"
    QDRANT_SEARCH_TIMEOUT_SECS: int = 10
    SEARCH_TOP_K: int = 8
    SEARCH_SESSION_TOP_K: int = 10

    # Redis (optional; response cache and rate limiter fall back to memory)
    REDIS_URL: str | None = None

    # Stream recovery
    RESPONSE_CACHE_TTL_SECONDS: int = 300
    RESPONSE_CACHE_MAX_LOCAL: int = 100
    HEARTBEAT_INTERVAL_SECONDS: float = 15.0

    # Rate limiting
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RECOVERY_RATE_LIMIT_MAX_REQUESTS: int = 30

    # Input validation
    MAX_MESSAGE_LENGTH: int = 5000
    MAX_HISTORY_LENGTH: int = 20
    MAX_HISTORY_MESSAGE_LENGTH: int = 10000
    RECENT_HISTORY_COUNT: int = 6

    # CORS Configuration
    CORS_ALLOWED_ORIGINS: list[str] = [
        "http://127.0.0.1:8000",
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    CORS_EXPOSE_HEADERS: list[str] = ["X-Response-ID"]

    FASTAPI_API_V1_PATH: str = "/api/v1"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def get_qdrant_client() -> AsyncQdrantClient:
    """Create Qdrant client based on settings configuration."""
    if settings.QDRANT_MODE == "embedded":
        return AsyncQdrantClient(path="./qdrant_data")
    return AsyncQdrantClient(
        url=settings.QDRANT_URL,
        api_key=settings.QDRANT_API_KEY or None,
        timeout=settings.QDRANT_SEARCH_TIMEOUT_SECS,
    )


def get_llm_client() -> AsyncOpenAI:
    """Create LLM client based on LLM configuration."""
    return AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.OPENAI_TIMEOUT_SECS,
        max_retries=0,  # retries are handled by services.retry
    )


def get_redis_client() -> Optional[redis.Redis]:
    """Create a Redis client when REDIS_URL is configured."""
    if not settings.REDIS_URL:
        return None
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


def wire_services(app: FastAPI) -> None:
    """Wire all singleton services into app.state on startup."""
    from app.modules.quotechat.services.llm import OpenAICompletionProvider
    from app.modules.quotechat.services.orchestrator import ChatOrchestrator
    from app.modules.quotechat.services.rate_limiter import create_rate_limiter
    from app.modules.quotechat.services.response_cache import create_response_cache
    from app.modules.quotechat.services.search import QdrantPassageSearcher

    logger.info("Wiring global services...")

    app.state.settings = settings
    app.state.llm_client = get_llm_client()
    app.state.qdrant = get_qdrant_client()
    app.state.redis = get_redis_client()

    app.state.response_cache = create_response_cache(settings, app.state.redis)
    app.state.chat_rate_limiter = create_rate_limiter(
        app.state.redis,
        prefix="chat",
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    app.state.recovery_rate_limiter = create_rate_limiter(
        app.state.redis,
        prefix="recover",
        max_requests=settings.RECOVERY_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )

    llm = OpenAICompletionProvider(app.state.llm_client, settings)
    app.state.orchestrator = ChatOrchestrator(
        llm=llm,
        searcher=QdrantPassageSearcher(app.state.qdrant, app.state.llm_client, settings),
        cache=app.state.response_cache,
        settings=settings,
    )

    logger.info("Service container wiring completed successfully")


async def perform_warmup(app: FastAPI) -> None:
    """Perform async warmup operations (call this from startup event)."""
    try:
        await app.state.qdrant.get_collection(settings.QDRANT_COLLECTION)
        logger.info("Qdrant warmup completed successfully")
    except Exception as warmup_error:
        logger.info(f"Qdrant warmup failed (non-critical): {warmup_error}")

    if app.state.redis is not None:
        try:
            await app.state.redis.ping()
            logger.info("Redis reachable, using durable response cache")
        except Exception as redis_error:
            logger.warning(f"Redis ping failed (non-critical): {redis_error}")


async def shutdown_services(app: FastAPI) -> None:
    """Release clients wired by wire_services."""
    from app.modules.quotechat.services.response_cache import drain_writers

    await drain_writers()
    await app.state.response_cache.close()
    if app.state.redis is not None:
        await app.state.redis.aclose()
    await app.state.qdrant.close()
    await app.state.llm_client.close()


def get_orchestrator(request: Request):
    return request.app.state.orchestrator


def get_response_cache(request: Request):
    return request.app.state.response_cache
