# app/main.py
import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.modules.router import router as modules_router
from core.config import perform_warmup, settings, shutdown_services, wire_services
from core.logging import configure_logging, get_logger

configure_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)


def create_app():
    app = FastAPI(title=settings.PROJECT_NAME, debug=settings.DEBUG)
    app.include_router(modules_router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=settings.CORS_EXPOSE_HEADERS,
        max_age=86400,
    )

    @app.api_route("/healthz", methods=["GET", "HEAD"], include_in_schema=False)
    async def healthz():
        cache = getattr(app.state, "response_cache", None)
        return JSONResponse({"status": "ok", "cache": cache.backend if cache else "unwired"})

    @app.on_event("startup")
    async def startup_event():
        """Application startup event handler."""
        logger.info(f"Starting {settings.PROJECT_NAME}...")
        wire_services(app)
        await perform_warmup(app)
        for route in app.routes:
            logging.getLogger("router.map").info(
                "ROUTE %s %s", ",".join(sorted(getattr(route, "methods", None) or [])), route.path
            )
        logger.info("Application startup completed successfully")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down, waiting for in-flight responses...")
        await app.state.orchestrator.wait_idle()
        await shutdown_services(app)

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port)
