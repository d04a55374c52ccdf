# chapter_portal/main.py

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

import chapter_portal.config as config
from chapter_portal.middleware.error_handler import ErrorHandlerMiddleware, setup_exception_handlers
from chapter_portal.middleware.rate_limiter import RateLimitMiddleware
from chapter_portal.observability.logger import configure_logging
from chapter_portal.observability.metrics import router as prometheus_router
from chapter_portal.observability.tracing import init_tracing
from chapter_portal.routers.admin import router as admin_router
from chapter_portal.routers.buttons import router as buttons_router
from chapter_portal.routers.events import router as events_router
from chapter_portal.routers.health import router as health_router
from chapter_portal.routers.polls import router as polls_router
from chapter_portal.routers.roster import router as roster_router
from chapter_portal.routers.rush import router as rush_router
from chapter_portal.services.context import AppContext, build_context
from chapter_portal.utils.logger import log_info


def create_app(context: Optional[AppContext] = None, settings: Optional[config.Settings] = None) -> FastAPI:
    """
    Build the application.

    Tests pass a prebuilt ``context`` wired to in-memory backends; otherwise
    one is built at startup from ``settings`` with the Google backends.
    """
    settings = settings or (context.settings if context else config.get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context or build_context(settings)
        app.state.context = ctx
        ctx.hub.start()
        log_info("Chapter portal started")
        try:
            yield
        finally:
            log_info("Starting graceful shutdown...")
            await ctx.aclose()
            log_info("Shutdown complete.")

    app = FastAPI(
        title="Chapter Portal API",
        description="Chapter records backed by a shared spreadsheet, with live updates",
        version="1.0.0",
        lifespan=lifespan,
    )
    if context is not None:
        # Available before startup so requests work without a lifespan run
        app.state.context = context

    app.add_middleware(
        RateLimitMiddleware,
        api_limit=settings.RATE_LIMIT_API,
        general_limit=settings.RATE_LIMIT_GENERAL,
        auth_header=settings.AUTH_EMAIL_HEADER,
    )
    # Added last so it is outermost and also stamps rate-limited responses
    app.add_middleware(ErrorHandlerMiddleware, debug=settings.DEBUG)

    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(prometheus_router)
    app.include_router(events_router, prefix="/api")
    app.include_router(roster_router, prefix="/api")
    app.include_router(polls_router, prefix="/api")
    app.include_router(buttons_router, prefix="/api")
    app.include_router(rush_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    if settings.OTEL_ENABLED:
        init_tracing(app=app)

    return app


def main() -> None:
    """Main entry point for the application startup."""
    configure_logging(config)
    log_info(f"Server starting on http://{config.HOST}:{config.PORT}")
    uvicorn.run(create_app(), host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
