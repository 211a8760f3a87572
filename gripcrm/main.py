import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.activity import router as activity_router
from .routes.customers import router as customers_router
from .routes.exports import router as export_router
from .routes.tickets import router as tickets_router
from .services.activity import ActivityRecorder
from .services.errors import ServiceError
from .services.notifications import Notifier


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    app.state.notifier = Notifier(settings)
    app.state.activity_recorder = ActivityRecorder(SessionLocal, max_queue=settings.activity_queue_size)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("service_error", path=request.url.path, error=exc.message)
        body = {"detail": exc.message}
        if exc.details:
            body["errors"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=body)

    # Routers
    app.include_router(auth_router, prefix="/api")
    app.include_router(customers_router, prefix="/api")
    app.include_router(tickets_router, prefix="/api")
    app.include_router(export_router, prefix="/api")
    app.include_router(activity_router, prefix="/api")

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        app.state.activity_recorder.start()
        logger.info("startup_complete", app=settings.app_name, environment=settings.environment)

    @app.on_event("shutdown")
    def _shutdown():
        app.state.activity_recorder.stop()

    return app


app = create_app()
