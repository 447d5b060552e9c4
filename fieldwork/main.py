import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .models import models  # noqa: F401  registers tables on Base.metadata
from .services.errors import DomainError
from .routes.jobs import router as jobs_router
from .routes.reports import router as reports_router
from .routes.equipment import router as equipment_router
from .routes.extensions import router as extensions_router
from .routes.manager import router as manager_router
from .routes.notifications import router as notifications_router
from .routes.activity import router as activity_router

logger = structlog.get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid input")
    return JSONResponse(status_code=400, content={"detail": message, "code": "invalid_input"})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

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

    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Routers
    app.include_router(jobs_router)
    app.include_router(reports_router)
    app.include_router(equipment_router)
    app.include_router(extensions_router)
    app.include_router(manager_router)
    app.include_router(notifications_router)
    app.include_router(activity_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    if settings.auto_create_db:
        Base.metadata.create_all(bind=engine)
        logger.info("database_ready", url=engine.url.render_as_string(hide_password=True))

    return app


app = create_app()
