import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from toptake.core.config import get_settings
from toptake.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from toptake.core.logging import bind_request_id, configure_logging, get_logger
from toptake.db.init import init_db
from toptake.routers import admin, credits, gate, payments, prompts, streaks, submissions, users

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

ROUTERS = [
    (users.router, "/v1/users", "users"),
    (gate.router, "/v1/gate", "gate"),
    (streaks.router, "/v1/streaks", "streaks"),
    (submissions.router, "/v1/submissions", "submissions"),
    (credits.router, "/v1/credits", "credits"),
    (prompts.router, "/v1/prompts", "prompts"),
    (payments.router, "/v1/payments", "payments"),
    (admin.router, "/v1/admin", "admin"),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    await init_db()
    log.info("startup", msg="DB connected", db=settings.mongodb_db_name)
    yield
    log.info("shutdown")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Toptake Engine API",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        bind_request_id(request_id)
        start = time.perf_counter()
        response = await call_next(request)
        log.info(
            "request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    for router, prefix, tag in ROUTERS:
        app.include_router(router, prefix=prefix, tags=[tag])

    @app.get("/health")
    async def health():
        """Liveness only; does not touch MongoDB."""
        return {"status": "ok"}

    return app


app = create_app()
