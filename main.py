import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from admin_gateway.api import health, monitoring, rate_limit, security
from admin_gateway.core.config import get_security_config, settings
from admin_gateway.core.error_handlers import (
    ErrorHandler,
    general_exception_handler,
    http_exception_handler,
    pipeline_exception_handler,
    validation_exception_handler,
)
from admin_gateway.core.exceptions import PipelineException
from admin_gateway.core.logging import setup_logging
from admin_gateway.core.request_context import IdentityResolver
from admin_gateway.pipeline import Pipeline, build_pipeline, install_pipeline

# Setup logging
logger = setup_logging()

DOCS_PATHS = ("/docs", "/redoc", "/openapi.json")


def create_app(pipeline: Pipeline = None, identity_resolver: IdentityResolver = None) -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="""
        Admin dashboard API.

        Every request passes through the security gate (IP allow-list,
        payload sanitization, CSRF validation, hardened headers), the
        category rate limiter and the response cache.

        ## CSRF

        State-changing requests must carry the token from `/api/v1/csrf-token`
        in the `X-CSRF-Token` header together with the matching `X-Session-ID`.
        """,
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "Security", "description": "CSRF token issuance"},
            {"name": "Rate Limiting", "description": "Rate limit budgets for the caller"},
            {"name": "Monitoring", "description": "Cache statistics and process metrics"},
            {"name": "Health", "description": "API health check endpoints"},
        ],
    )

    security_config = get_security_config(settings)
    logger.info(f"🌐 CORS Origins configured: {security_config.allowed_origins}")
    logger.info(f"🌍 Environment: {settings.ENV}")

    # Middleware to block documentation endpoints in production
    @app.middleware("http")
    async def block_docs_in_production(request: Request, call_next):
        if settings.is_production and request.url.path in DOCS_PATHS:
            logger.warning(f"🔒 Blocked access to documentation endpoint: {request.url.path}")
            return ErrorHandler.create_error_response(404, "Not Found", "HTTP_ERROR")
        return await call_next(request)

    pipeline = pipeline or build_pipeline(settings)
    install_pipeline(app, pipeline, identity_resolver)

    # CORS wraps the pipeline so preflight requests are answered first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=security_config.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-CSRF-Token",
            "X-Cache",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
            "Retry-After",
            "X-Request-ID",
        ],
        max_age=600,  # Cache preflight requests for 10 minutes
    )

    # Add error handlers
    app.add_exception_handler(PipelineException, pipeline_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # API versioning
    v1_router = APIRouter(prefix=settings.API_V1_STR)
    v1_router.include_router(security.router, tags=["Security"])
    v1_router.include_router(rate_limit.router, tags=["Rate Limiting"])
    v1_router.include_router(monitoring.router, prefix="/monitoring", tags=["Monitoring"])

    app.include_router(v1_router)
    app.include_router(health.router, tags=["Health"])

    @app.get("/")
    async def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}"}

    @app.on_event("shutdown")
    async def shutdown_pipeline():
        pipeline.shutdown()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True, server_header=False)
