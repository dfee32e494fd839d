from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, Response

from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings, setup_logging
from app.database import close_db, init_db
from app.dependencies import get_service_locator
from app.services import (
    AllProvidersFailed,
    CacheLayer,
    DataAggregator,
    NotFound,
    ValidationError,
    build_aggregator,
    build_cache,
    cache_scheduler,
)
from app.utils.responses import cors_headers, error_response

from app.routers import main_router


setup_logging()
logger = logging.getLogger(__name__)

FAILURE_MESSAGES = {
    "list": "Failed to fetch anime list",
    "search": "Failed to search anime",
    "schedule": "Failed to fetch schedule",
    "detail": "Failed to fetch anime detail",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("="*60)
    logger.info("Starting Anime Aggregation Service...")
    logger.info("="*60)

    try:
        if settings.cache_backend == "database":
            logger.info("Initializing cache database...")
            await init_db()

        cache = build_cache(settings)
        aggregator = build_aggregator(settings, cache)

        locator = get_service_locator()
        locator.register_singleton(CacheLayer, cache)
        locator.register_singleton(DataAggregator, aggregator)
        logger.info(f"Providers (priority order): {', '.join(aggregator.providers()) or 'none'}")

        logger.info("Starting cache maintenance scheduler...")
        cache_scheduler.start(cache)

        logger.info("="*60)
        logger.info("Anime Aggregation Service started successfully")
        logger.info("="*60)
    except Exception as e:
        logger.error("="*60)
        logger.error(f"Failed to start Anime Aggregation Service: {e}", exc_info=True)
        logger.error("="*60)
        raise

    yield

    logger.info("="*60)
    logger.info("Shutting down Anime Aggregation Service...")
    logger.info("="*60)

    try:
        cache_scheduler.shutdown()
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)

    await close_db()

    logger.info("="*60)
    logger.info("Anime Aggregation Service stopped")
    logger.info("="*60)


app = FastAPI(
    title="Anime Aggregation Service",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(main_router)


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    """Answer every preflight before routing and add CORS headers to all responses"""
    headers = cors_headers(request.headers.get("origin"), settings.cors_allowed_origins)
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=headers)

    response = await call_next(request)
    response.headers.update(headers)
    return response


@app.exception_handler(ValidationError)
async def bad_request_handler(request: Request, exc: ValidationError):
    logger.info(f"Bad request for {request.method} {request.url.path}: {exc.message}")
    return error_response(400, exc.message)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return error_response(404, str(exc))


@app.exception_handler(AllProvidersFailed)
async def all_providers_failed_handler(request: Request, exc: AllProvidersFailed):
    """Upstream details stay in the logs; clients get a generic message"""
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    operation = exc.operation.split(":", 1)[0]
    return error_response(500, FAILURE_MESSAGES.get(operation, "Internal server error"))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors with details"""
    logger.error(f"Validation error for {request.method} {request.url.path}")
    logger.error(f"Validation details: {exc.errors()}")

    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return error_response(422, details or "Request validation failed")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error for {request.method} {request.url.path}: {exc}", exc_info=True)
    # Runs outside the middleware stack, so CORS headers are added here
    headers = cors_headers(request.headers.get("origin"), settings.cors_allowed_origins)
    return error_response(500, "Internal server error", headers=headers)
