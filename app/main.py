"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.core.logging import get_logger, setup_logging
from app.core.middleware import ObservabilityMiddleware
from app.services.insights.errors import CacheErrorCode, SignatureCacheError

logger = get_logger(__name__)

_ERROR_STATUS: dict[CacheErrorCode, int] = {
    CacheErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CacheErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    CacheErrorCode.QUOTA_EXCEEDED: status.HTTP_403_FORBIDDEN,
    CacheErrorCode.TRANSIENT_STORE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    CacheErrorCode.CONSTRAINT_VIOLATION: status.HTTP_409_CONFLICT,
}


async def signature_cache_error_handler(request: Request, exc: SignatureCacheError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info(
        "signature_cache_error",
        code=exc.code.value,
        status_code=status_code,
        signature=exc.signature,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code.value, "detail": str(exc)},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    logger.info("app_started")
    yield
    from app.database import engine

    await engine.dispose()
    logger.info("app_stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Action OS insights", lifespan=lifespan)
    app.add_middleware(ObservabilityMiddleware)
    app.add_exception_handler(SignatureCacheError, signature_cache_error_handler)
    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
