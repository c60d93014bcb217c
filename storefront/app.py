"""
Storefront application factory.

Middleware order (outermost first): actor resolution and the coarse
permission gate, request logging, CORS.
"""

import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.config import settings, db_manager
from storefront.middleware import ActorMiddleware
from storefront.orders import orders_router
from storefront.products import products_router
from storefront.users import users_router
from storefront.utils import Logger

logger = Logger("request")

ROUTERS = (
    ("products", products_router, "Products"),
    ("orders", orders_router, "Orders"),
    ("users", users_router, "Users"),
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One line per request in, one line out with status and duration."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        line = f"{request.method} {request.url.path}"
        client = request.client.host if request.client else "unknown"
        logger.info(f"--> {line} (from {client})")

        try:
            response = await call_next(request)
        except Exception:
            elapsed = round((time.perf_counter() - start) * 1000, 2)
            logger.exception(f"<-- {line} | 500 | {elapsed}ms")
            raise

        elapsed = round((time.perf_counter() - start) * 1000, 2)
        status = response.status_code
        log = logger.error if status >= 500 else logger.warning if status >= 400 else logger.info
        log(f"<-- {line} | {status} | {elapsed}ms")
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db_manager.connect()
    yield
    db_manager.close()


async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.method} {request.url.path}:")
    logger.error(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": 500,
                "message": str(exc) if settings.debug else "Internal server error",
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Role-based authorization and stock-safe ordering",
        docs_url="/api/docs",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allowed_methods,
        allow_headers=settings.cors_allowed_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ActorMiddleware)
    app.add_exception_handler(Exception, unhandled_exception)

    for resource, router, tag in ROUTERS:
        app.include_router(
            router, prefix=f"/api/{settings.api_version}/{resource}", tags=[tag]
        )

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": settings.app_version,
            "database": db_manager.is_connected,
        }

    return app


app = create_app()
