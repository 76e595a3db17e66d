"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.api import eta, gps, routes, stops, ws
from app.config import settings
from app.core.container import Services, build_services
from app.core.errors import TransitError
from app.schemas.envelope import ApiError

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ApiError(error=message).model_dump())


async def _transit_error(request: Request, exc: TransitError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return _error(400, "Invalid request format")


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


async def _database_ok(services: Services) -> bool:
    if services.engine is None:
        return True
    try:
        async with services.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database health check failed: %s", e)
        return False


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application.

    With ``services`` given the caller owns their lifecycle (tests pass
    in-memory fakes); otherwise the lifespan builds them from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return

        built = build_services(settings)
        await built.start()
        app.state.services = built
        logger.info(
            "Transit backend started - %d routes indexed, cache backend %s",
            built.matcher.route_count, settings.cache_backend,
        )

        yield

        await built.stop()
        logger.info("Transit backend shut down")

    app = FastAPI(
        title="Transit Tracking Backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TransitError, _transit_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(Exception, _unhandled_error)

    app.include_router(gps.router)
    app.include_router(eta.router)
    app.include_router(stops.router)
    app.include_router(routes.router)
    app.include_router(ws.router)

    @app.get("/api/health")
    async def health(request: Request):
        current: Services = request.app.state.services
        checks = {
            "database": await _database_ok(current),
            "cache": await current.cache.ping(),
        }
        ok = all(checks.values())
        return JSONResponse(
            status_code=200 if ok else 503,
            content={
                "success": ok,
                "data": {
                    "status": "ok" if ok else "degraded",
                    "checks": {name: "ok" if up else "down" for name, up in checks.items()},
                    "routes": current.matcher.route_count,
                    "subscribers": current.broadcaster.subscriber_count,
                },
            },
        )

    return app


app = create_app()
