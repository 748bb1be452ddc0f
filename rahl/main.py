"""rahl FastAPI application."""

from __future__ import annotations

import importlib
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rahl import __version__
from rahl.api.middleware import RequestLoggingMiddleware
from rahl.config.settings import Settings, settings as default_settings
from rahl.connection import TerminalLogout, TransportError, TransportUnavailable
from rahl.credentials import PersistenceError
from rahl.pairing import CodeAlreadyUsed, CodeNotFound
from rahl.runtime import BotRuntime

logger = logging.getLogger("rahl.api")

_route_modules = [
    "rahl.api.routes.health",
    "rahl.api.routes.pairing",
    "rahl.api.routes.session",
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    runtime: BotRuntime = app.state.runtime
    await runtime.start()
    yield
    await runtime.stop()


def create_app(settings: Settings | None = None, runtime: BotRuntime | None = None) -> FastAPI:
    """
    Build the application around one BotRuntime.

    Args:
        settings: Settings to build the runtime from (defaults to env).
        runtime: Prebuilt runtime; takes precedence over ``settings``.
    """
    settings = settings or (runtime.settings if runtime is not None else default_settings)
    runtime = runtime or BotRuntime.from_settings(settings)

    app = FastAPI(
        title="rahl",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for mod_path in _route_modules:
        module = importlib.import_module(mod_path)
        app.include_router(module.router)

    _register_exception_handlers(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CodeNotFound)
    async def code_not_found_handler(request: Request, exc: CodeNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(CodeAlreadyUsed)
    async def code_used_handler(request: Request, exc: CodeAlreadyUsed) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(TransportUnavailable)
    async def transport_unavailable_handler(request: Request, exc: TransportUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(TerminalLogout)
    async def terminal_logout_handler(request: Request, exc: TerminalLogout) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(TransportError)
    async def transport_error_handler(request: Request, exc: TransportError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app = create_app()
