# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI application for the Memos HTTP interface.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import settings
from ..errors import InputValidationError, MemoNotFoundError, StoreError
from ..shared_services import ServiceManager, get_service_manager
from .api import health, memos, search
from .dependencies import set_service_manager

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "detail": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    """Map the service error taxonomy onto HTTP status codes."""

    @app.exception_handler(InputValidationError)
    async def input_validation_handler(request: Request, exc: InputValidationError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        parts = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
        return _error(400, "; ".join(parts))

    @app.exception_handler(MemoNotFoundError)
    async def not_found_handler(request: Request, exc: MemoNotFoundError) -> JSONResponse:
        return _error(404, str(exc), id=exc.memo_id)

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error(f"Record store unavailable for {request.method} {request.url.path}: {exc}")
        return _error(503, "Record store unavailable. Please try again.")

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error for {request.method} {request.url.path}: {exc}")
        return _error(500, "Internal server error")


def create_app(manager: ServiceManager | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        manager: Service manager to use; defaults to the process-wide singleton
    """
    service_manager = manager or get_service_manager()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service_manager.initialize()
        set_service_manager(service_manager)
        logger.info("Memos HTTP interface ready")
        try:
            yield
        finally:
            set_service_manager(None)
            await service_manager.close()

    app = FastAPI(title="Memos Service", version=__version__, lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(memos.router)
    app.include_router(search.router)
    app.include_router(health.router)
    return app


def main() -> None:
    """Run the HTTP server with uvicorn."""
    import uvicorn

    logging.basicConfig(level=settings.server.log_level.upper())
    uvicorn.run(
        create_app(),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
