"""FastAPI application entry point."""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from image_workbench.api.routes import router
from image_workbench.bulk import BulkAggregator
from image_workbench.config import CORS_ORIGINS, logger as config_logger, staging_config
from image_workbench.conversion.errors import DecodeError, TransformError, ValidationError
from image_workbench.conversion.service import TransformService
from image_workbench.staging import ArtifactStore, StagingConfig

logging.getLogger("uvicorn").setLevel(logging.INFO)
logger = logging.getLogger("workbench.errors")


async def transform_error_handler(request: Request, exc: TransformError):
    if isinstance(exc, ValidationError):
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    elif isinstance(exc, DecodeError):
        logger.warning("%s %s could not decode input: %s", request.method, request.url.path, exc.message)
    else:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [str(err.get("loc", ("request",))[-1]) for err in exc.errors()]
    return JSONResponse({"error": f"Invalid request: {', '.join(fields)}"}, status_code=400)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s crashed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(staging: Optional[StagingConfig] = None) -> FastAPI:
    """Build the app. Staging dirs live for the lifetime of the app, not the module."""
    staging = staging or staging_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = ArtifactStore(staging)
        store.start()
        service = TransformService(store)
        app.state.store = store
        app.state.transform_service = service
        app.state.bulk_aggregator = BulkAggregator(service, store)
        sweeper = asyncio.create_task(store.run_sweeper())
        config_logger.info("Image Workbench API started")
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            store.stop()
            config_logger.info("Image Workbench API shutting down")

    app = FastAPI(
        title="Image Workbench API",
        description="Convert, resize, crop, bulk-resize and compress images.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
        allow_credentials=bool(CORS_ORIGINS),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )
    app.add_exception_handler(TransformError, transform_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from image_workbench.config import HOST, PORT
    uvicorn.run("image_workbench.main:app", host=HOST, port=PORT, reload=True)
