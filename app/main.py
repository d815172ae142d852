import time
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from app.core.config import settings
from app.core.logging import setup_logging, request_id_ctx
from app.core.errors import SchedulingError, SlotUnavailable
from app.core.db import build_engine, build_session_factory, init_models
from app.api.router import api_router
from app.modules.events.outbox import run_outbox_relay
from app.platform.provider_registry import build_event_bus


setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_engine(settings.DATABASE_DSN)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.event_bus = build_event_bus(settings)
    await init_models(engine, settings)
    app.state.outbox_task = asyncio.create_task(run_outbox_relay(app.state.session_factory, app.state.event_bus))
    try:
        yield
    finally:
        task = app.state.outbox_task
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await app.state.event_bus.close()
        await engine.dispose()


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Build the ASGI app. Tests pass use_lifespan=False and set app.state themselves."""
    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan if use_lifespan else None)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        formatted_process_time = f"{process_time:.2f}ms"

        logger.info(
            f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {formatted_process_time}"
        )

        return response

    # registered last so it runs first and the timing log carries the id
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id", "-")
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers["x-request-id"] = rid
        return response

    @app.exception_handler(SlotUnavailable)
    async def slot_unavailable_handler(request: Request, exc: SlotUnavailable):
        # losing a race is an expected outcome, not a fault
        logger.info(f"{request.method} {request.url.path}: {exc.message} ({exc.details})")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        logger.warning(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"message": "An internal server error occurred."},
        )

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app


app = create_app()
