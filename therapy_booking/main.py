import time
import asyncio
import logging
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from therapy_booking.core.config import settings
from therapy_booking.core.logging import setup_logging, request_id_ctx
from therapy_booking.core.errors import register_exception_handlers
from therapy_booking.api.router import api_router
from therapy_booking.core.db import init_models
from therapy_booking.modules.events.outbox import run_outbox_relay
from therapy_booking.platform.provider_registry import registry

setup_logging()
app = FastAPI(title=settings.APP_NAME)
register_exception_handlers(app)

logger = logging.getLogger(__name__)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    request_id_ctx.set(rid)
    response = await call_next(request)
    return response

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "An internal server error occurred."},
    )

@app.on_event("startup")
async def on_startup():
    await init_models()
    app.state.outbox_task = asyncio.create_task(run_outbox_relay())

@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Outbox relay stopped")
    close = getattr(registry.event_bus(), "close", None)
    if close:
        await close()

app.include_router(api_router, prefix=settings.API_PREFIX)
