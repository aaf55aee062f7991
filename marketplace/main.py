import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from marketplace.core.config import settings, validate_config
from marketplace.core.database import create_all_tables
from marketplace.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from marketplace.core.logging import configure_logging
from marketplace.core.middleware.request_id import RequestIdMiddleware
from marketplace.core.validation import validate_env
from marketplace.features.events import get_event_bus
from marketplace.features.notifications.listener import register_notification_listener
from marketplace.api import health, plans, settings as settings_api, subscriptions

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("marketplace")
    logger.info("Starting marketplace subscription service...")
    app.state.startup_time = time.time()
    create_all_tables()
    bus = get_event_bus()
    listener = register_notification_listener(bus)
    try:
        yield
    finally:
        listener.unregister(bus)
        logger.info("Stopping marketplace subscription service...")


app = FastAPI(title="Marketplace - Store Subscriptions", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.router)
app.include_router(plans.router)
app.include_router(subscriptions.router)
app.include_router(settings_api.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("marketplace.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
