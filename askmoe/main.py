import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from the project root .env (tests configure env themselves)
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(os.path.dirname(package_dir), ".env"))

# Import after dotenv is loaded
from askmoe.core.config import settings, validate_config, cors_origins
from askmoe.core.logging import configure_logging
from askmoe.core.middleware.request_context import RequestContextMiddleware
from askmoe.core.validation import validate_env
from askmoe.core.database import create_all_tables
from askmoe.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from askmoe.core.ratelimit import AdmissionController, build_admission_config
from askmoe.api import questions, users, admin, health, metrics

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("askmoe")
    logger.info("Starting askmoe backend...")
    app.state.startup_time = time.time()
    if getattr(app.state, "admission_controller", None) is None:
        app.state.admission_controller = AdmissionController(build_admission_config())
    try:
        create_all_tables()
    except Exception as e:
        # Readiness reports the missing tables; liveness stays up
        logger.warning(f"Table creation skipped: {e}")
    try:
        yield
    finally:
        logger.info("Stopping askmoe backend...")


app = FastAPI(title="askmoe - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(questions.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(health.router)
app.include_router(metrics.router)
