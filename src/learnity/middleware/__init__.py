"""Middleware registration."""

from fastapi import FastAPI

from learnity.config import Settings
from learnity.middleware.error_handler import setup_error_handlers
from learnity.middleware.logging import setup_logging
from learnity.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, register exception handlers and request-id propagation."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
