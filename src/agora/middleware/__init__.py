"""Middleware registration."""

from fastapi import FastAPI

from agora.config import Settings
from agora.middleware.cors import setup_cors
from agora.middleware.error_handler import setup_error_handlers
from agora.middleware.logging import setup_logging
from agora.middleware.rate_limit import RateLimitMiddleware
from agora.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware; the last one added runs outermost.

    CORS stays outermost so 429 responses from the rate limiter carry its headers.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
