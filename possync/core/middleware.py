from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from possync.config.settings import settings
import time
import logging

logger = logging.getLogger(__name__)

# Sent by terminal sync clients
TERMINAL_ID_HEADER = "X-Terminal-Id"

def setup_middleware(app: FastAPI):
    """Configure all middleware for the application"""

    # Terminals post JSON batches; dashboards only read
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "Origin",
            TERMINAL_ID_HEADER
        ],
        max_age=3600
    )

    @app.middleware("http")
    async def log_sync_requests(request, call_next):
        start_time = time.time()
        terminal = request.headers.get(TERMINAL_ID_HEADER, "-")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} - "
            f"terminal={terminal} - "
            f"Status: {response.status_code} - "
            f"Time: {process_time:.4f}s"
        )

        return response
