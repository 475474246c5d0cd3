"""
Shared-secret authentication middleware for the worker.

All /webhook/* endpoints require a valid X-Worker-Secret header matching
WORKER_SHARED_SECRET. The web front end attaches this header when it
forwards create / abort requests to the worker.
"""

import secrets
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from . import config


class WorkerAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to /webhook/* endpoints."""

    # Paths that are always public (health checks, etc.)
    PUBLIC_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, secret: Optional[str] = None, environment: Optional[str] = None):
        super().__init__(app)
        self.secret = config.WORKER_SHARED_SECRET if secret is None else secret
        self.environment = environment or config.ENVIRONMENT

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in self.PUBLIC_PATHS or not path.startswith("/webhook"):
            return await call_next(request)

        if not self.secret:
            # In development without the secret set, allow all traffic
            if self.environment == "development":
                return await call_next(request)
            return JSONResponse(status_code=500, content={"detail": "WORKER_SHARED_SECRET not configured"})

        # Constant-time compare avoids timing attacks
        provided = request.headers.get("X-Worker-Secret", "")
        if not secrets.compare_digest(provided, self.secret):
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing worker secret"})

        return await call_next(request)
