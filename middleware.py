# middleware.py
from fastapi import FastAPI, Request
from utils.logging import logger
import logging
import time

# Areas whose POST requests move balances, claims or stakes
MUTATING_PREFIXES = ("/mining/", "/staking/")


async def add_economy_headers(request: Request, call_next):
    """Report processing time and which storage backend served the request"""
    start_time = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{time.perf_counter() - start_time:.6f}"
    economy = getattr(request.app.state, "economy", None)
    if economy is not None:
        # "memory" means nothing written now survives a restart
        response.headers["X-Storage-Backend"] = economy.storage.name
    return response


def request_log_level(method: str, path: str, status: int) -> int:
    if status >= 500:
        return logging.WARNING
    if method == "POST" and path.startswith(MUTATING_PREFIXES):
        return logging.INFO
    return logging.DEBUG


class RequestLoggingMiddleware:
    """Logs economy mutations at INFO, reads at DEBUG and server errors at WARNING"""
    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        start_time = time.perf_counter()
        method, path = scope["method"], scope["path"]

        async def wrapped_send(message):
            if message["type"] == "http.response.start":
                status = message["status"]
                logger.log(
                    request_log_level(method, path, status),
                    f"{method} {path} -> {status} in {time.perf_counter() - start_time:.3f}s"
                )
            await send(message)

        return await self.app(scope, receive, wrapped_send)


def setup_middleware(app: FastAPI):
    """Setup all middleware for the application"""
    # CORS middleware is already added in create_application()
    app.middleware("http")(add_economy_headers)
    app.add_middleware(RequestLoggingMiddleware)

    logger.info("Middleware setup completed")
