# api.py
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend
from fastapi_limiter import FastAPILimiter
from redis.exceptions import RedisError
from utils.cache import CustomCoder, NETWORK_CACHE, setup_cache
import asyncio
import uvicorn
from typing import Dict, Any
import psutil
import time

from database import DatabasePool
from engine.economy import build_economy
from engine.errors import (
    NOT_FOUND, UNKNOWN_USER, EconomyError, PriceUnavailable, StorageUnavailable,
)
from routes import general
from routes.mining import routes as mining
from routes.staking import routes as staking
from middleware import setup_middleware
from storage import init_storage
from utils.logging import logger, start_telegram_handler, stop_telegram_handler
from utils.price import build_price_oracle
from utils.units import to_units
from config import settings

async def monitor_system_health(app: FastAPI):
    """Monitor system resources and health metrics"""
    unhealthy_count = 0
    while True:
        try:
            cpu_percent = psutil.cpu_percent(interval=1)
            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')

            metrics = {
                "cpu_percent": cpu_percent,
                "memory_percent": memory.percent,
                "disk_percent": disk.percent,
                "storage": app.state.economy.storage.name,
            }

            is_critical = False
            reasons = []

            if cpu_percent > 85:
                reasons.append(f"CPU usage critical: {cpu_percent}%")
                is_critical = True

            if memory.percent > 90:
                reasons.append(f"Memory usage critical: {memory.percent}%")
                is_critical = True

            if disk.percent > 95:
                reasons.append(f"Disk usage critical: {disk.percent}%")
                is_critical = True

            if app.state.economy.storage.name == "postgres":
                pool_stats = await DatabasePool.get_pool_stats()
                pool_size = pool_stats.get("pool_size", 0)
                max_size = pool_stats.get("pool_max_size", settings.POOL_MAX_SIZE)
                metrics["pool_usage"] = f"{pool_size}/{max_size}"
                if pool_size >= max_size and pool_stats.get("pool_available", 0) == 0:
                    reasons.append(f"Connection pool exhausted: {pool_size}/{max_size}")
                    is_critical = True

            if is_critical:
                logger.error(f"System resources critical: {metrics}\nReasons: {', '.join(reasons)}")
                unhealthy_count += 1

                if unhealthy_count >= settings.MAX_UNHEALTHY_COUNT:
                    logger.critical(
                        f"System consistently unhealthy!\nMetrics: {metrics}\n"
                        f"Reasons: {', '.join(reasons)}"
                    )
                    # Reset counter to avoid spam
                    unhealthy_count = 0
            else:
                # Only log metrics every 5 minutes if healthy
                if time.time() % 300 < settings.HEALTH_CHECK_INTERVAL:
                    logger.info(f"System healthy - Metrics: {metrics}")
                unhealthy_count = 0

            await asyncio.sleep(settings.HEALTH_CHECK_INTERVAL)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in health monitoring: {str(e)}")
            await asyncio.sleep(60)  # Wait longer on error

async def setup_redis_services():
    """Redis-backed cache and rate limiter, or in-process cache without limits"""
    try:
        redis = await setup_cache(settings.REDIS_URL)
        await FastAPILimiter.init(redis)
        return redis
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unavailable ({str(e)}), using in-memory cache without rate limits")
        FastAPICache.init(InMemoryBackend(), prefix="fastapi-cache:", key_builder=NETWORK_CACHE, coder=CustomCoder)
        return None

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the FastAPI application"""
    start_telegram_handler()

    storage = await init_storage(to_units(settings.INITIAL_BLOCK_REWARD))
    economy = build_economy(storage, settings, build_price_oracle(settings))
    await economy.supply.initialize(economy.scheduler.clock())
    app.state.economy = economy

    redis = await setup_redis_services()

    app.state.tasks = [asyncio.create_task(monitor_system_health(app))]
    if settings.SCHEDULER_ENABLED:
        app.state.tasks.append(asyncio.create_task(economy.scheduler.run_forever()))

    logger.info(f"Application startup completed (storage={storage.name})")

    yield

    logger.info("Starting application shutdown")
    economy.scheduler.stop()
    for task in app.state.tasks:
        task.cancel()
    await asyncio.gather(*app.state.tasks, return_exceptions=True)
    await economy.close()
    await DatabasePool.close()
    if redis:
        await redis.close()

    await stop_telegram_handler()
    logger.info("Application shutdown completed")

async def economy_error_handler(request: Request, exc: EconomyError):
    status_code = 404 if exc.reason in (NOT_FOUND, UNKNOWN_USER) else 400
    return JSONResponse(status_code=status_code, content={"reason": exc.reason, "message": str(exc)})

async def unavailable_error_handler(request: Request, exc: Exception):
    logger.error(f"Service unavailable on {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=503,
        content={"reason": "unavailable", "message": "Service temporarily unavailable"},
    )

def create_application(lifespan_handler=lifespan) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="HashWave API",
        description="Simulated proof-of-work reward economy: blocks, claims and staking",
        version="1.0.0",
        lifespan=lifespan_handler
    )

    # Setup CORS
    origins = [
        "http://localhost:5173",    # Vite development server
        "http://localhost:3000",    # Alternative development port
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    if not settings.DEBUG:
        production_origins = settings.ALLOWED_ORIGINS.split(',') if settings.ALLOWED_ORIGINS else []
        origins.extend(production_origins)
    else:
        origins.append("*")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=86400,  # Cache preflight requests for 24 hours
    )

    app.add_exception_handler(EconomyError, economy_error_handler)
    app.add_exception_handler(StorageUnavailable, unavailable_error_handler)
    app.add_exception_handler(PriceUnavailable, unavailable_error_handler)

    # Include routers
    app.include_router(general.router)
    app.include_router(mining.router, prefix="/mining", tags=["mining"])
    app.include_router(staking.router, prefix="/staking", tags=["staking"])

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint for the API"""
        economy = getattr(app.state, "economy", None)
        if economy is None:
            raise HTTPException(status_code=503, detail="Engine not started")
        try:
            state = await economy.supply.state()
            health = {
                "status": "healthy",
                "storage": economy.storage.name,
                "total_blocks": state.total_blocks,
                "last_period": state.last_period,
                "version": "1.0.0"
            }
            if economy.storage.name == "postgres":
                health["database_pool"] = await DatabasePool.get_pool_stats()
            return health
        except StorageUnavailable as e:
            logger.error(f"Health check failed: {str(e)}")
            raise HTTPException(
                status_code=503,
                detail=f"Health check failed: {str(e)}"
            )

    @app.get("/routes")
    async def list_routes():
        """List all available routes in the API, included routers too"""
        # The OpenAPI document is built from every mounted router
        paths = app.openapi().get("paths", {})
        routes = [
            {"path": path, "method": method.upper(), "name": operation.get("summary")}
            for path, operations in paths.items()
            for method, operation in operations.items()
        ]
        return sorted(routes, key=lambda x: (x["path"], x["method"]))

    # Additional middleware
    setup_middleware(app)

    return app

# Create the application instance
app = create_application()

if __name__ == "__main__":
    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=8000,
        # One process: the scheduler assumes a single writer
        workers=1,
        loop="uvloop",
        limit_concurrency=100,
        timeout_keep_alive=30,
        access_log=True
    )
