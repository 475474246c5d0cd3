import time
import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI

from . import config
from . import metrics
from .auth_middleware import WorkerAuthMiddleware
from .budget import BudgetGovernor
from .circuit_breaker import CircuitBreaker
from .fallback_limiter import InMemoryRateLimiter
from .jobs import CLEANUP_INTERVAL_SECONDS, JobRegistry
from .pipeline import MovieGenerationService, movie_router, webhook_router
from .pipeline.routes import get_service, set_service
from .rate_limiter import RedisRateLimiter

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# ── Lazy Redis client ─────────────────────────────────────────────────────────
_redis_client = None


def get_redis():
    """Get or create a Redis client. Returns None if Redis is not configured."""
    global _redis_client
    if _redis_client is None and config.REDIS_URL:
        import redis
        client = redis.from_url(config.REDIS_URL, decode_responses=False)
        try:
            client.ping()
            logger.info(f"Redis connected: {config.REDIS_URL[:30]}...")
            _redis_client = client
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Falling back to in-memory rate limiting")
    return _redis_client


def build_rate_limiter():
    """Redis limiter when reachable (shared across replicas), else in-memory."""
    r = get_redis()
    if r is not None:
        return RedisRateLimiter(r)
    return InMemoryRateLimiter()


def build_service(rate_limiter=None) -> MovieGenerationService:
    """One governor, breaker and job registry per process."""
    return MovieGenerationService(
        governor=BudgetGovernor(rate_limiter=rate_limiter or build_rate_limiter()),
        breaker=CircuitBreaker(),
        registry=JobRegistry(),
        config=config.PipelineConfig(),
    )


async def _limiter_sweep_loop(limiter: InMemoryRateLimiter, interval: float = CLEANUP_INTERVAL_SECONDS):
    while True:
        await asyncio.sleep(interval)
        limiter.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Worker starting up...")
    if config.ENVIRONMENT != "development":
        # Fail the boot, not every scene, when a required key is missing
        config.get_settings()
    metrics.set_gauge("start_time", time.time())

    limiter = build_rate_limiter()
    service = build_service(limiter)
    set_service(service)

    background = [asyncio.create_task(service.registry.run_cleanup_loop())]
    if isinstance(limiter, InMemoryRateLimiter):
        logger.info("No Redis, using in-memory rate limiter")
        background.append(asyncio.create_task(_limiter_sweep_loop(limiter)))

    yield

    logger.info("Worker shutting down...")
    for task in background:
        task.cancel()
    await asyncio.gather(*background, return_exceptions=True)


app = FastAPI(lifespan=lifespan)
app.add_middleware(WorkerAuthMiddleware)
app.include_router(webhook_router)
app.include_router(movie_router)


@app.get("/health")
def health_check():
    """Verify worker is running and env vars are configured."""
    return {
        "status": "ok",
        "environment": config.ENVIRONMENT,
        "supabase_url_set": bool(config.SUPABASE_URL),
        "openai_api_key_set": bool(config.OPENAI_API_KEY),
        "replicate_api_token_set": bool(config.REPLICATE_API_TOKEN),
        "redis_configured": bool(config.REDIS_URL),
    }


@app.get("/metrics")
def metrics_endpoint(service: MovieGenerationService = Depends(get_service)):
    """Return a snapshot of all worker metrics."""
    snapshot = metrics.get_snapshot()
    snapshot["budget"] = service.governor.get_status().model_dump()
    snapshot["circuits"] = service.breaker.snapshot()
    return snapshot


if __name__ == "__main__":
    uvicorn.run("reelsmith.main:app", host="0.0.0.0", port=config.PORT, reload=True)
