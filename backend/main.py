import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone, timedelta
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.rate_limit import limiter
from database import connect_db, close_db, db

# Routers
from routers import notifications
from services.audit_service import AuditAction
from services.prediction_service import run_prediction_job

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime, hour_utc: int) -> float:
    """Seconds from `now` until the next HH:00 UTC (strictly in the future)."""
    target = now.astimezone(timezone.utc).replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def _daily_prediction_loop() -> None:
    """
    Once a day at PREDICT_SCHEDULE_HOUR_UTC: same engine as the HTTP trigger.
    A failed run is logged and the loop waits for the next day.
    """
    while True:
        delay = seconds_until_next_run(datetime.now(timezone.utc), settings.PREDICT_SCHEDULE_HOUR_UTC)
        await asyncio.sleep(delay)
        try:
            summary = await run_prediction_job(db, action=AuditAction.SCHEDULED_PREDICT)
            logger.info(f"Scheduled prediction run: sent={summary.sent} skipped={summary.skipped} failed={summary.failed}")
        except Exception as exc:
            logger.error(f"Scheduled prediction run failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    task = None
    if settings.PREDICT_SCHEDULE_ENABLED:
        task = asyncio.create_task(_daily_prediction_loop())
    logger.info("SSO Smart Service API started")
    yield
    # Shutdown
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    await close_db()
    logger.info("SSO Smart Service API stopped")


app = FastAPI(
    title="SSO Smart Service API",
    description="Social security member portal: predictive notifications",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else [settings.BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "sso-smart-service", "version": "1.0.0"}
