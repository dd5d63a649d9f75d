import logging
import time
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models  # noqa: F401
from .config import ALLOWED_ORIGINS, REDIS_URL, REMINDER_SCHEDULER_ENABLED
from .database import Base, engine
from .domain.appointments.router import router as appointments_router
from .domain.doctors.router import router as doctors_router
from .domain.ledger.router import router as wallet_router
from .domain.queue.router import router as queue_router
from .domain.reminders.router import router as reminders_router
from .domain.reminders.scheduler import ReminderScheduler
from .services.notification_service import NotificationDispatcher
from .shared.exceptions import ClinicError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Another worker may have created them first
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    dispatcher = NotificationDispatcher()
    dispatcher.start()
    scheduler = ReminderScheduler(dispatcher)
    app.state.dispatcher = dispatcher
    app.state.reminder_scheduler = scheduler

    if REMINDER_SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Reminder scheduler disabled - reminders run from the ARQ worker")

    yield

    logger.info("Application shutting down...")
    await scheduler.stop()
    await dispatcher.stop()


app = FastAPI(title="MyClinic API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.detail}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(wallet_router)
app.include_router(appointments_router)
app.include_router(queue_router)
app.include_router(doctors_router)
app.include_router(reminders_router)


@app.get("/")
def root():
    return {"message": "MyClinic API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/redis")
async def redis_health_check():
    """Check Redis connectivity for monitoring"""
    try:
        redis_client = redis.from_url(REDIS_URL, socket_connect_timeout=5)

        start_time = time.time()
        redis_client.ping()
        response_time = (time.time() - start_time) * 1000

        info = redis_client.info()

        return {
            "status": "healthy",
            "redis": {
                "connected": True,
                "response_time_ms": round(response_time, 2),
                "version": info.get("redis_version", "unknown"),
                "used_memory_human": info.get("used_memory_human", "unknown"),
                "connected_clients": info.get("connected_clients", 0),
            },
        }
    except Exception as e:
        return {"status": "unhealthy", "redis": {"connected": False, "error": str(e)}}
