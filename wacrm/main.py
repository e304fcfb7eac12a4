import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from . import models  # noqa: F401
from .cache import get_redis_client, redis_configured
from .config import ALLOWED_ORIGINS
from .database import Base, SessionLocal, engine
from .domain.appointments.router import router as appointments_router
from .domain.catalog.router import router as catalog_router
from .domain.customers.router import router as customers_router
from .domain.inventory.router import router as inventory_router
from .domain.invoices.router import router as invoices_router
from .domain.orders.router import router as orders_router
from .models import Agent
from .models_tenant import create_tenant_tables
from .routes.agents import router as agents_router
from .routes.analytics import router as analytics_router
from .routes.auth import router as auth_router
from .routes.conversations import router as conversations_router
from .routes.media import router as media_router
from .routes.messages import router as messages_router
from .routes.realtime import router as realtime_router
from .routes.templates import router as templates_router
from .routes.users import router as users_router
from .routes.webhook import router as webhook_router
from .routes.whatsapp import router as whatsapp_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def ensure_tenant_tables():
    """Create missing per-agent tables for agents registered before this deploy"""
    db = SessionLocal()
    try:
        prefixes = [prefix for (prefix,) in db.query(Agent.agent_prefix).all()]
    finally:
        db.close()
    for prefix in prefixes:
        create_tenant_tables(prefix, engine)
    logger.info(f"Tenant tables verified for {len(prefixes)} agents")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
        ensure_tenant_tables()
    except SQLAlchemyError as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    if redis_configured():
        try:
            get_redis_client()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning(f"Redis connection failed - caching will operate in fail-open mode: {e}")
    else:
        logger.info("Redis not configured - caching disabled")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="WhatsApp CRM API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


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
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(agents_router)
app.include_router(whatsapp_router)
app.include_router(webhook_router)
app.include_router(messages_router)
app.include_router(conversations_router)
app.include_router(customers_router)
app.include_router(orders_router)
app.include_router(invoices_router)
app.include_router(appointments_router)
app.include_router(catalog_router)
app.include_router(inventory_router)
app.include_router(templates_router)
app.include_router(analytics_router)
app.include_router(media_router)
app.include_router(realtime_router)


@app.get("/")
def root():
    return {"message": "WhatsApp CRM API is running"}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/redis")
async def redis_health_check():
    """Check Redis connectivity for monitoring"""
    if not redis_configured():
        return {"status": "disabled", "redis": {"connected": False}}
    try:
        redis_client = get_redis_client()

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
