"""
Webinar Engine API - Main Server
"""
from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging

# Configuration
from config import CORS_ORIGINS, STORE_BACKEND

# Rate Limiting
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from rate_limiter import limiter

from utils.errors import WebinarError

# Import routers
from routers.admin_webinars import router as admin_webinars_router
from routers.webinars import router as webinars_router

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="Webinar Engine API")

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(WebinarError)
async def webinar_error_handler(request: Request, exc: WebinarError):
    """Map domain errors to {"detail": message} with their HTTP status"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# CORS Middleware - MUST be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create main API router
api_router = APIRouter(prefix="/api")


@api_router.get("/")
async def root():
    return {"message": "Webinar Engine API", "version": "1.0.0"}


# Include all routers
api_router.include_router(admin_webinars_router)  # Must be before webinars_router so /webinars/admin is not read as an id
api_router.include_router(webinars_router)

app.include_router(api_router)

# Import and start background scheduler
from scheduler_worker import start_scheduler, stop_scheduler, get_scheduler_info


@app.on_event("startup")
async def startup_event():
    """Start background scheduler on app startup"""
    if STORE_BACKEND == "mongo":
        from database import ensure_indexes
        # Create database indexes for performance
        await ensure_indexes()

    start_scheduler()


@app.on_event("shutdown")
async def shutdown_db_client():
    """Stop scheduler and close DB on shutdown"""
    stop_scheduler()

    if STORE_BACKEND == "mongo":
        from database import close_db
        await close_db()


# Endpoint to check scheduler status
@app.get("/api/scheduler/worker-status")
async def scheduler_worker_status():
    """Get background scheduler status"""
    return await get_scheduler_info()
