"""
TikTok Dashboard API
Link a TikTok account, refresh its metrics from a scraping provider, and
browse the cached videos by account or by hashtag.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv
import logging
import os

# Load .env from parent dir (local dev) or current dir (deployed)
load_dotenv(dotenv_path="../.env")
load_dotenv(dotenv_path=".env")

from database import init_db, SessionLocal, User

# Routers
from routers import auth, profile, tiktok, hashtags, freshness
from services.scheduler import scheduler

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database init failed (non-fatal): {e}")

    try:
        await scheduler.start()
    except Exception as e:
        logger.error(f"Scheduler start failed (non-fatal): {e}")

    yield

    try:
        await scheduler.stop()
    except Exception as e:
        logger.warning(f"Scheduler stop failed: {e}")


app = FastAPI(
    title="TikTok Dashboard API",
    description="""
    API for a TikTok creator dashboard.

    ## Features

    - **Profile** (`/api/profile`): link a TikTok username, toggle data fetching
    - **TikTok** (`/api/tiktok`): refresh metrics, browse and search cached videos
    - **Hashtags** (`/api/hashtags`): search TikTok by hashtag, search history
    - **Freshness** (`/api/freshness`): cooldown status before the next refresh

    Provider calls are limited to one per cooldown window per user.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
# Add custom origins from env
extra_origins = os.getenv("CORS_ORIGINS", "")
if extra_origins:
    ALLOWED_ORIGINS.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Routers
# =============================================================================

app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(profile.router, prefix="/api/profile", tags=["Profile"])
app.include_router(tiktok.router, prefix="/api/tiktok", tags=["TikTok"])
app.include_router(hashtags.router, prefix="/api/hashtags", tags=["Hashtags"])
app.include_router(freshness.router, prefix="/api/freshness", tags=["Data freshness"])


# =============================================================================
# Root endpoints
# =============================================================================

@app.get("/")
async def root():
    """API entry point."""
    return {
        "name": "TikTok Dashboard API",
        "version": "1.0.0",
        "endpoints": {
            "profile": "/api/profile",
            "refresh": "/api/tiktok/refresh",
            "posts": "/api/tiktok/posts",
            "hashtag_search": "/api/hashtags/search",
            "search_history": "/api/hashtags/history",
            "freshness": "/api/freshness",
        }
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    result = {
        "status": "healthy",
        "version": "1.0.0",
    }
    try:
        db = SessionLocal()
        try:
            result["linked_accounts"] = db.query(User).filter(User.tiktok_username.isnot(None)).count()
        finally:
            db.close()
        result["scheduler_status"] = scheduler.get_status()
    except Exception:
        result["db"] = "unavailable"
    return result


@app.get("/api/scheduler/status")
async def get_scheduler_status():
    """Status of the periodic account refresh."""
    return scheduler.get_status()
