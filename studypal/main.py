import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studypal.core import config
from studypal.core.logging_config import setup_logging
from studypal.core.rate_limit import RateLimitStore

# ✅ Import All API Routes
from studypal.api.routes import chat, usage, profile, billing, contact, health

logger = logging.getLogger(__name__)

# 5 contact messages / 10 payment calls per IP every 15 minutes
RATE_LIMIT_WINDOW_SECONDS = 15 * 60
CONTACT_MAX_REQUESTS = 5
PAYMENT_MAX_REQUESTS = 10


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL, config.LOG_DIR)

    if config.RUN_MIGRATIONS:
        from studypal.db.migrate import run_migrations
        run_migrations()
    else:
        from studypal.db.init_db import init_db
        init_db()

    logger.info("StudyPal API started")
    yield
    logger.info("StudyPal API stopped")


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="StudyPal API", lifespan=lifespan)

# ✅ CORS: only the configured frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-Device-Id", "Stripe-Signature"],
)

# ✅ Per-process rate limit stores
app.state.contact_limiter = RateLimitStore(CONTACT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)
app.state.payment_limiter = RateLimitStore(PAYMENT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(chat.router)
app.include_router(usage.router)
app.include_router(profile.router)
app.include_router(billing.router)
app.include_router(contact.router)
app.include_router(health.router)


# ============================================
# ✅ ROOT ENDPOINT
# ============================================

@app.get("/")
def root():
    return {"status": "StudyPal API running"}
