# main.py
import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.database import SessionLocal
from app.api.deps import get_voting_service
from app.api.routes import votes, payments, categories, nominees, users, admin
from app.core.logging_middleware import log_requests
from app.core.logger import logger

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug
)

# ===== Logging middleware (first) =====
@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    return await log_requests(request, call_next)
# ======================================

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(votes.router)
app.include_router(payments.router)
app.include_router(categories.router)
app.include_router(nominees.router)
app.include_router(users.router)
app.include_router(admin.router)

# ===== Payment expiry sweep =====
async def run_payment_sweep():
    """Resolve stale payments every payment_sweep_interval_seconds"""
    voting = get_voting_service()
    while True:
        await asyncio.sleep(settings.payment_sweep_interval_seconds)
        try:
            async with SessionLocal() as db:
                await voting.expire_stale_transactions(db)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # keep the loop alive; the next run retries
            logger.exception(f"Payment sweep failed: {e}")

_sweep_task = None

@app.on_event("startup")
async def startup_event():
    global _sweep_task
    logger.info("CampusVote API starting")
    if settings.payment_sweep_interval_seconds > 0:
        _sweep_task = asyncio.create_task(run_payment_sweep())

@app.on_event("shutdown")
async def shutdown_event():
    if _sweep_task is not None:
        _sweep_task.cancel()
    logger.info("CampusVote API stopped")
# ================================

@app.get("/health")
def health_check():
    """Health check"""
    return {
        "status": "healthy",
        "service": settings.app_name
    }
