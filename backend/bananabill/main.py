import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bananabill import __version__
from bananabill.config import settings
from bananabill.middleware.exceptions import register_exception_handlers
from bananabill.routers import bills
from bananabill.utils.redis_pool import close_redis

logger = logging.getLogger("bananabill")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("BananaBill starting (sequence backend: %s)", settings.sequence_backend)
    yield
    await close_redis()


app = FastAPI(
    title="BananaBill",
    description="Commodity bill numbering, calculation and payment ledger",
    version=__version__,
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(bills.router, prefix="/api/bills", tags=["bills"])
