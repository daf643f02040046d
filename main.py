# main.py (lifespan-based)
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from tortoise import Tortoise

from models import User
from routers import auth, bills, selic_rates, uploads
from routers.auth import pwd_ctx
from services import config
from services.rate_series import RateSeriesStore, load_rate_csv

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("uvicorn")
UTC = timezone.utc

TORTOISE_ORM = {
    "connections": {config.DB_CONNECTION: config.DATABASE_URL},
    "apps": {"models": {"models": ["models"], "default_connection": config.DB_CONNECTION}},
}

# ----- helpers -----
async def _seed_admin():
    if not await User.exists():
        await User.create(
            username=config.ADMIN_USERNAME,
            email=config.ADMIN_EMAIL,
            hashed_password=pwd_ctx.hash(config.ADMIN_PASSWORD),
            is_admin=True,
        )
        logger.info(f"[seed] admin user {config.ADMIN_USERNAME!r} created")

async def _bootstrap_selic():
    res = await load_rate_csv(RateSeriesStore(config.DB_CONNECTION), config.SELIC_CSV_PATH)
    logger.info(f"[selic] bootstrap from {config.SELIC_CSV_PATH}: {res}")

# ----- lifespan -----
@asynccontextmanager
async def lifespan(app: FastAPI):
    await Tortoise.init(config=TORTOISE_ORM)
    await Tortoise.generate_schemas()

    await _seed_admin()
    if config.LOAD_SELIC_ON_STARTUP:
        await _bootstrap_selic()
    try:
        yield
    finally:
        await Tortoise.close_connections()

# ----- app & routers -----
app = FastAPI(lifespan=lifespan, title="Electricity Bills SELIC API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Content-Disposition"],
)

app.include_router(auth.router)
app.include_router(uploads.router)
app.include_router(bills.router)
app.include_router(selic_rates.router)

@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "timestamp": datetime.now(tz=UTC).isoformat()}

for route in app.routes:
    if isinstance(route, APIRoute):
        logger.debug("%s -> %s", list(route.methods), route.path)
