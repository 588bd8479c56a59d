from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CONFIG
from .db import initialize_db
from .registry import iter_policies
from .routes import activities as activity_routes
from .routes import children as children_routes
from .routes import cron as cron_routes
from .routes import daily_stats as daily_stats_routes
from .routes import voice as voice_routes

logger = logging.getLogger(__name__)

initialize_db()

app = FastAPI(
    title="Babylog API",
    version="0.1.0",
    description="Logs baby care activities and rolls them up into daily stats",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CONFIG.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(activity_routes.router, tags=["activities"])
app.include_router(daily_stats_routes.router, tags=["daily-stats"])
app.include_router(cron_routes.router, tags=["cron"])
app.include_router(voice_routes.router, tags=["voice"])
app.include_router(children_routes.router, tags=["children"])


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict:
    return {"message": "Babylog API ready"}


@app.get("/api/v1/activity-types")
async def activity_types() -> list:
    """Registered types with the policy the rest of the service applies to them."""
    return [
        {
            "type": activity_type.value,
            "shape": policy.shape.value,
            "exclusivity": policy.exclusivity.value,
            "day_attribution": policy.day_attribution.value,
            "category": policy.category,
        }
        for activity_type, policy in iter_policies()
    ]
