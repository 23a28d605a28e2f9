"""
CCPI Web Application

FastAPI-based API for:
- Evaluating indicator snapshots on demand
- Viewing the latest stored CCPI reading
- Historical readings
- Alert history
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ccpi.calculator import CCPICalculator
from ccpi.indicators import INDICATORS, TOTAL_INDICATORS, IndicatorSnapshot
from ccpi.pillars import YieldCurvePolicy
from ccpi.database import (
    Database, get_latest_reading, get_readings_for_timerange, get_recent_alerts,
)


# Configuration
DATABASE_URL = os.getenv('DATABASE_URL', 'postgresql://localhost/ccpi')
DEFAULT_POLICY = YieldCurvePolicy(os.getenv('CCPI_YIELD_CURVE_POLICY', 'dual').lower())

# Database instance (initialized on startup)
db: Optional[Database] = None

calculators = {
    policy: CCPICalculator(yield_curve_policy=policy) for policy in YieldCurvePolicy
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global db

    # Startup
    db = Database(DATABASE_URL)
    await db.create_tables()

    yield

    # Shutdown
    if db:
        await db.close()


# Create FastAPI app
app = FastAPI(
    title="CCPI API",
    description="Crash & Correction Prediction Index - market correction risk scoring",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS for API access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class EvaluateRequest(BaseModel):
    indicators: dict[str, Any] = Field(default_factory=dict)
    yield_curve_policy: Optional[YieldCurvePolicy] = None
    timestamp: Optional[datetime] = None


def require_db() -> Database:
    if db is None:
        raise HTTPException(503, "Database not initialized")
    return db


# ============== CCPI API ==============

@app.post("/api/ccpi/evaluate")
async def evaluate(req: EvaluateRequest):
    """Score a snapshot; absent or malformed indicators take their defaults"""
    calculator = calculators[req.yield_curve_policy or DEFAULT_POLICY]
    snapshot = IndicatorSnapshot.from_raw(req.indicators, timestamp=req.timestamp)
    return calculator.evaluate(snapshot).to_dict()


@app.get("/api/ccpi/indicators")
async def list_indicators():
    """Indicator registry with owning pillar and baseline default"""
    return {
        "total": TOTAL_INDICATORS,
        "indicators": [
            {
                "name": spec.name,
                "pillar": spec.pillar.value,
                "default": spec.default,
                "unit": spec.unit,
                "description": spec.description,
            }
            for spec in INDICATORS.values()
        ],
    }


@app.get("/api/ccpi/current")
async def get_current_ccpi():
    """Get the latest stored CCPI reading"""
    database = require_db()
    async with database.session() as session:
        reading = await get_latest_reading(session)

    if reading is None:
        raise HTTPException(404, "No CCPI readings stored yet")

    return reading.to_dict()


@app.get("/api/ccpi/history")
async def get_history(hours: int = Query(24, ge=1, le=24 * 365)):
    """Get CCPI history"""
    database = require_db()
    end_time = datetime.now(timezone.utc)
    start_time = end_time - timedelta(hours=hours)

    async with database.session() as session:
        readings = await get_readings_for_timerange(session, start_time, end_time)

    return {
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "data_points": len(readings),
        "history": [
            {
                "timestamp": r.timestamp.isoformat(),
                "ccpi": r.ccpi,
                "base_ccpi": r.base_ccpi,
                "total_bonus": r.total_bonus,
                "certainty": r.certainty,
                "regime_level": r.regime_level,
                "regime_name": r.regime_name,
            }
            for r in readings
        ]
    }


@app.get("/api/alerts")
async def get_alerts(limit: int = Query(50, ge=1, le=500)):
    """Get recent alerts"""
    database = require_db()
    async with database.session() as session:
        alerts = await get_recent_alerts(session, limit)

    return {"alerts": [a.to_dict() for a in alerts]}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
