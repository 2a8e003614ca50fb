# backend/agent_intelligence/api/insights.py
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator

from agent_intelligence.dependencies import Services, get_services
from agent_intelligence.serializers import insight_to_dict, snapshot_to_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/agent-intelligence", tags=["agent-intelligence"])


class AnalyzeIn(BaseModel):
    agent_name: str = Field(..., min_length=1)
    decision_type: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    days: int = Field(default=7, ge=1, le=365)

    @field_validator("period_start", "period_end")
    @classmethod
    def as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # ledger timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class SnapshotIn(BaseModel):
    agent_name: str = Field(..., min_length=1)
    snapshot_date: Optional[date] = None


@router.post("/analyze")
async def analyze(payload: AnalyzeIn, services: Services = Depends(get_services)):
    period_end = payload.period_end or datetime.utcnow()
    period_start = payload.period_start or period_end - timedelta(days=payload.days)
    logger.info(f"Analysis requested for {payload.agent_name} ({period_start:%Y-%m-%d} - {period_end:%Y-%m-%d})")

    insight = await services.insights.analyze(payload.agent_name, payload.decision_type, period_start, period_end)
    return {"success": True, "insight": insight_to_dict(insight)}


@router.post("/snapshots")
async def snapshot(payload: SnapshotIn, services: Services = Depends(get_services)):
    day = payload.snapshot_date or datetime.utcnow().date()
    row = services.insights.snapshot(payload.agent_name, day)
    if row is None:
        return {"success": True, "snapshot": None, "message": "No decisions recorded for this day"}
    return {"success": True, "snapshot": snapshot_to_dict(row)}


@router.get("/dashboard")
async def dashboard(
    agent_name: Optional[str] = None,
    days: int = Query(default=30, ge=1, le=365),
    services: Services = Depends(get_services),
):
    return {"success": True, "dashboard": services.insights.dashboard(agent_name, days)}
