# backend/agent_intelligence/api/cron.py
"""Trigger for the external scheduler. Protected by `Authorization: Bearer $CRON_SECRET`."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from agent_intelligence.config import settings
from agent_intelligence.dependencies import Services, get_services
from agent_intelligence.pipelines.learning_pipeline import run_complete_learning_workflow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/agent-intelligence/cron", tags=["agent-intelligence"])


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    if not settings.CRON_SECRET:
        raise HTTPException(status_code=503, detail="CRON_SECRET not configured")
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/learning", dependencies=[Depends(require_cron_secret)])
async def run_learning(services: Services = Depends(get_services)):
    results = await run_complete_learning_workflow(services)
    logger.info("Scheduled learning run finished")
    return {"success": True, "results": results}
