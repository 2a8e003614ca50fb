# backend/agent_intelligence/api/approvals.py
"""
Human review of prompt changes.

Approve promotes the version in the same transaction; passing a higher
rollout_percentage to an already approved request advances a graduated
rollout.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from agent_intelligence.dependencies import Services, get_services
from agent_intelligence.serializers import approval_to_dict

router = APIRouter(prefix="/api/agent-intelligence", tags=["agent-intelligence"])


class ApproveIn(BaseModel):
    reviewer: str = Field(..., min_length=1)
    notes: Optional[str] = None
    rollout_percentage: int = Field(default=100, ge=0, le=100)


class RejectIn(BaseModel):
    reviewer: str = Field(..., min_length=1)
    notes: Optional[str] = None


@router.get("/approvals")
async def list_approvals(status: Optional[str] = "pending", services: Services = Depends(get_services)):
    requests = services.approvals.list_requests(status=status or None)
    return {"approvals": [approval_to_dict(r) for r in requests]}


@router.get("/approvals/{request_id}")
async def get_approval(request_id: int, services: Services = Depends(get_services)):
    return approval_to_dict(services.approvals.get_request(request_id))


@router.post("/approvals/{request_id}/approve")
async def approve(request_id: int, payload: ApproveIn, services: Services = Depends(get_services)):
    request = services.approvals.approve(
        request_id, payload.reviewer, notes=payload.notes, rollout_percentage=payload.rollout_percentage
    )
    return approval_to_dict(request)


@router.post("/approvals/{request_id}/reject")
async def reject(request_id: int, payload: RejectIn, services: Services = Depends(get_services)):
    return approval_to_dict(services.approvals.reject(request_id, payload.reviewer, notes=payload.notes))
