# backend/agent_intelligence/api/decisions.py
"""
Inbound interface for business agents:
- log a decision
- attach an outcome
- ask which version to use next
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from agent_intelligence.dependencies import Services, get_services
from agent_intelligence.serializers import decision_to_dict
from agent_intelligence.services.version_registry import as_agent_config

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/agent-intelligence", tags=["agent-intelligence"])


class DecisionIn(BaseModel):
    agent_name: str = Field(..., min_length=1)
    decision_type: str = Field(..., min_length=1)
    decision_made: str
    rationale: str
    context: Dict[str, Any] = Field(default_factory=dict)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    version_label: Optional[str] = None
    variant_label: Optional[str] = None
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class OutcomeIn(BaseModel):
    outcome_type: str = Field(..., min_length=1)
    outcome_value: Optional[float] = Field(default=None, ge=0, le=100)
    outcome_data: Optional[Dict[str, Any]] = None
    feedback_source: str = "automated"
    notes: Optional[str] = None


@router.post("/decisions", status_code=201)
async def log_decision(payload: DecisionIn, services: Services = Depends(get_services)):
    decision_id = services.ledger.log_decision(
        agent_name=payload.agent_name,
        decision_type=payload.decision_type,
        context=payload.context,
        decision_made=payload.decision_made,
        rationale=payload.rationale,
        confidence=payload.confidence,
        version_label=payload.version_label,
        variant_label=payload.variant_label,
        input_data=payload.input_data,
        output_data=payload.output_data,
        metadata=payload.metadata,
    )
    return {"success": True, "decision_id": decision_id}


@router.get("/decisions/{decision_id}")
async def get_decision(decision_id: int, services: Services = Depends(get_services)):
    return decision_to_dict(services.ledger.get_decision(decision_id))


@router.post("/decisions/{decision_id}/outcomes", status_code=201)
async def record_outcome(decision_id: int, payload: OutcomeIn, services: Services = Depends(get_services)):
    outcome_id = services.ledger.record_outcome(
        decision_id,
        payload.outcome_type,
        value=payload.outcome_value,
        data=payload.outcome_data,
        source=payload.feedback_source,
        notes=payload.notes,
    )
    return {"success": True, "outcome_id": outcome_id}


@router.get("/active-version")
async def active_version(
    agent_name: str = Query(..., min_length=1),
    decision_type: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    """null config means the agent should use its built-in behavior."""
    version = services.registry.get_active_version(agent_name, decision_type)
    return {"agent_name": agent_name, "decision_type": decision_type, "config": as_agent_config(version)}
