# backend/agent_intelligence/api/versions.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from agent_intelligence.dependencies import Services, get_services
from agent_intelligence.serializers import version_to_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/agent-intelligence", tags=["agent-intelligence"])


class VersionIn(BaseModel):
    agent_name: str = Field(..., min_length=1)
    decision_type: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    prompt_template: str = Field(..., min_length=1)
    variant: Optional[str] = None
    system_instructions: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    status: str = "testing"
    rollout_percentage: int = Field(default=0, ge=0, le=100)
    parent_version_id: Optional[int] = None
    created_by: str = "system"
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class RetireIn(BaseModel):
    status: str = "archived"


@router.get("/versions")
async def list_versions(
    agent_name: Optional[str] = None,
    decision_type: Optional[str] = None,
    status: Optional[str] = None,
    services: Services = Depends(get_services),
):
    versions = services.registry.list_versions(agent_name, decision_type, status)
    return {"versions": [version_to_dict(v) for v in versions]}


@router.post("/versions", status_code=201)
async def create_version(payload: VersionIn, services: Services = Depends(get_services)):
    version = services.registry.create_version(
        agent_name=payload.agent_name,
        decision_type=payload.decision_type,
        version=payload.version,
        prompt_template=payload.prompt_template,
        variant=payload.variant,
        system_instructions=payload.system_instructions,
        parameters=payload.parameters,
        status=payload.status,
        rollout_percentage=payload.rollout_percentage,
        parent_version_id=payload.parent_version_id,
        created_by=payload.created_by,
        notes=payload.notes,
        metadata=payload.metadata,
    )
    return version_to_dict(version)


@router.get("/versions/{version_id}")
async def get_version(version_id: int, services: Services = Depends(get_services)):
    return version_to_dict(services.registry.get_version(version_id))


@router.post("/versions/{version_id}/retire")
async def retire_version(version_id: int, payload: RetireIn, services: Services = Depends(get_services)):
    version = services.registry.retire_version(version_id, payload.status)
    logger.info("Version %s retired as %s", version_id, payload.status)
    return version_to_dict(version)
