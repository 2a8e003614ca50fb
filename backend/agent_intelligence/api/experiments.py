# backend/agent_intelligence/api/experiments.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from agent_intelligence.dependencies import Services, get_services
from agent_intelligence.serializers import experiment_to_dict

router = APIRouter(prefix="/api/agent-intelligence", tags=["agent-intelligence"])


class ExperimentIn(BaseModel):
    name: str = Field(..., min_length=1)
    control_version_id: int
    test_version_id: int
    traffic_split: int = Field(default=50, ge=0, le=100)
    target_sample_size: int = Field(default=100, ge=1)
    description: Optional[str] = None


class AbortIn(BaseModel):
    reason: Optional[str] = None


@router.get("/experiments")
async def list_experiments(
    agent_name: Optional[str] = None,
    decision_type: Optional[str] = None,
    status: Optional[str] = None,
    services: Services = Depends(get_services),
):
    experiments = services.experiments.list_experiments(agent_name, decision_type, status)
    return {"experiments": [experiment_to_dict(e) for e in experiments]}


@router.post("/experiments", status_code=201)
async def create_experiment(payload: ExperimentIn, services: Services = Depends(get_services)):
    experiment = services.experiments.create_experiment(
        name=payload.name,
        control_version_id=payload.control_version_id,
        test_version_id=payload.test_version_id,
        traffic_split=payload.traffic_split,
        target_sample_size=payload.target_sample_size,
        description=payload.description,
    )
    return experiment_to_dict(experiment)


@router.get("/experiments/{experiment_id}")
async def get_experiment(experiment_id: int, services: Services = Depends(get_services)):
    return experiment_to_dict(services.experiments.get_experiment(experiment_id))


@router.post("/experiments/{experiment_id}/refresh")
async def refresh_experiment(experiment_id: int, services: Services = Depends(get_services)):
    return experiment_to_dict(services.experiments.refresh_metrics(experiment_id))


@router.post("/experiments/{experiment_id}/abort")
async def abort_experiment(experiment_id: int, payload: AbortIn, services: Services = Depends(get_services)):
    return experiment_to_dict(services.experiments.abort_experiment(experiment_id, payload.reason))
