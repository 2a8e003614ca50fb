# backend/agent_intelligence/dependencies.py
"""
Wiring of the service graph.

One graph per session: routers get it through Depends(get_services), the
learning pipeline builds its own from a fresh session. The analysis
generator is process-wide so its circuit breaker state survives requests.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from agent_intelligence.database import get_db
from agent_intelligence.services.analysis_client import OpenAIInsightGenerator
from agent_intelligence.services.approval_workflow import ApprovalWorkflow
from agent_intelligence.services.decision_ledger import DecisionLedger
from agent_intelligence.services.experiment_engine import ExperimentEngine
from agent_intelligence.services.insight_aggregator import InsightAggregator
from agent_intelligence.services.version_registry import VersionRegistry


@dataclass
class Services:
    db: Session
    ledger: DecisionLedger
    registry: VersionRegistry
    approvals: ApprovalWorkflow
    experiments: ExperimentEngine
    insights: InsightAggregator


def build_services(db: Session, generator=None, rng: Optional[random.Random] = None) -> Services:
    rng = rng or random.Random()
    ledger = DecisionLedger(db)
    registry = VersionRegistry(db, rng)
    approvals = ApprovalWorkflow(db, registry)
    experiments = ExperimentEngine(db, registry, approvals, ledger=ledger, rng=rng)
    insights = InsightAggregator(db, ledger, registry, approvals, generator=generator)
    return Services(
        db=db,
        ledger=ledger,
        registry=registry,
        approvals=approvals,
        experiments=experiments,
        insights=insights,
    )


@lru_cache(maxsize=1)
def get_generator() -> OpenAIInsightGenerator:
    return OpenAIInsightGenerator()


def get_services(
    db: Session = Depends(get_db),
    generator=Depends(get_generator),
) -> Services:
    return build_services(db, generator=generator)
