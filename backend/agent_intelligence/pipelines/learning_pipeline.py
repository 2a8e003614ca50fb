# backend/agent_intelligence/pipelines/learning_pipeline.py
"""
Scheduled learning jobs. Nothing here schedules itself: an external cron
calls run_complete_learning_workflow (directly, or through
POST /api/agent-intelligence/cron/learning).

Every step keeps going past a failing item and reports it in "errors".
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from agent_intelligence.config import settings
from agent_intelligence.database import get_db_context
from agent_intelligence.dependencies import Services, build_services, get_generator
from agent_intelligence.errors import IntelligenceError
from agent_intelligence.utils.logger import logger


async def run_weekly_analysis(
    services: Services,
    roster: Optional[Dict[str, List[str]]] = None,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> Dict[str, Any]:
    roster = settings.LEARNING_ROSTER if roster is None else roster
    now = now or datetime.utcnow()
    period_start = now - timedelta(days=window_days or settings.LEARNING_WINDOW_DAYS)

    insights: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    snapshots = 0

    logger.info(f"[Learning] Weekly analysis started for {len(roster)} agent(s)")

    for agent_name, decision_types in roster.items():
        for decision_type in decision_types:
            try:
                insight = await services.insights.analyze(agent_name, decision_type, period_start, now)
            except (IntelligenceError, SQLAlchemyError) as e:
                logger.error(f"[Learning] Analysis failed for {agent_name}/{decision_type}: {e}")
                errors.append({"agent": agent_name, "decision_type": decision_type, "error": str(e)})
                continue

            insights.append({
                "agent": agent_name,
                "decision_type": decision_type,
                "insight_id": insight.id,
                "status": insight.status,
                "total_decisions": insight.total_decisions,
                "avg_confidence": insight.avg_confidence_score,
                "suggestions_count": len(insight.optimization_suggestions or []),
                "variants_generated": len(insight.generated_variants or []),
            })

        try:
            if services.insights.snapshot(agent_name, now.date()) is not None:
                snapshots += 1
        except (IntelligenceError, SQLAlchemyError) as e:
            logger.error(f"[Learning] Snapshot failed for {agent_name}: {e}")
            errors.append({"agent": agent_name, "step": "snapshot", "error": str(e)})

    logger.info(f"[Learning] Weekly analysis done: {len(insights)} insight(s), {len(errors)} error(s)")

    return {
        "success": not errors,
        "insights": insights,
        "snapshots": snapshots,
        "errors": errors,
    }


def update_running_experiments(services: Services, now: Optional[datetime] = None) -> Dict[str, Any]:
    running = services.experiments.list_experiments(status="running")
    completed = 0
    aborted = 0
    errors: List[Dict[str, Any]] = []

    for experiment_id in [e.id for e in running]:
        try:
            experiment = services.experiments.refresh_metrics(experiment_id, now=now)
        except (IntelligenceError, SQLAlchemyError) as e:
            logger.error(f"[Learning] Refresh failed for experiment {experiment_id}: {e}")
            errors.append({"experiment_id": experiment_id, "error": str(e)})
            continue

        if experiment.status == "completed":
            completed += 1
        elif experiment.status == "aborted":
            aborted += 1

    logger.info(f"[Learning] Updated {len(running)} experiment(s): {completed} completed, {aborted} expired")

    return {
        "success": not errors,
        "updated": len(running),
        "completed": completed,
        "aborted": aborted,
        "errors": errors,
    }


def process_pending_approvals(services: Services) -> Dict[str, Any]:
    try:
        result = services.approvals.surface_pending()
    except IntelligenceError as e:
        logger.error(f"[Learning] Could not surface pending approvals: {e}")
        return {"success": False, "pending": 0, "notified": 0, "error": str(e)}

    logger.info(f"[Learning] {result['pending']} pending approval(s), {result['notified']} new review task(s)")
    return {"success": True, **result}


async def run_complete_learning_workflow(services: Services, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    return {
        "timestamp": now.isoformat(),
        "analysis": await run_weekly_analysis(services, now=now),
        "experiments": update_running_experiments(services, now=now),
        "approvals": process_pending_approvals(services),
    }


async def run_scheduled_learning() -> Dict[str, Any]:
    """Entry point for schedulers that call the pipeline without the HTTP route."""
    with get_db_context() as db:
        return await run_complete_learning_workflow(build_services(db, generator=get_generator()))


if __name__ == "__main__":
    import asyncio
    import json

    print(json.dumps(asyncio.run(run_scheduled_learning()), indent=2, default=str))
