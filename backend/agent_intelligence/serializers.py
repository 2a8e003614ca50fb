# backend/agent_intelligence/serializers.py
"""Model -> dict helpers shared by the routers and the dashboard."""

from datetime import date, datetime
from typing import Any, Optional


def _iso(value: Optional[Any]) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return None


def decision_to_dict(decision) -> dict:
    return {
        "id": decision.id,
        "agent_name": decision.agent_name,
        "decision_type": decision.decision_type,
        "decision_context": decision.decision_context or {},
        "decision_made": decision.decision_made,
        "rationale": decision.rationale,
        "confidence_score": decision.confidence_score,
        "version_label": decision.version_label,
        "variant_label": decision.variant_label,
        "input_data": decision.input_data or {},
        "output_data": decision.output_data or {},
        "metadata": decision.extra_metadata or {},
        "created_at": _iso(decision.created_at),
        "outcomes": [outcome_to_dict(o) for o in (decision.outcomes or [])],
    }


def outcome_to_dict(outcome) -> dict:
    return {
        "id": outcome.id,
        "decision_id": outcome.decision_id,
        "outcome_type": outcome.outcome_type,
        "outcome_value": outcome.outcome_value,
        "outcome_data": outcome.outcome_data or {},
        "feedback_source": outcome.feedback_source,
        "notes": outcome.notes,
        "created_at": _iso(outcome.created_at),
    }


def version_to_dict(version) -> dict:
    return {
        "id": version.id,
        "agent_name": version.agent_name,
        "decision_type": version.decision_type,
        "version": version.version,
        "variant": version.variant,
        "prompt_template": version.prompt_template,
        "system_instructions": version.system_instructions,
        "parameters": version.parameters or {},
        "status": version.status,
        "rollout_percentage": version.rollout_percentage,
        "parent_version_id": version.parent_version_id,
        "created_by": version.created_by,
        "approved_by": version.approved_by,
        "approved_at": _iso(version.approved_at),
        "notes": version.notes,
        "metadata": version.extra_metadata or {},
        "created_at": _iso(version.created_at),
        "updated_at": _iso(version.updated_at),
    }


def experiment_to_dict(experiment) -> dict:
    return {
        "id": experiment.id,
        "name": experiment.name,
        "description": experiment.description,
        "agent_name": experiment.agent_name,
        "decision_type": experiment.decision_type,
        "control_version_id": experiment.control_version_id,
        "test_version_id": experiment.test_version_id,
        "status": experiment.status,
        "winner": experiment.winner,
        "traffic_split": experiment.traffic_split,
        "target_sample_size": experiment.target_sample_size,
        "current_sample_size": experiment.current_sample_size,
        "control_metrics": experiment.control_metrics or {},
        "test_metrics": experiment.test_metrics or {},
        "statistical_significance": experiment.statistical_significance,
        "results_summary": experiment.results_summary,
        "start_date": _iso(experiment.start_date),
        "end_date": _iso(experiment.end_date),
    }


def task_to_dict(task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "priority": task.priority,
        "requires_escalation": task.requires_escalation,
        "status": task.status,
        "deliverable_url": task.deliverable_url,
        "created_at": _iso(task.created_at),
    }


def approval_to_dict(request, include_version: bool = True) -> dict:
    obj = {
        "id": request.id,
        "prompt_version_id": request.prompt_version_id,
        "experiment_id": request.experiment_id,
        "learning_insight_id": request.learning_insight_id,
        "request_type": request.request_type,
        "priority": request.priority,
        "decision_type": request.decision_type,
        "change_summary": request.change_summary,
        "impact_analysis": request.impact_analysis or {},
        "risk_assessment": request.risk_assessment,
        "requires_human_review": request.requires_human_review,
        "requested_by": request.requested_by,
        "status": request.status,
        "reviewed_by": request.reviewed_by,
        "reviewed_at": _iso(request.reviewed_at),
        "reviewer_notes": request.reviewer_notes,
        "created_at": _iso(request.created_at),
        "tasks": [task_to_dict(t) for t in (request.tasks or [])],
    }
    if include_version:
        obj["prompt_version"] = version_to_dict(request.prompt_version) if request.prompt_version else None
    return obj


def insight_to_dict(insight) -> dict:
    return {
        "id": insight.id,
        "agent_name": insight.agent_name,
        "decision_type": insight.decision_type,
        "analysis_period_start": _iso(insight.analysis_period_start),
        "analysis_period_end": _iso(insight.analysis_period_end),
        "total_decisions": insight.total_decisions,
        "avg_confidence_score": insight.avg_confidence_score,
        "performance_metrics": insight.performance_metrics or {},
        "identified_patterns": insight.identified_patterns or [],
        "optimization_suggestions": insight.optimization_suggestions or [],
        "generated_variants": insight.generated_variants or [],
        "analysis_summary": insight.analysis_summary,
        "status": insight.status,
        "analyzed_by": insight.analyzed_by,
        "metadata": insight.extra_metadata or {},
        "created_at": _iso(insight.created_at),
    }


def snapshot_to_dict(snapshot) -> dict:
    return {
        "id": snapshot.id,
        "agent_name": snapshot.agent_name,
        "snapshot_date": _iso(snapshot.snapshot_date),
        "decision_types": snapshot.decision_types or {},
        "overall_accuracy": snapshot.overall_accuracy,
        "total_decisions": snapshot.total_decisions,
        "successful_decisions": snapshot.successful_decisions,
        "active_prompt_versions": snapshot.active_prompt_versions,
        "experiments_running": snapshot.experiments_running,
        "learning_insights_generated": snapshot.learning_insights_generated,
        "updated_at": _iso(snapshot.updated_at),
    }
