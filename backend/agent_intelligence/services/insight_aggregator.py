# backend/agent_intelligence/services/insight_aggregator.py
"""
Batch analysis over the decision ledger.

analyze():
- loads a window of decisions with their outcomes
- computes performance metrics locally
- asks the analysis dependency for patterns, suggestions and variants
- persists a LearningInsight (status "degraded" when the dependency failed)
- turns every generated variant into a testing version plus an approval request

snapshot() rolls one calendar day up into agent_performance_snapshots.
dashboard() summarizes snapshots, insights, experiments and the approval queue.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agent_intelligence.config import settings
from agent_intelligence.errors import ExternalDependencyFailure, IntelligenceError, StoreUnavailable, ValidationFailure
from agent_intelligence.models.experiment import PromptExperiment
from agent_intelligence.models.learning import LearningInsight, PerformanceSnapshot
from agent_intelligence.models.prompt_version import PromptVersion
from agent_intelligence.serializers import (
    approval_to_dict,
    experiment_to_dict,
    insight_to_dict,
    snapshot_to_dict,
    version_to_dict,
)
from agent_intelligence.services.analysis_client import AnalysisOk, build_analysis_prompt
from agent_intelligence.services.approval_workflow import ApprovalWorkflow
from agent_intelligence.services.decision_ledger import DecisionLedger
from agent_intelligence.services.metrics import average_confidence, calculate_performance_metrics
from agent_intelligence.services.version_registry import VersionRegistry

logger = logging.getLogger(__name__)


class InsightAggregator:
    def __init__(
        self,
        db: Session,
        ledger: DecisionLedger,
        registry: VersionRegistry,
        approvals: ApprovalWorkflow,
        generator=None,
        success_threshold: Optional[float] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.registry = registry
        self.approvals = approvals
        self.generator = generator
        self.success_threshold = settings.SUCCESS_THRESHOLD if success_threshold is None else success_threshold

    # ============================================================
    # ANALYSIS
    # ============================================================

    async def analyze(
        self,
        agent_name: str,
        decision_type: Optional[str],
        period_start: datetime,
        period_end: datetime,
    ) -> LearningInsight:
        if not agent_name:
            raise ValidationFailure("agent_name is required")
        if period_end < period_start:
            raise ValidationFailure("period_end must not be before period_start")

        decisions = self.ledger.decisions_in_range(
            agent_name, period_start, period_end, decision_type=decision_type
        )
        metrics = calculate_performance_metrics(decisions, self.success_threshold)
        avg_conf = average_confidence(decisions)

        insight = LearningInsight(
            agent_name=agent_name,
            decision_type=decision_type,
            analysis_period_start=period_start,
            analysis_period_end=period_end,
            total_decisions=len(decisions),
            avg_confidence_score=avg_conf,
            performance_metrics=metrics,
            identified_patterns=[],
            optimization_suggestions=[],
            generated_variants=[],
            status="completed",
            analyzed_by=getattr(self.generator, "name", None),
            extra_metadata={"analysis_timestamp": datetime.utcnow().isoformat()},
        )

        result = None
        if not decisions:
            insight.analysis_summary = "No decisions recorded in this period."
        else:
            result = await self._run_generator(
                build_analysis_prompt(
                    agent_name, decision_type, period_start, period_end, decisions, avg_conf, metrics
                ),
                insight,
            )

        if isinstance(result, AnalysisOk):
            insight.identified_patterns = [p.model_dump() for p in result.patterns]
            insight.optimization_suggestions = [s.model_dump() for s in result.suggestions]
            insight.generated_variants = [v.model_dump() for v in result.variants]
            insight.analysis_summary = result.summary

        try:
            self.db.add(insight)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not store insight for {agent_name}: {str(e)[:200]}") from e

        logger.info(
            "Insight %s for %s/%s: %s decisions, status=%s",
            insight.id, agent_name, decision_type or "*", len(decisions), insight.status,
        )

        if isinstance(result, AnalysisOk) and result.variants:
            self._propose_variants(insight, result)

        return insight

    async def _run_generator(self, prompt: str, insight: LearningInsight):
        if self.generator is None:
            self._degrade(insight, "no analysis dependency configured")
            return None

        try:
            result = await self.generator.generate(prompt)
        except ExternalDependencyFailure as e:
            self._degrade(insight, str(e))
            return None

        if not isinstance(result, AnalysisOk):
            self._degrade(insight, f"unparsable analysis output: {getattr(result, 'reason', '')}")
            insight.extra_metadata = {**(insight.extra_metadata or {}), "raw_response": getattr(result, "raw", "")[:2000]}
            return None

        return result

    def _degrade(self, insight: LearningInsight, reason: str) -> None:
        logger.warning("Analysis degraded for %s: %s", insight.agent_name, reason)
        insight.status = "degraded"
        insight.analysis_summary = f"Analysis unavailable: {reason}"
        insight.extra_metadata = {**(insight.extra_metadata or {}), "degraded_reason": reason}

    def _propose_variants(self, insight: LearningInsight, result: AnalysisOk) -> List[int]:
        """Create a testing version and an approval request per variant."""
        if not insight.decision_type:
            logger.info("Insight %s covers all decision types; variants are recorded but not proposed", insight.id)
            return []

        stamp = int(time.time() * 1000)
        current = self.registry.active_versions(insight.agent_name, insight.decision_type)
        parent_id = current[0].id if current else None
        request_ids = []
        seen = set()

        for variant in result.variants:
            if variant.variant_name in seen:
                continue
            seen.add(variant.variant_name)

            try:
                version = self.registry.create_version(
                    agent_name=insight.agent_name,
                    decision_type=insight.decision_type,
                    version=f"{stamp}_{variant.variant_name}",
                    variant=variant.variant_name,
                    prompt_template=variant.prompt_template,
                    system_instructions=variant.rationale,
                    status="testing",
                    rollout_percentage=0,
                    parent_version_id=parent_id,
                    created_by="analysis",
                    notes=variant.changes,
                    metadata={"learning_insight_id": insight.id},
                    commit=False,
                )
                request = self.approvals.submit(
                    version.id,
                    change_summary=variant.changes or f"New variant {variant.variant_name}",
                    request_type="new_variant",
                    priority="medium",
                    impact_analysis={"rationale": variant.rationale},
                    risk_assessment=None,
                    requested_by="analysis",
                    learning_insight_id=insight.id,
                    commit=True,
                )
            except IntelligenceError as e:
                self.db.rollback()
                logger.error("Could not propose variant %s from insight %s: %s", variant.variant_name, insight.id, e)
                continue

            request_ids.append(request.id)

        return request_ids

    # ============================================================
    # SNAPSHOTS
    # ============================================================

    def snapshot(self, agent_name: str, day: date) -> Optional[PerformanceSnapshot]:
        """Upsert the (agent, day) rollup. Returns None when the day had no decisions."""
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1) - timedelta(microseconds=1)

        decisions = self.ledger.decisions_in_range(agent_name, start, end)
        if not decisions:
            return None

        metrics = calculate_performance_metrics(decisions, self.success_threshold)

        values = {
            "decision_types": metrics["by_decision_type"],
            "overall_accuracy": metrics["success_rate"] * 100,
            "total_decisions": metrics["total_decisions"],
            "successful_decisions": metrics["positive_outcomes"],
            "active_prompt_versions": self._count(PromptVersion, agent_name, PromptVersion.status == "active"),
            "experiments_running": self._count(
                PromptExperiment, agent_name, PromptExperiment.status == "running"
            ),
            "learning_insights_generated": self._count(
                LearningInsight,
                agent_name,
                LearningInsight.created_at >= start,
                LearningInsight.created_at <= end,
            ),
        }

        try:
            row = self._upsert_snapshot(agent_name, day, values)
        except IntegrityError:
            # a concurrent writer inserted the row first
            self.db.rollback()
            row = self._upsert_snapshot(agent_name, day, values)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not write snapshot for {agent_name}: {str(e)[:200]}") from e

        return row

    def _upsert_snapshot(self, agent_name: str, day: date, values: Dict[str, Any]) -> PerformanceSnapshot:
        row = (
            self.db.query(PerformanceSnapshot)
            .filter(PerformanceSnapshot.agent_name == agent_name, PerformanceSnapshot.snapshot_date == day)
            .first()
        )
        if row is None:
            row = PerformanceSnapshot(agent_name=agent_name, snapshot_date=day)
            self.db.add(row)
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = datetime.utcnow()
        self.db.commit()
        return row

    def _count(self, model, agent_name: str, *criteria) -> int:
        return (
            self.db.query(func.count(model.id))
            .filter(model.agent_name == agent_name, *criteria)
            .scalar()
        ) or 0

    # ============================================================
    # DASHBOARD
    # ============================================================

    def dashboard(self, agent_name: Optional[str] = None, days: int = 30, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or datetime.utcnow().date()
        start_day = today - timedelta(days=days)
        start = datetime.combine(start_day, datetime.min.time())

        snapshots_q = self.db.query(PerformanceSnapshot).filter(PerformanceSnapshot.snapshot_date >= start_day)
        insights_q = self.db.query(LearningInsight).filter(LearningInsight.created_at >= start)
        experiments_q = self.db.query(PromptExperiment).filter(PromptExperiment.status == "running")
        versions_q = self.db.query(PromptVersion).filter(PromptVersion.status == "active")
        if agent_name:
            snapshots_q = snapshots_q.filter(PerformanceSnapshot.agent_name == agent_name)
            insights_q = insights_q.filter(LearningInsight.agent_name == agent_name)
            experiments_q = experiments_q.filter(PromptExperiment.agent_name == agent_name)
            versions_q = versions_q.filter(PromptVersion.agent_name == agent_name)

        snapshots = snapshots_q.order_by(PerformanceSnapshot.snapshot_date.asc()).all()
        insights = insights_q.order_by(LearningInsight.created_at.desc()).limit(10).all()
        experiments = experiments_q.all()
        active_versions = versions_q.all()
        pending = self.approvals.list_pending()
        if agent_name:
            pending = [r for r in pending if r.prompt_version and r.prompt_version.agent_name == agent_name]

        total_decisions = sum(s.total_decisions or 0 for s in snapshots)
        avg_accuracy = (
            sum(s.overall_accuracy or 0 for s in snapshots) / len(snapshots) if snapshots else 0.0
        )

        return {
            "summary": {
                "total_decisions": total_decisions,
                "avg_accuracy": round(avg_accuracy, 2),
                "total_optimizations": sum(len(i.optimization_suggestions or []) for i in insights),
                "variants_generated": sum(len(i.generated_variants or []) for i in insights),
                "experiments_running": len(experiments),
                "pending_approvals": len(pending),
                "active_versions": len(active_versions),
            },
            "performance_timeline": [snapshot_to_dict(s) for s in snapshots],
            "recent_insights": [insight_to_dict(i) for i in insights],
            "running_experiments": [experiment_to_dict(e) for e in experiments],
            "pending_approvals": [approval_to_dict(r) for r in pending],
            "active_versions": [version_to_dict(v) for v in active_versions],
            "roi_gains": [
                {
                    "date": s.snapshot_date.isoformat(),
                    "agent": s.agent_name,
                    "accuracy": s.overall_accuracy or 0,
                    "decisions": s.total_decisions or 0,
                }
                for s in snapshots
            ],
        }
