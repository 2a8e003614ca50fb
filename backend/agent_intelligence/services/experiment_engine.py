# backend/agent_intelligence/services/experiment_engine.py
"""
A/B experiments between two prompt versions of one (agent, decision type).

Experiment lifecycle:
    running -> completed   (sample target reached, winner decided)
    running -> aborted     (operator abort, or target not reached in time)

A decision belongs to an arm when it was logged for the experiment's agent
and decision type, since the start date, with the arm's version label.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agent_intelligence.config import settings
from agent_intelligence.database import safe_commit
from agent_intelligence.errors import InvalidState, NotFound, StoreUnavailable, ValidationFailure
from agent_intelligence.models.experiment import PromptExperiment
from agent_intelligence.models.prompt_version import PromptVersion
from agent_intelligence.services.approval_workflow import ApprovalWorkflow
from agent_intelligence.services.decision_ledger import DecisionLedger
from agent_intelligence.services.metrics import calculate_performance_metrics, compute_significance
from agent_intelligence.services.traffic import TEST_ARM, draw
from agent_intelligence.services.version_registry import VersionRegistry

logger = logging.getLogger(__name__)


class ExperimentEngine:
    def __init__(
        self,
        db: Session,
        registry: VersionRegistry,
        approvals: ApprovalWorkflow,
        ledger: Optional[DecisionLedger] = None,
        rng: Optional[random.Random] = None,
        success_threshold: Optional[float] = None,
        significance_threshold: Optional[float] = None,
        max_days: Optional[int] = None,
    ):
        self.db = db
        self.registry = registry
        self.approvals = approvals
        self.ledger = ledger or DecisionLedger(db)
        self.rng = rng or registry.rng
        self.success_threshold = settings.SUCCESS_THRESHOLD if success_threshold is None else success_threshold
        self.significance_threshold = (
            settings.SIGNIFICANCE_THRESHOLD if significance_threshold is None else significance_threshold
        )
        self.max_days = settings.EXPERIMENT_MAX_DAYS if max_days is None else max_days

    # ============================================================
    # CREATE / READ
    # ============================================================

    def create_experiment(
        self,
        name: str,
        control_version_id: int,
        test_version_id: int,
        traffic_split: int = 50,
        target_sample_size: int = 100,
        description: Optional[str] = None,
    ) -> PromptExperiment:
        if not name or not name.strip():
            raise ValidationFailure("Experiment name is required")
        if control_version_id == test_version_id:
            raise ValidationFailure("Control and test versions must differ")
        if not isinstance(traffic_split, int) or not 0 <= traffic_split <= 100:
            raise ValidationFailure(f"traffic_split must be an integer in [0, 100], got {traffic_split}")
        if not isinstance(target_sample_size, int) or target_sample_size < 1:
            raise ValidationFailure("target_sample_size must be at least 1")

        control = self.registry.get_version(control_version_id)
        test = self.registry.get_version(test_version_id)
        if (control.agent_name, control.decision_type) != (test.agent_name, test.decision_type):
            raise ValidationFailure("Control and test versions belong to different agents or decision types")

        existing = self.running_experiment_for(control.agent_name, control.decision_type)
        if existing is not None:
            raise InvalidState(
                f"Experiment {existing.id} is already running for {control.agent_name}/{control.decision_type}"
            )

        experiment = PromptExperiment(
            name=name.strip(),
            description=description,
            agent_name=control.agent_name,
            decision_type=control.decision_type,
            control_version_id=control.id,
            test_version_id=test.id,
            status="running",
            traffic_split=traffic_split,
            target_sample_size=target_sample_size,
            current_sample_size=0,
            control_metrics={},
            test_metrics={},
            start_date=datetime.utcnow(),
        )

        try:
            self.db.add(experiment)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not create experiment: {str(e)[:200]}") from e

        logger.info(
            "Started experiment %s (%s/%s) control=%s test=%s split=%s%% target=%s",
            experiment.id, experiment.agent_name, experiment.decision_type,
            control.id, test.id, traffic_split, target_sample_size,
        )
        return experiment

    def get_experiment(self, experiment_id: int) -> PromptExperiment:
        experiment = self.db.query(PromptExperiment).filter(PromptExperiment.id == experiment_id).first()
        if not experiment:
            raise NotFound(f"Experiment {experiment_id} not found")
        return experiment

    def list_experiments(
        self,
        agent_name: Optional[str] = None,
        decision_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[PromptExperiment]:
        query = self.db.query(PromptExperiment)
        if agent_name:
            query = query.filter(PromptExperiment.agent_name == agent_name)
        if decision_type:
            query = query.filter(PromptExperiment.decision_type == decision_type)
        if status:
            query = query.filter(PromptExperiment.status == status)
        return query.order_by(PromptExperiment.start_date.desc(), PromptExperiment.id.desc()).all()

    def running_experiment_for(self, agent_name: str, decision_type: str) -> Optional[PromptExperiment]:
        return (
            self.db.query(PromptExperiment)
            .filter(
                PromptExperiment.agent_name == agent_name,
                PromptExperiment.decision_type == decision_type,
                PromptExperiment.status == "running",
            )
            .order_by(PromptExperiment.start_date.desc())
            .first()
        )

    # ============================================================
    # TRAFFIC
    # ============================================================

    def resolve_traffic_version(self, experiment_id: int) -> Tuple[str, PromptVersion]:
        """Draw an arm for one decision and return (arm, version)."""
        experiment = self.get_experiment(experiment_id)
        if experiment.status != "running":
            raise InvalidState(f"Experiment {experiment_id} is {experiment.status}")

        arm = draw(experiment.traffic_split, self.rng)
        version = experiment.test_version if arm == TEST_ARM else experiment.control_version
        return arm, version

    # ============================================================
    # METRICS / CONCLUSION
    # ============================================================

    def refresh_metrics(self, experiment_id: int, now: Optional[datetime] = None) -> PromptExperiment:
        """
        Recompute both arms and conclude the experiment when its sample
        target is reached (or abort it once it has run too long).
        """
        experiment = self.get_experiment(experiment_id)
        if experiment.status != "running":
            raise InvalidState(f"Experiment {experiment_id} is {experiment.status} and cannot be refreshed")

        now = now or datetime.utcnow()
        control = experiment.control_version
        test = experiment.test_version

        control_stats = self._arm_stats(experiment, control, test)
        test_stats = self._arm_stats(experiment, test, control)

        experiment.control_metrics = control_stats
        experiment.test_metrics = test_stats
        experiment.current_sample_size = control_stats["decisions"] + test_stats["decisions"]

        result = compute_significance(
            control_stats["successes"], control_stats["evaluated"],
            test_stats["successes"], test_stats["evaluated"],
        )
        experiment.statistical_significance = result.significance

        if experiment.current_sample_size >= experiment.target_sample_size:
            self._conclude(experiment, result, now)
        elif now - experiment.start_date >= timedelta(days=self.max_days):
            experiment.status = "aborted"
            experiment.winner = "inconclusive"
            experiment.end_date = now
            experiment.results_summary = (
                f"Expired after {self.max_days} days with {experiment.current_sample_size}/"
                f"{experiment.target_sample_size} decisions."
            )
            logger.warning("Experiment %s expired short of its sample target", experiment.id)

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not refresh experiment {experiment_id}: {str(e)[:200]}") from e

        return experiment

    def abort_experiment(self, experiment_id: int, reason: Optional[str] = None) -> PromptExperiment:
        experiment = self.get_experiment(experiment_id)
        if experiment.status != "running":
            raise InvalidState(f"Experiment {experiment_id} is {experiment.status}, not running")

        experiment.status = "aborted"
        experiment.winner = "inconclusive"
        experiment.end_date = datetime.utcnow()
        experiment.results_summary = reason or "Aborted by operator."

        success, error = safe_commit(self.db, f"abort experiment {experiment_id}")
        if not success:
            raise StoreUnavailable(error)

        logger.info("Experiment %s aborted: %s", experiment_id, experiment.results_summary)
        return experiment

    # ============================================================
    # INTERNALS
    # ============================================================

    def _arm_stats(self, experiment: PromptExperiment, version: PromptVersion, other: PromptVersion) -> Dict[str, Any]:
        decisions = self.ledger.decisions_in_range(
            experiment.agent_name,
            experiment.start_date,
            decision_type=experiment.decision_type,
            version_label=version.version,
        )
        # arms sharing a version label are told apart by variant
        if version.version == other.version:
            decisions = [d for d in decisions if d.variant_label == version.variant]

        metrics = calculate_performance_metrics(decisions, self.success_threshold)
        return {
            "version_id": version.id,
            "decisions": metrics["total_decisions"],
            "evaluated": metrics["decisions_with_outcomes"],
            "successes": metrics["positive_outcomes"],
            "success_rate": metrics["success_rate"],
            "avg_outcome_value": metrics["avg_outcome_value"],
        }

    def _conclude(self, experiment: PromptExperiment, result, now: datetime) -> None:
        if result.significance >= self.significance_threshold and result.test_rate != result.control_rate:
            winner = "test" if result.test_rate > result.control_rate else "control"
        else:
            winner = "inconclusive"

        experiment.status = "completed"
        experiment.winner = winner
        experiment.end_date = now
        experiment.results_summary = (
            f"Control {result.control_rate:.1%} vs test {result.test_rate:.1%} over "
            f"{experiment.current_sample_size} decisions; significance {result.significance:.3f}; "
            f"winner: {winner}."
        )

        logger.info(
            "Experiment %s completed: winner=%s significance=%.3f",
            experiment.id, winner, result.significance,
        )

        if winner == "test":
            improvement = result.test_rate - result.control_rate
            self.approvals.submit(
                experiment.test_version_id,
                change_summary=(
                    f"Experiment '{experiment.name}' winner: test variant improved success rate "
                    f"by {improvement * 100:.1f} points"
                ),
                request_type="experiment_approval",
                priority="high",
                impact_analysis={
                    "control_success_rate": result.control_rate,
                    "test_success_rate": result.test_rate,
                    "improvement": improvement,
                    "statistical_significance": result.significance,
                    "sample_size": experiment.current_sample_size,
                },
                risk_assessment="Low: experiment showed a statistically significant improvement",
                experiment_id=experiment.id,
                commit=False,
            )
