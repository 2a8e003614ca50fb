# backend/tests/test_learning_pipeline.py
"""Scheduled learning jobs over the whole roster."""

from datetime import datetime, timedelta

import pytest

from agent_intelligence.config import settings
from agent_intelligence.models.approval import ApprovalRequest, ReviewTask
from agent_intelligence.models.learning import PerformanceSnapshot
from agent_intelligence.pipelines.learning_pipeline import (
    process_pending_approvals,
    run_complete_learning_workflow,
    run_weekly_analysis,
    update_running_experiments,
)

NOW = datetime(2026, 3, 9, 6, 0)
ROSTER = {"email_agent": ["email_classification", "email_response"], "seo_agent": ["seo_audit"]}


def _seed(services, agent, decision_type, values, at=NOW - timedelta(days=1)):
    for i, value in enumerate(values):
        decision_id = services.ledger.log_decision(
            agent, decision_type, {}, "Done", "Rule match", confidence=0.7, timestamp=at + timedelta(minutes=i)
        )
        services.ledger.record_outcome(decision_id, "accuracy", value=value, timestamp=at + timedelta(hours=1))


class TestWeeklyAnalysis:
    @pytest.mark.asyncio
    async def test_one_insight_per_roster_pair(self, services, db):
        _seed(services, "email_agent", "email_classification", [90, 40])
        _seed(services, "seo_agent", "seo_audit", [80])

        result = await run_weekly_analysis(services, roster=ROSTER, now=NOW)

        assert result["success"] is True
        assert [(i["agent"], i["decision_type"]) for i in result["insights"]] == [
            ("email_agent", "email_classification"),
            ("email_agent", "email_response"),
            ("seo_agent", "seo_audit"),
        ]
        assert result["insights"][0]["total_decisions"] == 2
        assert result["insights"][1]["total_decisions"] == 0

        # snapshots are taken for the run day, which holds no decisions
        assert result["snapshots"] == 0
        assert db.query(PerformanceSnapshot).count() == 0

    @pytest.mark.asyncio
    async def test_snapshot_for_the_run_day(self, services):
        _seed(services, "email_agent", "email_classification", [90], at=NOW - timedelta(hours=2))

        result = await run_weekly_analysis(services, roster={"email_agent": ["email_classification"]}, now=NOW)

        assert result["snapshots"] == 1

    @pytest.mark.asyncio
    async def test_window_excludes_old_decisions(self, services):
        _seed(services, "email_agent", "email_classification", [90], at=NOW - timedelta(days=20))

        result = await run_weekly_analysis(
            services, roster={"email_agent": ["email_classification"]}, now=NOW, window_days=7
        )

        assert result["insights"][0]["total_decisions"] == 0

    @pytest.mark.asyncio
    async def test_dependency_failure_does_not_stop_the_run(self, services, failing_generator):
        services.insights.generator = failing_generator
        _seed(services, "email_agent", "email_classification", [90])
        _seed(services, "seo_agent", "seo_audit", [60])

        result = await run_weekly_analysis(services, roster=ROSTER, now=NOW)

        assert result["success"] is True
        statuses = {i["decision_type"]: i["status"] for i in result["insights"]}
        assert statuses == {"email_classification": "degraded", "email_response": "completed", "seo_audit": "degraded"}


class TestExperimentsJob:
    @pytest.fixture
    def experiment(self, services):
        control = services.registry.create_version(
            "email_agent", "email_classification", "v1", "Classify.", status="active", rollout_percentage=100
        )
        test = services.registry.create_version("email_agent", "email_classification", "v2", "Classify tersely.")
        return services.experiments.create_experiment("terse", control.id, test.id, target_sample_size=10)

    def _score(self, services, label, values):
        for value in values:
            decision_id = services.ledger.log_decision(
                "email_agent", "email_classification", {}, "x", "y", version_label=label
            )
            services.ledger.record_outcome(decision_id, "accuracy", value=value)

    def test_completes_experiment_at_target(self, services, experiment):
        self._score(services, "v1", [10, 20, 30, 40, 20])
        self._score(services, "v2", [90, 95, 85, 80, 100])

        result = update_running_experiments(services)

        assert result == {"success": True, "updated": 1, "completed": 1, "aborted": 0, "errors": []}
        assert experiment.winner == "test"

    def test_expires_stale_experiment(self, services, experiment):
        result = update_running_experiments(services, now=experiment.start_date + timedelta(days=45))

        assert result["aborted"] == 1
        assert experiment.status == "aborted"

    def test_nothing_running(self, services):
        assert update_running_experiments(services)["updated"] == 0


class TestApprovalsJob:
    def test_surfaces_each_pending_request_once(self, services, db):
        version = services.registry.create_version("email_agent", "email_classification", "v2", "Classify.")
        request = services.approvals.submit(version.id, "Shorter prompt")
        db.query(ReviewTask).delete()
        db.commit()
        db.refresh(request)

        first = process_pending_approvals(services)
        second = process_pending_approvals(services)

        assert first == {"success": True, "pending": 1, "notified": 1}
        assert second == {"success": True, "pending": 1, "notified": 0}
        assert db.query(ReviewTask).filter(ReviewTask.approval_request_id == request.id).count() == 1

    def test_no_pending_requests(self, services, db):
        assert db.query(ApprovalRequest).count() == 0
        assert process_pending_approvals(services) == {"success": True, "pending": 0, "notified": 0}


class TestCompleteWorkflow:
    @pytest.mark.asyncio
    async def test_report_shape(self, services, monkeypatch):
        monkeypatch.setattr(settings, "LEARNING_ROSTER", {"seo_agent": ["seo_audit"]})
        _seed(services, "seo_agent", "seo_audit", [70])

        report = await run_complete_learning_workflow(services, now=NOW)

        assert report["timestamp"] == NOW.isoformat()
        assert report["analysis"]["insights"][0]["total_decisions"] == 1
        assert report["experiments"]["updated"] == 0
        assert report["approvals"]["success"] is True
