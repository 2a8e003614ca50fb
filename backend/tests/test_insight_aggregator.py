# backend/tests/test_insight_aggregator.py
"""Batch analysis, degraded insights, daily snapshots and the dashboard."""

from datetime import date, datetime, timedelta

import pytest

from agent_intelligence.models.approval import ApprovalRequest
from agent_intelligence.models.learning import LearningInsight, PerformanceSnapshot
from agent_intelligence.models.prompt_version import PromptVersion
from agent_intelligence.services.analysis_client import AnalysisOk, AnalysisParseError, parse_analysis


AGENT = "email_agent"
TYPE = "email_classification"
DAY = date(2026, 1, 5)
T0 = datetime(2026, 1, 5, 9, 0)
PERIOD = (datetime(2026, 1, 5), datetime(2026, 1, 6))


def _seed_three(services):
    for minutes, (confidence, value) in enumerate([(0.9, 90), (0.4, 20), (0.6, 75)]):
        decision_id = services.ledger.log_decision(
            AGENT, TYPE, {"n": minutes}, "Priority: high", "Rule match",
            confidence=confidence, timestamp=T0 + timedelta(minutes=minutes),
        )
        services.ledger.record_outcome(
            decision_id, "accuracy", value=value, timestamp=T0 + timedelta(hours=1, minutes=minutes)
        )


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_metrics_and_variants(self, services, generator, db, variant_result):
        generator.result = variant_result("concise", "deadline")
        _seed_three(services)

        insight = await services.insights.analyze(AGENT, TYPE, *PERIOD)

        assert insight.status == "completed"
        assert insight.total_decisions == 3
        assert insight.avg_confidence_score == pytest.approx(0.6333, abs=1e-3)
        assert insight.performance_metrics["success_rate"] == pytest.approx(2 / 3)
        assert insight.identified_patterns[0]["pattern"] == "Short subjects score higher"
        assert len(insight.generated_variants) == 2
        assert insight.analyzed_by == "fake"
        assert "Total Decisions: 3" in generator.prompts[0]

        versions = db.query(PromptVersion).filter(PromptVersion.agent_name == AGENT).all()
        assert {v.variant for v in versions} == {"concise", "deadline"}
        assert all(v.status == "testing" and v.rollout_percentage == 0 for v in versions)

        requests = db.query(ApprovalRequest).filter(ApprovalRequest.learning_insight_id == insight.id).all()
        assert len(requests) == 2
        assert all(r.request_type == "new_variant" and r.status == "pending" for r in requests)

    @pytest.mark.asyncio
    async def test_variants_branch_from_current_version(self, services, generator, variant_result):
        current = services.registry.create_version(AGENT, TYPE, "v1", "Classify.", status="active", rollout_percentage=100)
        generator.result = variant_result("concise")
        _seed_three(services)

        await services.insights.analyze(AGENT, TYPE, *PERIOD)

        [proposed] = services.registry.list_versions(AGENT, TYPE, status="testing")
        assert proposed.parent_version_id == current.id
        assert proposed.version.endswith("_concise")
        assert proposed.created_by == "analysis"

    @pytest.mark.asyncio
    async def test_dependency_failure_degrades(self, services, db, failing_generator):
        services.insights.generator = failing_generator
        _seed_three(services)

        insight = await services.insights.analyze(AGENT, TYPE, *PERIOD)

        stored = db.query(LearningInsight).filter(LearningInsight.id == insight.id).one()
        assert stored.status == "degraded"
        assert stored.identified_patterns == []
        assert stored.optimization_suggestions == []
        assert stored.generated_variants == []
        assert stored.total_decisions == 3
        assert stored.performance_metrics["positive_outcomes"] == 2
        assert db.query(ApprovalRequest).count() == 0

    @pytest.mark.asyncio
    async def test_unparsable_output_degrades(self, services, generator):
        generator.result = AnalysisParseError(raw="I could not find anything.", reason="no JSON object in response")
        _seed_three(services)

        insight = await services.insights.analyze(AGENT, TYPE, *PERIOD)

        assert insight.status == "degraded"
        assert insight.extra_metadata["raw_response"] == "I could not find anything."

    @pytest.mark.asyncio
    async def test_empty_window_skips_dependency(self, services, generator):
        insight = await services.insights.analyze(AGENT, TYPE, *PERIOD)

        assert insight.status == "completed"
        assert insight.total_decisions == 0
        assert insight.avg_confidence_score is None
        assert generator.prompts == []

    @pytest.mark.asyncio
    async def test_all_types_insight_does_not_propose_versions(self, services, generator, db, variant_result):
        generator.result = variant_result("concise")
        _seed_three(services)

        insight = await services.insights.analyze(AGENT, None, *PERIOD)

        assert len(insight.generated_variants) == 1
        assert db.query(PromptVersion).count() == 0

    @pytest.mark.asyncio
    async def test_sensitive_variant_is_escalated(self, services, generator, db, variant_result):
        generator.result = variant_result("escalate-early")
        _seed_three(services)

        await services.insights.analyze(AGENT, TYPE, *PERIOD)

        request = db.query(ApprovalRequest).one()
        assert request.request_type == "escalation_change"
        assert request.priority == "high"
        assert request.requires_human_review is True


class TestParseAnalysis:
    def test_json_inside_prose(self):
        raw = 'Here you go:\n{"identified_patterns": [{"pattern": "p"}], "analysis_summary": "ok"}\nThanks'
        result = parse_analysis(raw)
        assert isinstance(result, AnalysisOk)
        assert result.patterns[0].pattern == "p"
        assert result.variants == []
        assert result.summary == "ok"

    def test_braces_in_trailing_prose(self):
        raw = (
            '{"generated_variants": [{"variant_name": "concise", "prompt_template": "Hi {customer_name}"}],'
            ' "analysis_summary": "ok"}'
            "\n\nNote: replace {customer_name} in the template."
        )
        result = parse_analysis(raw)
        assert isinstance(result, AnalysisOk)
        assert result.variants[0].prompt_template == "Hi {customer_name}"

    def test_braces_before_payload(self):
        raw = 'Placeholders like {name} stay.\n{"analysis_summary": "ok"}'
        result = parse_analysis(raw)
        assert isinstance(result, AnalysisOk)
        assert result.summary == "ok"

    def test_no_json(self):
        result = parse_analysis("nothing structured")
        assert isinstance(result, AnalysisParseError)
        assert result.reason == "no JSON object in response"

    def test_truncated_json(self):
        result = parse_analysis('{"analysis_summary": "cut o')
        assert isinstance(result, AnalysisParseError)
        assert "invalid JSON" in result.reason

    def test_wrong_shape(self):
        result = parse_analysis('{"generated_variants": [{"variant_name": "x"}]}')
        assert isinstance(result, AnalysisParseError)
        assert "shape" in result.reason


class TestSnapshot:
    def test_rollup_and_idempotence(self, services, db):
        _seed_three(services)

        first = services.insights.snapshot(AGENT, DAY)
        second = services.insights.snapshot(AGENT, DAY)

        assert first.id == second.id
        assert db.query(PerformanceSnapshot).count() == 1
        assert second.total_decisions == 3
        assert second.successful_decisions == 2
        assert second.overall_accuracy == pytest.approx(66.67, abs=0.01)
        assert second.decision_types[TYPE]["count"] == 3

    def test_counts_registry_state(self, services):
        _seed_three(services)
        services.registry.create_version(AGENT, TYPE, "v1", "Classify.", status="active", rollout_percentage=100)

        snapshot = services.insights.snapshot(AGENT, DAY)
        assert snapshot.active_prompt_versions == 1
        assert snapshot.experiments_running == 0

    def test_day_without_decisions(self, services, db):
        _seed_three(services)
        assert services.insights.snapshot(AGENT, DAY + timedelta(days=1)) is None
        assert db.query(PerformanceSnapshot).count() == 0


class TestDashboard:
    @pytest.mark.asyncio
    async def test_summary(self, services, generator, variant_result):
        generator.result = variant_result("concise")
        _seed_three(services)
        await services.insights.analyze(AGENT, TYPE, *PERIOD)
        services.insights.snapshot(AGENT, DAY)

        dashboard = services.insights.dashboard(AGENT, days=30, today=DAY + timedelta(days=1))
        summary = dashboard["summary"]

        assert summary["total_decisions"] == 3
        assert summary["avg_accuracy"] == pytest.approx(66.67, abs=0.01)
        assert summary["variants_generated"] == 1
        assert summary["total_optimizations"] == 1
        assert summary["pending_approvals"] == 1
        assert summary["experiments_running"] == 0
        assert dashboard["roi_gains"][0]["date"] == DAY.isoformat()
        assert dashboard["pending_approvals"][0]["prompt_version"]["variant"] == "concise"
