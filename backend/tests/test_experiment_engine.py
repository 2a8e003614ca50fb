# backend/tests/test_experiment_engine.py
from datetime import timedelta

import pytest

from agent_intelligence.errors import InvalidState, NotFound, ValidationFailure
from agent_intelligence.models.approval import ApprovalRequest

AGENT = "email_agent"
TYPE = "email_classification"


@pytest.fixture
def arms(services):
    control = services.registry.create_version(
        AGENT, TYPE, "v1", "Classify the email.", status="active", rollout_percentage=100
    )
    test = services.registry.create_version(AGENT, TYPE, "v2", "Classify the email in one word.")
    return control, test


def _score(services, version, values):
    for value in values:
        decision_id = services.ledger.log_decision(
            AGENT, TYPE, {}, "Priority: high", "Rule match", confidence=0.7, version_label=version.version
        )
        services.ledger.record_outcome(decision_id, "accuracy", value=value)


class TestCreateExperiment:
    def test_starts_running(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("one-word", control.id, test.id, target_sample_size=10)

        assert experiment.status == "running"
        assert experiment.agent_name == AGENT
        assert experiment.decision_type == TYPE
        assert experiment.current_sample_size == 0
        assert experiment.start_date is not None
        assert services.experiments.running_experiment_for(AGENT, TYPE).id == experiment.id

    def test_same_version_twice(self, services, arms):
        control, _ = arms
        with pytest.raises(ValidationFailure):
            services.experiments.create_experiment("x", control.id, control.id)

    def test_arms_from_different_agents(self, services, arms):
        control, _ = arms
        other = services.registry.create_version("seo_agent", TYPE, "v1", "Audit the page.")
        with pytest.raises(ValidationFailure):
            services.experiments.create_experiment("x", control.id, other.id)

    @pytest.mark.parametrize("split", [-5, 101])
    def test_split_out_of_range(self, services, arms, split):
        control, test = arms
        with pytest.raises(ValidationFailure):
            services.experiments.create_experiment("x", control.id, test.id, traffic_split=split)

    def test_unknown_version(self, services, arms):
        control, _ = arms
        with pytest.raises(NotFound):
            services.experiments.create_experiment("x", control.id, 999)

    def test_one_running_experiment_per_pair(self, services, arms):
        control, test = arms
        services.experiments.create_experiment("first", control.id, test.id)
        with pytest.raises(InvalidState):
            services.experiments.create_experiment("second", control.id, test.id)


class TestTraffic:
    def test_zero_split_routes_to_control(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id, traffic_split=0)
        for _ in range(100):
            arm, version = services.experiments.resolve_traffic_version(experiment.id)
            assert arm == "control"
            assert version.id == control.id

    def test_terminal_experiment_has_no_traffic(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id)
        services.experiments.abort_experiment(experiment.id)
        with pytest.raises(InvalidState):
            services.experiments.resolve_traffic_version(experiment.id)


class TestRefresh:
    def test_significant_winner_requests_approval(self, services, arms, db):
        control, test = arms
        experiment = services.experiments.create_experiment("one-word", control.id, test.id, target_sample_size=10)
        _score(services, control, [20, 30, 10, 40, 25])
        _score(services, test, [90, 95, 80, 85, 100])

        services.experiments.refresh_metrics(experiment.id)

        assert experiment.status == "completed"
        assert experiment.winner == "test"
        assert experiment.current_sample_size == 10
        assert experiment.statistical_significance >= 0.95
        assert experiment.end_date is not None
        assert experiment.control_metrics["success_rate"] == 0
        assert experiment.test_metrics["success_rate"] == 1

        request = db.query(ApprovalRequest).filter(ApprovalRequest.experiment_id == experiment.id).one()
        assert request.request_type == "experiment_approval"
        assert request.priority == "high"
        assert request.prompt_version_id == test.id
        assert request.risk_assessment.startswith("Low")
        assert request.status == "pending"

    def test_equal_arms_are_inconclusive(self, services, arms, db):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id, target_sample_size=4)
        _score(services, control, [90, 10])
        _score(services, test, [90, 10])

        services.experiments.refresh_metrics(experiment.id)

        assert experiment.status == "completed"
        assert experiment.winner == "inconclusive"
        assert experiment.statistical_significance == 0
        assert db.query(ApprovalRequest).count() == 0

    def test_control_winner_needs_no_approval(self, services, arms, db):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id, target_sample_size=10)
        _score(services, control, [90, 95, 80, 85, 100])
        _score(services, test, [20, 30, 10, 40, 25])

        services.experiments.refresh_metrics(experiment.id)

        assert experiment.winner == "control"
        assert db.query(ApprovalRequest).count() == 0

    def test_below_target_keeps_running(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id, target_sample_size=100)
        _score(services, control, [20, 30])
        _score(services, test, [90])

        services.experiments.refresh_metrics(experiment.id)

        assert experiment.status == "running"
        assert experiment.winner is None
        assert experiment.current_sample_size == 3
        assert experiment.control_metrics["evaluated"] == 2

    def test_unscored_decisions_count_toward_sample(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id, target_sample_size=4)
        for version in (control, test, control, test):
            services.ledger.log_decision(AGENT, TYPE, {}, "x", "y", version_label=version.version)

        services.experiments.refresh_metrics(experiment.id)

        assert experiment.status == "completed"
        assert experiment.winner == "inconclusive"

    def test_decisions_before_start_are_ignored(self, services, arms):
        control, test = arms
        _score(services, control, [90, 90])
        experiment = services.experiments.create_experiment("x", control.id, test.id)
        experiment.start_date = experiment.start_date + timedelta(seconds=1)
        services.db.commit()

        services.experiments.refresh_metrics(experiment.id)
        assert experiment.current_sample_size == 0

    def test_expired_experiment_aborts(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id, target_sample_size=100)
        _score(services, test, [90])

        services.experiments.refresh_metrics(experiment.id, now=experiment.start_date + timedelta(days=31))

        assert experiment.status == "aborted"
        assert experiment.winner == "inconclusive"
        assert "Expired" in experiment.results_summary

    def test_refresh_terminal_experiment(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id)
        services.experiments.abort_experiment(experiment.id, "Wrong arms")

        assert experiment.results_summary == "Wrong arms"
        with pytest.raises(InvalidState):
            services.experiments.refresh_metrics(experiment.id)

    def test_abort_twice(self, services, arms):
        control, test = arms
        experiment = services.experiments.create_experiment("x", control.id, test.id)
        services.experiments.abort_experiment(experiment.id)
        with pytest.raises(InvalidState):
            services.experiments.abort_experiment(experiment.id)

    def test_arms_sharing_a_version_label_split_by_variant(self, services):
        control = services.registry.create_version(AGENT, TYPE, "v5", "Classify.", variant="default")
        test = services.registry.create_version(AGENT, TYPE, "v5", "Classify briefly.", variant="brief")
        experiment = services.experiments.create_experiment("x", control.id, test.id, target_sample_size=100)

        decision_id = services.ledger.log_decision(
            AGENT, TYPE, {}, "x", "y", version_label="v5", variant_label="brief"
        )
        services.ledger.record_outcome(decision_id, "accuracy", value=90)

        services.experiments.refresh_metrics(experiment.id)

        assert experiment.test_metrics["decisions"] == 1
        assert experiment.control_metrics["decisions"] == 0
