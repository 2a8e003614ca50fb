# backend/tests/test_decision_ledger.py
from datetime import datetime, timedelta

import pytest

from agent_intelligence.errors import NotFound, ValidationFailure
from agent_intelligence.models.decision import Decision, DecisionOutcome
from agent_intelligence.services.decision_ledger import DecisionLedger

T0 = datetime(2026, 1, 5, 9, 0)


@pytest.fixture
def ledger(db):
    return DecisionLedger(db)


class TestLogDecision:
    def test_returns_persisted_id(self, ledger, db):
        decision_id = ledger.log_decision(
            "email_agent",
            "email_classification",
            {"email_id": "e-1"},
            "Priority: high",
            "Sender is an existing customer",
            confidence=0.85,
            version_label="v2",
            variant_label="default",
        )

        row = db.query(Decision).filter(Decision.id == decision_id).one()
        assert row.agent_name == "email_agent"
        assert row.decision_context == {"email_id": "e-1"}
        assert row.confidence_score == 0.85
        assert row.version_label == "v2"

    def test_confidence_out_of_range(self, ledger):
        with pytest.raises(ValidationFailure):
            ledger.log_decision("a", "t", {}, "x", "y", confidence=1.5)

    def test_missing_agent(self, ledger):
        with pytest.raises(ValidationFailure):
            ledger.log_decision("", "t", {}, "x", "y")


class TestRecordOutcome:
    def test_attaches_to_decision(self, ledger, db):
        decision_id = ledger.log_decision("a", "t", {}, "x", "y")
        ledger.record_outcome(decision_id, "accuracy", value=100, source="human", notes="correct")
        ledger.record_outcome(decision_id, "engagement", value=35)

        outcomes = db.query(DecisionOutcome).filter(DecisionOutcome.decision_id == decision_id).all()
        assert sorted(o.outcome_value for o in outcomes) == [35, 100]

    def test_unknown_decision_is_not_found(self, ledger):
        with pytest.raises(NotFound):
            ledger.record_outcome(99999, "accuracy", value=50)

    def test_value_out_of_range(self, ledger):
        decision_id = ledger.log_decision("a", "t", {}, "x", "y")
        with pytest.raises(ValidationFailure):
            ledger.record_outcome(decision_id, "accuracy", value=150)

    def test_unknown_feedback_source(self, ledger):
        decision_id = ledger.log_decision("a", "t", {}, "x", "y")
        with pytest.raises(ValidationFailure):
            ledger.record_outcome(decision_id, "accuracy", value=10, source="oracle")

    def test_unscored_outcome_allowed(self, ledger):
        decision_id = ledger.log_decision("a", "t", {}, "x", "y")
        assert ledger.record_outcome(decision_id, "raw_feedback", data={"text": "meh"}) > 0


class TestRangeQueries:
    def test_window_and_filters(self, ledger):
        inside = ledger.log_decision("a", "t1", {}, "x", "y", version_label="v1", timestamp=T0)
        later = ledger.log_decision("a", "t2", {}, "x", "y", version_label="v2", timestamp=T0 + timedelta(hours=2))
        ledger.log_decision("a", "t1", {}, "x", "y", timestamp=T0 - timedelta(days=1))
        ledger.log_decision("b", "t1", {}, "x", "y", timestamp=T0)

        window = ledger.decisions_in_range("a", T0, T0 + timedelta(days=1))
        assert [d.id for d in window] == [inside, later]

        assert [d.id for d in ledger.decisions_in_range("a", T0, decision_type="t2")] == [later]
        assert [d.id for d in ledger.decisions_in_range("a", T0, version_label="v1")] == [inside]

    def test_outcomes_loaded(self, ledger):
        decision_id = ledger.log_decision("a", "t", {}, "x", "y", timestamp=T0)
        ledger.record_outcome(decision_id, "accuracy", value=80, timestamp=T0 + timedelta(minutes=1))

        [decision] = ledger.decisions_in_range("a", T0)
        assert [o.outcome_value for o in decision.outcomes] == [80]

    def test_get_decision_missing(self, ledger):
        with pytest.raises(NotFound):
            ledger.get_decision(424242)
