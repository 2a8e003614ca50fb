# backend/tests/test_decision_logger.py
"""Agent facade: best-effort logging, version tagging and outcome normalizers."""

import random

import pytest
from sqlalchemy.orm import sessionmaker

from agent_intelligence.database import Base, build_engine
from agent_intelligence.models.decision import Decision, DecisionOutcome
from agent_intelligence.services.decision_logger import (
    DecisionLogger,
    engagement_score,
    improvement_score,
    roi_percent,
    roi_score,
)
from agent_intelligence.services.version_registry import VersionRegistry


@pytest.fixture
def session_factory(tmp_path):
    file_engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


@pytest.fixture
def decisions(session_factory):
    return DecisionLogger("social_agent", session_factory=session_factory, rng=random.Random(5))


def _outcomes(session_factory, decision_id):
    session = session_factory()
    try:
        return session.query(DecisionOutcome).filter(DecisionOutcome.decision_id == decision_id).all()
    finally:
        session.close()


class TestBestEffortLogging:
    def test_log_and_score(self, decisions, session_factory):
        decision_id = decisions.log("post_generation", "Posted a carousel", "High engagement format", confidence=0.8)
        assert decision_id is not None

        decisions.record_accuracy(decision_id, was_correct=True, feedback="On brand")
        [outcome] = _outcomes(session_factory, decision_id)
        assert outcome.outcome_value == 100
        assert outcome.feedback_source == "human"

    def test_store_failure_is_swallowed(self, tmp_path):
        broken = sessionmaker(bind=build_engine(f"sqlite:///{tmp_path / 'missing' / 'nope.db'}"))
        decisions = DecisionLogger("social_agent", session_factory=broken)

        assert decisions.log("post_generation", "x", "y") is None
        assert decisions.record_outcome(1, "accuracy", value=50) is None
        assert decisions.active_config("post_generation") is None

    def test_unknown_decision_is_swallowed(self, decisions):
        assert decisions.record_accuracy(4242, was_correct=False) is None

    def test_invalid_input_is_swallowed(self, decisions):
        assert decisions.log("post_generation", "x", "y", confidence=7) is None

    def test_missing_decision_id_is_ignored(self, decisions):
        assert decisions.record_engagement(None, likes=10, comments=0, shares=0, platform="x") is None

    def test_escalation_decision_marks_review(self, decisions, session_factory):
        decision_id = decisions.log_escalation_decision("ticket", "T-9", True, "Legal threat", confidence=0.95)

        session = session_factory()
        try:
            decision = session.query(Decision).filter(Decision.id == decision_id).one()
            assert decision.decision_type == "escalation_decision"
            assert decision.decision_made == "Escalate"
            assert decision.extra_metadata == {"requires_human_review": True}
            assert decision.decision_context["entity_id"] == "T-9"
        finally:
            session.close()


class TestVersionTagging:
    def test_active_config_tags_following_decisions(self, decisions, session_factory):
        session = session_factory()
        try:
            VersionRegistry(session).create_version(
                "social_agent", "post_generation", "v3", "Write a post.", variant="emoji",
                status="active", rollout_percentage=100,
            )
        finally:
            session.close()

        config = decisions.active_config("post_generation")
        assert config["version_label"] == "v3"
        assert config["prompt_template"] == "Write a post."

        decision_id = decisions.log("post_generation", "Posted", "Template v3")
        session = session_factory()
        try:
            decision = session.query(Decision).filter(Decision.id == decision_id).one()
            assert (decision.version_label, decision.variant_label) == ("v3", "emoji")
        finally:
            session.close()

    def test_no_active_version_means_builtin_behavior(self, decisions):
        decisions.set_version("post_generation", "stale")
        assert decisions.active_config("post_generation") is None

    def test_explicit_labels_win(self, decisions, session_factory):
        decisions.set_version("post_generation", "v1")
        decision_id = decisions.log("post_generation", "x", "y", version_label="v9")

        session = session_factory()
        try:
            assert session.get(Decision, decision_id).version_label == "v9"
        finally:
            session.close()


class TestNormalizers:
    def test_engagement(self):
        assert engagement_score(100, 50, 10) == pytest.approx(23.0)
        assert engagement_score(5000, 0, 0) == 100

    def test_roi(self):
        assert roi_percent(100, 150) == pytest.approx(50)
        assert roi_score(50) == pytest.approx(75)
        assert roi_score(-300) == 0
        assert roi_score(roi_percent(0, 500)) == 50

    def test_improvement(self):
        assert improvement_score(82) == 82
        assert improvement_score(140) == 100

    def test_ad_roi_outcome(self, decisions, session_factory):
        decision_id = decisions.log("ad_optimization", "Raise bid", "CTR rising")
        decisions.record_ad_roi(decision_id, spent=200, revenue=300, conversions=4)

        [outcome] = _outcomes(session_factory, decision_id)
        assert outcome.outcome_type == "ad_roi"
        assert outcome.outcome_value == pytest.approx(75)
        assert outcome.outcome_data["roi"] == pytest.approx(50)
