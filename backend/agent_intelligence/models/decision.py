# backend/agent_intelligence/models/decision.py
"""
Decision ledger tables.

- agent_decisions: one row per agent choice, never updated
- decision_outcomes: feedback attached later, any number per decision
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship

from agent_intelligence.database import Base


class Decision(Base):
    __tablename__ = "agent_decisions"

    id = Column(Integer, primary_key=True, index=True)

    agent_name = Column(String(100), nullable=False, index=True)
    decision_type = Column(String(100), nullable=False, index=True)  # e.g. "classification"

    decision_context = Column(JSON, nullable=False, default=dict)
    decision_made = Column(Text, nullable=False)
    rationale = Column(Text, nullable=False)
    confidence_score = Column(Float, nullable=True)  # 0..1

    # Version in effect when the decision was made
    version_label = Column(String(100), nullable=True, index=True)
    variant_label = Column(String(100), nullable=True, index=True)

    input_data = Column(JSON, default=dict)
    output_data = Column(JSON, default=dict)
    extra_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    outcomes = relationship(
        "DecisionOutcome",
        back_populates="decision",
        order_by="DecisionOutcome.created_at",
        lazy="selectin",
    )


class DecisionOutcome(Base):
    """
    Feedback on a decision, normalized to 0-100.

    outcome_value may be NULL when the feedback carries no score
    (e.g. a raw payload waiting for a later evaluation).
    """
    __tablename__ = "decision_outcomes"

    id = Column(Integer, primary_key=True, index=True)
    decision_id = Column(
        Integer,
        ForeignKey("agent_decisions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    outcome_type = Column(String(100), nullable=False)  # human_approval, engagement, roi...
    outcome_value = Column(Float, nullable=True)
    outcome_data = Column(JSON, default=dict)
    feedback_source = Column(String(20), nullable=False, default="automated")  # automated, human, system
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    decision = relationship("Decision", back_populates="outcomes")
