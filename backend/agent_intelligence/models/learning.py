# backend/agent_intelligence/models/learning.py

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Date, Text, Float, JSON, UniqueConstraint

from agent_intelligence.database import Base


class LearningInsight(Base):
    """
    Periodic analysis of an agent's decisions over a time window.

    - performance_metrics: computed locally from the ledger
    - identified_patterns/optimization_suggestions/generated_variants: from the
      analysis dependency; empty lists when it failed
    - status: completed, degraded (analysis dependency failed)
    """

    __tablename__ = "agent_learning_insights"

    id = Column(Integer, primary_key=True, index=True)

    agent_name = Column(String(100), nullable=False, index=True)
    decision_type = Column(String(100), nullable=True)
    analysis_period_start = Column(DateTime, nullable=False)
    analysis_period_end = Column(DateTime, nullable=False)

    total_decisions = Column(Integer, nullable=False, default=0)
    avg_confidence_score = Column(Float, nullable=True)
    performance_metrics = Column(JSON, default=dict)

    identified_patterns = Column(JSON, default=list)
    optimization_suggestions = Column(JSON, default=list)
    generated_variants = Column(JSON, default=list)
    analysis_summary = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default="completed")
    analyzed_by = Column(String(100), nullable=True)
    extra_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class PerformanceSnapshot(Base):
    """One rollup row per (agent, calendar day), upserted."""

    __tablename__ = "agent_performance_snapshots"
    __table_args__ = (
        UniqueConstraint("agent_name", "snapshot_date", name="uq_snapshot_agent_date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    agent_name = Column(String(100), nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False, index=True)

    decision_types = Column(JSON, default=dict)
    overall_accuracy = Column(Float, nullable=True)  # percent
    total_decisions = Column(Integer, nullable=False, default=0)
    successful_decisions = Column(Integer, nullable=False, default=0)

    active_prompt_versions = Column(Integer, nullable=False, default=0)
    experiments_running = Column(Integer, nullable=False, default=0)
    learning_insights_generated = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
