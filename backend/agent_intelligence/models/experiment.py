# backend/agent_intelligence/models/experiment.py
"""
A/B experiment between two prompt versions.

Tracks:
- Control and test arms for one (agent, decision type)
- Traffic split and sample target
- Per-arm metrics and statistical significance of the result
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship

from agent_intelligence.database import Base


class PromptExperiment(Base):
    __tablename__ = "prompt_experiments"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    agent_name = Column(String(100), nullable=False, index=True)
    decision_type = Column(String(100), nullable=False, index=True)

    control_version_id = Column(Integer, ForeignKey("prompt_versions.id", ondelete="CASCADE"), nullable=False)
    test_version_id = Column(Integer, ForeignKey("prompt_versions.id", ondelete="CASCADE"), nullable=False)

    # Test status
    status = Column(String(20), nullable=False, default="running", index=True)  # running, completed, aborted
    winner = Column(String(20), nullable=True)  # control, test, inconclusive

    # Test configuration
    traffic_split = Column(Integer, nullable=False, default=50)  # % of traffic to the test arm
    target_sample_size = Column(Integer, nullable=False, default=100)
    current_sample_size = Column(Integer, nullable=False, default=0)

    # Results (updated on every refresh)
    control_metrics = Column(JSON, default=dict)
    test_metrics = Column(JSON, default=dict)
    statistical_significance = Column(Float, nullable=True)
    results_summary = Column(Text, nullable=True)

    # Timing
    start_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    control_version = relationship("PromptVersion", foreign_keys=[control_version_id])
    test_version = relationship("PromptVersion", foreign_keys=[test_version_id])
