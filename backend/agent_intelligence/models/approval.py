# backend/agent_intelligence/models/approval.py

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON, ForeignKey
from sqlalchemy.orm import relationship

from agent_intelligence.database import Base


PRIORITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}


class ApprovalRequest(Base):
    """
    Queue item gating promotion of a prompt version to active.

    - request_type: new_variant, escalation_change, experiment_approval, major_optimization
    - status: pending -> approved | rejected
    - requires_human_review: forced on for sensitive decision types/terms
    """

    __tablename__ = "prompt_approval_queue"

    id = Column(Integer, primary_key=True, index=True)

    prompt_version_id = Column(
        Integer, ForeignKey("prompt_versions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    experiment_id = Column(Integer, ForeignKey("prompt_experiments.id", ondelete="SET NULL"), nullable=True)
    learning_insight_id = Column(
        Integer, ForeignKey("agent_learning_insights.id", ondelete="SET NULL"), nullable=True
    )

    request_type = Column(String(50), nullable=False)
    priority = Column(String(20), nullable=False, default="medium", index=True)
    decision_type = Column(String(100), nullable=True)

    change_summary = Column(Text, nullable=False)
    impact_analysis = Column(JSON, default=dict)
    risk_assessment = Column(Text, nullable=True)
    requires_human_review = Column(Boolean, nullable=False, default=False)

    requested_by = Column(String(100), default="system")
    status = Column(String(20), nullable=False, default="pending", index=True)
    reviewed_by = Column(String(100), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    reviewer_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    prompt_version = relationship("PromptVersion")
    tasks = relationship("ReviewTask", back_populates="approval_request", order_by="ReviewTask.created_at")


class ReviewTask(Base):
    """Human-visible task created for each approval request."""

    __tablename__ = "review_tasks"

    id = Column(Integer, primary_key=True, index=True)
    approval_request_id = Column(
        Integer, ForeignKey("prompt_approval_queue.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    priority = Column(String(20), nullable=False)
    requires_escalation = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="open")  # open, closed
    deliverable_url = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    approval_request = relationship("ApprovalRequest", back_populates="tasks")
