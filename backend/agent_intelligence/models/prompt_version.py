# backend/agent_intelligence/models/prompt_version.py

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, UniqueConstraint

from agent_intelligence.database import Base


VERSION_STATUSES = ("testing", "active", "archived", "rejected")


class PromptVersion(Base):
    """
    A versioned decision configuration for one (agent, decision type) pair.

    - status: testing -> active -> archived, or testing -> rejected
    - rollout_percentage: share of non-experiment traffic (0-100); several
      active versions split traffic by this weight
    - parent_version_id: lineage, e.g. the version an analysis variant derives from
    """

    __tablename__ = "prompt_versions"
    __table_args__ = (
        UniqueConstraint("agent_name", "decision_type", "version", "variant", name="uq_prompt_version_label"),
    )

    id = Column(Integer, primary_key=True, index=True)

    agent_name = Column(String(100), nullable=False, index=True)
    decision_type = Column(String(100), nullable=False, index=True)
    version = Column(String(100), nullable=False, index=True)
    variant = Column(String(100), nullable=False, default="default")

    prompt_template = Column(Text, nullable=False)
    system_instructions = Column(Text, nullable=True)
    parameters = Column(JSON, default=dict)

    status = Column(String(20), nullable=False, default="testing", index=True)
    rollout_percentage = Column(Integer, nullable=False, default=0)

    parent_version_id = Column(Integer, ForeignKey("prompt_versions.id", ondelete="SET NULL"), nullable=True)

    created_by = Column(String(100), default="system")
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
