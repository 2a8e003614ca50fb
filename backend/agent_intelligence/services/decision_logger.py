# backend/agent_intelligence/services/decision_logger.py
"""
Per-agent facade over the decision ledger.

Business agents log through this class rather than the ledger: a failing
store is logged as a warning and never breaks the agent's own flow.

Usage:
    decisions = DecisionLogger("email_agent")
    config = decisions.active_config("email_classification")
    decision_id = decisions.log("email_classification", "Priority: high", "Sender is a customer", confidence=0.9)
    ...
    decisions.record_accuracy(decision_id, was_correct=True)
"""

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agent_intelligence.database import SessionLocal
from agent_intelligence.errors import IntelligenceError
from agent_intelligence.services.decision_ledger import DecisionLedger
from agent_intelligence.services.version_registry import VersionRegistry, as_agent_config

logger = logging.getLogger(__name__)


# =========================
# Outcome normalizers (0-100)
# =========================

def engagement_score(likes: int, comments: int, shares: int) -> float:
    """Comments weigh double and shares triple; 1000 weighted interactions is a perfect score."""
    total = likes + comments * 2 + shares * 3
    return min(100.0, total / 10)


def roi_percent(spent: float, revenue: float) -> float:
    if spent <= 0:
        return 0.0
    return (revenue - spent) / spent * 100


def roi_score(roi: float) -> float:
    """-100% ROI maps to 0, break-even to 50, +100% and above to 100."""
    return min(100.0, max(0.0, (roi + 100) / 2))


def improvement_score(after: float) -> float:
    """The post-change score, clamped to 0-100."""
    return min(100.0, max(0.0, after))


class DecisionLogger:
    def __init__(
        self,
        agent_name: str,
        session_factory: Callable[[], Session] = SessionLocal,
        rng: Optional[random.Random] = None,
    ):
        self.agent_name = agent_name
        self.session_factory = session_factory
        self.rng = rng or random.Random()
        # decision_type -> (version_label, variant_label) in effect
        self._labels: Dict[str, Tuple[Optional[str], Optional[str]]] = {}

    # ============================================================
    # VERSIONS
    # ============================================================

    def set_version(self, decision_type: str, version_label: Optional[str], variant_label: Optional[str] = None) -> None:
        self._labels[decision_type] = (version_label, variant_label)

    def active_config(self, decision_type: str) -> Optional[Dict[str, Any]]:
        """
        Resolve the version to use for the next decision and remember its
        labels so the decision gets tagged with them. None means: use the
        agent's built-in behavior.
        """
        db = self.session_factory()
        try:
            version = VersionRegistry(db, self.rng).get_active_version(self.agent_name, decision_type)
            config = as_agent_config(version)
        except (IntelligenceError, SQLAlchemyError) as e:
            logger.warning("Version lookup failed for %s/%s: %s", self.agent_name, decision_type, e)
            return None
        finally:
            db.close()

        if config is None:
            self._labels.pop(decision_type, None)
        else:
            self.set_version(decision_type, config["version_label"], config["variant_label"])
        return config

    # ============================================================
    # DECISIONS
    # ============================================================

    def log(
        self,
        decision_type: str,
        decision_made: str,
        rationale: str,
        context: Optional[Dict[str, Any]] = None,
        confidence: Optional[float] = None,
        input_data: Optional[Dict[str, Any]] = None,
        output_data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        version_label: Optional[str] = None,
        variant_label: Optional[str] = None,
    ) -> Optional[int]:
        """Best-effort: returns the decision id, or None when logging failed."""
        default_version, default_variant = self._labels.get(decision_type, (None, None))

        db = self.session_factory()
        try:
            return DecisionLedger(db).log_decision(
                agent_name=self.agent_name,
                decision_type=decision_type,
                context=context,
                decision_made=decision_made,
                rationale=rationale,
                confidence=confidence,
                version_label=version_label or default_version,
                variant_label=variant_label or default_variant,
                input_data=input_data,
                output_data=output_data,
                metadata=metadata,
            )
        except (IntelligenceError, SQLAlchemyError) as e:
            logger.warning("Failed to log %s decision for %s: %s", decision_type, self.agent_name, e)
            return None
        finally:
            db.close()

    def log_escalation_decision(
        self,
        entity_type: str,
        entity_id: str,
        should_escalate: bool,
        rationale: str,
        confidence: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        return self.log(
            decision_type="escalation_decision",
            decision_made="Escalate" if should_escalate else "Do not escalate",
            rationale=rationale,
            confidence=confidence,
            context={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "should_escalate": should_escalate,
                **(context or {}),
            },
            metadata={"requires_human_review": True},
        )

    # ============================================================
    # OUTCOMES
    # ============================================================

    def record_outcome(
        self,
        decision_id: Optional[int],
        outcome_type: str,
        value: Optional[float] = None,
        data: Optional[Dict[str, Any]] = None,
        source: str = "automated",
        notes: Optional[str] = None,
    ) -> Optional[int]:
        if decision_id is None:
            return None

        db = self.session_factory()
        try:
            return DecisionLedger(db).record_outcome(
                decision_id, outcome_type, value=value, data=data, source=source, notes=notes
            )
        except (IntelligenceError, SQLAlchemyError) as e:
            logger.warning("Failed to record %s outcome for decision %s: %s", outcome_type, decision_id, e)
            return None
        finally:
            db.close()

    def record_accuracy(self, decision_id: Optional[int], was_correct: bool, feedback: Optional[str] = None):
        return self.record_outcome(
            decision_id,
            "accuracy",
            value=100 if was_correct else 0,
            data={"correct": was_correct},
            source="human",
            notes=feedback,
        )

    def record_engagement(self, decision_id: Optional[int], likes: int, comments: int, shares: int, platform: str):
        return self.record_outcome(
            decision_id,
            "engagement",
            value=engagement_score(likes, comments, shares),
            data={
                "likes": likes,
                "comments": comments,
                "shares": shares,
                "platform": platform,
                "total_engagement": likes + comments * 2 + shares * 3,
            },
        )

    def record_ad_roi(self, decision_id: Optional[int], spent: float, revenue: float, conversions: int):
        roi = roi_percent(spent, revenue)
        return self.record_outcome(
            decision_id,
            "ad_roi",
            value=roi_score(roi),
            data={"spent": spent, "revenue": revenue, "conversions": conversions, "roi": roi},
        )

    def record_score_improvement(self, decision_id: Optional[int], before: float, after: float, timeframe: str):
        return self.record_outcome(
            decision_id,
            "score_improvement",
            value=improvement_score(after),
            data={"before_score": before, "after_score": after, "improvement": after - before, "timeframe": timeframe},
        )

    def record_human_feedback(
        self,
        decision_id: Optional[int],
        approved: bool,
        reviewed_by: str,
        feedback: Optional[str] = None,
    ):
        return self.record_outcome(
            decision_id,
            "human_approval" if approved else "human_rejection",
            value=100 if approved else 0,
            data={"approved": approved, "reviewed_by": reviewed_by},
            source="human",
            notes=f"Reviewed by {reviewed_by}. {feedback or ''}".strip(),
        )
