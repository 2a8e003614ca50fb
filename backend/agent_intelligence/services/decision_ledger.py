# backend/agent_intelligence/services/decision_ledger.py
"""
Append-only ledger of agent decisions and their outcomes.

The ledger only records. It never inspects what was decided, and it
exposes no update or delete path so the audit trail stays intact.
Callers that must not fail on a ledger problem go through
DecisionLogger, which swallows and logs store errors.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from agent_intelligence.errors import NotFound, StoreUnavailable, ValidationFailure
from agent_intelligence.models.decision import Decision, DecisionOutcome

logger = logging.getLogger(__name__)

FEEDBACK_SOURCES = ("automated", "human", "system")


class DecisionLedger:
    def __init__(self, db: Session):
        self.db = db

    def log_decision(
        self,
        agent_name: str,
        decision_type: str,
        context: Optional[Dict[str, Any]],
        decision_made: str,
        rationale: str,
        confidence: Optional[float] = None,
        version_label: Optional[str] = None,
        variant_label: Optional[str] = None,
        input_data: Optional[Dict[str, Any]] = None,
        output_data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """Persist one decision and return its id."""
        if not agent_name or not decision_type:
            raise ValidationFailure("agent_name and decision_type are required")
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise ValidationFailure(f"confidence must be within [0, 1], got {confidence}")

        decision = Decision(
            agent_name=agent_name,
            decision_type=decision_type,
            decision_context=context or {},
            decision_made=decision_made or "",
            rationale=rationale or "",
            confidence_score=confidence,
            version_label=version_label,
            variant_label=variant_label,
            input_data=input_data or {},
            output_data=output_data or {},
            extra_metadata=metadata or {},
        )
        if timestamp is not None:
            decision.created_at = timestamp

        try:
            self.db.add(decision)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not log decision for {agent_name}: {str(e)[:200]}") from e

        return decision.id

    def record_outcome(
        self,
        decision_id: int,
        outcome_type: str,
        value: Optional[float] = None,
        data: Optional[Dict[str, Any]] = None,
        source: str = "automated",
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """
        Attach an outcome to a decision.

        The decision reference is checked by the store's foreign key, not by a
        lookup here; a violation surfaces as NotFound.
        """
        if value is not None and not 0.0 <= value <= 100.0:
            raise ValidationFailure(f"outcome value must be within [0, 100], got {value}")
        if source not in FEEDBACK_SOURCES:
            raise ValidationFailure(f"feedback source must be one of {FEEDBACK_SOURCES}")

        outcome = DecisionOutcome(
            decision_id=decision_id,
            outcome_type=outcome_type,
            outcome_value=value,
            outcome_data=data or {},
            feedback_source=source,
            notes=notes,
        )
        if timestamp is not None:
            outcome.created_at = timestamp

        try:
            self.db.add(outcome)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise NotFound(f"Decision {decision_id} not found") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not record outcome for decision {decision_id}: {str(e)[:200]}") from e

        return outcome.id

    def get_decision(self, decision_id: int) -> Decision:
        decision = self.db.query(Decision).filter(Decision.id == decision_id).first()
        if not decision:
            raise NotFound(f"Decision {decision_id} not found")
        return decision

    def decisions_in_range(
        self,
        agent_name: str,
        start: datetime,
        end: Optional[datetime] = None,
        decision_type: Optional[str] = None,
        version_label: Optional[str] = None,
    ) -> List[Decision]:
        """Decisions (with outcomes loaded) ordered by timestamp."""
        query = (
            self.db.query(Decision)
            .options(selectinload(Decision.outcomes))
            .filter(Decision.agent_name == agent_name, Decision.created_at >= start)
        )
        if end is not None:
            query = query.filter(Decision.created_at <= end)
        if decision_type:
            query = query.filter(Decision.decision_type == decision_type)
        if version_label:
            query = query.filter(Decision.version_label == version_label)

        return query.order_by(Decision.created_at.asc(), Decision.id.asc()).all()
