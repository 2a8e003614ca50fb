# backend/agent_intelligence/services/approval_workflow.py
"""
Approval queue gating promotion of prompt versions.

- every request opens a human-visible review task
- sensitive decision types, or changes mentioning a sensitive term,
  are forced to high priority with mandatory human review
- approve() records the approval and promotes the version in one
  transaction; if the promotion fails the request stays pending
- approval lifecycle: pending -> approved | rejected
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agent_intelligence.config import settings
from agent_intelligence.database import safe_commit
from agent_intelligence.errors import IntelligenceError, InvalidState, NotFound, StoreUnavailable, ValidationFailure
from agent_intelligence.models.approval import ApprovalRequest, PRIORITY_RANK, ReviewTask
from agent_intelligence.models.prompt_version import PromptVersion
from agent_intelligence.services.version_registry import FULL_ROLLOUT, VersionRegistry

logger = logging.getLogger(__name__)

REQUEST_TYPES = ("new_variant", "escalation_change", "experiment_approval", "major_optimization")

ESCALATION_RISK = "High: change affects escalation-sensitive decisions. Requires careful human review."


class ApprovalWorkflow:
    def __init__(
        self,
        db: Session,
        registry: VersionRegistry,
        sensitive_decision_types: Optional[Iterable[str]] = None,
        sensitive_terms: Optional[Iterable[str]] = None,
    ):
        self.db = db
        self.registry = registry
        self.sensitive_decision_types = {
            t.lower() for t in (sensitive_decision_types if sensitive_decision_types is not None
                                else settings.SENSITIVE_DECISION_TYPES)
        }
        self.sensitive_terms = [
            t.lower() for t in (sensitive_terms if sensitive_terms is not None else settings.SENSITIVE_TERMS)
        ]

    # ============================================================
    # SENSITIVITY
    # ============================================================

    def is_sensitive(self, decision_type: Optional[str], *texts: Optional[str]) -> bool:
        if decision_type and decision_type.lower() in self.sensitive_decision_types:
            return True
        haystack = " ".join(t for t in texts if t).lower()
        return any(term in haystack for term in self.sensitive_terms)

    def version_is_sensitive(self, version: PromptVersion, *extra_texts: Optional[str]) -> bool:
        return self.is_sensitive(
            version.decision_type,
            version.variant.replace("_", " ") if version.variant else None,
            version.prompt_template,
            version.system_instructions,
            version.notes,
            *extra_texts,
        )

    # ============================================================
    # SUBMIT
    # ============================================================

    def submit(
        self,
        version_id: int,
        change_summary: str,
        request_type: str = "new_variant",
        priority: str = "medium",
        impact_analysis: Optional[Dict[str, Any]] = None,
        risk_assessment: Optional[str] = None,
        requested_by: str = "system",
        experiment_id: Optional[int] = None,
        learning_insight_id: Optional[int] = None,
        commit: bool = True,
    ) -> ApprovalRequest:
        if request_type not in REQUEST_TYPES:
            raise ValidationFailure(f"request_type must be one of {REQUEST_TYPES}")
        if priority not in PRIORITY_RANK:
            raise ValidationFailure(f"priority must be one of {tuple(PRIORITY_RANK)}")
        if not change_summary or not change_summary.strip():
            raise ValidationFailure("change_summary must not be empty")

        version = self.registry.get_version(version_id)

        requires_human_review = False
        if self.version_is_sensitive(version, change_summary):
            requires_human_review = True
            # raise to at least high; an explicit critical stays critical
            if PRIORITY_RANK[priority] > PRIORITY_RANK["high"]:
                priority = "high"
            if request_type != "experiment_approval":
                request_type = "escalation_change"
            if not risk_assessment:
                risk_assessment = ESCALATION_RISK
            logger.warning(
                "Approval for version %s (%s/%s) escalated to mandatory human review",
                version.id, version.agent_name, version.decision_type,
            )

        request = ApprovalRequest(
            prompt_version_id=version.id,
            experiment_id=experiment_id,
            learning_insight_id=learning_insight_id,
            request_type=request_type,
            priority=priority,
            decision_type=version.decision_type,
            change_summary=change_summary,
            impact_analysis=impact_analysis or {},
            risk_assessment=risk_assessment,
            requires_human_review=requires_human_review,
            requested_by=requested_by or "system",
            status="pending",
        )

        try:
            self.db.add(request)
            self.db.flush()
            self._open_task(request)
            if commit:
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not submit approval request: {str(e)[:200]}") from e

        logger.info(
            "Submitted approval request %s for version %s (type=%s priority=%s)",
            request.id, version.id, request_type, priority,
        )
        return request

    # ============================================================
    # DECISIONS
    # ============================================================

    def approve(
        self,
        request_id: int,
        reviewer: str,
        notes: Optional[str] = None,
        rollout_percentage: int = FULL_ROLLOUT,
    ) -> ApprovalRequest:
        """
        Approve and promote at the given rollout.

        Calling again on an approved request with a higher rollout is the
        next step of a graduated rollout (e.g. 10 -> 50 -> 100).
        """
        if not reviewer:
            raise ValidationFailure("reviewer is required")

        request = self.get_request(request_id)
        version = request.prompt_version

        if request.status == "rejected":
            raise InvalidState(f"Approval request {request_id} was rejected")
        if request.status == "approved":
            if version.status != "active" or rollout_percentage <= (version.rollout_percentage or 0):
                raise InvalidState(
                    f"Approval request {request_id} is already approved at "
                    f"{version.rollout_percentage}% rollout"
                )

        with self.registry.serialized(version.agent_name, version.decision_type):
            try:
                request.status = "approved"
                request.reviewed_by = reviewer
                request.reviewed_at = datetime.utcnow()
                request.reviewer_notes = notes
                self.registry.promote(version.id, reviewer, rollout_percentage, commit=False)
                self._close_tasks(request)
                self.db.commit()
            except IntelligenceError:
                self.db.rollback()
                logger.error("Promotion failed for approval request %s; request left pending", request_id)
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Promotion failed for approval request %s; request left pending: %s", request_id, e)
                raise StoreUnavailable(f"Could not approve request {request_id}: {str(e)[:200]}") from e

        logger.info(
            "Approval request %s approved by %s at %s%% rollout", request_id, reviewer, rollout_percentage
        )
        return request

    def reject(self, request_id: int, reviewer: str, notes: Optional[str] = None) -> ApprovalRequest:
        if not reviewer:
            raise ValidationFailure("reviewer is required")

        request = self.get_request(request_id)
        if request.status != "pending":
            raise InvalidState(f"Approval request {request_id} is {request.status}, not pending")

        request.status = "rejected"
        request.reviewed_by = reviewer
        request.reviewed_at = datetime.utcnow()
        request.reviewer_notes = notes
        self._close_tasks(request)

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not reject request {request_id}: {str(e)[:200]}") from e

        logger.info("Approval request %s rejected by %s", request_id, reviewer)
        return request

    # ============================================================
    # QUEUE
    # ============================================================

    def get_request(self, request_id: int) -> ApprovalRequest:
        request = self.db.query(ApprovalRequest).filter(ApprovalRequest.id == request_id).first()
        if not request:
            raise NotFound(f"Approval request {request_id} not found")
        return request

    def list_requests(self, status: Optional[str] = None) -> List[ApprovalRequest]:
        query = self.db.query(ApprovalRequest)
        if status:
            query = query.filter(ApprovalRequest.status == status)
        requests = query.all()
        return sorted(requests, key=lambda r: (PRIORITY_RANK.get(r.priority, 99), r.created_at, r.id))

    def list_pending(self) -> List[ApprovalRequest]:
        """Every request still waiting on a human, most urgent first."""
        return self.list_requests(status="pending")

    def surface_pending(self) -> Dict[str, int]:
        """Make sure every pending request has an open review task."""
        pending = self.list_pending()
        notified = 0
        for request in pending:
            if any(t.status == "open" for t in request.tasks):
                continue
            self._open_task(request)
            notified += 1

        if notified:
            success, error = safe_commit(self.db, "surface pending approvals")
            if not success:
                raise StoreUnavailable(error)

        return {"pending": len(pending), "notified": notified}

    def _open_task(self, request: ApprovalRequest) -> ReviewTask:
        task = ReviewTask(
            approval_request_id=request.id,
            title=f"Agent Learning: {request.request_type.replace('_', ' ')} - {request.priority.upper()}",
            description=(
                f"{request.change_summary}\n\n"
                f"Risk: {request.risk_assessment or 'Unknown'}\n\n"
                f"Review the prompt change and approve or reject it in the approval queue."
            ),
            priority=request.priority,
            requires_escalation=bool(request.requires_human_review),
            status="open",
            deliverable_url=f"/agent-intelligence/approvals/{request.id}",
        )
        self.db.add(task)
        request.tasks.append(task)
        return task

    def _close_tasks(self, request: ApprovalRequest) -> None:
        for task in request.tasks:
            if task.status == "open":
                task.status = "closed"
