# backend/agent_intelligence/services/version_registry.py
"""
Prompt/behavior version registry.

Every agent asks get_active_version() before a decision. Resolution:
1. A running experiment for (agent, decision type) routes the call
   through the traffic allocator.
2. Otherwise the active versions split traffic in proportion to their
   rollout_percentage.

promote() keeps at most one active version at 100% rollout per
(agent, decision type): archiving the others is a single conditional
UPDATE, serialized per pair by an advisory lock.
"""

from __future__ import annotations

import logging
import random
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agent_intelligence.database import safe_commit
from agent_intelligence.errors import InvalidState, NotFound, StoreUnavailable, ValidationFailure
from agent_intelligence.models.experiment import PromptExperiment
from agent_intelligence.models.prompt_version import PromptVersion, VERSION_STATUSES
from agent_intelligence.services.traffic import TEST_ARM, draw, weighted_choice

logger = logging.getLogger(__name__)

FULL_ROLLOUT = 100

_promotion_locks: Dict[Tuple[str, str], threading.RLock] = {}
_promotion_locks_guard = threading.Lock()


def _process_lock(agent_name: str, decision_type: str) -> threading.RLock:
    key = (agent_name, decision_type)
    with _promotion_locks_guard:
        if key not in _promotion_locks:
            _promotion_locks[key] = threading.RLock()
        return _promotion_locks[key]


def _check_rollout(rollout_percentage: int) -> None:
    if not isinstance(rollout_percentage, int) or not 0 <= rollout_percentage <= 100:
        raise ValidationFailure(f"rollout_percentage must be an integer in [0, 100], got {rollout_percentage}")


def as_agent_config(version: Optional[PromptVersion]) -> Optional[Dict[str, Any]]:
    """The shape agents consume before making a decision."""
    if version is None:
        return None
    return {
        "version_id": version.id,
        "version_label": version.version,
        "variant_label": version.variant,
        "prompt_template": version.prompt_template,
        "system_instructions": version.system_instructions,
        "parameters": version.parameters or {},
    }


class VersionRegistry:
    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    # ============================================================
    # CREATE / READ
    # ============================================================

    def create_version(
        self,
        agent_name: str,
        decision_type: str,
        version: str,
        prompt_template: str,
        variant: Optional[str] = None,
        system_instructions: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        status: str = "testing",
        rollout_percentage: int = 0,
        parent_version_id: Optional[int] = None,
        created_by: str = "system",
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> PromptVersion:
        if not agent_name or not decision_type or not version:
            raise ValidationFailure("agent_name, decision_type and version are required")
        if not prompt_template or not prompt_template.strip():
            raise ValidationFailure("prompt_template must not be empty")
        if status not in VERSION_STATUSES:
            raise ValidationFailure(f"status must be one of {VERSION_STATUSES}")
        _check_rollout(rollout_percentage)
        if parent_version_id is not None:
            self.get_version(parent_version_id)

        row = PromptVersion(
            agent_name=agent_name,
            decision_type=decision_type,
            version=version,
            variant=variant or "default",
            prompt_template=prompt_template,
            system_instructions=system_instructions,
            parameters=parameters or {},
            status=status,
            rollout_percentage=rollout_percentage,
            parent_version_id=parent_version_id,
            created_by=created_by or "system",
            notes=notes,
            extra_metadata=metadata or {},
        )

        try:
            with self.serialized(agent_name, decision_type):
                self.db.add(row)
                self.db.flush()
                if status == "active" and rollout_percentage == FULL_ROLLOUT:
                    self._archive_other_active(row)
                if commit:
                    self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ValidationFailure(
                f"Version {version}/{variant or 'default'} already exists for {agent_name}/{decision_type}"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Could not create version: {str(e)[:200]}") from e

        logger.info(
            "Created version %s (%s/%s) status=%s rollout=%s",
            row.id, agent_name, decision_type, status, rollout_percentage,
        )
        return row

    def get_version(self, version_id: int) -> PromptVersion:
        row = self.db.query(PromptVersion).filter(PromptVersion.id == version_id).first()
        if not row:
            raise NotFound(f"Version {version_id} not found")
        return row

    def list_versions(
        self,
        agent_name: Optional[str] = None,
        decision_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[PromptVersion]:
        query = self.db.query(PromptVersion)
        if agent_name:
            query = query.filter(PromptVersion.agent_name == agent_name)
        if decision_type:
            query = query.filter(PromptVersion.decision_type == decision_type)
        if status:
            query = query.filter(PromptVersion.status == status)
        return query.order_by(PromptVersion.created_at.desc(), PromptVersion.id.desc()).all()

    def active_versions(self, agent_name: str, decision_type: str) -> List[PromptVersion]:
        """Active versions, highest rollout first, newest first on ties."""
        return (
            self.db.query(PromptVersion)
            .filter(
                PromptVersion.agent_name == agent_name,
                PromptVersion.decision_type == decision_type,
                PromptVersion.status == "active",
            )
            .order_by(
                PromptVersion.rollout_percentage.desc(),
                PromptVersion.created_at.desc(),
                PromptVersion.id.desc(),
            )
            .all()
        )

    # ============================================================
    # RESOLUTION (hot read path)
    # ============================================================

    def get_active_version(self, agent_name: str, decision_type: str) -> Optional[PromptVersion]:
        """
        Version the agent should use for its next decision, or None when the
        agent should fall back to its built-in behavior.
        """
        experiment = (
            self.db.query(PromptExperiment)
            .filter(
                PromptExperiment.agent_name == agent_name,
                PromptExperiment.decision_type == decision_type,
                PromptExperiment.status == "running",
            )
            .order_by(PromptExperiment.start_date.desc())
            .first()
        )
        if experiment is not None:
            arm = draw(experiment.traffic_split, self.rng)
            return experiment.test_version if arm == TEST_ARM else experiment.control_version

        candidates = self.active_versions(agent_name, decision_type)
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]

        return weighted_choice(candidates, [v.rollout_percentage for v in candidates], self.rng)

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def promote(
        self,
        version_id: int,
        reviewer: str,
        rollout_percentage: int = FULL_ROLLOUT,
        commit: bool = True,
    ) -> PromptVersion:
        """
        Make a version active at the given rollout.

        With commit=False the caller owns the transaction and must hold
        serialized() for the pair until it commits.
        """
        _check_rollout(rollout_percentage)
        version = self.get_version(version_id)
        if version.status not in ("testing", "active"):
            raise InvalidState(f"Version {version_id} is {version.status} and cannot be promoted")

        with self.serialized(version.agent_name, version.decision_type):
            version.status = "active"
            version.rollout_percentage = rollout_percentage
            version.approved_by = reviewer
            version.approved_at = datetime.utcnow()

            if rollout_percentage == FULL_ROLLOUT:
                archived = self._archive_other_active(version)
                if archived:
                    logger.info(
                        "Archived %s previously active version(s) for %s/%s",
                        archived, version.agent_name, version.decision_type,
                    )

            if commit:
                try:
                    self.db.commit()
                except SQLAlchemyError as e:
                    self.db.rollback()
                    raise StoreUnavailable(f"Could not promote version {version_id}: {str(e)[:200]}") from e

        logger.info("Promoted version %s to active at %s%% by %s", version_id, rollout_percentage, reviewer)
        return version

    def retire_version(self, version_id: int, status: str = "archived") -> PromptVersion:
        if status not in ("archived", "rejected"):
            raise ValidationFailure("status must be archived or rejected")
        version = self.get_version(version_id)
        if version.status == "rejected" or (version.status == "archived" and status == "archived"):
            raise InvalidState(f"Version {version_id} is already {version.status}")

        version.status = status
        if status == "archived":
            version.rollout_percentage = 0
        success, error = safe_commit(self.db, f"retire version {version_id}")
        if not success:
            raise StoreUnavailable(error)
        return version

    # ============================================================
    # INTERNALS
    # ============================================================

    def _archive_other_active(self, version: PromptVersion) -> int:
        self.db.flush()
        return (
            self.db.query(PromptVersion)
            .filter(
                PromptVersion.agent_name == version.agent_name,
                PromptVersion.decision_type == version.decision_type,
                PromptVersion.status == "active",
                PromptVersion.id != version.id,
            )
            .update({PromptVersion.status: "archived"}, synchronize_session="fetch")
        )

    @contextmanager
    def serialized(self, agent_name: str, decision_type: str):
        """
        Serialize promotions for one (agent, decision type).

        PostgreSQL also takes a transaction-scoped advisory lock so that
        separate processes queue behind each other.
        """
        lock = _process_lock(agent_name, decision_type)
        with lock:
            if self.db.get_bind().dialect.name == "postgresql":
                self.db.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": f"prompt_versions:{agent_name}:{decision_type}"},
                )
            yield
