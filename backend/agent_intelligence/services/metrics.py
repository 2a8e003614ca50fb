# backend/agent_intelligence/services/metrics.py
"""
Pure aggregation over decisions and their outcomes.

Shared by the experiment engine (per-arm success rates) and the insight
aggregator (performance metrics, daily snapshots). No database access here:
callers pass in Decision rows with their outcomes loaded.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

DEFAULT_SUCCESS_THRESHOLD = 70.0


def latest_outcome_value(decision) -> Optional[float]:
    """Most recent outcome carrying a value, or None if nothing was scored yet."""
    valued = [o for o in (decision.outcomes or []) if o.outcome_value is not None]
    if not valued:
        return None
    latest = max(valued, key=lambda o: (o.created_at, o.id or 0))
    return float(latest.outcome_value)


def confidence_bucket(score: Optional[float]) -> str:
    if score is None:
        return "unknown"
    if score >= 0.8:
        return "high"
    if score >= 0.5:
        return "medium"
    return "low"


def average_confidence(decisions: Iterable) -> Optional[float]:
    scores = [d.confidence_score for d in decisions if d.confidence_score is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def calculate_performance_metrics(
    decisions: List,
    success_threshold: float = DEFAULT_SUCCESS_THRESHOLD,
) -> Dict[str, Any]:
    """
    Summarize a list of decisions.

    A decision is evaluated when at least one of its outcomes has a value;
    it is a success when its most recent valued outcome is >= success_threshold.
    success_rate is a fraction of evaluated decisions (0.0 when none).
    """
    metrics: Dict[str, Any] = {
        "total_decisions": len(decisions),
        "decisions_with_outcomes": 0,
        "positive_outcomes": 0,
        "negative_outcomes": 0,
        "success_rate": 0.0,
        "avg_outcome_value": None,
        "by_decision_type": {},
        "by_confidence_score": {"high": 0, "medium": 0, "low": 0, "unknown": 0},
    }

    outcome_values: List[float] = []

    for decision in decisions:
        by_type = metrics["by_decision_type"].setdefault(
            decision.decision_type,
            {"count": 0, "evaluated": 0, "positive": 0, "negative": 0, "success_rate": 0.0},
        )
        by_type["count"] += 1

        bucket = confidence_bucket(decision.confidence_score)
        metrics["by_confidence_score"][bucket] += 1

        value = latest_outcome_value(decision)
        if value is None:
            continue

        outcome_values.append(value)
        metrics["decisions_with_outcomes"] += 1
        by_type["evaluated"] += 1

        if value >= success_threshold:
            metrics["positive_outcomes"] += 1
            by_type["positive"] += 1
        else:
            metrics["negative_outcomes"] += 1
            by_type["negative"] += 1

    for stats in metrics["by_decision_type"].values():
        if stats["evaluated"] > 0:
            stats["success_rate"] = stats["positive"] / stats["evaluated"]

    if outcome_values:
        metrics["avg_outcome_value"] = sum(outcome_values) / len(outcome_values)

    if metrics["decisions_with_outcomes"] > 0:
        metrics["success_rate"] = metrics["positive_outcomes"] / metrics["decisions_with_outcomes"]

    return metrics


@dataclass(frozen=True)
class SignificanceResult:
    significance: float
    z_score: float
    control_rate: float
    test_rate: float


def compute_significance(
    control_successes: int,
    control_evaluated: int,
    test_successes: int,
    test_evaluated: int,
) -> SignificanceResult:
    """
    Pooled two-proportion z-test with a simplified significance score.

    significance = 1 - exp(-z^2 / 2), a normal-approximation stand-in for a
    two-tailed p-value. An empty arm or a pooled proportion of exactly 0 or 1
    yields significance 0.
    """
    if control_evaluated <= 0 or test_evaluated <= 0:
        control_rate = control_successes / control_evaluated if control_evaluated > 0 else 0.0
        test_rate = test_successes / test_evaluated if test_evaluated > 0 else 0.0
        return SignificanceResult(0.0, 0.0, control_rate, test_rate)

    control_rate = control_successes / control_evaluated
    test_rate = test_successes / test_evaluated

    pooled = (control_successes + test_successes) / (control_evaluated + test_evaluated)
    variance = pooled * (1 - pooled) * (1 / control_evaluated + 1 / test_evaluated)
    if variance <= 0:
        return SignificanceResult(0.0, 0.0, control_rate, test_rate)

    standard_error = math.sqrt(variance)
    z_score = abs(test_rate - control_rate) / standard_error
    significance = 1 - math.exp(-0.5 * z_score * z_score)

    return SignificanceResult(significance, z_score, control_rate, test_rate)
