# backend/agent_intelligence/services/traffic.py
"""
Traffic allocation between experiment arms and between partially
rolled-out versions.

Allocation is memoryless: every call makes a fresh draw, so one user's
repeated decisions can land in different arms. That is accepted; there
is no session stickiness. Pass a seeded random.Random for reproducible
draws in tests.
"""

from __future__ import annotations

import random
from typing import Optional, Sequence, TypeVar

T = TypeVar("T")

TEST_ARM = "test"
CONTROL_ARM = "control"


def draw(traffic_split: float, rng: Optional[random.Random] = None) -> str:
    """Route to the test arm with probability traffic_split/100."""
    source = rng or random
    if source.random() * 100 < traffic_split:
        return TEST_ARM
    return CONTROL_ARM


def weighted_choice(items: Sequence[T], weights: Sequence[float], rng: Optional[random.Random] = None) -> T:
    """
    Pick one item with probability proportional to its weight.

    Items are expected in a stable order; with no positive weight the
    first item wins.
    """
    if not items:
        raise ValueError("weighted_choice needs at least one item")

    positive = [w if w > 0 else 0 for w in weights]
    if sum(positive) <= 0:
        return items[0]

    return (rng or random).choices(items, weights=positive, k=1)[0]
