"""
Spaced-Repetition Scheduler with tiered memory decay.

Implements:
- Tiered decay of memory strength since the last review
- Tiered review intervals and due-date classification
- Priority scoring for review ordering
- Weighted EPIC component selection behind a seedable random source

Every function takes an explicit ``now`` and is otherwise pure. Review
candidates are derived on demand from a progress snapshot; nothing here
is cached or stored.

Decay / interval tiers (by memory strength):
    <20    5.0 pts/day    1h
    20-39  2.0 pts/day   24h
    40-59  1.0 pts/day   48h
    60-74  0.5 pts/day   96h
    75-89  0.2 pts/day  168h
    >=90   0.1 pts/day  336h
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from loguru import logger

from src.neuro.models import (
    EpicComponent,
    ModuleStatus,
    Node,
    NodeStatus,
    ReviewCandidate,
    clamp_strength,
)
from src.neuro.progress import EPOCH, ProgressSnapshot

NEEDS_REVIEW_BONUS = 200.0
MAX_OVERDUE_HOURS = 200.0

# Cumulative thresholds for the weighted draw, checked in order
EPIC_WEIGHTS: tuple[tuple[EpicComponent, float], ...] = (
    (EpicComponent.PROBE, 0.4),
    (EpicComponent.EXPLAIN, 0.3),
    (EpicComponent.IMPLEMENT, 0.2),
    (EpicComponent.CONNECT, 0.1),
)


# =============================================================================
# Decay + intervals
# =============================================================================


def _stored_strength(node: Node) -> float:
    return clamp_strength(node.memory_strength) or 0.0


def decay_rate(strength: float) -> float:
    """Points of memory strength lost per day at the given strength."""
    if strength < 20:
        return 5.0
    if strength < 40:
        return 2.0
    if strength < 60:
        return 1.0
    if strength < 75:
        return 0.5
    if strength < 90:
        return 0.2
    return 0.1


def memory_decay(node: Node, now: datetime) -> float:
    """Strength lost since the last review; 0 for never-reviewed nodes."""
    if node.last_reviewed is None:
        return 0.0
    strength = _stored_strength(node)
    hours_since = (now - node.last_reviewed).total_seconds() / 3600
    decay_amount = min(strength, decay_rate(strength) * hours_since / 24)
    return max(0.0, decay_amount)


def effective_strength(node: Node, now: datetime) -> float:
    return max(0.0, _stored_strength(node) - memory_decay(node, now))


def review_interval_hours(strength: float) -> int:
    if strength < 20:
        return 1
    if strength < 40:
        return 24
    if strength < 60:
        return 48
    if strength < 75:
        return 96
    if strength < 90:
        return 168
    return 336


def due_date(node: Node) -> datetime:
    """
    Next review time, from the stored (not decayed) strength.

    Never-reviewed nodes use the Unix epoch as base and are therefore
    always due.
    """
    base = node.last_reviewed or EPOCH
    return base + timedelta(hours=review_interval_hours(_stored_strength(node)))


def hours_overdue(due: datetime, now: datetime) -> float:
    if due > now:
        return 0.0
    return max(0.0, (now - due).total_seconds() / 3600)


def priority_score(node: Node, now: datetime) -> float:
    """Higher means review sooner."""
    score = NEEDS_REVIEW_BONUS if node.status == NodeStatus.NEEDS_REVIEW else 0.0
    score += min(hours_overdue(due_date(node), now), MAX_OVERDUE_HOURS)
    score += 100.0 - effective_strength(node, now)
    return score


def start_of_tomorrow(now: datetime) -> datetime:
    """Midnight after ``now``, in ``now``'s timezone."""
    return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class DueClassification:
    is_due: bool
    is_due_today: bool
    is_due_this_week: bool


def classify(due: datetime, now: datetime) -> DueClassification:
    return DueClassification(
        is_due=due <= now,
        is_due_today=due <= start_of_tomorrow(now),
        is_due_this_week=due <= now + timedelta(days=7),
    )


def is_eligible(node: Node) -> bool:
    """Only understood or needs-review nodes are ever scheduled."""
    return node.understood or node.status == NodeStatus.NEEDS_REVIEW


# =============================================================================
# EPIC selection
# =============================================================================


class EpicSelector:
    """
    Weighted EPIC component draw.

    Usage:
        selector = EpicSelector(random.Random(42))
        component = selector.choose()
    """

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def choose(self) -> EpicComponent:
        roll = self.rng.random()
        cumulative = 0.0
        for component, weight in EPIC_WEIGHTS:
            cumulative += weight
            if roll < cumulative:
                return component
        return EPIC_WEIGHTS[-1][0]


# =============================================================================
# Candidate derivation
# =============================================================================


class ReviewView(str, Enum):
    ALL = "all"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class ReviewFilter:
    """
    Dashboard filters applied during derivation.

    upcoming = due within the week, overdue = already due.
    """

    view: ReviewView = ReviewView.ALL
    module_id: str | None = None
    installed_only: bool = False


def build_candidate(
    node: Node,
    now: datetime,
    selector: EpicSelector,
) -> ReviewCandidate:
    due = due_date(node)
    flags = classify(due, now)
    return ReviewCandidate(
        node_id=node.id,
        module_id=node.module_id,
        domain_id=node.domain_id,
        title=node.title,
        status=node.status,
        understood=node.understood,
        current_memory_strength=effective_strength(node, now),
        last_reviewed=node.last_reviewed,
        due_date=due,
        is_due=flags.is_due,
        is_due_today=flags.is_due_today,
        is_due_this_week=flags.is_due_this_week,
        priority_score=priority_score(node, now),
        chosen_epic_component=selector.choose(),
    )


def derive_review_candidates(
    snapshot: ProgressSnapshot,
    now: datetime,
    filters: ReviewFilter | None = None,
    selector: EpicSelector | None = None,
) -> list[ReviewCandidate]:
    """
    Eligible nodes as review candidates, highest priority first.

    Sorting is stable, so equal scores keep content order.
    """
    filters = filters or ReviewFilter()
    selector = selector or EpicSelector()

    candidates: list[ReviewCandidate] = []
    for module, _, _, node in snapshot.iter_nodes():
        if filters.module_id is not None and module.id != filters.module_id:
            continue
        if filters.installed_only and module.status != ModuleStatus.INSTALLED:
            continue
        if not is_eligible(node):
            continue
        candidate = build_candidate(node, now, selector)
        if filters.view == ReviewView.UPCOMING and not candidate.is_due_this_week:
            continue
        if filters.view == ReviewView.OVERDUE and not candidate.is_due:
            continue
        candidates.append(candidate)

    candidates.sort(key=lambda c: c.priority_score, reverse=True)
    logger.debug("Derived {} review candidate(s) for view {}", len(candidates), filters.view.value)
    return candidates


@dataclass(frozen=True)
class ReviewSummary:
    total: int
    due_now: int
    due_today: int
    due_this_week: int


def summarize_candidates(candidates: list[ReviewCandidate]) -> ReviewSummary:
    """Dashboard counters."""
    return ReviewSummary(
        total=len(candidates),
        due_now=sum(1 for c in candidates if c.is_due),
        due_today=sum(1 for c in candidates if c.is_due_today),
        due_this_week=sum(1 for c in candidates if c.is_due_this_week),
    )
