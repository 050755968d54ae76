"""
Review sessions built from scheduler output.

Two kinds:
- standard: installed-module nodes that are flagged, weak or due,
  highest priority first
- manual: any node of an installed module, shuffled, with a uniformly
  random EPIC component

Submitting a review answer adjusts memory strength by a tiered delta and
writes it back through the progress tracker.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from loguru import logger

from src.neuro.models import (
    EPIC_SEQUENCE,
    EpicComponent,
    EvaluationResult,
    ModuleStatus,
    Node,
    NodeStatus,
    ReviewCandidate,
    clamp_strength,
)
from src.neuro.progress import ProgressSnapshot, ProgressTracker
from src.neuro.scheduler import EpicSelector, ReviewFilter, derive_review_candidates

DEFAULT_SESSION_SIZE = 10
WEAK_STRENGTH_THRESHOLD = 50.0
UNKNOWN_STRENGTH_BASELINE = 50.0


class ReviewKind(str, Enum):
    STANDARD = "standard"
    MANUAL = "manual"


@dataclass(frozen=True)
class ReviewItem:
    """One node scheduled inside a review session."""

    node_id: str
    module_id: str
    epic_component: EpicComponent
    priority_score: float = 0.0
    current_memory_strength: float | None = None
    last_reviewed: datetime | None = None

    @classmethod
    def from_candidate(cls, candidate: ReviewCandidate) -> ReviewItem:
        return cls(
            node_id=candidate.node_id,
            module_id=candidate.module_id,
            epic_component=candidate.chosen_epic_component,
            priority_score=candidate.priority_score,
            current_memory_strength=candidate.current_memory_strength,
            last_reviewed=candidate.last_reviewed,
        )


@dataclass
class ReviewSession:
    session_id: str
    kind: ReviewKind
    items: list[ReviewItem]
    started_at: datetime
    current_index: int = 0
    results: dict[str, EvaluationResult] = field(default_factory=dict)

    @property
    def current(self) -> ReviewItem | None:
        if 0 <= self.current_index < len(self.items):
            return self.items[self.current_index]
        return None

    @property
    def is_finished(self) -> bool:
        return self.current_index >= len(self.items)

    def advance(self) -> ReviewItem | None:
        """Move to the next item; returns None once the session is over."""
        if not self.is_finished:
            self.current_index += 1
        return self.current


def _session_id(kind: ReviewKind, now: datetime) -> str:
    prefix = "review" if kind == ReviewKind.STANDARD else "manual-review"
    return f"{prefix}-{int(now.timestamp() * 1000)}"


def build_standard_review(
    snapshot: ProgressSnapshot,
    now: datetime,
    selector: EpicSelector | None = None,
    limit: int = DEFAULT_SESSION_SIZE,
    weak_threshold: float = WEAK_STRENGTH_THRESHOLD,
) -> ReviewSession | None:
    """
    Highest-priority understood nodes of installed modules that are
    flagged needs_review, below ``weak_threshold`` or due.

    Returns None when nothing needs review.
    """
    candidates = derive_review_candidates(
        snapshot, now, ReviewFilter(installed_only=True), selector
    )
    picked = [
        c
        for c in candidates
        if c.understood
        and (
            c.status == NodeStatus.NEEDS_REVIEW
            or c.current_memory_strength < weak_threshold
            or c.is_due
        )
    ][:limit]
    if not picked:
        logger.info("No nodes currently need review")
        return None

    session = ReviewSession(
        session_id=_session_id(ReviewKind.STANDARD, now),
        kind=ReviewKind.STANDARD,
        items=[ReviewItem.from_candidate(c) for c in picked],
        started_at=now,
    )
    logger.info("Review session {} started with {} node(s)", session.session_id, len(picked))
    return session


def build_manual_review(
    snapshot: ProgressSnapshot,
    now: datetime,
    rng: random.Random | None = None,
    limit: int = DEFAULT_SESSION_SIZE,
) -> ReviewSession | None:
    """Shuffled sample of every node in installed modules."""
    rng = rng or random.Random()
    items = [
        ReviewItem(
            node_id=node.id,
            module_id=module.id,
            epic_component=rng.choice(EPIC_SEQUENCE),
            current_memory_strength=node.memory_strength,
            last_reviewed=node.last_reviewed,
        )
        for module, _, _, node in snapshot.iter_nodes()
        if module.status == ModuleStatus.INSTALLED
    ]
    if not items:
        logger.info("No installed nodes available for manual review")
        return None

    rng.shuffle(items)
    session = ReviewSession(
        session_id=_session_id(ReviewKind.MANUAL, now),
        kind=ReviewKind.MANUAL,
        items=items[:limit],
        started_at=now,
    )
    logger.info("Manual review {} started with {} node(s)", session.session_id, len(session.items))
    return session


def review_strength_delta(result: EvaluationResult) -> float:
    """
    Strength change for a review answer.

    pass: +30 at score >= 95, +25 at >= 90, else +20
    fail: -5 at score >= 60, -10 at >= 40, else -15
    """
    if result.is_pass:
        if result.score >= 95:
            return 30.0
        if result.score >= 90:
            return 25.0
        return 20.0
    if result.score >= 60:
        return -5.0
    if result.score >= 40:
        return -10.0
    return -15.0


def apply_review_result(
    tracker: ProgressTracker,
    item: ReviewItem,
    result: EvaluationResult,
    now: datetime,
) -> Node | None:
    """Write a review outcome back to the node through the tracker."""
    location = tracker.locate(item.node_id, item.module_id)
    node = tracker.node_at(location) if location else None
    if node is None:
        logger.warning("Review node {} no longer exists in {}", item.node_id, item.module_id)
        return None

    old_strength = node.memory_strength or UNKNOWN_STRENGTH_BASELINE
    new_strength = clamp_strength(old_strength + review_strength_delta(result))
    return tracker.update_node_status(
        location.module_id,
        location.domain_index,
        location.node_index,
        NodeStatus.UNDERSTOOD if result.is_pass else NodeStatus.NEEDS_REVIEW,
        familiar=True,
        understood=True if result.is_pass else node.understood,
        timestamp=now,
        score=new_strength,
    )
