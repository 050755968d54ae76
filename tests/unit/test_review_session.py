"""
Unit tests for review sessions and review scoring.
"""

import random
from datetime import timedelta

import pytest

from src.neuro.models import (
    EPIC_SEQUENCE,
    EvaluationResult,
    ModuleStatus,
    NodeStatus,
)
from src.neuro.review import (
    ReviewItem,
    ReviewKind,
    apply_review_result,
    build_manual_review,
    build_standard_review,
    review_strength_delta,
)


def result(score, is_pass):
    return EvaluationResult(score=score, feedback="", is_pass=is_pass)


class TestStandardReview:
    """Tests for building standard review sessions."""

    def test_nothing_installed(self, tracker, now):
        assert build_standard_review(tracker.snapshot(), now) is None

    def test_fresh_installed_module_needs_no_review(self, tracker, now):
        tracker.set_module_status("aux-b", ModuleStatus.INSTALLED, now=now)

        assert build_standard_review(tracker.snapshot(), now) is None

    def test_flagged_nodes_are_picked(self, tracker, now):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLED, now=now)
        tracker.mark_installed_for_review()

        session = build_standard_review(tracker.snapshot(), now)

        assert session.kind == ReviewKind.STANDARD
        assert session.session_id == f"review-{int(now.timestamp() * 1000)}"
        assert {item.node_id for item in session.items} == {"a-n1", "a-n2", "a-n3"}
        assert all(item.module_id == "pillar-a" for item in session.items)
        assert session.started_at == now

    def test_weak_nodes_are_picked(self, tracker, now):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLED, now=now)
        tracker.update_node_status("pillar-a", 2, 0, NodeStatus.UNDERSTOOD, timestamp=now, score=30)

        session = build_standard_review(tracker.snapshot(), now, weak_threshold=50)

        assert [item.node_id for item in session.items] == ["a-n3"]

    def test_due_nodes_are_picked(self, tracker, now):
        tracker.set_module_status("aux-b", ModuleStatus.INSTALLED, now=now - timedelta(days=30))

        session = build_standard_review(tracker.snapshot(), now)

        assert [item.node_id for item in session.items] == ["b-n1"]

    def test_not_understood_nodes_are_skipped(self, tracker, now):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLED, now=now)
        tracker.update_node_status("pillar-a", 0, 0, NodeStatus.NEEDS_REVIEW, understood=False, timestamp=now)

        session = build_standard_review(tracker.snapshot(), now)

        assert session is None

    def test_limit_keeps_highest_priority(self, tracker, now):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLED, now=now)
        tracker.mark_installed_for_review()
        tracker.update_node_status("pillar-a", 2, 0, NodeStatus.NEEDS_REVIEW, timestamp=now, score=5)

        session = build_standard_review(tracker.snapshot(), now, limit=2)

        assert len(session.items) == 2
        priorities = [item.priority_score for item in session.items]
        assert priorities == sorted(priorities, reverse=True)


class TestManualReview:
    """Tests for shuffled manual review."""

    def test_only_installed_modules(self, tracker, now, rng):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLED, now=now)

        session = build_manual_review(tracker.snapshot(), now, rng=rng)

        assert session.kind == ReviewKind.MANUAL
        assert session.session_id.startswith("manual-review-")
        assert sorted(item.node_id for item in session.items) == ["a-n1", "a-n2", "a-n3"]
        assert all(item.epic_component in EPIC_SEQUENCE for item in session.items)

    def test_nothing_installed(self, tracker, now, rng):
        assert build_manual_review(tracker.snapshot(), now, rng=rng) is None

    def test_same_seed_same_order(self, tracker, now):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLED, now=now)
        tracker.set_module_status("neuro-core", ModuleStatus.INSTALLED, now=now)
        snapshot = tracker.snapshot()

        first = build_manual_review(snapshot, now, rng=random.Random(3))
        second = build_manual_review(snapshot, now, rng=random.Random(3))

        assert first.items == second.items

    def test_limit(self, tracker, now, rng):
        for module_id in ("pillar-a", "neuro-core", "aux-b"):
            tracker.set_module_status(module_id, ModuleStatus.INSTALLED, now=now)

        session = build_manual_review(tracker.snapshot(), now, rng=rng, limit=4)

        assert len(session.items) == 4


class TestSessionCursor:
    """Tests for walking a review session."""

    def test_advance_until_finished(self, tracker, now):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLED, now=now)
        tracker.mark_installed_for_review()
        session = build_standard_review(tracker.snapshot(), now)

        seen = [session.current.node_id]
        while session.advance() is not None:
            seen.append(session.current.node_id)

        assert len(seen) == 3
        assert session.is_finished is True
        assert session.current is None
        assert session.advance() is None


class TestReviewScoring:
    """Tests for strength deltas and write-back."""

    @pytest.mark.parametrize(
        "score,is_pass,delta",
        [
            (100, True, 30),
            (95, True, 30),
            (92, True, 25),
            (90, True, 25),
            (75, True, 20),
            (65, False, -5),
            (60, False, -5),
            (45, False, -10),
            (40, False, -10),
            (10, False, -15),
        ],
    )
    def test_delta_tiers(self, score, is_pass, delta):
        assert review_strength_delta(result(score, is_pass)) == delta

    def test_pass_marks_understood(self, tracker, now):
        tracker.update_node_status("pillar-a", 0, 0, NodeStatus.NEEDS_REVIEW, understood=True, score=50)
        item = ReviewItem(node_id="a-n1", module_id="pillar-a", epic_component=EPIC_SEQUENCE[0])

        node = apply_review_result(tracker, item, result(96, True), now)

        assert node.status == NodeStatus.UNDERSTOOD
        assert node.memory_strength == 80
        assert (node.familiar, node.understood) == (True, True)
        assert node.last_reviewed == now

    def test_fail_flags_for_review_and_keeps_understood(self, tracker, now):
        item = ReviewItem(node_id="b-n1", module_id="aux-b", epic_component=EPIC_SEQUENCE[1])

        node = apply_review_result(tracker, item, result(20, False), now)

        # unknown strength starts from 50
        assert node.memory_strength == 35
        assert node.status == NodeStatus.NEEDS_REVIEW
        assert node.understood is False
        assert node.familiar is True

    def test_strength_stays_in_range(self, tracker, now):
        tracker.update_node_status("aux-b", 0, 0, NodeStatus.UNDERSTOOD, understood=True, score=95)
        item = ReviewItem(node_id="b-n1", module_id="aux-b", epic_component=EPIC_SEQUENCE[2])

        high = apply_review_result(tracker, item, result(99, True), now)
        tracker.update_node_status("aux-b", 0, 0, NodeStatus.UNDERSTOOD, score=3)
        low = apply_review_result(tracker, item, result(0, False), now)

        assert high.memory_strength == 100
        assert low.memory_strength == 0

    def test_missing_node(self, tracker, now):
        item = ReviewItem(node_id="gone", module_id="pillar-a", epic_component=EPIC_SEQUENCE[0])

        assert apply_review_result(tracker, item, result(90, True), now) is None
