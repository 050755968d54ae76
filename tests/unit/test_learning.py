"""
Unit tests for the download/install learning flow and reading mode.
"""

from src.neuro.content import ContentCatalog
from src.neuro.learning import (
    LearningOutcome,
    LearningPhase,
    ReadingSession,
    advance_learning,
    current_node,
    reset_status,
    start_learning,
)
from src.neuro.models import EpicComponent, ModuleStatus, NodeStatus
from src.neuro.progress import ProgressTracker


def empty_tracker():
    catalog = ContentCatalog.from_dict(
        [{"id": "hollow", "title": "Hollow", "domains": [{"id": "h-d1", "title": "Nothing", "nodes": []}]}]
    )
    return ProgressTracker(catalog)


class TestStartLearning:
    """Tests for choosing where a session starts."""

    def test_new_module_starts_download(self, tracker):
        tracker.update_node_status("pillar-a", 0, 0, NodeStatus.FAMILIAR, familiar=True, score=40)

        progress = start_learning(tracker, "pillar-a")

        assert progress.phase == LearningPhase.DOWNLOAD
        assert (progress.domain_index, progress.node_index) == (0, 0)
        assert tracker.get_module("pillar-a").status == ModuleStatus.DOWNLOADING
        node = tracker.get_node("pillar-a", "a-d1", "a-n1")
        assert node.status == NodeStatus.NEW
        assert node.familiar is False
        assert node.memory_strength == 0

    def test_resume_download_at_first_new_node(self, tracker, now):
        progress = start_learning(tracker, "pillar-a")
        advance_learning(tracker, progress, now)

        resumed = start_learning(tracker, "pillar-a")

        assert resumed.phase == LearningPhase.DOWNLOAD
        assert (resumed.domain_index, resumed.node_index) == (0, 1)

    def test_downloading_with_nothing_new_moves_to_install(self, tracker):
        tracker.set_module_status("aux-b", ModuleStatus.DOWNLOADED)
        tracker.set_module_status("aux-b", ModuleStatus.DOWNLOADING)

        progress = start_learning(tracker, "aux-b")

        assert progress.phase == LearningPhase.INSTALL
        assert tracker.get_module("aux-b").status == ModuleStatus.INSTALLING

    def test_downloaded_module_starts_install(self, tracker):
        tracker.set_module_status("pillar-a", ModuleStatus.DOWNLOADED)

        progress = start_learning(tracker, "pillar-a")

        assert progress.phase == LearningPhase.INSTALL
        assert progress.epic_step == EpicComponent.EXPLAIN
        assert tracker.get_module("pillar-a").status == ModuleStatus.INSTALLING

    def test_install_resumes_at_first_not_understood(self, tracker):
        tracker.set_module_status("pillar-a", ModuleStatus.INSTALLING)
        tracker.update_node_status("pillar-a", 0, 0, NodeStatus.UNDERSTOOD, understood=True)
        tracker.update_node_status("pillar-a", 0, 1, NodeStatus.UNDERSTOOD, understood=True)

        progress = start_learning(tracker, "pillar-a")

        assert (progress.domain_index, progress.node_index) == (2, 0)

    def test_installing_with_everything_understood_completes(self, tracker):
        tracker.set_module_status("aux-b", ModuleStatus.INSTALLING)
        tracker.update_node_status("aux-b", 0, 0, NodeStatus.UNDERSTOOD, understood=True)

        assert start_learning(tracker, "aux-b") is None
        assert tracker.get_module("aux-b").status == ModuleStatus.INSTALLED

    def test_installed_and_unknown_modules(self, tracker, now):
        tracker.set_module_status("aux-b", ModuleStatus.INSTALLED, now=now)

        assert start_learning(tracker, "aux-b") is None
        assert start_learning(tracker, "missing") is None

    def test_module_without_nodes(self):
        tracker = empty_tracker()

        assert start_learning(tracker, "hollow") is None
        assert tracker.get_module("hollow").status == ModuleStatus.DOWNLOADED


class TestAdvanceLearning:
    """Tests for walking a module end to end."""

    def test_download_phase_skips_empty_domain(self, tracker, now):
        progress = start_learning(tracker, "pillar-a")

        step = advance_learning(tracker, progress, now)
        assert step.outcome == LearningOutcome.CONTINUE
        assert (step.progress.domain_index, step.progress.node_index) == (0, 1)

        step = advance_learning(tracker, step.progress, now)
        assert (step.progress.domain_index, step.progress.node_index) == (2, 0)
        assert step.progress.completed_domains == ["a-d1"]

    def test_download_marks_familiar_with_bonus(self, tracker, now):
        progress = start_learning(tracker, "pillar-a")

        advance_learning(tracker, progress, now)

        node = tracker.get_node("pillar-a", "a-d1", "a-n1")
        assert node.status == NodeStatus.FAMILIAR
        assert node.familiar is True
        assert node.memory_strength == 10
        assert node.last_reviewed == now

    def test_end_of_download_switches_to_install(self, tracker, now):
        progress = start_learning(tracker, "pillar-a")
        for _ in range(2):
            progress = advance_learning(tracker, progress, now).progress

        step = advance_learning(tracker, progress, now)

        assert step.outcome == LearningOutcome.PHASE_CHANGED
        assert step.progress.phase == LearningPhase.INSTALL
        assert (step.progress.domain_index, step.progress.node_index) == (0, 0)
        assert step.progress.epic_step == EpicComponent.EXPLAIN
        assert tracker.get_module("pillar-a").status == ModuleStatus.INSTALLING

    def test_install_walks_epic_steps(self, tracker, now):
        tracker.set_module_status("aux-b", ModuleStatus.DOWNLOADED)
        progress = start_learning(tracker, "aux-b")

        steps = [progress.epic_step]
        for _ in range(3):
            progress = advance_learning(tracker, progress, now).progress
            steps.append(progress.epic_step)

        assert steps == [
            EpicComponent.EXPLAIN,
            EpicComponent.PROBE,
            EpicComponent.IMPLEMENT,
            EpicComponent.CONNECT,
        ]
        assert tracker.get_node("aux-b", "b-d1", "b-n1").understood is False

    def test_full_module_completes(self, tracker, now):
        progress = start_learning(tracker, "pillar-a")
        outcomes = []
        while progress is not None:
            step = advance_learning(tracker, progress, now)
            outcomes.append(step.outcome)
            progress = step.progress

        # 3 download steps, then 4 EPIC steps for each of 3 nodes
        assert len(outcomes) == 3 + 12
        assert outcomes.count(LearningOutcome.PHASE_CHANGED) == 1
        assert outcomes[-1] == LearningOutcome.MODULE_COMPLETED
        module = tracker.get_module("pillar-a")
        assert module.status == ModuleStatus.INSTALLED
        assert all(n.understood for _, _, n in module.iter_nodes())

    def test_connect_step_marks_understood(self, tracker, now):
        tracker.set_module_status("pillar-a", ModuleStatus.DOWNLOADED)
        progress = start_learning(tracker, "pillar-a")
        for _ in range(4):
            progress = advance_learning(tracker, progress, now).progress

        node = tracker.get_node("pillar-a", "a-d1", "a-n1")
        assert node.status == NodeStatus.UNDERSTOOD
        assert node.memory_strength == 20
        assert (progress.domain_index, progress.node_index) == (0, 1)
        assert progress.epic_step == EpicComponent.EXPLAIN

    def test_current_node(self, tracker):
        progress = start_learning(tracker, "pillar-a")

        assert current_node(tracker, progress).id == "a-n1"


class TestResetStatus:
    def test_fallbacks(self):
        assert reset_status(ModuleStatus.DOWNLOADING) == ModuleStatus.IN_LIBRARY
        assert reset_status(ModuleStatus.INSTALLING) == ModuleStatus.DOWNLOADED
        assert reset_status(ModuleStatus.INSTALLED) is None


class TestReadingSession:
    """Tests for free navigation in reading mode."""

    def test_start_and_empty_module(self, tracker):
        session = ReadingSession.start(tracker.get_module("pillar-a"))

        assert (session.domain_index, session.node_index) == (0, 0)
        assert ReadingSession.start(empty_tracker().get_module("hollow")) is None

    def test_next_node_crosses_empty_domain(self, tracker):
        module = tracker.get_module("pillar-a")
        session = ReadingSession.start(module)

        session = session.navigate(module, "next_node")
        assert (session.domain_index, session.node_index) == (0, 1)
        session = session.navigate(module, "next_node")
        assert (session.domain_index, session.node_index) == (2, 0)
        assert session.navigate(module, "next_node") == session

    def test_prev_node_crosses_back(self, tracker):
        module = tracker.get_module("pillar-a")
        session = ReadingSession("pillar-a", 2, 0)

        session = session.navigate(module, "prev_node")

        assert (session.domain_index, session.node_index) == (0, 1)
        start = ReadingSession("pillar-a", 0, 0)
        assert start.navigate(module, "prev_node") == start

    def test_domain_moves(self, tracker):
        module = tracker.get_module("pillar-a")

        forward = ReadingSession("pillar-a", 0, 1).navigate(module, "next_domain")
        back = ReadingSession("pillar-a", 2, 0).navigate(module, "prev_domain")
        restart = ReadingSession("pillar-a", 0, 1).navigate(module, "domain_start")

        assert (forward.domain_index, forward.node_index) == (2, 0)
        assert (back.domain_index, back.node_index) == (0, 0)
        assert (restart.domain_index, restart.node_index) == (0, 0)

    def test_jump_within_domain(self, tracker):
        module = tracker.get_module("pillar-a")
        session = ReadingSession("pillar-a", 0, 0)

        assert session.navigate(module, "jump_to_node:1").node_index == 1
        assert session.navigate(module, "jump_to_node:7") == session
        assert session.navigate(module, "jump_to_node:x") == session

    def test_unknown_direction(self, tracker):
        module = tracker.get_module("pillar-a")
        session = ReadingSession("pillar-a", 0, 0)

        assert session.navigate(module, "sideways") == session

    def test_reading_changes_no_progress(self, tracker):
        module = tracker.get_module("pillar-a")
        before = tracker.snapshot()

        session = ReadingSession.start(module)
        for direction in ("next_node", "next_node", "prev_domain", "jump_to_node:1"):
            session = session.navigate(module, direction)

        assert tracker.snapshot().modules == before.modules
