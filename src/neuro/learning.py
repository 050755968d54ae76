"""
Learning flow and reading mode.

A module is learned in two phases:
- download: walk every node once; each passed node becomes familiar
- install: walk every node through the EPIC steps
  (explain -> probe -> implement -> connect); finishing connect marks
  the node understood

Finishing the last node installs the module. Domains without nodes are
skipped everywhere. Reading mode is a free-navigation walk over the same
tree that changes no progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from loguru import logger

from src.neuro.models import (
    EPIC_SEQUENCE,
    EpicComponent,
    Module,
    ModuleStatus,
    Node,
    NodeStatus,
)
from src.neuro.progress import ProgressTracker

FAMILIAR_BONUS = 10.0
UNDERSTOOD_BONUS = 20.0


class LearningPhase(str, Enum):
    DOWNLOAD = "download"
    INSTALL = "install"


class LearningOutcome(str, Enum):
    CONTINUE = "continue"
    PHASE_CHANGED = "phase_changed"
    MODULE_COMPLETED = "module_completed"


@dataclass
class LearningProgress:
    """Cursor of an active learning session."""

    module_id: str
    domain_index: int
    node_index: int
    phase: LearningPhase
    epic_step: EpicComponent = EpicComponent.EXPLAIN
    completed_domains: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class LearningStep:
    outcome: LearningOutcome
    progress: LearningProgress | None


def first_nonempty_domain(module: Module, start: int = 0) -> int | None:
    for idx in range(start, len(module.domains)):
        if module.domains[idx].nodes:
            return idx
    return None


def last_nonempty_domain(module: Module, end: int) -> int | None:
    for idx in range(end, -1, -1):
        if module.domains[idx].nodes:
            return idx
    return None


def _find_node(module: Module, predicate) -> tuple[int, int] | None:
    for d_idx, n_idx, node in module.iter_nodes():
        if predicate(node):
            return d_idx, n_idx
    return None


def current_node(tracker: ProgressTracker, progress: LearningProgress) -> Node | None:
    module = tracker.get_module(progress.module_id)
    if module is None:
        return None
    try:
        return module.domains[progress.domain_index].nodes[progress.node_index]
    except IndexError:
        return None


# =============================================================================
# Session start
# =============================================================================


def start_learning(
    tracker: ProgressTracker,
    module_id: str,
) -> LearningProgress | None:
    """
    Start or resume learning a module, based on its lifecycle status.

    new / in_library -> nodes reset, download from the first node
    downloading      -> download from the first node still new
    downloaded / installing -> install from the first node not understood
    installed        -> nothing to start (None)
    """
    module = tracker.get_module(module_id)
    if module is None:
        logger.warning("Cannot start unknown module {}", module_id)
        return None
    status = module.status

    if status == ModuleStatus.INSTALLED:
        logger.info("Module {} is already installed; no session started", module_id)
        return None

    if status in (ModuleStatus.NEW, ModuleStatus.IN_LIBRARY):
        for d_idx, n_idx, _ in module.iter_nodes():
            tracker.update_node_status(
                module_id, d_idx, n_idx, NodeStatus.NEW, familiar=False, understood=False, score=0
            )
        start = first_nonempty_domain(module)
        if start is None:
            logger.info("Module {} has no learning nodes", module_id)
            tracker.set_module_status(module_id, ModuleStatus.DOWNLOADED)
            return None
        tracker.set_module_status(module_id, ModuleStatus.DOWNLOADING)
        return LearningProgress(module_id, start, 0, LearningPhase.DOWNLOAD)

    if status == ModuleStatus.DOWNLOADING:
        found = _find_node(module, lambda n: n.status == NodeStatus.NEW)
        if found is not None:
            return LearningProgress(module_id, found[0], found[1], LearningPhase.DOWNLOAD)
        tracker.set_module_status(module_id, ModuleStatus.DOWNLOADED)
        module = tracker.get_module(module_id)

    found = _find_node(module, lambda n: n.status != NodeStatus.UNDERSTOOD)
    if found is None:
        tracker.set_module_status(module_id, ModuleStatus.INSTALLED)
        logger.info("Module {} already completed", module_id)
        return None
    if module.status != ModuleStatus.INSTALLING:
        tracker.set_module_status(module_id, ModuleStatus.INSTALLING)
    return LearningProgress(module_id, found[0], found[1], LearningPhase.INSTALL)


# =============================================================================
# Node marks
# =============================================================================


def mark_familiar(
    tracker: ProgressTracker, progress: LearningProgress, now: datetime
) -> Node | None:
    """Passed recall: node familiar, strength +10."""
    node = current_node(tracker, progress)
    if node is None:
        return None
    return tracker.update_node_status(
        progress.module_id,
        progress.domain_index,
        progress.node_index,
        NodeStatus.FAMILIAR,
        familiar=True,
        understood=node.understood,
        timestamp=now,
        score=(node.memory_strength or 0) + FAMILIAR_BONUS,
    )


def mark_understood(
    tracker: ProgressTracker, progress: LearningProgress, now: datetime
) -> Node | None:
    """Finished EPIC cycle: node understood, strength +20."""
    node = current_node(tracker, progress)
    if node is None:
        return None
    return tracker.update_node_status(
        progress.module_id,
        progress.domain_index,
        progress.node_index,
        NodeStatus.UNDERSTOOD,
        familiar=True,
        understood=True,
        timestamp=now,
        score=(node.memory_strength or 0) + UNDERSTOOD_BONUS,
    )


# =============================================================================
# Advancing
# =============================================================================


def _next_position(module: Module, domain_index: int, node_index: int) -> tuple[int, int] | None:
    if node_index + 1 < len(module.domains[domain_index].nodes):
        return domain_index, node_index + 1
    next_domain = first_nonempty_domain(module, domain_index + 1)
    if next_domain is None:
        return None
    return next_domain, 0


def advance_learning(
    tracker: ProgressTracker,
    progress: LearningProgress,
    now: datetime,
) -> LearningStep:
    """
    Proceed after a successful step.

    Download: the node is marked familiar if needed, then the cursor moves
    on; after the last node the module is downloaded and install starts.
    Install: the next EPIC step, or after connect the node is understood
    and the next node starts; after the last node the module is installed.
    """
    module = tracker.get_module(progress.module_id)
    node = current_node(tracker, progress)
    if module is None or node is None:
        logger.warning("Learning cursor points at nothing: {}", progress)
        return LearningStep(LearningOutcome.CONTINUE, None)

    if progress.phase == LearningPhase.DOWNLOAD:
        if not node.familiar:
            mark_familiar(tracker, progress, now)
        nxt = _next_position(module, progress.domain_index, progress.node_index)
        if nxt is not None:
            if nxt[0] != progress.domain_index:
                progress.completed_domains.append(module.domains[progress.domain_index].id)
            return LearningStep(
                LearningOutcome.CONTINUE,
                replace(progress, domain_index=nxt[0], node_index=nxt[1]),
            )

        progress.completed_domains.append(module.domains[progress.domain_index].id)
        start = first_nonempty_domain(module)
        tracker.set_module_status(module.id, ModuleStatus.DOWNLOADED)
        tracker.set_module_status(module.id, ModuleStatus.INSTALLING)
        logger.info("Download phase of {} complete; entering install", module.id)
        return LearningStep(
            LearningOutcome.PHASE_CHANGED,
            replace(
                progress,
                domain_index=start,
                node_index=0,
                phase=LearningPhase.INSTALL,
                epic_step=EpicComponent.EXPLAIN,
                completed_domains=[],
            ),
        )

    step_index = EPIC_SEQUENCE.index(progress.epic_step)
    if step_index < len(EPIC_SEQUENCE) - 1:
        return LearningStep(
            LearningOutcome.CONTINUE,
            replace(progress, epic_step=EPIC_SEQUENCE[step_index + 1]),
        )

    mark_understood(tracker, progress, now)
    nxt = _next_position(module, progress.domain_index, progress.node_index)
    if nxt is None:
        tracker.set_module_status(module.id, ModuleStatus.INSTALLED, now=now)
        logger.info("Module {} installation complete", module.id)
        return LearningStep(LearningOutcome.MODULE_COMPLETED, None)
    return LearningStep(
        LearningOutcome.CONTINUE,
        replace(
            progress,
            domain_index=nxt[0],
            node_index=nxt[1],
            epic_step=EpicComponent.EXPLAIN,
        ),
    )


def reset_status(status: ModuleStatus) -> ModuleStatus | None:
    """Status a module falls back to when its session is abandoned."""
    if status == ModuleStatus.DOWNLOADING:
        return ModuleStatus.IN_LIBRARY
    if status == ModuleStatus.INSTALLING:
        return ModuleStatus.DOWNLOADED
    return None


# =============================================================================
# Reading mode
# =============================================================================


class ReadingDirection(str, Enum):
    NEXT_NODE = "next_node"
    PREV_NODE = "prev_node"
    NEXT_DOMAIN = "next_domain"
    PREV_DOMAIN = "prev_domain"
    DOMAIN_START = "domain_start"


JUMP_PREFIX = "jump_to_node:"


@dataclass(frozen=True)
class ReadingSession:
    module_id: str
    domain_index: int
    node_index: int

    @classmethod
    def start(cls, module: Module) -> ReadingSession | None:
        """Open at the first node, or None when the module has none."""
        first = first_nonempty_domain(module)
        if first is None:
            return None
        return cls(module.id, first, 0)

    def navigate(self, module: Module, direction: str) -> ReadingSession:
        """
        Move through the module; moves that would leave it are ignored.

        ``direction`` is a ReadingDirection value or ``jump_to_node:<n>``
        for a node inside the current domain.
        """
        d_idx, n_idx = self.domain_index, self.node_index
        nodes = module.domains[d_idx].nodes if d_idx < len(module.domains) else ()

        if direction.startswith(JUMP_PREFIX):
            try:
                target = int(direction[len(JUMP_PREFIX) :])
            except ValueError:
                logger.debug("Invalid reading jump {!r}", direction)
                return self
            if 0 <= target < len(nodes):
                n_idx = target
            return replace(self, node_index=n_idx)

        try:
            move = ReadingDirection(direction)
        except ValueError:
            logger.debug("Unknown reading direction {!r}", direction)
            return self

        if move == ReadingDirection.NEXT_NODE:
            if n_idx + 1 < len(nodes):
                n_idx += 1
            else:
                nxt = first_nonempty_domain(module, d_idx + 1)
                if nxt is not None:
                    d_idx, n_idx = nxt, 0
        elif move == ReadingDirection.PREV_NODE:
            if n_idx > 0:
                n_idx -= 1
            elif d_idx > 0:
                prev = last_nonempty_domain(module, d_idx - 1)
                if prev is not None:
                    d_idx, n_idx = prev, len(module.domains[prev].nodes) - 1
        elif move == ReadingDirection.NEXT_DOMAIN:
            nxt = first_nonempty_domain(module, d_idx + 1)
            if nxt is not None:
                d_idx, n_idx = nxt, 0
        elif move == ReadingDirection.PREV_DOMAIN:
            if d_idx > 0:
                prev = last_nonempty_domain(module, d_idx - 1)
                if prev is not None:
                    d_idx, n_idx = prev, 0
        elif move == ReadingDirection.DOMAIN_START:
            n_idx = 0

        return replace(self, domain_index=d_idx, node_index=n_idx)
