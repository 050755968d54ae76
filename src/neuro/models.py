"""
Domain model for the learning-session core.

Content is a three-level hierarchy: Module -> Domain -> Node. Node is the
atomic learning unit and carries the per-learner progress fields
(status, flags, memory strength, last review time) that the progress
tracker mutates and the scheduler reads.

Design:
- Status and kind values are closed ``str`` enums so transition tables can
  be exhaustive and values serialize as plain strings.
- Node/Domain/Module are frozen dataclasses. The tracker swaps whole
  values on write, so any snapshot handed out stays consistent.
- EvaluationResult and DiagnosticTest are mutable working records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Iterator

MIN_STRENGTH = 0.0
MAX_STRENGTH = 100.0


def clamp_strength(value: float | None) -> float | None:
    """Clamp a memory strength into [0, 100]; ``None`` stays ``None``."""
    if value is None:
        return None
    return max(MIN_STRENGTH, min(MAX_STRENGTH, float(value)))


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; aware ones pass through."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# =============================================================================
# Enums
# =============================================================================


class ModuleStatus(str, Enum):
    """Lifecycle of a module in the learner's library."""

    NEW = "new"
    IN_LIBRARY = "in_library"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    INSTALLING = "installing"
    INSTALLED = "installed"


class ModuleType(str, Enum):
    CORE = "core"
    PILLAR = "pillar"
    AUXILIARY = "auxiliary"
    CHALLENGE = "challenge"


class NodeStatus(str, Enum):
    """Learning status of a single node."""

    NEW = "new"
    FAMILIAR = "familiar"
    UNDERSTOOD = "understood"
    NEEDS_REVIEW = "needs_review"


class EpicComponent(str, Enum):
    """
    Review-prompt style: Explain, Probe, Implement, Connect.

    Also used as the step order of the install phase.
    """

    EXPLAIN = "explain"
    PROBE = "probe"
    IMPLEMENT = "implement"
    CONNECT = "connect"


EPIC_SEQUENCE: tuple[EpicComponent, ...] = (
    EpicComponent.EXPLAIN,
    EpicComponent.PROBE,
    EpicComponent.IMPLEMENT,
    EpicComponent.CONNECT,
)


class DiagnosticLevel(str, Enum):
    NODE = "node"
    DOMAIN = "domain"
    MODULE = "module"
    SYSTEM = "system"


class DiagnosticStatus(str, Enum):
    """Per-test status: pending -> running -> completed | error."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class InteractionState(str, Enum):
    """The controller's top-level mode."""

    INITIAL = "initial"
    LEARNING = "learning"
    CHRONICLE = "chronicle"
    ADMIN = "admin"
    REVIEWING = "reviewing"
    DIAGNOSING = "diagnosing"
    STATUS_VIEWING = "status_viewing"
    EXPLORE_INFINITE = "explore_infinite"
    READING = "reading"
    FINISHED = "finished"


# =============================================================================
# Content + progress values
# =============================================================================


@dataclass(frozen=True)
class NodeEpic:
    """Default prompts for each EPIC component."""

    explain_prompt: str = ""
    probe_prompt: str = ""
    implement_prompt: str = ""
    connect_prompt: str = ""
    probe_questions: tuple[str, ...] = ()

    def prompt_for(self, component: EpicComponent) -> str:
        return {
            EpicComponent.EXPLAIN: self.explain_prompt,
            EpicComponent.PROBE: self.probe_prompt,
            EpicComponent.IMPLEMENT: self.implement_prompt,
            EpicComponent.CONNECT: self.connect_prompt,
        }[component]


@dataclass(frozen=True)
class Node:
    """Atomic learning unit plus the learner's progress on it."""

    id: str
    module_id: str
    domain_id: str
    title: str
    status: NodeStatus = NodeStatus.NEW
    familiar: bool = False
    understood: bool = False
    memory_strength: float | None = None
    last_reviewed: datetime | None = None
    review_hint: str = ""
    short_definition: str = ""
    learning_objective: str = ""
    key_terms: tuple[str, ...] = ()
    epic: NodeEpic = field(default_factory=NodeEpic)

    def __post_init__(self) -> None:
        object.__setattr__(self, "memory_strength", clamp_strength(self.memory_strength))


@dataclass(frozen=True)
class Domain:
    id: str
    title: str
    nodes: tuple[Node, ...] = ()
    learning_goal: str = ""


@dataclass(frozen=True)
class Module:
    """A course of domains. Never deleted, only demoted to ``new``."""

    id: str
    title: str
    type: ModuleType = ModuleType.PILLAR
    status: ModuleStatus = ModuleStatus.NEW
    domains: tuple[Domain, ...] = ()
    description: str = ""

    @property
    def is_core(self) -> bool:
        return self.type == ModuleType.CORE

    def iter_nodes(self) -> Iterator[tuple[int, int, Node]]:
        """Yield ``(domain_index, node_index, node)`` in content order."""
        for d_idx, domain in enumerate(self.domains):
            for n_idx, node in enumerate(domain.nodes):
                yield d_idx, n_idx, node

    def first_node(self) -> Node | None:
        """First node of the first domain, or ``None`` when that domain is empty."""
        if not self.domains or not self.domains[0].nodes:
            return None
        return self.domains[0].nodes[0]


@dataclass(frozen=True)
class NodeLocation:
    """Index path to a node inside the module tree."""

    module_id: str
    domain_index: int
    node_index: int


# =============================================================================
# Evaluation + diagnostics
# =============================================================================


@dataclass
class EvaluationResult:
    """
    Outcome of an evaluation call.

    ``is_pass`` is authoritative; ``score`` is informational and may come
    back in any range. ``error`` is set only on synthetic failures the
    core produced itself (context missing, gateway unavailable).
    """

    score: float
    feedback: str
    is_pass: bool
    rubric: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def failure(cls, feedback: str, error: str | None = None) -> EvaluationResult:
        return cls(score=0.0, feedback=feedback, is_pass=False, error=error)


@dataclass
class DiagnosticTest:
    """One queued diagnostic item."""

    id: str
    name: str
    level: DiagnosticLevel
    target_id: str
    target_name: str
    status: DiagnosticStatus = DiagnosticStatus.PENDING
    prompt: str = ""
    user_input: str = ""
    result: EvaluationResult | None = None
    node_context: Node | None = None
    location: NodeLocation | None = None


# =============================================================================
# Scheduler output
# =============================================================================


@dataclass(frozen=True)
class ReviewCandidate:
    """Derived view of a node that is eligible for review. Never stored."""

    node_id: str
    module_id: str
    domain_id: str
    title: str
    status: NodeStatus
    understood: bool
    current_memory_strength: float
    last_reviewed: datetime | None
    due_date: datetime
    is_due: bool
    is_due_today: bool
    is_due_this_week: bool
    priority_score: float
    chosen_epic_component: EpicComponent
