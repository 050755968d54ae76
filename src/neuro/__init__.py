"""
Neuro learning-session core.

Modules:
- models: content/progress dataclasses and status enums
- content: validated, read-only module catalog
- progress: progress tracker (single mutation point)
- scheduler: memory decay, due dates, priority, EPIC selection
- review: standard and manual review sessions
- diagnostics: diagnostic test queue
- interaction: top-level interaction state machine
- learning: download/install flow and reading mode
- session_manager: per-learner session controller
- session_store: JSON progress persistence
"""
from .content import ContentCatalog, ContentError
from .diagnostics import DiagnosticQueue
from .interaction import InteractionEvent, InteractionStateMachine, transition
from .models import (
    DiagnosticLevel,
    DiagnosticStatus,
    EpicComponent,
    EvaluationResult,
    InteractionState,
    ModuleStatus,
    ModuleType,
    NodeStatus,
)
from .progress import ProgressTracker
from .scheduler import EpicSelector, ReviewFilter, derive_review_candidates
from .session_store import ProgressStore

__all__ = [
    "ContentCatalog",
    "ContentError",
    "DiagnosticLevel",
    "DiagnosticQueue",
    "DiagnosticStatus",
    "EpicComponent",
    "EpicSelector",
    "EvaluationResult",
    "InteractionEvent",
    "InteractionState",
    "InteractionStateMachine",
    "ModuleStatus",
    "ModuleType",
    "NodeStatus",
    "ProgressStore",
    "ProgressTracker",
    "ReviewFilter",
    "derive_review_candidates",
    "transition",
]
