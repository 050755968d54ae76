"""
Session Manager - explicit owner of one learner's session.

Wires the progress tracker, interaction state machine, scheduler, review
sessions, learning flow, reading mode, chronicle loading and the
diagnostic queue together. Collaborators (tracker, evaluation gateway,
chronicle loader, settings, random source, clock) are passed in, so
tests build independent sessions side by side.

Gateway failures never raise out of the manager: they become
destructive notifications and leave the triggering action retryable.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Protocol

from loguru import logger

from config import Settings, get_settings
from src.neuro.diagnostics import DiagnosticQueue
from src.neuro.gateway import UNAVAILABLE_FEEDBACK, EvaluationGateway, unexpected_response_error
from src.neuro.interaction import (
    OPEN_EVENTS,
    InteractionContext,
    InteractionEvent,
    InteractionStateMachine,
    InteractionView,
    LoadStatus,
    coerce_state,
    resolve_view,
)
from src.neuro.learning import (
    LearningOutcome,
    LearningPhase,
    LearningProgress,
    LearningStep,
    ReadingSession,
    advance_learning,
    mark_familiar,
    reset_status,
    start_learning,
)
from src.neuro.models import (
    DiagnosticStatus,
    Domain,
    EpicComponent,
    EvaluationResult,
    InteractionState,
    Module,
    ModuleStatus,
    Node,
    ReviewCandidate,
)
from src.neuro.progress import ProgressTracker
from src.neuro.review import (
    ReviewItem,
    ReviewSession,
    apply_review_result,
    build_manual_review,
    build_standard_review,
)
from src.neuro.scheduler import (
    EpicSelector,
    ReviewFilter,
    ReviewSummary,
    derive_review_candidates,
    summarize_candidates,
)

_SESSION_CLEARING_STATUSES = frozenset(
    {ModuleStatus.INSTALLED, ModuleStatus.NEW, ModuleStatus.IN_LIBRARY}
)


class ChronicleLoader(Protocol):
    """Loads the dungeon data a chronicle run needs."""

    async def load_dungeon(self, dungeon_id: str) -> Any: ...


@dataclass(frozen=True)
class Notification:
    """Transient, non-blocking message for the presentation layer."""

    title: str
    description: str = ""
    variant: str = "default"  # "default" | "destructive"


class SessionManager:
    """
    One learner's session controller.

    Usage:
        manager = SessionManager(tracker, HttpEvaluationClient.from_settings(settings))
        manager.start_module("m1")
        await manager.submit_learning_response("my answer")
        manager.proceed_learning()
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        gateway: EvaluationGateway,
        chronicle_loader: ChronicleLoader | None = None,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.tracker = tracker
        self.gateway = gateway
        self.chronicle_loader = chronicle_loader
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(UTC))

        self.selector = EpicSelector(self.rng)
        self.machine = InteractionStateMachine()
        self.diagnostics = DiagnosticQueue(
            tracker,
            gateway,
            timeout_seconds=self.settings.diagnostic_timeout_seconds,
            clock=self.clock,
        )

        self.learning: LearningProgress | None = None
        self.reading: ReadingSession | None = None
        self.review: ReviewSession | None = None
        self.dungeon_id: str | None = None
        self.dungeon: Any = None
        self.dungeon_load = LoadStatus.IDLE
        self._dungeon_in_flight = False
        self.last_evaluation: EvaluationResult | None = None
        self.notifications: list[Notification] = []

        self.machine.on_enter(InteractionState.INITIAL, self._on_enter_initial)

    # ========================================
    # Current context
    # ========================================

    @property
    def state(self) -> InteractionState:
        return self.machine.state

    def _cursor(self) -> tuple[str, int, int] | None:
        if self.state == InteractionState.READING and self.reading:
            return self.reading.module_id, self.reading.domain_index, self.reading.node_index
        if self.state == InteractionState.REVIEWING and self.review and self.review.current:
            item = self.review.current
            location = self.tracker.locate(item.node_id, item.module_id)
            if location is None:
                return None
            return location.module_id, location.domain_index, location.node_index
        if self.learning:
            return self.learning.module_id, self.learning.domain_index, self.learning.node_index
        return None

    @property
    def current_module(self) -> Module | None:
        cursor = self._cursor()
        return self.tracker.get_module(cursor[0]) if cursor else None

    @property
    def current_domain(self) -> Domain | None:
        cursor = self._cursor()
        module = self.current_module
        if cursor is None or module is None or cursor[1] >= len(module.domains):
            return None
        return module.domains[cursor[1]]

    @property
    def current_node(self) -> Node | None:
        cursor = self._cursor()
        domain = self.current_domain
        if cursor is None or domain is None or cursor[2] >= len(domain.nodes):
            return None
        return domain.nodes[cursor[2]]

    def context(self) -> InteractionContext:
        return InteractionContext(
            current_module=self.current_module,
            current_domain=self.current_domain,
            current_node=self.current_node,
            reading_active=self.reading is not None,
            dungeon_load=self.dungeon_load,
        )

    def view(self) -> InteractionView:
        return resolve_view(self.state, self.context())

    # ========================================
    # Notifications + navigation
    # ========================================

    def notify(self, title: str, description: str = "", variant: str = "default") -> Notification:
        note = Notification(title, description, variant)
        self.notifications.append(note)
        return note

    def drain_notifications(self) -> list[Notification]:
        notes, self.notifications = self.notifications, []
        return notes

    def open(self, state: InteractionState | str) -> InteractionState:
        """Enter a mode; from anywhere but home this goes home first."""
        resolved = coerce_state(state)
        if resolved is None:
            logger.error("Invalid interaction state {!r}; forcing initial", state)
            return self.exit()
        state = resolved
        if state == InteractionState.INITIAL:
            return self.exit()
        event = OPEN_EVENTS.get(state)
        if event is None:
            logger.debug("Mode {} cannot be opened directly", state.value)
            return self.state
        reading_to_learning = (
            self.state == InteractionState.READING and state == InteractionState.LEARNING
        )
        if self.state != InteractionState.INITIAL and not reading_to_learning:
            self.machine.dispatch(InteractionEvent.EXIT)
        return self.machine.dispatch(event)

    def exit(self) -> InteractionState:
        return self.machine.dispatch(InteractionEvent.EXIT)

    def _on_enter_initial(self, previous: InteractionState, _: InteractionState) -> None:
        self.last_evaluation = None

    # ========================================
    # Scheduling reads
    # ========================================

    def review_candidates(self, filters: ReviewFilter | None = None) -> list[ReviewCandidate]:
        return derive_review_candidates(self.tracker.snapshot(), self.clock(), filters, self.selector)

    def review_summary(self, filters: ReviewFilter | None = None) -> ReviewSummary:
        return summarize_candidates(self.review_candidates(filters))

    # ========================================
    # Evaluation
    # ========================================

    async def _evaluate(
        self, node: Node | None, prompt: str, user_input: str, kind: str
    ) -> EvaluationResult | None:
        try:
            result = await self.gateway.evaluate(node, prompt, user_input, kind)
        except Exception as e:
            logger.error("Evaluation call failed: {}", e)
            self.notify("Evaluation Error", "An error occurred while evaluating your response.", "destructive")
            return None
        unexpected = unexpected_response_error(result)
        if unexpected is not None:
            logger.error("Evaluation call failed: {}", unexpected)
            self.notify("Evaluation Error", UNAVAILABLE_FEEDBACK, "destructive")
            return None
        if result.error:
            self.notify("Evaluation Error", result.feedback, "destructive")
            return None
        self.last_evaluation = result
        return result

    # ========================================
    # Learning
    # ========================================

    def start_module(self, module_id: str) -> bool:
        module = self.tracker.get_module(module_id)
        if module is None:
            self.notify("Error Starting Module", "Module data is missing or invalid.", "destructive")
            self.exit()
            return False

        progress = start_learning(self.tracker, module_id)
        if progress is None:
            self.notify("Module Installed", f"{module.title} has no session to start.")
            self.exit()
            return False

        self.learning = progress
        self.review = None
        self.open(InteractionState.LEARNING)
        self.reading = None
        self.notify(f"Learning Session Started: {module.title}")
        return True

    async def submit_learning_response(self, user_input: str) -> EvaluationResult | None:
        """Evaluate an answer for the current learning step."""
        node = self.current_node
        if self.learning is None or node is None:
            self.notify("Error", "Missing context for evaluation.", "destructive")
            return None
        if not user_input.strip():
            self.notify("Error", "No response provided for evaluation.", "destructive")
            return None

        if self.learning.phase == LearningPhase.DOWNLOAD:
            kind, prompt = "recall", node.learning_objective or node.title
        else:
            step = self.learning.epic_step
            kind, prompt = f"epic_{step.value}", node.epic.prompt_for(step)
        result = await self._evaluate(node, prompt, user_input, kind)
        if result is None:
            return None

        if result.is_pass and self.learning.phase == LearningPhase.DOWNLOAD:
            mark_familiar(self.tracker, self.learning, self.clock())
        label = "Passed" if result.is_pass else "Needs Improvement"
        self.notify(f"{kind} {label}", f"Score: {result.score:.0f}/100.")
        return result

    def proceed_learning(self) -> LearningStep | None:
        if self.learning is None:
            return None
        step = advance_learning(self.tracker, self.learning, self.clock())
        self.last_evaluation = None
        self.learning = step.progress

        if step.outcome == LearningOutcome.MODULE_COMPLETED:
            self.notify("Module Installation Complete!")
            self.machine.dispatch(InteractionEvent.MODULE_FINISHED)
        elif step.outcome == LearningOutcome.PHASE_CHANGED:
            self.notify("Phase Transition", "Download phase complete. Entering Install Phase.")
        return step

    def reset_session(self) -> None:
        """Abandon learning, reading and review; roll an in-progress module back."""
        if self.learning is not None:
            module = self.tracker.get_module(self.learning.module_id)
            fallback = reset_status(module.status) if module else None
            if fallback is not None:
                self.tracker.set_module_status(module.id, fallback)
        self.learning = None
        self.reading = None
        self.review = None
        self.machine.dispatch(InteractionEvent.RESET)
        self.notify("Learning session ended.")

    # ========================================
    # Reading
    # ========================================

    def start_reading(self, module_id: str) -> bool:
        module = self.tracker.get_module(module_id)
        if module is None:
            self.notify("Error", "Module not found.", "destructive")
            return False
        session = ReadingSession.start(module)
        if session is None:
            self.notify("Module Empty", f"{module.title} has no readable content.", "destructive")
            return False
        self.reading = session
        self.open(InteractionState.READING)
        return True

    def navigate_reading(self, direction: str) -> ReadingSession | None:
        if self.reading is None:
            return None
        module = self.tracker.get_module(self.reading.module_id)
        if module is None:
            return None
        self.reading = self.reading.navigate(module, direction)
        return self.reading

    def exit_reading(self) -> None:
        self.reading = None
        self.exit()
        self.notify("Exited Reading Mode.")

    # ========================================
    # Review
    # ========================================

    def start_review_session(self, manual: bool = False) -> ReviewSession | None:
        snapshot = self.tracker.snapshot()
        limit = self.settings.review_session_size
        if manual:
            session = build_manual_review(snapshot, self.clock(), self.rng, limit=limit)
        else:
            session = build_standard_review(
                snapshot,
                self.clock(),
                self.selector,
                limit=limit,
                weak_threshold=self.settings.review_weak_strength_threshold,
            )
        if session is None:
            self.notify(
                "No installed nodes available for manual review."
                if manual
                else "No nodes currently need review."
            )
            return None

        self.review = session
        self.learning = None
        self.open(InteractionState.REVIEWING)
        self.notify("Review Session Started", f"Reviewing {len(session.items)} node(s).")
        return session

    @property
    def current_review_item(self) -> ReviewItem | None:
        return self.review.current if self.review else None

    async def submit_review_response(self, user_input: str) -> EvaluationResult | None:
        item = self.current_review_item
        node = self.current_node
        if item is None or node is None:
            self.notify("Error", "Missing context for evaluation.", "destructive")
            return None
        if not user_input.strip():
            self.notify("Error", "No response provided for evaluation.", "destructive")
            return None

        component: EpicComponent = item.epic_component
        prompt = node.epic.prompt_for(component) or node.review_hint or node.title
        result = await self._evaluate(node, prompt, user_input, "review")
        if result is None:
            return None
        apply_review_result(self.tracker, item, result, self.clock())
        self.review.results[item.node_id] = result
        return result

    def advance_review_session(self) -> ReviewItem | None:
        if self.review is None:
            return None
        self.last_evaluation = None
        item = self.review.advance()
        if item is None:
            self.review = None
            self.notify("Review Session Complete!", "All nodes in this session have been reviewed.")
            self.exit()
        return item

    # ========================================
    # Chronicle
    # ========================================

    async def enter_chronicle(self, dungeon_id: str) -> InteractionView:
        if self.dungeon_id != dungeon_id:
            self.dungeon_id = dungeon_id
            self.dungeon = None
            self.dungeon_load = LoadStatus.IDLE
        self.open(InteractionState.CHRONICLE)
        if self.dungeon_load != LoadStatus.SUCCESS:
            await self._load_dungeon()
        return self.view()

    async def retry_dungeon_load(self) -> InteractionView:
        if (
            self.state == InteractionState.CHRONICLE
            and self.dungeon_id
            and self.dungeon_load != LoadStatus.SUCCESS
            and not self._dungeon_in_flight
        ):
            await self._load_dungeon()
        return self.view()

    async def _load_dungeon(self) -> None:
        self.dungeon_load = LoadStatus.LOADING
        if self.chronicle_loader is None:
            self.dungeon_load = LoadStatus.ERROR
            self.notify("Chronicle Unavailable", "No dungeon loader configured.", "destructive")
            return
        self._dungeon_in_flight = True
        try:
            self.dungeon = await self.chronicle_loader.load_dungeon(self.dungeon_id)
        except Exception as e:
            logger.error("Dungeon {} failed to load: {}", self.dungeon_id, e)
            self.dungeon_load = LoadStatus.ERROR
            self.notify("Chronicle Load Failed", str(e), "destructive")
            return
        finally:
            self._dungeon_in_flight = False
        self.dungeon_load = LoadStatus.SUCCESS

    def end_chronicle(self) -> None:
        self.dungeon_id = None
        self.dungeon = None
        self.dungeon_load = LoadStatus.IDLE
        self.exit()

    # ========================================
    # Admin
    # ========================================

    def _drop_sessions_for(self, module_id: str) -> bool:
        dropped = False
        if self.learning and self.learning.module_id == module_id:
            self.learning = None
            dropped = True
        if self.reading and self.reading.module_id == module_id:
            self.reading = None
            dropped = True
        return dropped

    def set_module_status(self, module_id: str, status: ModuleStatus) -> Module | None:
        status = ModuleStatus(status)
        module = self.tracker.set_module_status(module_id, status, now=self.clock())
        if module is None:
            return None
        self.review = None
        if status in _SESSION_CLEARING_STATUSES and self.learning and self.learning.module_id == module_id:
            self.learning = None
            self.exit()
        self.notify("Admin Action", f"Module {module_id} status set to {status.value}.")
        return module

    def remove_module(self, module_id: str) -> bool:
        if not self.tracker.remove_module(module_id):
            self.notify("Admin Action", f"Module {module_id} cannot be removed.", "destructive")
            return False
        self.review = None
        if self._drop_sessions_for(module_id):
            self.exit()
        self.notify("Admin Action", f"Module {module_id} reset/removed.")
        return True

    def mark_installed_for_review(self) -> int:
        marked = self.tracker.mark_installed_for_review()
        if marked:
            self.notify("Admin Action", f"{marked} installed nodes marked for review.")
        else:
            self.notify("Admin Action", "No installed nodes needed marking for review.")
        return marked

    # ========================================
    # Diagnostics
    # ========================================

    async def submit_diagnostic(self, test_id: str, user_input: str) -> EvaluationResult | None:
        result = await self.diagnostics.submit(test_id, user_input)
        test = self.diagnostics.get(test_id)
        if test is not None and test.status == DiagnosticStatus.ERROR and result is not None:
            self.notify("Diagnostic Error", result.feedback, "destructive")
        return result
