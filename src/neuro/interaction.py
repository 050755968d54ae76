"""
Interaction State Machine - the controller's top-level mode.

Star topology: every mode except ``finished`` is opened from ``initial``
and every mode returns to ``initial`` on exit. Two extra edges exist:
reading -> learning (start the module being read) and learning ->
finished (module completed).

``transition`` is total. Undefined (state, event) pairs keep the state;
values outside the state enum are logged and forced to ``initial``.

Guarded modes (learning, reading) and the async-loaded chronicle mode
never change the top-level state on a failed guard. ``resolve_view``
maps them to a degraded sub-view instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger

from src.neuro.models import Domain, InteractionState, Module, Node


class InteractionEvent(str, Enum):
    OPEN_LEARNING = "open_learning"
    OPEN_READING = "open_reading"
    OPEN_CHRONICLE = "open_chronicle"
    OPEN_ADMIN = "open_admin"
    OPEN_REVIEWING = "open_reviewing"
    OPEN_DIAGNOSING = "open_diagnosing"
    OPEN_STATUS = "open_status"
    OPEN_EXPLORE = "open_explore"
    MODULE_FINISHED = "module_finished"
    EXIT = "exit"
    RESET = "reset"


OPEN_EVENTS: dict[InteractionState, InteractionEvent] = {
    InteractionState.LEARNING: InteractionEvent.OPEN_LEARNING,
    InteractionState.READING: InteractionEvent.OPEN_READING,
    InteractionState.CHRONICLE: InteractionEvent.OPEN_CHRONICLE,
    InteractionState.ADMIN: InteractionEvent.OPEN_ADMIN,
    InteractionState.REVIEWING: InteractionEvent.OPEN_REVIEWING,
    InteractionState.DIAGNOSING: InteractionEvent.OPEN_DIAGNOSING,
    InteractionState.STATUS_VIEWING: InteractionEvent.OPEN_STATUS,
    InteractionState.EXPLORE_INFINITE: InteractionEvent.OPEN_EXPLORE,
}

TRANSITIONS: dict[tuple[InteractionState, InteractionEvent], InteractionState] = {
    **{(InteractionState.INITIAL, event): state for state, event in OPEN_EVENTS.items()},
    (InteractionState.READING, InteractionEvent.OPEN_LEARNING): InteractionState.LEARNING,
    (InteractionState.LEARNING, InteractionEvent.MODULE_FINISHED): InteractionState.FINISHED,
}


def coerce_state(value: Any) -> InteractionState | None:
    """Map a raw value onto the state enum, or None if it is not a state."""
    if isinstance(value, InteractionState):
        return value
    try:
        return InteractionState(value)
    except ValueError:
        return None


def transition(current: Any, event: InteractionEvent | str) -> InteractionState:
    """
    Next state for ``event``.

    Exit and reset always lead to ``initial``. Undefined pairs keep the
    current state. Invalid current values are forced to ``initial``.
    """
    state = coerce_state(current)
    if state is None:
        logger.error("Invalid interaction state {!r}; forcing initial", current)
        return InteractionState.INITIAL

    try:
        event = InteractionEvent(event)
    except ValueError:
        logger.warning("Unknown interaction event {!r} in state {}", event, state.value)
        return state

    if event in (InteractionEvent.EXIT, InteractionEvent.RESET):
        return InteractionState.INITIAL

    next_state = TRANSITIONS.get((state, event))
    if next_state is None:
        logger.debug("No transition for {} in state {}", event.value, state.value)
        return state
    return next_state


# =============================================================================
# Views
# =============================================================================


class SubView(str, Enum):
    NORMAL = "normal"
    CONTEXT_MISSING = "context_missing"
    LOADING = "loading"
    LOAD_FAILED = "load_failed"


class LoadStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class InteractionContext:
    """What the guarded modes need to render."""

    current_module: Module | None = None
    current_domain: Domain | None = None
    current_node: Node | None = None
    reading_active: bool = False
    dungeon_load: LoadStatus = LoadStatus.IDLE


@dataclass(frozen=True)
class InteractionView:
    state: InteractionState
    sub_view: SubView = SubView.NORMAL
    actions: tuple[str, ...] = (InteractionEvent.EXIT,)

    @property
    def degraded(self) -> bool:
        return self.sub_view != SubView.NORMAL


def resolve_view(state: Any, context: InteractionContext) -> InteractionView:
    """Decide the sub-view for a state given the current context."""
    resolved = coerce_state(state)
    if resolved is None:
        logger.error("Invalid interaction state {!r}; rendering initial", state)
        resolved = InteractionState.INITIAL

    if resolved == InteractionState.LEARNING:
        if context.current_module is None or context.current_node is None:
            return InteractionView(resolved, SubView.CONTEXT_MISSING, (InteractionEvent.RESET,))

    elif resolved == InteractionState.READING:
        if not (
            context.reading_active
            and context.current_module is not None
            and context.current_node is not None
            and context.current_domain is not None
        ):
            return InteractionView(resolved, SubView.CONTEXT_MISSING, (InteractionEvent.RESET,))

    elif resolved == InteractionState.CHRONICLE:
        if context.dungeon_load == LoadStatus.LOADING:
            return InteractionView(resolved, SubView.LOADING)
        if context.dungeon_load == LoadStatus.ERROR:
            return InteractionView(resolved, SubView.LOAD_FAILED, ("retry", InteractionEvent.EXIT))

    elif resolved == InteractionState.INITIAL:
        return InteractionView(resolved, actions=tuple(OPEN_EVENTS.values()))

    return InteractionView(resolved)


# =============================================================================
# Machine
# =============================================================================


EntryHook = Callable[[InteractionState, InteractionState], None]


class InteractionStateMachine:
    """
    Holds the current state and runs entry hooks on state changes.

    Usage:
        machine = InteractionStateMachine()
        machine.on_enter(InteractionState.CHRONICLE, start_dungeon_load)
        machine.dispatch(InteractionEvent.OPEN_CHRONICLE)
    """

    def __init__(self, state: InteractionState = InteractionState.INITIAL):
        self._state = coerce_state(state) or InteractionState.INITIAL
        self._hooks: dict[InteractionState, list[EntryHook]] = {}

    @property
    def state(self) -> InteractionState:
        return self._state

    def on_enter(self, state: InteractionState, hook: EntryHook) -> None:
        self._hooks.setdefault(state, []).append(hook)

    def dispatch(self, event: InteractionEvent | str) -> InteractionState:
        return self._move(transition(self._state, event))

    def force(self, value: Any) -> InteractionState:
        """Set the cursor directly (e.g. from persisted state)."""
        state = coerce_state(value)
        if state is None:
            logger.error("Invalid interaction state {!r}; forcing initial", value)
            state = InteractionState.INITIAL
        return self._move(state)

    def _move(self, next_state: InteractionState) -> InteractionState:
        previous = self._state
        if next_state == previous:
            return previous
        self._state = next_state
        logger.debug("Interaction {} -> {}", previous.value, next_state.value)
        for hook in self._hooks.get(next_state, []):
            hook(previous, next_state)
        return next_state
