"""
Unit tests for the interaction state machine.
"""

import pytest

from src.neuro.interaction import (
    OPEN_EVENTS,
    InteractionContext,
    InteractionEvent,
    InteractionStateMachine,
    LoadStatus,
    SubView,
    resolve_view,
    transition,
)
from src.neuro.models import InteractionState


class TestTransition:
    """Tests for the total transition function."""

    @pytest.mark.parametrize("state,event", list(OPEN_EVENTS.items()))
    def test_open_events_from_initial(self, state, event):
        assert transition(InteractionState.INITIAL, event) == state

    @pytest.mark.parametrize("state", list(InteractionState))
    def test_exit_and_reset_always_return_to_initial(self, state):
        assert transition(state, InteractionEvent.EXIT) == InteractionState.INITIAL
        assert transition(state, InteractionEvent.RESET) == InteractionState.INITIAL

    def test_reading_to_learning(self):
        assert transition(InteractionState.READING, InteractionEvent.OPEN_LEARNING) == InteractionState.LEARNING

    def test_learning_to_finished(self):
        assert transition(InteractionState.LEARNING, InteractionEvent.MODULE_FINISHED) == InteractionState.FINISHED

    def test_undefined_pair_keeps_state(self):
        assert transition(InteractionState.REVIEWING, InteractionEvent.OPEN_ADMIN) == InteractionState.REVIEWING
        assert transition(InteractionState.INITIAL, InteractionEvent.MODULE_FINISHED) == InteractionState.INITIAL
        assert transition(InteractionState.FINISHED, InteractionEvent.OPEN_LEARNING) == InteractionState.FINISHED

    def test_unknown_event_keeps_state(self):
        assert transition(InteractionState.ADMIN, "teleport") == InteractionState.ADMIN

    def test_string_values_are_accepted(self):
        assert transition("initial", "open_status") == InteractionState.STATUS_VIEWING

    def test_invalid_state_forced_to_initial(self):
        assert transition("flying", InteractionEvent.OPEN_ADMIN) == InteractionState.INITIAL
        assert transition(None, InteractionEvent.EXIT) == InteractionState.INITIAL

    def test_transition_is_total(self):
        for state in InteractionState:
            for event in InteractionEvent:
                assert transition(state, event) in InteractionState


class TestResolveView:
    """Tests for degraded sub-views."""

    def test_learning_without_context(self):
        view = resolve_view(InteractionState.LEARNING, InteractionContext())

        assert view.state == InteractionState.LEARNING
        assert view.sub_view == SubView.CONTEXT_MISSING
        assert view.degraded is True
        assert view.actions == (InteractionEvent.RESET,)

    def test_learning_with_context(self, tracker):
        module = tracker.get_module("pillar-a")
        context = InteractionContext(current_module=module, current_node=module.first_node())

        view = resolve_view(InteractionState.LEARNING, context)

        assert view.sub_view == SubView.NORMAL
        assert view.degraded is False

    def test_reading_requires_active_session(self, tracker):
        module = tracker.get_module("pillar-a")
        context = InteractionContext(
            current_module=module,
            current_domain=module.domains[0],
            current_node=module.domains[0].nodes[0],
            reading_active=False,
        )

        assert resolve_view(InteractionState.READING, context).sub_view == SubView.CONTEXT_MISSING

    def test_chronicle_load_states(self):
        loading = resolve_view(InteractionState.CHRONICLE, InteractionContext(dungeon_load=LoadStatus.LOADING))
        failed = resolve_view(InteractionState.CHRONICLE, InteractionContext(dungeon_load=LoadStatus.ERROR))
        loaded = resolve_view(InteractionState.CHRONICLE, InteractionContext(dungeon_load=LoadStatus.SUCCESS))

        assert loading.sub_view == SubView.LOADING
        assert failed.sub_view == SubView.LOAD_FAILED
        assert "retry" in failed.actions
        assert InteractionEvent.EXIT in failed.actions
        assert loaded.sub_view == SubView.NORMAL

    def test_initial_offers_every_open_event(self):
        view = resolve_view(InteractionState.INITIAL, InteractionContext())

        assert set(view.actions) == set(OPEN_EVENTS.values())

    def test_invalid_state_renders_initial(self):
        assert resolve_view("bogus", InteractionContext()).state == InteractionState.INITIAL


class TestStateMachine:
    """Tests for the stateful wrapper."""

    def test_dispatch_runs_entry_hooks(self):
        machine = InteractionStateMachine()
        entered = []
        machine.on_enter(InteractionState.CHRONICLE, lambda prev, nxt: entered.append((prev, nxt)))

        machine.dispatch(InteractionEvent.OPEN_CHRONICLE)

        assert machine.state == InteractionState.CHRONICLE
        assert entered == [(InteractionState.INITIAL, InteractionState.CHRONICLE)]

    def test_hooks_do_not_run_without_change(self):
        machine = InteractionStateMachine(InteractionState.ADMIN)
        entered = []
        machine.on_enter(InteractionState.ADMIN, lambda prev, nxt: entered.append(nxt))

        machine.dispatch(InteractionEvent.OPEN_REVIEWING)

        assert machine.state == InteractionState.ADMIN
        assert entered == []

    def test_force_invalid_value(self):
        machine = InteractionStateMachine(InteractionState.REVIEWING)

        assert machine.force("nonsense") == InteractionState.INITIAL

    def test_star_topology_round_trip(self):
        machine = InteractionStateMachine()

        for state, event in OPEN_EVENTS.items():
            assert machine.dispatch(event) == state
            assert machine.dispatch(InteractionEvent.EXIT) == InteractionState.INITIAL
