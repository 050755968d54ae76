"""
Diagnostic Test Queue.

Ad hoc evaluations at node, domain, module or system scope, independent
of the review cycle. Each test moves pending -> running -> completed |
error, and at most one test is running at any time.

Submissions go to the evaluation gateway. A running test can be
cancelled while its evaluation is still in flight; every cancel bumps a
per-test submission token, and a response whose token no longer matches
is dropped instead of applied.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Callable

from loguru import logger

from src.neuro.gateway import UNAVAILABLE_FEEDBACK, EvaluationGateway, unexpected_response_error
from src.neuro.models import (
    DiagnosticLevel,
    DiagnosticStatus,
    DiagnosticTest,
    EvaluationResult,
    ModuleType,
    Node,
    NodeStatus,
)
from src.neuro.progress import ProgressTracker

FALLBACK_PROMPT = "Explain a core concept related to this diagnostic target."
CONTEXT_ERROR_FEEDBACK = "Context error for diagnostic evaluation. Node context not found."
SKIPPED_FEEDBACK = "Skipped by user or timed out without submission."


def _new_test_id() -> str:
    return f"diag-{uuid.uuid4().hex[:12]}"


class DiagnosticQueue:
    """
    Queue of diagnostic tests with a single running slot.

    Usage:
        queue = DiagnosticQueue(tracker, gateway)
        queue.enqueue(DiagnosticLevel.NODE, "node-1")
        test = queue.run_next()
        await queue.submit(test.id, "my answer")
        queue.advance()
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        gateway: EvaluationGateway,
        timeout_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] = _new_test_id,
    ):
        self.tracker = tracker
        self.gateway = gateway
        self.timeout_seconds = timeout_seconds
        self.clock = clock or (lambda: datetime.now(UTC))
        self.id_factory = id_factory
        self.tests: list[DiagnosticTest] = []
        self.current_index: int | None = None
        self._tokens: dict[str, int] = {}
        self._in_flight: dict[str, int] = {}

    # ========================================
    # Reads
    # ========================================

    @property
    def current(self) -> DiagnosticTest | None:
        if self.current_index is None or not 0 <= self.current_index < len(self.tests):
            return None
        return self.tests[self.current_index]

    @property
    def running_count(self) -> int:
        return sum(1 for t in self.tests if t.status == DiagnosticStatus.RUNNING)

    def get(self, test_id: str) -> DiagnosticTest | None:
        for test in self.tests:
            if test.id == test_id:
                return test
        return None

    def is_in_flight(self, test_id: str) -> bool:
        return self._in_flight.get(test_id) == self._tokens.get(test_id, 0)

    # ========================================
    # Queue operations
    # ========================================

    def enqueue(
        self,
        level: DiagnosticLevel,
        target_id: str | None = None,
    ) -> DiagnosticTest | None:
        """
        Queue a test for a target.

        Returns None (and queues nothing) when a non-system level has no
        target or the target does not exist.
        """
        level = DiagnosticLevel(level)
        if level != DiagnosticLevel.SYSTEM and not target_id:
            logger.debug("Diagnostic enqueue ignored: {} level needs a target", level.value)
            return None

        resolved = self._resolve_target(level, target_id)
        if resolved is None:
            logger.debug("Diagnostic enqueue ignored: unknown {} target {}", level.value, target_id)
            return None
        name, target_name, node = resolved

        test = DiagnosticTest(
            id=self.id_factory(),
            name=name,
            level=level,
            target_id=target_id if level != DiagnosticLevel.SYSTEM else "system",
            target_name=target_name,
            prompt=(node.epic.explain_prompt if node else "") or FALLBACK_PROMPT,
            node_context=node,
            location=self.tracker.locate(node.id, node.module_id) if node else None,
        )
        self.tests.append(test)
        logger.info("Enqueued diagnostic {} ({})", test.id, test.name)
        return test

    def run_next(self) -> DiagnosticTest | None:
        """Start the earliest pending test; no-op while another test runs."""
        if self.running_count:
            logger.debug("run_next ignored: a diagnostic is already running")
            return None
        for idx, test in enumerate(self.tests):
            if test.status == DiagnosticStatus.PENDING:
                self._start(idx)
                return test
        self.current_index = None
        return None

    async def submit(
        self,
        test_id: str,
        user_input: str,
    ) -> EvaluationResult | None:
        """
        Evaluate the answer for a running test.

        Returns the stored result, or None when the submission was rejected
        or its response arrived after the test was cancelled. Never raises
        on gateway failure.
        """
        test = self.get(test_id)
        if test is None or test.status != DiagnosticStatus.RUNNING:
            logger.warning("Submission rejected: diagnostic {} is not running", test_id)
            return None
        if not test.prompt or not user_input.strip():
            logger.debug("Submission rejected: empty prompt or input for {}", test_id)
            return None
        if self.is_in_flight(test_id):
            logger.debug("Submission rejected: evaluation already in flight for {}", test_id)
            return None

        if test.node_context is None and test.level != DiagnosticLevel.SYSTEM:
            logger.error("Node context is missing for diagnostic test {}", test_id)
            test.status = DiagnosticStatus.ERROR
            test.result = EvaluationResult.failure(CONTEXT_ERROR_FEEDBACK, error="context_missing")
            return test.result

        test.user_input = user_input
        token = self._tokens.get(test_id, 0)
        self._in_flight[test_id] = token
        error: str | None = None
        result: EvaluationResult | None = None
        try:
            call = self.gateway.evaluate(test.node_context, test.prompt, user_input, test.level)
            if self.timeout_seconds is not None:
                result = await asyncio.wait_for(call, self.timeout_seconds)
            else:
                result = await call
        except asyncio.TimeoutError:
            error = f"Evaluation timed out after {self.timeout_seconds}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        finally:
            if self._in_flight.get(test_id) == token:
                del self._in_flight[test_id]

        if self._tokens.get(test_id, 0) != token or test.status != DiagnosticStatus.RUNNING:
            logger.info("Dropping late evaluation result for cancelled diagnostic {}", test_id)
            return None

        if error is None:
            error = unexpected_response_error(result) or result.error or None
        if error is not None:
            logger.error("Diagnostic {} evaluation failed: {}", test_id, error)
            test.status = DiagnosticStatus.ERROR
            test.result = EvaluationResult.failure(UNAVAILABLE_FEEDBACK, error=error)
            return test.result

        test.result = result
        test.status = DiagnosticStatus.COMPLETED
        logger.info(
            "Diagnostic {} completed: score={} pass={}", test_id, result.score, result.is_pass
        )
        if result.is_pass and test.level == DiagnosticLevel.NODE:
            self._record_pass(test, result)
        return result

    def cancel(self, test_id: str | None = None, requeue: bool = True) -> bool:
        """
        Cancel a running test (the current one by default).

        The test goes back to pending when ``requeue`` is set, otherwise it
        is discarded. Any partial answer or result is cleared.
        """
        test = self.get(test_id) if test_id else self.current
        if test is None or test.status != DiagnosticStatus.RUNNING:
            return False

        self._tokens[test.id] = self._tokens.get(test.id, 0) + 1
        self._in_flight.pop(test.id, None)
        test.result = None
        test.user_input = ""
        if requeue:
            test.status = DiagnosticStatus.PENDING
        else:
            idx = self.tests.index(test)
            self.tests.pop(idx)
            if self.current_index is not None and idx < self.current_index:
                self.current_index -= 1
            elif self.current_index == idx:
                self.current_index = None
        logger.info("Cancelled diagnostic {} (requeue={})", test.id, requeue)
        return True

    def skip(self) -> DiagnosticTest | None:
        """Put the running test back to pending and start the next one after it."""
        current = self.current
        if current is None or not self.cancel(current.id, requeue=True):
            return None
        return self.advance()

    def advance(self) -> DiagnosticTest | None:
        """
        Close the current test and start the next pending one after it.

        A running test without a result is closed as completed with a
        failing "skipped" result. When no pending test follows, the
        current pointer clears and the queue goes idle.
        """
        if self.current_index is None:
            return None

        current = self.current
        if current is not None and current.status == DiagnosticStatus.RUNNING and current.result is None:
            self._tokens[current.id] = self._tokens.get(current.id, 0) + 1
            self._in_flight.pop(current.id, None)
            current.status = DiagnosticStatus.COMPLETED
            current.result = EvaluationResult.failure(SKIPPED_FEEDBACK)

        start = self.current_index
        for idx in range(start + 1, len(self.tests)):
            if self.tests[idx].status == DiagnosticStatus.PENDING:
                if self.running_count:
                    break
                self._start(idx)
                return self.tests[idx]

        self.current_index = None
        return None

    def clear(self) -> None:
        """Drop every test and reset the queue view."""
        for test in self.tests:
            self._tokens[test.id] = self._tokens.get(test.id, 0) + 1
        self.tests = []
        self.current_index = None
        self._in_flight.clear()

    # ========================================
    # Internals
    # ========================================

    def _start(self, idx: int) -> None:
        test = self.tests[idx]
        test.status = DiagnosticStatus.RUNNING
        test.result = None
        self.current_index = idx
        logger.info("Running diagnostic {} ({})", test.id, test.name)

    def _resolve_target(
        self, level: DiagnosticLevel, target_id: str | None
    ) -> tuple[str, str, Node | None] | None:
        modules = self.tracker.snapshot().modules

        if level == DiagnosticLevel.NODE:
            for module in modules:
                for _, _, node in module.iter_nodes():
                    if node.id == target_id:
                        return f"Node: {node.title}", node.title, node
            return None

        if level == DiagnosticLevel.DOMAIN:
            for module in modules:
                for domain in module.domains:
                    if domain.id == target_id:
                        first = domain.nodes[0] if domain.nodes else None
                        return f"Domain: {domain.title}", domain.title, first
            return None

        if level == DiagnosticLevel.MODULE:
            for module in modules:
                if module.id == target_id:
                    return f"Module: {module.title}", module.title, module.first_node()
            return None

        core = next((m for m in modules if m.type == ModuleType.CORE), None)
        return "Full System Diagnostic", "System-Wide", core.first_node() if core else None

    def _record_pass(self, test: DiagnosticTest, result: EvaluationResult) -> None:
        node = test.node_context
        location = self.tracker.locate(node.id, node.module_id)
        if location is None:
            logger.warning("Passed diagnostic node {} no longer exists", node.id)
            return
        self.tracker.update_node_status(
            location.module_id,
            location.domain_index,
            location.node_index,
            NodeStatus.UNDERSTOOD,
            familiar=True,
            understood=True,
            timestamp=self.clock(),
            score=result.score,
        )
