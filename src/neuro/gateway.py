"""
Evaluation gateway contract.

The core only depends on this protocol; the HTTP implementation lives in
``src.integrations.evaluation_client``.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from src.neuro.models import DiagnosticLevel, EvaluationResult, Node

UNAVAILABLE_FEEDBACK = "Evaluation service unavailable. Please try again later."


@runtime_checkable
class EvaluationGateway(Protocol):
    """Anything that can grade a learner answer."""

    async def evaluate(
        self,
        node_context: Node | None,
        prompt: str,
        user_input: str,
        level: DiagnosticLevel | str,
    ) -> EvaluationResult: ...


def unexpected_response_error(response: Any) -> str | None:
    """Error text for a gateway response that is not an EvaluationResult."""
    if isinstance(response, EvaluationResult):
        return None
    return f"Unexpected evaluation response: {type(response).__name__}"
