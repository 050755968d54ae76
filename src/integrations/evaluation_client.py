"""
Evaluation gateway client.

Handles HTTP communication with the natural-language evaluation service
that grades learner answers for diagnostics, reviews and EPIC steps.
The service is opaque: its score may come back as a 0-1 fraction or on a
0-100 scale, and ``is_pass`` is the authoritative verdict.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from src.neuro.gateway import UNAVAILABLE_FEEDBACK, EvaluationGateway
from src.neuro.models import DiagnosticLevel, EvaluationResult, Node

__all__ = [
    "EvaluationGateway",
    "HttpEvaluationClient",
    "UNAVAILABLE_FEEDBACK",
    "node_payload",
    "normalize_score",
    "result_from_dict",
]


def normalize_score(raw: Any) -> float:
    """Scores in [0, 1] are fractions; everything is clamped to [0, 100]."""
    try:
        score = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if 0.0 <= score <= 1.0:
        score *= 100.0
    return max(0.0, min(100.0, score))


def node_payload(node: Node | None) -> dict[str, Any] | None:
    """Serialize the grading context of a node."""
    if node is None:
        return None
    return {
        "id": node.id,
        "module_id": node.module_id,
        "domain_id": node.domain_id,
        "title": node.title,
        "short_definition": node.short_definition,
        "learning_objective": node.learning_objective,
        "key_terms": list(node.key_terms),
    }


def result_from_dict(data: dict[str, Any]) -> EvaluationResult:
    """Parse an evaluation response (snake_case or camelCase keys)."""
    is_pass = data.get("is_pass", data.get("isPass", False))
    return EvaluationResult(
        score=normalize_score(data.get("score", 0)),
        feedback=data.get("feedback", ""),
        is_pass=bool(is_pass),
        rubric=data.get("rubric", data.get("rubricScores")) or {},
    )


class HttpEvaluationClient:
    """HTTP client for the evaluation service."""

    def __init__(
        self,
        api_url: str,
        timeout_ms: int = 30000,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
    ):
        """
        Initialize evaluation client.

        Args:
            api_url: Base URL of the evaluation API
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts before giving up
            backoff_seconds: Base delay, doubled after each failed attempt
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
        )

    @classmethod
    def from_settings(cls, settings) -> HttpEvaluationClient:
        config = settings.get_evaluation_config()
        return cls(
            config["api_url"],
            timeout_ms=config["timeout_ms"],
            retry_attempts=config["retry_attempts"],
            backoff_seconds=config["backoff_seconds"],
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _backoff(self, attempt: int) -> None:
        if attempt < self.retry_attempts - 1:
            await asyncio.sleep(self.backoff_seconds * 2**attempt)

    async def evaluate(
        self,
        node_context: Node | None,
        prompt: str,
        user_input: str,
        level: DiagnosticLevel | str,
    ) -> EvaluationResult:
        """
        Grade an answer with retry logic.

        Timeouts, transport errors and 5xx responses are retried with
        exponential backoff. A 4xx response is raised immediately.

        Returns:
            Parsed result, or a failing result with ``error`` set once all
            attempts are exhausted

        Raises:
            httpx.HTTPStatusError: On a 4xx response
        """
        payload = {
            "node": node_payload(node_context),
            "prompt": prompt,
            "user_input": user_input,
            "level": getattr(level, "value", level),
        }
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.post(f"{self.api_url}/evaluate", json=payload)
                response.raise_for_status()
                return result_from_dict(response.json())

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    "Evaluation timeout on attempt {}/{}", attempt + 1, self.retry_attempts
                )
                await self._backoff(attempt)

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    logger.error("Evaluation client error: {}", e.response.status_code)
                    raise
                logger.warning(
                    "Evaluation server error {} on attempt {}/{}",
                    e.response.status_code,
                    attempt + 1,
                    self.retry_attempts,
                )
                await self._backoff(attempt)

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Evaluation request error on attempt {}/{}: {}",
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )
                await self._backoff(attempt)

        logger.error(
            "Evaluation failed after {} attempts: {}", self.retry_attempts, last_error
        )
        return EvaluationResult.failure(UNAVAILABLE_FEEDBACK, error=str(last_error))
