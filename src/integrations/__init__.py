"""
External integrations for the learning-session core.

Modules:
- evaluation_client: HTTP client for the answer-evaluation service
"""
from .evaluation_client import EvaluationGateway, HttpEvaluationClient

__all__ = ["EvaluationGateway", "HttpEvaluationClient"]
