"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import asyncio
import random
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from src.neuro.content import ContentCatalog  # noqa: E402
from src.neuro.models import EvaluationResult  # noqa: E402
from src.neuro.progress import ProgressTracker  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


class FakeGateway:
    """
    Scripted evaluation gateway.

    Outcomes in ``results`` are consumed in order (an Exception instance is
    raised); afterwards ``default`` is returned. When ``release`` is set,
    every call waits on it before answering.
    """

    def __init__(self):
        self.calls = []
        self.results = []
        self.default = EvaluationResult(score=90.0, feedback="Good answer", is_pass=True)
        self.release: asyncio.Event | None = None

    async def evaluate(self, node_context, prompt, user_input, level):
        self.calls.append(
            {"node": node_context, "prompt": prompt, "user_input": user_input, "level": level}
        )
        if self.release is not None:
            await self.release.wait()
        outcome = self.results.pop(0) if self.results else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed reference time for scheduler math."""
    return datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def catalog_data():
    """Provide a small three-module catalog in camelCase, as authored."""
    return {
        "modules": [
            {
                "id": "neuro-core",
                "title": "Neuro Core",
                "type": "core",
                "domains": [
                    {
                        "id": "core-d1",
                        "title": "Foundations",
                        "nodes": [
                            {
                                "id": "core-n1",
                                "title": "Attention",
                                "learningObjective": "Describe selective attention.",
                                "epic": {
                                    "explainPrompt": "Explain selective attention.",
                                    "probePrompt": "Why does attention fail?",
                                    "implementPrompt": "Apply attention to studying.",
                                    "connectPrompt": "Connect attention to memory.",
                                },
                            },
                            {"id": "core-n2", "title": "Working Memory"},
                        ],
                    }
                ],
            },
            {
                "id": "pillar-a",
                "title": "Pillar A",
                "type": "pillar",
                "domains": [
                    {
                        "id": "a-d1",
                        "title": "First",
                        "nodes": [
                            {
                                "id": "a-n1",
                                "title": "Node A1",
                                "epic": {"explainPrompt": "Explain A1."},
                            },
                            {"id": "a-n2", "title": "Node A2"},
                        ],
                    },
                    {"id": "a-d2", "title": "Empty", "nodes": []},
                    {
                        "id": "a-d3",
                        "title": "Third",
                        "nodes": [{"id": "a-n3", "title": "Node A3"}],
                    },
                ],
            },
            {
                "id": "aux-b",
                "title": "Auxiliary B",
                "type": "auxiliary",
                "domains": [
                    {"id": "b-d1", "title": "Only", "nodes": [{"id": "b-n1", "title": "Node B1"}]}
                ],
            },
        ]
    }


@pytest.fixture
def catalog(catalog_data):
    return ContentCatalog.from_dict(catalog_data)


@pytest.fixture
def tracker(catalog):
    return ProgressTracker(catalog)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        evaluation_backoff_seconds=0,
        diagnostic_timeout_seconds=None,
    )
