"""
Progress persistence for learning sessions.

Stores the per-learner module/node state as a JSON file so progress
survives restarts. Only mutable progress fields are written; content
always comes from the catalog.
Default location: ~/.neuro/progress.json
"""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from src.neuro.content import ContentCatalog
from src.neuro.models import Domain, Module, ModuleStatus, Node, NodeStatus, ensure_utc
from src.neuro.progress import ProgressChange, ProgressTracker

# Default progress file
PROGRESS_FILE = Path.home() / ".neuro" / "progress.json"
FORMAT_VERSION = 1


def _node_to_dict(node: Node) -> dict[str, Any]:
    return {
        "status": node.status.value,
        "familiar": node.familiar,
        "understood": node.understood,
        "memory_strength": node.memory_strength,
        "last_reviewed": node.last_reviewed.isoformat() if node.last_reviewed else None,
    }


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _apply_node(node: Node, data: dict[str, Any]) -> Node:
    return replace(
        node,
        status=NodeStatus(data.get("status", node.status.value)),
        familiar=bool(data.get("familiar", node.familiar)),
        understood=bool(data.get("understood", node.understood)),
        memory_strength=data.get("memory_strength", node.memory_strength),
        last_reviewed=_parse_time(data.get("last_reviewed")),
    )


def dump_modules(modules: list[Module] | tuple[Module, ...]) -> dict[str, Any]:
    """Serialize the progress fields of every module."""
    return {
        "version": FORMAT_VERSION,
        "saved_at": datetime.now(UTC).isoformat(),
        "modules": {
            module.id: {
                "status": module.status.value,
                "nodes": {node.id: _node_to_dict(node) for _, _, node in module.iter_nodes()},
            }
            for module in modules
        },
    }


def apply_saved_state(catalog: ContentCatalog, data: dict[str, Any]) -> list[Module]:
    """Overlay saved progress onto catalog modules. Unknown ids are skipped."""
    restored: list[Module] = []
    for module_id, saved in (data.get("modules") or {}).items():
        module = catalog.pristine_module(module_id)
        if module is None:
            logger.warning("Skipping saved progress for unknown module {}", module_id)
            continue
        saved_nodes = saved.get("nodes") or {}
        domains = tuple(
            Domain(
                id=d.id,
                title=d.title,
                learning_goal=d.learning_goal,
                nodes=tuple(
                    _apply_node(n, saved_nodes[n.id]) if n.id in saved_nodes else n
                    for n in d.nodes
                ),
            )
            for d in module.domains
        )
        restored.append(
            replace(module, status=ModuleStatus(saved.get("status", "new")), domains=domains)
        )
    return restored


class ProgressStore:
    """
    Manages progress persistence.

    Usage:
        store = ProgressStore(settings.progress_path)
        tracker = ProgressTracker(catalog, store.load(catalog))
        store.attach(tracker)
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path or PROGRESS_FILE
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.save_count = 0

    def save(self, tracker: ProgressTracker) -> Path:
        """Write the tracker's current state to disk."""
        payload = dump_modules(tracker.snapshot().modules)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        tmp.replace(self.path)
        self.save_count += 1
        return self.path

    def load(self, catalog: ContentCatalog) -> list[Module] | None:
        """Saved module state, or None when there is no readable file."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return apply_saved_state(catalog, data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable progress file {}: {}", self.path, e)
            return None

    def attach(self, tracker: ProgressTracker) -> Callable[[], None]:
        """Save after every tracker mutation. Returns the unsubscribe callable."""

        def on_change(change: ProgressChange) -> None:
            self.save(tracker)

        return tracker.subscribe(on_change)

    def delete(self) -> bool:
        """Delete the progress file."""
        if self.path.exists():
            self.path.unlink()
            return True
        return False
