"""
Progress Tracker - single source of truth for learner state.

Owns the mutable per-learner view of every Module (lifecycle status) and
every Node (status, flags, memory strength, last review). All node
status/strength changes go through ``update_node_status``, except the
bulk cascade of ``set_module_status``; module lifecycle changes go
through ``set_module_status`` / ``remove_module``.

Every mutation replaces the affected frozen values wholesale, so a
snapshot taken before a write never observes part of it. Subscribers
receive a ``ProgressChange`` after each applied mutation; the JSON
progress store uses this to persist.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Callable, Iterable, Iterator

from loguru import logger

from src.neuro.content import ContentCatalog
from src.neuro.models import (
    Domain,
    Module,
    ModuleStatus,
    Node,
    NodeLocation,
    NodeStatus,
    clamp_strength,
    ensure_utc,
)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Statuses whose cascade resets nodes to authored content
_RESET_STATUSES = frozenset({ModuleStatus.NEW, ModuleStatus.IN_LIBRARY})


@dataclass(frozen=True)
class ProgressChange:
    """Notification of an applied mutation."""

    kind: str  # "node" | "module"
    module_id: str
    status: str
    node_id: str | None = None


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of all modules."""

    modules: tuple[Module, ...]

    def get_module(self, module_id: str) -> Module | None:
        for module in self.modules:
            if module.id == module_id:
                return module
        return None

    def iter_nodes(self) -> Iterator[tuple[Module, int, int, Node]]:
        for module in self.modules:
            for d_idx, n_idx, node in module.iter_nodes():
                yield module, d_idx, n_idx, node


ProgressListener = Callable[[ProgressChange], None]


def _reset_node(node: Node) -> Node:
    return replace(
        node,
        status=NodeStatus.NEW,
        familiar=False,
        understood=False,
        memory_strength=0.0,
        last_reviewed=None,
    )


class ProgressTracker:
    """
    Mutable progress state hydrated from a content catalog.

    Usage:
        tracker = ProgressTracker(catalog)
        tracker.subscribe(store.on_change)
        tracker.update_node_status("m1", 0, 2, NodeStatus.UNDERSTOOD, understood=True)
    """

    def __init__(
        self,
        catalog: ContentCatalog,
        initial_state: Iterable[Module] | None = None,
    ):
        self.catalog = catalog
        self._modules: dict[str, Module] = {m.id: m for m in catalog.modules()}
        self._listeners: list[ProgressListener] = []
        if initial_state is not None:
            self.restore(initial_state)

    # ========================================
    # Reads
    # ========================================

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(modules=tuple(self._modules.values()))

    def get_module(self, module_id: str) -> Module | None:
        return self._modules.get(module_id)

    def get_node(self, module_id: str, domain_id: str, node_id: str) -> Node | None:
        module = self._modules.get(module_id)
        if module is None:
            return None
        for domain in module.domains:
            if domain.id != domain_id:
                continue
            for node in domain.nodes:
                if node.id == node_id:
                    return node
        return None

    def node_at(self, location: NodeLocation) -> Node | None:
        module = self._modules.get(location.module_id)
        try:
            return module.domains[location.domain_index].nodes[location.node_index]
        except (AttributeError, IndexError):
            return None

    def locate(self, node_id: str, module_id: str | None = None) -> NodeLocation | None:
        """Find a node's index path, optionally restricted to one module."""
        if module_id is None:
            modules = list(self._modules.values())
        else:
            modules = [self._modules[module_id]] if module_id in self._modules else []
        for module in modules:
            for d_idx, n_idx, node in module.iter_nodes():
                if node.id == node_id:
                    return NodeLocation(module.id, d_idx, n_idx)
        return None

    # ========================================
    # Subscribers
    # ========================================

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, change: ProgressChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    # ========================================
    # Mutations
    # ========================================

    def restore(self, modules: Iterable[Module]) -> None:
        """Overlay persisted module state for modules the catalog knows."""
        for module in modules:
            if module.id not in self._modules:
                logger.warning("Ignoring persisted state for unknown module {}", module.id)
                continue
            self._modules[module.id] = module

    def update_node_status(
        self,
        module_id: str,
        domain_index: int,
        node_index: int,
        status: NodeStatus,
        familiar: bool | None = None,
        understood: bool | None = None,
        timestamp: datetime | None = None,
        score: float | None = None,
    ) -> Node | None:
        """
        Single mutation point for a node's status and memory strength.

        Args:
            module_id: Owning module
            domain_index: Index of the domain inside the module
            node_index: Index of the node inside the domain
            status: New node status
            familiar: New familiar flag (unchanged when None)
            understood: New understood flag (unchanged when None)
            timestamp: New last-reviewed time (unchanged when None)
            score: New memory strength, clamped to [0, 100] (unchanged when None)

        Returns:
            The updated node, or None when the location does not exist
        """
        module = self._modules.get(module_id)
        if (
            module is None
            or not 0 <= domain_index < len(module.domains)
            or not 0 <= node_index < len(module.domains[domain_index].nodes)
        ):
            logger.warning(
                "Node not found for update: {}, D:{}, N:{}", module_id, domain_index, node_index
            )
            return None

        domain = module.domains[domain_index]
        node = domain.nodes[node_index]
        changes: dict = {"status": NodeStatus(status)}
        if familiar is not None:
            changes["familiar"] = familiar
        if understood is not None:
            changes["understood"] = understood
        if timestamp is not None:
            changes["last_reviewed"] = ensure_utc(timestamp)
        if score is not None:
            changes["memory_strength"] = clamp_strength(score)
        updated = replace(node, **changes)

        nodes = domain.nodes[:node_index] + (updated,) + domain.nodes[node_index + 1 :]
        domains = (
            module.domains[:domain_index]
            + (replace(domain, nodes=nodes),)
            + module.domains[domain_index + 1 :]
        )
        self._modules[module_id] = replace(module, domains=domains)

        logger.debug(
            "Node {} -> {} (strength={})", updated.id, updated.status.value, updated.memory_strength
        )
        self._emit(ProgressChange("node", module_id, updated.status.value, node_id=updated.id))
        return updated

    def set_module_status(
        self,
        module_id: str,
        status: ModuleStatus,
        now: datetime | None = None,
    ) -> Module | None:
        """
        Change a module's lifecycle status and cascade it to the nodes.

        downloaded -> every node familiar (not understood)
        installed  -> every node understood, strength 100, reviewed now
        in_library / new -> nodes reset from authored content
        other statuses leave nodes untouched

        The cascade rewrites nodes in bulk instead of calling
        ``update_node_status`` per node; it is the one deliberate exception
        to that single mutation point and emits a single module change.
        A naive ``now`` is taken as UTC.
        """
        module = self._modules.get(module_id)
        if module is None:
            logger.warning("Cannot set status of unknown module {}", module_id)
            return None

        status = ModuleStatus(status)
        now = ensure_utc(now) or datetime.now(UTC)
        domains = module.domains

        if status == ModuleStatus.DOWNLOADED:
            domains = self._map_nodes(
                domains,
                lambda n: replace(n, status=NodeStatus.FAMILIAR, familiar=True, understood=False),
            )
        elif status == ModuleStatus.INSTALLED:
            domains = self._map_nodes(
                domains,
                lambda n: replace(
                    n,
                    status=NodeStatus.UNDERSTOOD,
                    familiar=True,
                    understood=True,
                    memory_strength=100.0,
                    last_reviewed=now,
                ),
            )
        elif status in _RESET_STATUSES:
            pristine = self.catalog.pristine_module(module_id)
            source = pristine.domains if pristine is not None else domains
            domains = self._map_nodes(source, _reset_node)

        self._modules[module_id] = replace(module, status=status, domains=domains)
        logger.info("Module {} status set to {}", module_id, status.value)
        self._emit(ProgressChange("module", module_id, status.value))
        return self._modules[module_id]

    def remove_module(self, module_id: str) -> bool:
        """
        Demote a module to ``new`` with pristine nodes.

        Returns False for unknown modules and for core modules, which can
        never leave the library.
        """
        module = self._modules.get(module_id)
        if module is None:
            logger.warning("Cannot remove unknown module {}", module_id)
            return False
        if module.is_core:
            logger.warning("Refusing to remove core module {}", module_id)
            return False
        self.set_module_status(module_id, ModuleStatus.NEW)
        return True

    def mark_installed_for_review(self) -> int:
        """
        Flag every node of installed modules ``needs_review``.

        ``last_reviewed`` is set to the epoch so the nodes come out
        maximally overdue. Returns the number of nodes newly flagged.
        """
        marked = 0
        for module in list(self._modules.values()):
            if module.status != ModuleStatus.INSTALLED:
                continue
            for d_idx, n_idx, node in module.iter_nodes():
                if node.status == NodeStatus.NEEDS_REVIEW:
                    continue
                self.update_node_status(
                    module.id, d_idx, n_idx, NodeStatus.NEEDS_REVIEW, timestamp=EPOCH
                )
                marked += 1
        logger.info("{} installed node(s) marked for review", marked)
        return marked

    @staticmethod
    def _map_nodes(
        domains: tuple[Domain, ...], fn: Callable[[Node], Node]
    ) -> tuple[Domain, ...]:
        return tuple(replace(d, nodes=tuple(fn(n) for n in d.nodes)) for d in domains)
