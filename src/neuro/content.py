"""
Content catalog: the read-only Module -> Domain -> Node structure.

Raw content (JSON files or dicts, camelCase or snake_case keys) is
validated with Pydantic before being hydrated into the frozen domain
dataclasses. The catalog keeps the pristine hydrated modules so the
progress tracker can reset a module back to its authored state.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from src.neuro.models import (
    Domain,
    Module,
    ModuleStatus,
    ModuleType,
    Node,
    NodeEpic,
)


class ContentError(Exception):
    """Raised when catalog content fails validation or cannot be read."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


# ========================================
# Validation Schemas
# ========================================


class _ContentSchema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class EpicSchema(_ContentSchema):
    """Default EPIC prompts of a node."""

    explain_prompt: str = Field("", description="Prompt for the Explain step")
    probe_prompt: str = Field("", description="Prompt for the Probe step")
    implement_prompt: str = Field("", description="Prompt for the Implement step")
    connect_prompt: str = Field("", description="Prompt for the Connect step")
    probe_questions: list[str] = Field(default_factory=list)


class NodeSchema(_ContentSchema):
    id: str = Field(..., min_length=1)
    title: str
    short_definition: str = ""
    learning_objective: str = ""
    key_terms: list[str] = Field(default_factory=list)
    review_hint: str = ""
    epic: EpicSchema = Field(default_factory=EpicSchema)


class DomainSchema(_ContentSchema):
    id: str = Field(..., min_length=1)
    title: str
    learning_goal: str = ""
    nodes: list[NodeSchema] = Field(default_factory=list)


class ModuleSchema(_ContentSchema):
    id: str = Field(..., min_length=1)
    title: str
    type: ModuleType = Field(ModuleType.PILLAR, description="core, pillar, auxiliary or challenge")
    status: ModuleStatus = Field(ModuleStatus.NEW, description="Initial library status")
    description: str = ""
    domains: list[DomainSchema] = Field(default_factory=list)


class CatalogSchema(_ContentSchema):
    modules: list[ModuleSchema]


# ========================================
# Hydration
# ========================================


def _hydrate_module(schema: ModuleSchema) -> Module:
    domains = []
    for d in schema.domains:
        nodes = tuple(
            Node(
                id=n.id,
                module_id=schema.id,
                domain_id=d.id,
                title=n.title,
                review_hint=n.review_hint,
                short_definition=n.short_definition,
                learning_objective=n.learning_objective,
                key_terms=tuple(n.key_terms),
                epic=NodeEpic(
                    explain_prompt=n.epic.explain_prompt,
                    probe_prompt=n.epic.probe_prompt,
                    implement_prompt=n.epic.implement_prompt,
                    connect_prompt=n.epic.connect_prompt,
                    probe_questions=tuple(n.epic.probe_questions),
                ),
            )
            for n in d.nodes
        )
        domains.append(Domain(id=d.id, title=d.title, nodes=nodes, learning_goal=d.learning_goal))
    return Module(
        id=schema.id,
        title=schema.title,
        type=schema.type,
        status=schema.status,
        domains=tuple(domains),
        description=schema.description,
    )


class ContentCatalog:
    """
    Immutable catalog of authored modules.

    Usage:
        catalog = ContentCatalog.from_file(settings.content_path)
        tracker = ProgressTracker(catalog)
    """

    def __init__(self, modules: list[Module] | tuple[Module, ...]):
        self._modules: dict[str, Module] = {}
        for module in modules:
            if module.id in self._modules:
                raise ContentError(f"Duplicate module id: {module.id}")
            self._modules[module.id] = module

    @classmethod
    def from_dict(cls, data: dict[str, Any] | list[dict[str, Any]]) -> ContentCatalog:
        """Validate raw content. Accepts ``{"modules": [...]}`` or a bare list."""
        if isinstance(data, list):
            data = {"modules": data}
        try:
            schema = CatalogSchema.model_validate(data)
        except ValidationError as e:
            logger.error("Content validation failed with {} error(s)", e.error_count())
            raise ContentError("Invalid content catalog", errors=e.errors()) from e

        catalog = cls([_hydrate_module(m) for m in schema.modules])
        logger.debug("Loaded content catalog with {} module(s)", len(catalog))
        return catalog

    @classmethod
    def from_file(cls, path: Path) -> ContentCatalog:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ContentError(f"Cannot read content from {path}: {e}") from e
        return cls.from_dict(data)

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    @property
    def module_ids(self) -> list[str]:
        return list(self._modules)

    def modules(self) -> list[Module]:
        return list(self._modules.values())

    def pristine_module(self, module_id: str) -> Module | None:
        """The module exactly as authored, or ``None`` if unknown."""
        return self._modules.get(module_id)
