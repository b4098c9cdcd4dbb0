"""
ReconciledCollection — immutable snapshot of one entity type's local state.

This is a pure data module with no network or asyncio dependencies.
"""
from __future__ import annotations

import dataclasses
from typing import Iterator, Mapping

from .models import Entity


@dataclasses.dataclass(frozen=True)
class ReconciledCollection:
    """
    Typed, copy-on-write snapshot of entity id → Entity.

    Always replace via the helpers below (they return new objects); never
    mutate in place. version increases by one on every change.
    """

    entities: Mapping[str, Entity] = dataclasses.field(default_factory=dict)
    version: int = 0

    def __len__(self) -> int:
        return len(self.entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self.entities

    def __iter__(self) -> Iterator[Entity]:
        return iter(self.entities.values())

    def get(self, entity_id: str) -> Entity | None:
        return self.entities.get(entity_id)

    def ids(self) -> list[str]:
        return list(self.entities)

    def values(self) -> list[Entity]:
        return list(self.entities.values())

    def replaced(self, entities: Mapping[str, Entity]) -> "ReconciledCollection":
        return dataclasses.replace(self, entities=dict(entities), version=self.version + 1)

    def with_entity(self, entity: Entity) -> "ReconciledCollection":
        new_entities = dict(self.entities)
        new_entities[entity.id] = entity
        return dataclasses.replace(self, entities=new_entities, version=self.version + 1)

    def without(self, entity_id: str) -> "ReconciledCollection":
        new_entities = dict(self.entities)
        new_entities.pop(entity_id, None)
        return dataclasses.replace(self, entities=new_entities, version=self.version + 1)
