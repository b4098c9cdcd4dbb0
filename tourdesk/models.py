"""
Domain models for tourdesk.

This module contains pure data classes representing remote records and the
changes applied to them. No HTTP, websocket or asyncio dependencies.
"""
from __future__ import annotations

import dataclasses
import enum
import time
from typing import Any, Mapping

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"
EVENT_KINDS = (EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE)


@dataclasses.dataclass(frozen=True)
class Entity:
    """
    A single remote record (order, tour or passenger).

    Always derive new values via with_fields() / without_fields(); the
    fields mapping is treated as read-only.
    """

    id: str
    fields: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Entity":
        """Build an entity from a raw backend row; the row must carry an id."""
        if row.get("id") is None:
            raise ValueError(f"Row has no id: {row!r}")
        fields = {k: v for k, v in row.items() if k not in ("id", "updated_at")}
        updated_at = row.get("updated_at")
        return cls(str(row["id"]), fields, str(updated_at) if updated_at else None)

    def get(self, name: str, default: Any = None) -> Any:
        if name == "id":
            return self.id
        if name == "updated_at":
            return self.updated_at if self.updated_at is not None else default
        return self.fields.get(name, default)

    def has(self, name: str) -> bool:
        if name in ("id", "updated_at"):
            return True
        return name in self.fields

    def with_fields(self, patch: Mapping[str, Any]) -> "Entity":
        """Return a copy with patch merged over the current fields."""
        fields = dict(self.fields)
        updated_at = self.updated_at
        for key, value in patch.items():
            if key == "id":
                continue
            if key == "updated_at":
                updated_at = str(value) if value else None
                continue
            fields[key] = value
        return Entity(self.id, fields, updated_at)

    def without_fields(self, names) -> "Entity":
        dropped = set(names)
        fields = {k: v for k, v in self.fields.items() if k not in dropped}
        return Entity(self.id, fields, self.updated_at)

    def to_row(self) -> dict[str, Any]:
        row = {"id": self.id, **self.fields}
        if self.updated_at is not None:
            row["updated_at"] = self.updated_at
        return row


@dataclasses.dataclass(frozen=True)
class ChangeEvent:
    """One insert / update / delete notification pushed by the change stream."""

    kind: str
    table: str
    current: Entity | None = None
    previous: Entity | None = None

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown change kind: {self.kind}")
        if self.current is None and self.previous is None:
            raise ValueError("ChangeEvent needs a current or previous entity")

    @property
    def entity_id(self) -> str:
        source = self.current if self.current is not None else self.previous
        return source.id


@dataclasses.dataclass(frozen=True)
class EntityFilter:
    """
    Active filter criteria for a reconciled collection.

    statuses=None accepts every status. A missing or None visibility value
    counts as visible; only an explicit False hides the record.
    """

    statuses: frozenset[str] | None = None
    visibility_field: str | None = None

    def matches(self, entity: Entity) -> bool:
        if self.statuses is not None and entity.get("status") not in self.statuses:
            return False
        if self.visibility_field is not None:
            visible = entity.get(self.visibility_field)
            if visible is not None and not visible:
                return False
        return True


class MutationState(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


@dataclasses.dataclass
class OptimisticMutation:
    """
    An in-flight local change.

    previous is the entity before the change (None for removals of an entity
    that was never present); current is the entity after it (None for a
    removal). superseded holds the patched fields a remote event has since
    overwritten.
    """

    handle: int
    entity_id: str
    patch: dict[str, Any]
    previous: Entity | None
    current: Entity | None
    state: MutationState = MutationState.PENDING
    superseded: set[str] = dataclasses.field(default_factory=set)
    remote_touched: bool = False
    created_at: float = dataclasses.field(default_factory=time.monotonic)

    @property
    def is_removal(self) -> bool:
        return self.current is None

    @property
    def is_pending(self) -> bool:
        return self.state == MutationState.PENDING
