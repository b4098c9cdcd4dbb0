"""
ChangeReconciler — keeps one entity type's local collection consistent with
the remote source under optimistic local edits and streamed change events.

Responsibilities:
- Seed the collection from a bulk fetch (full replace, never a merge).
- Apply optimistic mutations immediately and remember how to undo them.
- Merge remote insert / update / delete events against the active filter.
- Resolve conflicts between the two with one policy: a remote event that
  arrives after a local edit wins for every field it carries, and neither
  confirm() nor rollback() may overwrite it afterwards.
- Push a new ReconciledCollection snapshot to listeners after every change.

The collection is owned exclusively by this class; callers read self.data
and mutate only through the methods below.
"""
from __future__ import annotations

import datetime
import itertools
import logging
from typing import Any, Callable, Iterable, Mapping

from .collection import ReconciledCollection
from .models import (
    EVENT_DELETE,
    EVENT_INSERT,
    ChangeEvent,
    Entity,
    EntityFilter,
    MutationState,
    OptimisticMutation,
)

_LOGGER = logging.getLogger(__name__)

_MISSING = object()

Listener = Callable[[ReconciledCollection], None]


def _parse_timestamp(value: str) -> datetime.datetime | None:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def is_older(incoming: str | None, stored: str | None) -> bool:
    """True when both timestamps are known and incoming is strictly older."""
    if not incoming or not stored:
        return False
    incoming_ts = _parse_timestamp(incoming)
    stored_ts = _parse_timestamp(stored)
    if incoming_ts is None or stored_ts is None:
        return incoming < stored
    return incoming_ts < stored_ts


def _restore_fields(entity: Entity, previous: Entity, names: Iterable[str]) -> Entity:
    """Copy of entity with each named field set back to its value in previous."""
    fields = dict(entity.fields)
    for name in names:
        value = previous.fields.get(name, _MISSING)
        if value is _MISSING:
            fields.pop(name, None)
        else:
            fields[name] = value
    return Entity(entity.id, fields, entity.updated_at)


class ChangeReconciler:
    """Owner of one ReconciledCollection."""

    def __init__(self, criteria: EntityFilter | None = None, name: str = "entities") -> None:
        self.name = name
        self.criteria = criteria or EntityFilter()
        self.data = ReconciledCollection()
        self._mutations: dict[int, OptimisticMutation] = {}
        self._handles = itertools.count(1)
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Register callback for every new snapshot; returns the remover."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _publish(self, new_data: ReconciledCollection) -> None:
        self.data = new_data
        for callback in list(self._listeners):
            try:
                callback(new_data)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Listener for %s raised: %s", self.name, exc)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def get(self, entity_id: str) -> Entity | None:
        return self.data.get(entity_id)

    def pending(self, entity_id: str | None = None) -> list[OptimisticMutation]:
        return [
            m for m in self._mutations.values()
            if m.is_pending and (entity_id is None or m.entity_id == entity_id)
        ]

    def mutation(self, handle: int) -> OptimisticMutation | None:
        return self._mutations.get(handle)

    def set_filter(self, criteria: EntityFilter) -> None:
        """Change the active filter; takes effect for the next seed and events."""
        self.criteria = criteria

    # ------------------------------------------------------------------
    # Bulk load
    # ------------------------------------------------------------------

    def seed(self, entities: Iterable[Entity]) -> ReconciledCollection:
        """
        Replace the whole collection with entities (full refresh semantics).

        Duplicate ids keep the last occurrence. Pending mutations stay
        in flight but the fetched rows count as newer remote truth for them;
        ids with a pending removal stay out until it resolves.
        """
        removals = {m.entity_id: m for m in self.pending() if m.is_removal}
        fresh: dict[str, Entity] = {}
        for entity in entities:
            if not self.criteria.matches(entity):
                continue
            if entity.id in removals:
                removals[entity.id].previous = entity
                continue
            fresh[entity.id] = entity
        for mutation in self.pending():
            self._supersede(mutation, set(mutation.patch))
        self._publish(self.data.replaced(fresh))
        _LOGGER.debug("Seeded %s with %s entities", self.name, len(fresh))
        return self.data

    # ------------------------------------------------------------------
    # Optimistic mutations
    # ------------------------------------------------------------------

    def apply_optimistic(self, entity_id: str, patch: Mapping[str, Any]) -> int:
        """
        Apply patch locally right away and return the mutation handle.

        Raises:
            KeyError: entity_id is not in the collection
            ValueError: patch carries no editable field
        """
        current = self.data.get(entity_id)
        if current is None:
            raise KeyError(entity_id)
        clean_patch = {k: v for k, v in patch.items() if k not in ("id", "updated_at")}
        if not clean_patch:
            raise ValueError("Empty patch")
        updated = current.with_fields(clean_patch)
        handle = next(self._handles)
        self._mutations[handle] = OptimisticMutation(
            handle=handle,
            entity_id=entity_id,
            patch=clean_patch,
            previous=current,
            current=updated,
        )
        self._publish(self.data.with_entity(updated))
        return handle

    def apply_optimistic_removal(self, entity_id: str) -> int:
        """Remove entity_id locally right away and return the mutation handle."""
        current = self.data.get(entity_id)
        if current is None:
            raise KeyError(entity_id)
        handle = next(self._handles)
        self._mutations[handle] = OptimisticMutation(
            handle=handle,
            entity_id=entity_id,
            patch={},
            previous=current,
            current=None,
        )
        self._publish(self.data.without(entity_id))
        return handle

    def confirm(self, handle: int, server_entity: Entity | None = None) -> OptimisticMutation | None:
        """
        Mark a mutation as successfully written.

        server_entity (the row as stored) is merged only when no remote event
        touched the entity since the mutation was applied; fields patched by
        later, still-pending local mutations are kept as they are. Otherwise
        only a newer updated_at is taken over from it.
        """
        mutation = self._mutations.pop(handle, None)
        if mutation is None:
            _LOGGER.debug("confirm(): unknown mutation handle %s", handle)
            return None
        if not mutation.is_pending:
            return mutation
        mutation.state = MutationState.CONFIRMED

        if server_entity is None or mutation.is_removal:
            return mutation
        existing = self.data.get(mutation.entity_id)
        if existing is None:
            return mutation
        if mutation.remote_touched:
            # field values stay remote; only adopt a newer row version
            if is_older(existing.updated_at, server_entity.updated_at):
                self._store(Entity(existing.id, existing.fields, server_entity.updated_at))
            return mutation
        protected = {f for m in self.pending(mutation.entity_id) for f in m.patch}
        server_fields = {k: v for k, v in server_entity.fields.items() if k not in protected}
        merged = existing.with_fields(server_fields)
        if server_entity.updated_at:
            merged = Entity(merged.id, merged.fields, server_entity.updated_at)
        if merged != existing:
            self._store(merged)
        return mutation

    def rollback(self, handle: int) -> OptimisticMutation | None:
        """
        Undo a mutation whose write failed.

        Patched fields a remote event has since overwritten stay as they are.
        Fields a later pending local mutation also patched keep the later
        value; that mutation inherits the pre-value for its own rollback.
        A row version taken over from a confirmed write is never reverted.
        """
        mutation = self._mutations.pop(handle, None)
        if mutation is None:
            _LOGGER.debug("rollback(): unknown mutation handle %s", handle)
            return None
        if not mutation.is_pending:
            return mutation
        mutation.state = MutationState.FAILED
        entity_id = mutation.entity_id
        later = [m for m in self.pending(entity_id) if m.handle > mutation.handle]

        if mutation.is_removal:
            if entity_id in self.data:
                return mutation
            restored = mutation.previous
            if restored is not None and self.criteria.matches(restored):
                self._publish(self.data.with_entity(restored))
            return mutation

        restore = [f for f in mutation.patch if f not in mutation.superseded]
        handed_over = set()
        for name in restore:
            for other in later:
                if other.is_removal or name not in other.patch:
                    continue
                other.previous = _restore_fields(other.previous, mutation.previous, [name])
                handed_over.add(name)
                break
        for other in later:
            if other.is_removal and other.previous is not None:
                other.previous = _restore_fields(
                    other.previous, mutation.previous, [f for f in restore if f not in handed_over]
                )

        existing = self.data.get(entity_id)
        if existing is None:
            return mutation
        restored = _restore_fields(existing, mutation.previous, [f for f in restore if f not in handed_over])
        # a confirmed sibling write may have moved the row version; keep the newer one
        if not mutation.remote_touched and existing.updated_at == mutation.current.updated_at:
            restored = Entity(restored.id, restored.fields, mutation.previous.updated_at)
        self._store(restored)
        return mutation

    # ------------------------------------------------------------------
    # Remote events
    # ------------------------------------------------------------------

    def on_remote_event(self, event: ChangeEvent) -> bool:
        """Merge one streamed change; returns True if the collection changed."""
        entity_id = event.entity_id

        if event.kind == EVENT_DELETE:
            for mutation in self.pending(entity_id):
                mutation.state = MutationState.SUPERSEDED
                mutation.remote_touched = True
                self._mutations.pop(mutation.handle, None)
            if entity_id not in self.data:
                return False
            self._publish(self.data.without(entity_id))
            _LOGGER.debug("Remote delete of %s/%s applied", self.name, entity_id)
            return True

        incoming = event.current
        existing = self.data.get(entity_id)

        if event.kind == EVENT_INSERT:
            if existing is not None or self._removal_pending(entity_id):
                _LOGGER.debug("Remote insert of %s/%s ignored (already known)", self.name, entity_id)
                return False
            if not self.criteria.matches(incoming):
                return False
            self._publish(self.data.with_entity(incoming))
            return True

        # update
        if existing is not None and is_older(incoming.updated_at, existing.updated_at):
            _LOGGER.debug(
                "Stale update of %s/%s dropped (%s < %s)",
                self.name, entity_id, incoming.updated_at, existing.updated_at,
            )
            return False

        carried = set(incoming.fields)
        for mutation in self.pending(entity_id):
            if mutation.is_removal:
                mutation.remote_touched = True
                if mutation.previous is not None:
                    mutation.previous = self._merge(mutation.previous, incoming)
                continue
            self._supersede(mutation, carried & set(mutation.patch))

        if self._removal_pending(entity_id):
            return False

        merged = self._merge(existing, incoming) if existing is not None else incoming
        if not self.criteria.matches(merged):
            if existing is None:
                return False
            self._publish(self.data.without(entity_id))
            _LOGGER.debug("%s/%s left the active filter and was removed", self.name, entity_id)
            return True
        if merged == existing:
            return False
        self._publish(self.data.with_entity(merged))
        return True

    def upsert_confirmed(self, entity: Entity) -> bool:
        """Store a row returned by a successful remote write as remote truth."""
        if not self.criteria.matches(entity):
            if entity.id in self.data:
                self._publish(self.data.without(entity.id))
                return True
            return False
        existing = self.data.get(entity.id)
        merged = self._merge(existing, entity) if existing is not None else entity
        if merged == existing:
            return False
        self._publish(self.data.with_entity(merged))
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _merge(existing: Entity, incoming: Entity) -> Entity:
        merged = existing.with_fields(incoming.fields)
        if incoming.updated_at:
            merged = Entity(merged.id, merged.fields, incoming.updated_at)
        return merged

    @staticmethod
    def _supersede(mutation: OptimisticMutation, fields: set[str]) -> None:
        mutation.remote_touched = True
        mutation.superseded |= fields

    def _removal_pending(self, entity_id: str) -> bool:
        return any(m.is_removal for m in self.pending(entity_id))

    def _store(self, entity: Entity) -> None:
        if self.criteria.matches(entity):
            self._publish(self.data.with_entity(entity))
        elif entity.id in self.data:
            self._publish(self.data.without(entity.id))
