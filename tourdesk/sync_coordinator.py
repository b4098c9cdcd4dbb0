"""
SyncCoordinator — keeps one table's reconciled collection in sync with the backend.

Responsibilities:
- Own the ChangeReconciler, EntityWriteQueue and change-stream subscription
  for one TableSpec.
- Bulk load: probe the optional visibility column, build the active filter,
  fetch through the RetryingFetcher and seed the reconciler.
- Write path: validate, apply optimistically, write through the per-entity
  queue with an updated_at precondition, then confirm or roll back.
- Stream path: turn raw change payloads into ChangeEvents for the reconciler.
- Surface every outcome the user should see through the Notifier.

Remote errors never escape the async_* methods; they are turned into
notifications and a False / None return value.
"""
from __future__ import annotations

import contextlib
import logging
from typing import Any, AsyncIterator, Mapping

from .api.client import utc_now_iso
from .api.realtime import ChangeStream, parse_change_payload
from .capabilities import SchemaCapabilities
from .collection import ReconciledCollection
from .const import PAGE_SIZE, TABLE_PASSENGERS, WRITE_DELAY
from .dateutils import clean_dates_in_payload
from .errors import StaleWriteError, ValidationError
from .grouping import GroupingProjector, Page, Projection, ProjectionParams, paginate
from .models import EVENT_DELETE, ChangeEvent, Entity, EntityFilter
from .notifications import Notifier
from .reconciler import ChangeReconciler
from .retry import RetryingFetcher
from .tables import TableSpec
from .write_queue import EntityWriteQueue

_LOGGER = logging.getLogger(__name__)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class SyncCoordinator:
    """One table, one reconciler, at most one live subscription."""

    def __init__(
        self,
        table: TableSpec,
        client,
        stream: ChangeStream | None = None,
        *,
        fetcher: RetryingFetcher | None = None,
        capabilities: SchemaCapabilities | None = None,
        notifier: Notifier | None = None,
        write_delay: float = WRITE_DELAY,
        page_size: int = PAGE_SIZE,
        projector: GroupingProjector | None = None,
    ) -> None:
        self.table = table
        self.client = client
        self.stream = stream
        self.fetcher = fetcher or RetryingFetcher()
        self.capabilities = capabilities or SchemaCapabilities(client, self.fetcher)
        self.notifier = notifier or Notifier()
        self.projector = projector or GroupingProjector(by_order=table.name == TABLE_PASSENGERS)
        self.reconciler = ChangeReconciler(EntityFilter(statuses=table.statuses), name=table.name)
        self.page_size = page_size
        self._queue = EntityWriteQueue(write_delay)
        self._subscription = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def data(self) -> ReconciledCollection:
        return self.reconciler.data

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def add_listener(self, callback):
        return self.reconciler.add_listener(callback)

    def project(self, params: ProjectionParams | None = None) -> Projection:
        return self.projector.project(self.data, params)

    def page(self, params: ProjectionParams | None = None, page: int = 1) -> Page:
        """One page of the visible records, page_size per page."""
        return paginate(self.project(params).visible_members(), page, self.page_size)

    # ------------------------------------------------------------------
    # Bulk load
    # ------------------------------------------------------------------

    async def _active_filter(self) -> EntityFilter:
        available = None
        if self.table.visibility_column:
            available = await self.capabilities.has_column(self.table.name, self.table.visibility_column)
        return self.table.build_filter(available)

    async def async_refresh(self) -> bool:
        """Fetch the whole filtered table and re-seed; keeps old data on failure."""
        criteria = await self._active_filter()
        try:
            rows = await self.fetcher.run(
                lambda: self.client.fetch(self.table.name, criteria, select=self.table.select),
                f"fetch {self.table.name}",
            )
        except Exception as exc:  # noqa: BLE001
            self.notifier.error(f"Failed to load {self.table.name}: {exc}")
            return False
        self.reconciler.set_filter(criteria)
        self.reconciler.seed(self.table.parse_rows(rows))
        return True

    async def async_reload_entity(self, entity_id: str) -> bool:
        """Re-fetch one row and merge it as remote truth (absent row → removed)."""
        try:
            row = await self.fetcher.run(
                lambda: self.client.fetch_one(self.table.name, entity_id, select=self.table.select),
                f"reload {self.table.name}/{entity_id}",
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Failed to reload %s/%s: %s", self.table.name, entity_id, exc)
            return False
        if row is None:
            self.reconciler.on_remote_event(
                ChangeEvent(EVENT_DELETE, self.table.name, previous=Entity(entity_id))
            )
            return True
        entity = self.table.parse_row(row)
        if entity is not None:
            self.reconciler.upsert_confirmed(entity)
        return True

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def _check_required(self, fields: Mapping[str, Any], partial: bool) -> None:
        names = [f for f in self.table.required_fields if not partial or f in fields]
        missing = [f for f in names if _blank(fields.get(f))]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

    async def async_update(
        self, entity_id: str, patch: Mapping[str, Any], edited_by: str | None = None
    ) -> Entity | None:
        """
        Apply patch optimistically and write it; returns the stored entity or None.

        The write carries the updated_at seen when it leaves the queue. A stale
        precondition rolls back, reloads the row and warns the user.
        """
        name = self.table.name
        if entity_id not in self.data:
            self.notifier.error(f"Cannot update {name}/{entity_id}: not loaded")
            return None
        try:
            self._check_required(patch, partial=True)
        except ValidationError as exc:
            self.notifier.error(str(exc))
            return None

        payload = clean_dates_in_payload(patch)
        if edited_by is not None:
            payload["edited_by"] = edited_by
            payload["edited_at"] = utc_now_iso()
        try:
            handle = self.reconciler.apply_optimistic(entity_id, payload)
        except ValueError as exc:
            self.notifier.error(f"Cannot update {name}/{entity_id}: {exc}")
            return None

        async def write():
            current = self.reconciler.get(entity_id)
            expected = current.updated_at if current is not None else None
            try:
                row = await self.fetcher.run(
                    lambda: self.client.update(name, entity_id, payload, expected_updated_at=expected),
                    f"update {name}/{entity_id}",
                )
            except Exception:
                self.reconciler.rollback(handle)
                raise
            # settled before the next queued write reads the row version
            server_entity = self.table.parse_row(row, partial=True) if row else None
            self.reconciler.confirm(handle, server_entity)

        try:
            await self._queue.submit(entity_id, "update", write)
        except StaleWriteError:
            await self.async_reload_entity(entity_id)
            self.notifier.warning(f"{name}/{entity_id} was changed by someone else; showing the latest version")
            return None
        except Exception as exc:  # noqa: BLE001
            self.notifier.error(f"Failed to update {name}/{entity_id}: {exc}")
            return None

        self.notifier.success(f"Updated {name}/{entity_id}")
        return self.reconciler.get(entity_id)

    async def async_insert(self, fields: Mapping[str, Any]) -> Entity | None:
        """Validate and insert a new row; returns the stored entity or None."""
        name = self.table.name
        try:
            self._check_required(fields, partial=False)
        except ValidationError as exc:
            self.notifier.error(str(exc))
            return None

        payload = clean_dates_in_payload(fields)
        # Single attempt: a lost response on a retried insert would duplicate the row
        try:
            row = await self.client.insert(name, payload)
        except Exception as exc:  # noqa: BLE001
            self.notifier.error(f"Failed to create {name}: {exc}")
            return None

        entity = self.table.parse_row(row, partial=True)
        if entity is not None:
            self.reconciler.upsert_confirmed(entity)
        self.notifier.success(f"Created {name}/{entity.id if entity else '?'}")
        return entity

    async def async_delete(self, entity_id: str) -> bool:
        name = self.table.name
        if entity_id not in self.data:
            self.notifier.error(f"Cannot delete {name}/{entity_id}: not loaded")
            return False
        handle = self.reconciler.apply_optimistic_removal(entity_id)

        async def remove():
            try:
                await self.fetcher.run(
                    lambda: self.client.delete(name, entity_id),
                    f"delete {name}/{entity_id}",
                )
            except Exception:
                self.reconciler.rollback(handle)
                raise
            self.reconciler.confirm(handle)

        try:
            await self._queue.submit(entity_id, "delete", remove)
        except Exception as exc:  # noqa: BLE001
            self.notifier.error(f"Failed to delete {name}/{entity_id}: {exc}")
            return False
        self.notifier.success(f"Deleted {name}/{entity_id}")
        return True

    # ------------------------------------------------------------------
    # Change stream
    # ------------------------------------------------------------------

    def _handle_change(self, data: dict) -> None:
        event = parse_change_payload(data, self.table.name, self.table.parse_row)
        if event is not None:
            self.reconciler.on_remote_event(event)

    def _handle_stream_error(self, exc: Exception) -> None:
        self._subscription = None
        self.notifier.warning(f"Live updates for {self.table.name} stopped ({exc}); data may be stale")

    async def async_subscribe(self) -> bool:
        """
        Subscribe to the table's change stream.

        Subscriptions are table-wide; rows leaving the active filter are
        removed locally, so no server-side filter is sent.
        """
        if self.stream is None:
            return False
        if self._subscription is not None:
            return True
        try:
            self._subscription = await self.fetcher.run(
                lambda: self.stream.subscribe(
                    self.table.name, None, self._handle_change, self._handle_stream_error
                ),
                f"subscribe {self.table.name}",
            )
        except Exception as exc:  # noqa: BLE001
            self.notifier.warning(f"Live updates for {self.table.name} unavailable: {exc}")
            return False
        _LOGGER.debug("Live updates for %s active", self.table.name)
        return True

    async def async_unsubscribe(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None or self.stream is None:
            return
        try:
            await self.stream.unsubscribe(subscription)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("Unsubscribing from %s failed: %s", self.table.name, exc)

    @contextlib.asynccontextmanager
    async def live(self) -> AsyncIterator[bool]:
        """Subscribed for the duration of the block; always released on exit."""
        subscribed = await self.async_subscribe()
        try:
            yield subscribed
        finally:
            await self.async_unsubscribe()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Release the subscription and stop the write queue workers."""
        await self.async_unsubscribe()
        await self._queue.shutdown()
