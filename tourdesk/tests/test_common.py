"""
Shared helpers and factory functions for tourdesk tests.
Import from this module in each test file to avoid duplication.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from tourdesk.models import Entity
from tourdesk.notifications import Notifier
from tourdesk.retry import RetryingFetcher, RetryPolicy
from tourdesk.sync_coordinator import SyncCoordinator
from tourdesk.tables import ORDERS


def make_order(order_id: str = "order-1", **kwargs) -> Entity:
    defaults = dict(
        status="pending",
        tour_title="Lake Tour",
        departure_date="2024-05-01",
        created_at="2024-04-01T09:00:00+00:00",
        passengers=[],
        tour_id="tour-1",
    )
    updated_at = kwargs.pop("updated_at", "2024-04-01T09:00:00+00:00")
    defaults.update(kwargs)
    return Entity(order_id, defaults, updated_at)


def make_row(order_id: str = "order-1", **kwargs) -> dict:
    """Raw order row as the data API returns it."""
    return make_order(order_id, **kwargs).to_row()


def make_passenger(first_name: str = "Ada", last_name: str = "Lovelace", status: str = "active") -> dict:
    return {"first_name": first_name, "last_name": last_name, "status": status}


def make_fetcher(attempts: int = 3) -> RetryingFetcher:
    """Fetcher that never really sleeps."""
    return RetryingFetcher(RetryPolicy.fixed(attempts=attempts, delay=0), sleep=AsyncMock())


class FakeChangeStream:
    """In-memory change stream; push() delivers a payload to every subscriber of the table."""

    def __init__(self) -> None:
        self.subscriptions: list[dict] = []
        self.unsubscribed: list = []
        self.fail_subscribe: Exception | None = None

    async def subscribe(self, table, filter_expression, on_event, on_error=None):
        if self.fail_subscribe is not None:
            raise self.fail_subscribe
        handle = {"table": table, "filter": filter_expression, "on_event": on_event, "on_error": on_error}
        self.subscriptions.append(handle)
        return handle

    async def unsubscribe(self, handle):
        self.unsubscribed.append(handle)
        if handle in self.subscriptions:
            self.subscriptions.remove(handle)

    def push(self, table: str, payload: dict) -> None:
        for handle in list(self.subscriptions):
            if handle["table"] == table:
                handle["on_event"](payload)

    def fail(self, exc: Exception) -> None:
        for handle in list(self.subscriptions):
            if handle["on_error"] is not None:
                handle["on_error"](exc)


def make_client(rows: list[dict] | None = None) -> MagicMock:
    client = MagicMock()
    client.fetch = AsyncMock(return_value=rows or [])
    client.fetch_one = AsyncMock(return_value=None)
    client.insert = AsyncMock()
    client.update = AsyncMock()
    client.delete = AsyncMock(return_value=None)
    client.close = AsyncMock()
    # visibility column present
    client.rpc = AsyncMock(return_value=[{"column_name": "id"}, {"column_name": "show_in_provider"}])
    return client


def make_coordinator(client=None, stream=None, table=ORDERS) -> SyncCoordinator:
    return SyncCoordinator(
        table,
        client if client is not None else make_client(),
        stream,
        fetcher=make_fetcher(),
        notifier=Notifier(),
    )
