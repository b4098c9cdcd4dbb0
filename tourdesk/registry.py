"""
SyncRegistry — one SyncCoordinator per table within a scope.

Every screen that shows orders gets the same coordinator (and therefore the
same reconciled collection) from the registry instead of fetching and
subscribing on its own. Coordinators in one scope share the RetryingFetcher,
the SchemaCapabilities cache and the Notifier.
"""
from __future__ import annotations

import logging
from typing import Callable

from .api.client import RestClient
from .api.realtime import ChangeStream, RealtimeClient
from .capabilities import SchemaCapabilities
from .const import PAGE_SIZE, WRITE_DELAY
from .notifications import Notifier
from .retry import RetryingFetcher
from .settings import Settings
from .sync_coordinator import SyncCoordinator
from .tables import get_table

_LOGGER = logging.getLogger(__name__)

# scope → SyncRegistry
SyncRegistryInstances: dict[str, "SyncRegistry"] = {}


class SyncRegistry:

    def __init__(
        self,
        client,
        stream: ChangeStream | None = None,
        settings: Settings | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.client = client
        self.stream = stream
        self.settings = settings
        self.notifier = notifier or Notifier()
        policy = settings.retry_policy() if settings is not None else None
        self.fetcher = RetryingFetcher(policy)
        self.capabilities = SchemaCapabilities(client, self.fetcher)
        self.write_delay = settings.write_delay if settings is not None else WRITE_DELAY
        self.page_size = settings.page_size if settings is not None else PAGE_SIZE
        self._coordinators: dict[str, SyncCoordinator] = {}

    @classmethod
    def from_settings(cls, settings: Settings, notifier: Notifier | None = None) -> "SyncRegistry":
        return cls(
            RestClient.from_settings(settings),
            RealtimeClient.from_settings(settings),
            settings=settings,
            notifier=notifier,
        )

    @classmethod
    def get_instance(cls, scope: str, factory: Callable[[], "SyncRegistry"]) -> "SyncRegistry":
        """
        Get or create the registry for scope.

        factory is only called when the scope has no registry yet.
        """
        if scope not in SyncRegistryInstances:
            SyncRegistryInstances[scope] = factory()
        return SyncRegistryInstances[scope]

    @classmethod
    def clean_instances(cls) -> None:
        """
        Forget all scoped registries.
        This is used for testing purposes to reset the singleton instances.
        """
        SyncRegistryInstances.clear()

    def get(self, table_name: str) -> SyncCoordinator:
        """Coordinator for table_name, created on first use."""
        coordinator = self._coordinators.get(table_name)
        if coordinator is None:
            coordinator = SyncCoordinator(
                get_table(table_name),
                self.client,
                self.stream,
                fetcher=self.fetcher,
                capabilities=self.capabilities,
                notifier=self.notifier,
                write_delay=self.write_delay,
                page_size=self.page_size,
            )
            self._coordinators[table_name] = coordinator
            _LOGGER.debug("Created coordinator for %s", table_name)
        return coordinator

    def coordinators(self) -> list[SyncCoordinator]:
        return list(self._coordinators.values())

    async def shutdown(self) -> None:
        """Shut down every coordinator, then close the stream and client."""
        for coordinator in self._coordinators.values():
            await coordinator.async_shutdown()
        self._coordinators.clear()
        if self.stream is not None and hasattr(self.stream, "close"):
            await self.stream.close()
        if hasattr(self.client, "close"):
            await self.client.close()
