"""
SchemaCapabilities — lazily probed "does this optional column exist" cells.

Responsibilities:
- Probe each (table, column) at most once while the answer is known.
- Primary probe: the get_table_columns RPC. Fallback probe: select the
  column with limit=0 and read an undefined-column error as "absent".
- Never cache a failed probe; the next call probes again.
- invalidate() forgets answers so a deployment change is picked up.
"""
from __future__ import annotations

import asyncio
import logging

from .const import COLUMNS_RPC
from .requests import ApiResponseError
from .retry import RetryingFetcher

_LOGGER = logging.getLogger(__name__)

# Error codes meaning "that column is not in the table"
UNDEFINED_COLUMN_CODES = frozenset({"42703", "PGRST204"})


def _column_names(result) -> set[str]:
    if not isinstance(result, list):
        raise ValueError(f"Unexpected {COLUMNS_RPC} response: {result!r}")
    names = set()
    for item in result:
        if isinstance(item, str):
            names.add(item)
        elif isinstance(item, dict) and item.get("column_name"):
            names.add(item["column_name"])
    return names


def is_undefined_column(exc: BaseException, column: str) -> bool:
    if not isinstance(exc, ApiResponseError):
        return False
    if exc.code in UNDEFINED_COLUMN_CODES:
        return True
    message = str(exc.error_json.get("message") or "")
    return "column" in message and column in message


class SchemaCapabilities:
    """Column-exists cache owned by one registry scope."""

    def __init__(self, client, fetcher: RetryingFetcher | None = None) -> None:
        self.client = client
        self.fetcher = fetcher or RetryingFetcher()
        self._cells: dict[tuple[str, str], bool] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def cached(self, table: str, column: str) -> bool | None:
        """Known answer for (table, column), or None if not probed yet."""
        return self._cells.get((table, column))

    def invalidate(self, table: str | None = None, column: str | None = None) -> None:
        """Forget cached answers; both None clears everything."""
        for key in list(self._cells):
            if (table is None or key[0] == table) and (column is None or key[1] == column):
                del self._cells[key]

    async def has_column(self, table: str, column: str) -> bool | None:
        """
        True / False once known, None when every probe failed.

        None is never cached, so the next call probes again.
        """
        key = (table, column)
        if key in self._cells:
            return self._cells[key]
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._cells:
                return self._cells[key]
            result = await self._probe(table, column)
            if result is not None:
                self._cells[key] = result
                _LOGGER.debug("Column %s.%s available: %s", table, column, result)
            return result

    async def _probe(self, table: str, column: str) -> bool | None:
        try:
            names = _column_names(
                await self.fetcher.run(
                    lambda: self.client.rpc(COLUMNS_RPC, {"table_name": table}),
                    f"{COLUMNS_RPC}({table})",
                )
            )
            if names:
                return column in names
            _LOGGER.debug("%s returned no columns for %s, trying fallback probe", COLUMNS_RPC, table)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("Primary column probe for %s.%s failed: %s", table, column, exc)

        try:
            await self.fetcher.run(
                lambda: self.client.fetch(table, select=column, limit=0),
                f"column probe {table}.{column}",
            )
            return True
        except Exception as exc:  # noqa: BLE001
            if is_undefined_column(exc, column):
                return False
            _LOGGER.warning("Could not determine whether %s.%s exists: %s", table, column, exc)
            return None
