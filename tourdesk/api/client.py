"""
REST client for the hosted backend's PostgREST-style data API.

Responsible for:
- Owning the aiohttp session for the lifetime of a registry scope
- Bulk reads filtered by status set and visibility
- Single-row insert / update / delete, with an updated_at precondition on updates
- Remote procedure calls (used by the capability probes)
"""
from __future__ import annotations

import datetime
import logging
from typing import Any, Mapping

import aiohttp

from ..const import REQUEST_TIMEOUT
from ..errors import StaleWriteError
from ..models import EntityFilter
from ..requests import make_request
from .auth import get_standard_headers, get_write_headers

_LOGGER = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def filter_params(criteria: EntityFilter | None, equals: Mapping[str, Any] | None = None) -> dict:
    """Translate filter criteria into PostgREST query parameters."""
    params: dict[str, str] = {}
    if criteria is not None:
        if criteria.statuses is not None:
            params["status"] = f"in.({','.join(sorted(criteria.statuses))})"
        if criteria.visibility_field is not None:
            params[criteria.visibility_field] = "eq.true"
    for key, value in (equals or {}).items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        params[key] = f"eq.{value}"
    return params


class RestClient:
    """Thin async wrapper over the data API; one instance per backend project."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        schema: str = "public",
        timeout: float = REQUEST_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.schema = schema
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings) -> "RestClient":
        return cls(
            settings.rest_url,
            settings.api_key,
            access_token=settings.access_token,
            schema=settings.schema,
            timeout=settings.request_timeout,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    async def _request(self, method: str, path: str, *, payload=None, params=None, write: bool = False):
        if write:
            headers = get_write_headers(self.api_key, self.access_token, self.schema)
        else:
            headers = get_standard_headers(self.api_key, self.access_token, self.schema)
        return await make_request(
            self._get_session(), method, self._url(path), headers,
            payload=payload, params=params, timeout=self.timeout,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(
        self,
        table: str,
        criteria: EntityFilter | None = None,
        select: str = "*",
        equals: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """
        Fetch all rows of table matching criteria.

        Corresponding CURL command:
        curl 'https://<project>/rest/v1/orders?select=*&status=in.(confirmed,pending)'
        """
        params = {"select": _compact(select), **filter_params(criteria, equals)}
        if limit is not None:
            params["limit"] = str(limit)
        rows = await self._request("GET", table, params=params)
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise ValueError(f"Unexpected response format for {table}: {rows!r}")
        return rows

    async def fetch_one(self, table: str, entity_id: str, select: str = "*") -> dict | None:
        rows = await self.fetch(table, select=select, equals={"id": entity_id})
        return rows[0] if rows else None

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None):
        return await self._request("POST", f"rpc/{name}", payload=dict(params or {}), write=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        rows = await self._request("POST", table, payload=dict(row), write=True)
        if not rows:
            raise ValueError(f"Insert into {table} returned no row")
        return rows[0] if isinstance(rows, list) else rows

    async def update(
        self,
        table: str,
        entity_id: str,
        patch: Mapping[str, Any],
        expected_updated_at: str | None = None,
    ) -> dict:
        """
        Update a single row and return it as stored.

        When expected_updated_at is given the update only applies if the row
        still carries that timestamp; otherwise StaleWriteError is raised.
        """
        params = {"id": f"eq.{entity_id}"}
        if expected_updated_at is not None:
            params["updated_at"] = f"eq.{expected_updated_at}"
        payload = dict(patch)
        payload.setdefault("updated_at", utc_now_iso())
        rows = await self._request("PATCH", table, payload=payload, params=params, write=True)
        if not rows:
            raise StaleWriteError(table, entity_id, expected_updated_at)
        return rows[0] if isinstance(rows, list) else rows

    async def delete(self, table: str, entity_id: str) -> None:
        rows = await self._request("DELETE", table, params={"id": f"eq.{entity_id}"}, write=True)
        if not rows:
            _LOGGER.debug("Delete of %s/%s matched no row", table, entity_id)


def _compact(select: str) -> str:
    """Strip whitespace from a multi-line select expression."""
    return "".join(select.split())
