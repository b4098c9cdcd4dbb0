"""Configuration for tourdesk, validated with voluptuous."""
from __future__ import annotations

import dataclasses
import logging
import os
from typing import Any, Mapping

import voluptuous as vol
from dotenv import load_dotenv

from .const import (
    PAGE_SIZE,
    REQUEST_TIMEOUT,
    RETRY_ATTEMPTS,
    RETRY_BACKOFF,
    RETRY_DELAY,
    RETRY_JITTER,
    WRITE_DELAY,
)
from .errors import SettingsError
from .retry import RetryPolicy

_LOGGER = logging.getLogger(__name__)

url_validator = vol.All(str, vol.Length(min=1), vol.Match(r"^https?://[^\s/]+"))
non_empty = vol.All(str, vol.Length(min=1))
positive_int = vol.All(vol.Coerce(int), vol.Range(min=1))
non_negative_float = vol.All(vol.Coerce(float), vol.Range(min=0))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("url"): url_validator,
        vol.Required("api_key"): non_empty,
        vol.Optional("access_token", default=None): vol.Any(None, non_empty),
        vol.Optional("schema", default="public"): non_empty,
        vol.Optional("retry_attempts", default=RETRY_ATTEMPTS): positive_int,
        vol.Optional("retry_delay", default=RETRY_DELAY): non_negative_float,
        vol.Optional("retry_backoff", default=RETRY_BACKOFF): vol.All(vol.Coerce(float), vol.Range(min=1)),
        vol.Optional("retry_jitter", default=RETRY_JITTER): vol.All(vol.Coerce(float), vol.Range(min=0, max=1)),
        vol.Optional("request_timeout", default=REQUEST_TIMEOUT): vol.All(vol.Coerce(float), vol.Range(min=0.1)),
        vol.Optional("write_delay", default=WRITE_DELAY): non_negative_float,
        vol.Optional("page_size", default=PAGE_SIZE): positive_int,
    },
    extra=vol.REMOVE_EXTRA,
)

# settings key → environment variable
ENV_VARS = {
    "url": "TOURDESK_URL",
    "api_key": "TOURDESK_API_KEY",
    "access_token": "TOURDESK_ACCESS_TOKEN",
    "schema": "TOURDESK_SCHEMA",
    "retry_attempts": "TOURDESK_RETRY_ATTEMPTS",
    "retry_delay": "TOURDESK_RETRY_DELAY",
    "retry_backoff": "TOURDESK_RETRY_BACKOFF",
    "retry_jitter": "TOURDESK_RETRY_JITTER",
    "request_timeout": "TOURDESK_REQUEST_TIMEOUT",
    "write_delay": "TOURDESK_WRITE_DELAY",
    "page_size": "TOURDESK_PAGE_SIZE",
}


@dataclasses.dataclass(frozen=True)
class Settings:
    url: str
    api_key: str
    access_token: str | None = None
    schema: str = "public"
    retry_attempts: int = RETRY_ATTEMPTS
    retry_delay: float = RETRY_DELAY
    retry_backoff: float = RETRY_BACKOFF
    retry_jitter: float = RETRY_JITTER
    request_timeout: float = REQUEST_TIMEOUT
    write_delay: float = WRITE_DELAY
    page_size: int = PAGE_SIZE

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        try:
            validated = CONFIG_SCHEMA(dict(data))
        except vol.Invalid as exc:
            raise SettingsError(f"Invalid configuration: {exc}") from exc
        validated["url"] = validated["url"].rstrip("/")
        return cls(**validated)

    @property
    def rest_url(self) -> str:
        return f"{self.url}/rest/v1"

    @property
    def realtime_url(self) -> str:
        scheme, _, rest = self.url.partition("://")
        ws_scheme = "wss" if scheme == "https" else "ws"
        return f"{ws_scheme}://{rest}/realtime/v1/websocket"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            backoff=self.retry_backoff,
            jitter=self.retry_jitter,
        )


def load_settings(environ: Mapping[str, str] | None = None, dotenv: bool = True) -> Settings:
    """
    Build Settings from environment variables (and a .env file when dotenv=True).

    Unset variables fall back to the schema defaults.
    """
    if dotenv:
        load_dotenv()
    if environ is None:
        environ = os.environ
    data = {key: environ[var] for key, var in ENV_VARS.items() if environ.get(var)}
    _LOGGER.debug("Loaded settings keys from environment: %s", sorted(data))
    return Settings.from_mapping(data)
