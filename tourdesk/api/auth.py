"""
Request headers for the hosted backend.

Sign-in and session handling belong to the backend's auth service; this
module only turns an api key (and an optional user access token) into the
headers every REST and realtime call carries.
"""
from __future__ import annotations


def get_standard_headers(api_key: str, access_token: str | None = None, schema: str = "public") -> dict:
    """
    Build the standard HTTP headers used by all backend requests.

    :param api_key: Project api key.
    :param access_token: Signed-in user's token; falls back to the api key.
    :param schema: Database schema the REST calls target.
    :return: Dictionary of HTTP headers.
    """
    return {
        "accept": "application/json",
        "apikey": api_key,
        "Authorization": f"Bearer {access_token or api_key}",
        "Accept-Profile": schema,
        "Content-Profile": schema,
    }


def get_write_headers(api_key: str, access_token: str | None = None, schema: str = "public") -> dict:
    """Standard headers plus the ones asking the backend to echo written rows."""
    headers = get_standard_headers(api_key, access_token, schema)
    headers["Content-Type"] = "application/json"
    headers["Prefer"] = "return=representation"
    return headers
