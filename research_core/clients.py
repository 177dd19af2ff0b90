from __future__ import annotations

from typing import Any, Optional, Tuple

import httpx
from loguru import logger

from .config import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_MAX_REDIRECTS,
    HTTP_USER_AGENT,
)
from .errors import EmptyResponseError


def make_async_client(timeout: Optional[float] = None, **kwargs: Any) -> httpx.AsyncClient:
    """
    Provider HTTP client with the project's timeouts and redirect limits.
    Retries are left to :mod:`research_core.retry`.
    """
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(timeout or HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
        max_redirects=HTTP_MAX_REDIRECTS,
        headers={"User-Agent": HTTP_USER_AGENT},
        **kwargs,
    )


async def fetch_json(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Any:
    """
    One provider call. HTTP errors are raised as ``httpx.HTTPStatusError`` so
    the classifier sees the status code; an empty body raises
    :class:`EmptyResponseError`.
    """
    r = await client.request(method, url, **kwargs)
    if r.status_code >= 400:
        logger.warning("{} {}: HTTP {}", method, url, r.status_code)
        r.raise_for_status()
    if not r.content:
        raise EmptyResponseError(f"{method} {url} returned an empty body")
    return r.json()


async def fetch_client_credentials_token(
    client: httpx.AsyncClient,
    token_url: str,
    client_id: str,
    client_secret: str,
) -> Tuple[str, float]:
    """
    OAuth2 client-credentials grant. Returns ``(access_token, expires_in)``,
    the shape :class:`research_core.credentials.CredentialCache` expects.
    """
    data = await fetch_json(
        client,
        "POST",
        token_url,
        data={"grant_type": "client_credentials"},
        auth=(client_id, client_secret),
    )
    token = data.get("access_token") if isinstance(data, dict) else None
    if not token:
        raise EmptyResponseError(f"Token endpoint {token_url} returned no access_token")
    expires_in = float(data.get("expires_in", 3600))
    logger.debug("Fetched token for client {} (expires_in={})", client_id, expires_in)
    return str(token), expires_in
