from __future__ import annotations

import logging
from typing import Any

import httpx

from relgraph.core.errors import UpstreamProviderError

logger = logging.getLogger(__name__)


def _kind_for_status(status: int) -> str:
    if status in {401, 403}:
        return "auth"
    if status == 429:
        return "rate_limit"
    if status >= 500:
        return "server"
    return "bad_response"


def request_json(client: httpx.Client, provider: str, method: str, url: str, **kwargs: Any) -> Any:
    """Issue a request and decode JSON, mapping every failure onto ``UpstreamProviderError``."""
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise UpstreamProviderError(f"{provider} request timed out", provider=provider, kind="network") from exc
    except httpx.TransportError as exc:
        raise UpstreamProviderError(f"{provider} request failed: {exc}", provider=provider, kind="network") from exc

    if response.status_code >= 400:
        kind = _kind_for_status(response.status_code)
        logger.warning(
            "provider_http_error",
            extra={"provider": provider, "status": response.status_code, "kind": kind},
        )
        raise UpstreamProviderError(
            f"{provider} API error ({response.status_code})",
            provider=provider,
            kind=kind,
            status=response.status_code,
            details={"body": response.text[:500]},
        )
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamProviderError(
            f"{provider} returned a non-JSON body",
            provider=provider,
            kind="bad_response",
            status=response.status_code,
        ) from exc
