"""Provider connectivity probe for ``POST /admin/test``.

Sends one cheap request to the provider with the stored key and reports
whether the provider accepted it.  Results never include the key or the
request URL, which for some providers carries the key as a query parameter.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from keystore.constants import PROBE_TIMEOUT
from keystore.server.admin.schemas import ProbeDetails, ProbeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeTarget:
    """How to reach one provider with a key."""

    label: str
    url: str
    params: Dict[str, str] = field(default_factory=dict)
    key_param: Optional[str] = None
    key_header: Optional[str] = None

    def build(self, key: str) -> tuple:
        params = dict(self.params)
        headers = {"Accept": "application/json"}
        if self.key_param:
            params[self.key_param] = key
        if self.key_header:
            headers[self.key_header] = key
        return params, headers


PROBE_TARGETS: Dict[str, ProbeTarget] = {
    "visualcrossing": ProbeTarget(
        label="Visual Crossing",
        url="https://weather.visualcrossing.com/VisualCrossingWebServices/rest/services/timeline/0,0",
        params={"unitGroup": "metric", "include": "current"},
        key_param="key",
    ),
    "newsapi": ProbeTarget(
        label="NewsAPI",
        url="https://newsapi.org/v2/everything",
        params={"q": "test", "pageSize": "1"},
        key_header="X-Api-Key",
    ),
    "gnews": ProbeTarget(
        label="GNews",
        url="https://gnews.io/api/v4/search",
        params={"q": "test", "lang": "en", "max": "1"},
        key_param="token",
    ),
}


class ConnectivityChecker:
    """Async prober backed by a shared ``httpx.AsyncClient``.

    Parameters
    ----------
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = PROBE_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    # ── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> httpx.AsyncClient:
        """Create the underlying ``httpx.AsyncClient`` if needed and return it."""
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Probing ──────────────────────────────────────────────────

    async def check(self, provider: str, key: Optional[str]) -> ProbeResult:
        """Probe *provider* using *key*.  Never raises for network failures."""
        if not key:
            return ProbeResult(
                ok=False,
                details=ProbeDetails(
                    status="missing-key",
                    message="No key stored or configured for this provider.",
                ),
            )
        target = PROBE_TARGETS.get(provider)
        if target is None:
            raise KeyError(provider)

        client = await self.connect()
        params, headers = target.build(key)
        started = time.monotonic()
        try:
            response = await client.get(target.url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            # The exception text can include the URL (and with it the key)
            logger.warning("Connectivity probe for '%s' failed: %s", provider, type(exc).__name__)
            return ProbeResult(
                ok=False,
                details=ProbeDetails(
                    status="network-error",
                    message=f"Connectivity check failed: {type(exc).__name__}",
                ),
            )
        latency = int((time.monotonic() - started) * 1000)

        if response.is_success:
            logger.info("Connectivity probe for '%s' ok (%d ms).", provider, latency)
            return ProbeResult(
                ok=True,
                details=ProbeDetails(
                    status="ok",
                    provider_latency_ms=latency,
                    http_status=response.status_code,
                ),
            )

        logger.info(
            "Connectivity probe for '%s' returned HTTP %d.", provider, response.status_code
        )
        return ProbeResult(
            ok=False,
            details=ProbeDetails(
                status="http-error",
                provider_latency_ms=latency,
                http_status=response.status_code,
                message=f"{target.label} responded with status {response.status_code}",
            ),
        )
