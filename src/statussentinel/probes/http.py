"""HTTP(S) health endpoint probe."""

import logging
import socket
import ssl
import time
from datetime import datetime

import httpx

from statussentinel import __version__
from statussentinel.config import ServiceConfig
from statussentinel.models import ProbeResult, ReasonKind
from statussentinel.probes.base import BaseProbe, ProbeError

logger = logging.getLogger(__name__)

USER_AGENT = f"statussentinel/{__version__}"

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
)


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain = []
    seen = set()
    while exc is not None and id(exc) not in seen:
        chain.append(exc)
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return chain


def classify_transport_error(exc: httpx.TransportError) -> ReasonKind:
    """Map an httpx transport failure to a down reason."""
    if isinstance(exc, httpx.TimeoutException):
        return ReasonKind.TIMEOUT

    chain = _exception_chain(exc)
    for err in chain:
        if isinstance(err, ssl.SSLError):
            return ReasonKind.TLS_ERROR
        if isinstance(err, socket.gaierror):
            return ReasonKind.DNS_FAILURE
        if isinstance(err, ConnectionRefusedError):
            return ReasonKind.CONNECTION_REFUSED
        if isinstance(err, (TimeoutError, socket.timeout)):
            return ReasonKind.TIMEOUT

    # Fall back on the message when the original error was not chained
    text = " ".join(str(err) for err in chain).lower()
    if "certificate" in text or "ssl" in text or "tls" in text:
        return ReasonKind.TLS_ERROR
    if any(marker in text for marker in _DNS_MARKERS):
        return ReasonKind.DNS_FAILURE
    if "connection refused" in text or "errno 111" in text:
        return ReasonKind.CONNECTION_REFUSED
    return ReasonKind.CONNECTION_ERROR


class HTTPProbe(BaseProbe):
    """Check a service with a single GET request."""

    def __init__(
        self,
        service: ServiceConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HTTP probe.

        Args:
            service: Service with an http(s) target.
            transport: Optional httpx transport, used by tests.
        """
        super().__init__(service)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=False,
            verify=self.service.verify_tls,
            headers={"User-Agent": USER_AGENT, "Accept": "*/*"},
            transport=self._transport,
        )

    async def check(self, timestamp: datetime) -> ProbeResult:
        """GET the target; 2xx and 3xx are up."""
        name = self.service.name
        url = self.service.target.url
        start = time.perf_counter()

        try:
            async with self._client() as client:
                # Stream so the body is never read; latency stops at the headers
                async with client.stream("GET", url) as response:
                    latency_ms = (time.perf_counter() - start) * 1000
                    status = response.status_code
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise ProbeError(f"cannot request {url}: {e}") from e
        except httpx.TransportError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            kind = classify_transport_error(e)
            logger.debug(f"[HTTP] {name} {url} -> {kind.value}: {e}")
            return ProbeResult.failure(
                name,
                timestamp,
                kind,
                detail=str(e)[:200] or type(e).__name__,
                latency_ms=round(elapsed_ms, 2),
            )

        if 200 <= status <= 399:
            logger.debug(f"[HTTP] {name} {url} -> {status} in {latency_ms:.1f}ms")
            return ProbeResult.success(name, timestamp, round(latency_ms, 2), detail=f"HTTP {status}")

        logger.debug(f"[HTTP] {name} {url} -> status {status}")
        return ProbeResult.failure(
            name,
            timestamp,
            ReasonKind.HTTP_STATUS,
            status_code=status,
            latency_ms=round(latency_ms, 2),
        )
