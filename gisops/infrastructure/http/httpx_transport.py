"""Concrete implementation of the Transport interface using httpx.

Hides the specifics of the HTTP client library: attaches the auth token,
decodes JSON bodies, parses `Retry-After` hints and turns connection-level
failures into `NetworkError`. HTTP status codes are not interpreted here.
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from gisops.domain.errors import NetworkError
from gisops.domain.interfaces.transport import TokenSupplier, Transport, TransportRequest, TransportResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
AUTH_HEADER = "X-Esri-Authorization"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parses a Retry-After header given in seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class HttpxTransport(Transport):
    """Transport backed by an `httpx.AsyncClient`."""

    def __init__(
        self,
        token_supplier: Optional[TokenSupplier] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initializes the transport.

        Args:
            token_supplier: Async callable returning the current token (or None).
            timeout: Per-request timeout in seconds.
            client: Preconfigured client (tests pass one built on MockTransport).
        """
        self.token_supplier = token_supplier
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        logger.info(f"HttpxTransport initialized (timeout={timeout}s, auth={'yes' if token_supplier else 'no'})")

    async def send(self, request: TransportRequest) -> TransportResponse:
        headers = dict(request.headers)
        if self.token_supplier is not None:
            token = await self.token_supplier()
            if token:
                headers[AUTH_HEADER] = f"Bearer {token}"

        logger.debug(f"{request.method} {request.url} ({request.endpoint or 'request'})")
        try:
            response = await self.client.request(
                request.method,
                request.url,
                params=request.params or None,
                data=request.data,
                json=request.json,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"{request.endpoint or request.url}: request timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{request.endpoint or request.url}: {type(e).__name__}: {e}") from e

        return TransportResponse(
            status_code=response.status_code,
            body=self._decode_body(response),
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
            headers=dict(response.headers),
        )

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            # Not JSON (HTML error pages, plain text): keep the text.
            return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
