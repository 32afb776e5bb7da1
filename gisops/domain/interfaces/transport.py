"""Interface for the HTTP transport collaborator.

The core consumes a single capability, `send(request) -> response`, plus an
auth-token supplier it does not manage itself. Transports never raise for
HTTP status codes; classification is left to the ResultDecoder. They raise
`NetworkError` only when no response was received at all.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from gisops.domain.models.common import AuthToken

TokenSupplier = Callable[[], Awaitable[Optional[AuthToken]]]


@dataclass
class TransportRequest:
    """A service-agnostic HTTP request description."""
    method: str
    url: str
    params: Dict[str, Any] = field(default_factory=dict)   # Query string
    data: Optional[Dict[str, Any]] = None                   # Form body
    json: Optional[Any] = None                              # JSON body
    headers: Dict[str, str] = field(default_factory=dict)
    endpoint: str = ""  # Short name used in logs and events, e.g. 'submitJob'


@dataclass
class TransportResponse:
    status_code: int
    body: Any  # Decoded JSON when possible, otherwise the raw text
    retry_after: Optional[float] = None  # Seconds, from a Retry-After header
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(abc.ABC):
    """Abstract Base Class for authenticated HTTP calls."""

    @abc.abstractmethod
    async def send(self, request: TransportRequest) -> TransportResponse:
        """Performs one HTTP exchange.

        Args:
            request: The request to perform.

        Returns:
            The response, whatever its status code.

        Raises:
            NetworkError: If the connection failed or timed out.
        """
        pass

    async def aclose(self) -> None:
        """Releases pooled connections. Default: nothing to release."""
        return None
