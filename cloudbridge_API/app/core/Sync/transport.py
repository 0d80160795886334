# transport.py
# Description: Remote endpoint collaborator used by the sync dispatcher, plus an httpx implementation.
#
# Imports
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Dict, Any
#
# 3rd-party Libraries
import httpx
from loguru import logger
#
# Local Imports
from .exceptions import TransientNetworkError, ValidationError
#
########################################################################################################################
#
# Functions:

def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parses a Retry-After header value (delta-seconds or HTTP-date) into seconds.

    Returns None if the header is absent or unparseable; never negative.
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
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
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


@dataclass
class RemoteResponse:
    """Status code, raw body and headers returned by a remote endpoint."""
    status: int
    content: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def retry_after(self) -> Optional[float]:
        for key, value in self.headers.items():
            if key.lower() == "retry-after":
                return parse_retry_after(value)
        return None

    @property
    def reason(self) -> str:
        try:
            return httpx.codes(self.status).phrase
        except ValueError:
            return f"HTTP {self.status}"

    def json(self) -> Any:
        """Decodes the body as JSON; an empty body decodes to None."""
        if not self.content:
            return None
        try:
            return json.loads(self.content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid JSON response received: {e}", status=self.status, original_error=e) from e


class RemoteEndpoint(ABC):
    """Abstract request/response contract the dispatcher depends on."""

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> RemoteResponse:
        """
        Sends one request and returns the response, whatever its status.

        Raises:
            TransientNetworkError: If the request could not be completed
                (timeout, connection failure).
        """
        pass

    async def aclose(self) -> None:
        """Releases any held connections."""
        return None


class HttpxRemoteEndpoint(RemoteEndpoint):
    """RemoteEndpoint backed by an `httpx.AsyncClient`."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not base_url.endswith('/'):
            base_url += '/'
        self.base_url = base_url
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, transport=transport)
        logger.info(f"HTTP endpoint initialized for URL: {self.base_url}")

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> RemoteResponse:
        url = self.url_for(path)
        logger.debug(f"{method} {url} ({len(body) if body else 0} bytes)")
        try:
            response = await self._client.request(method, url, content=body, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise TransientNetworkError("Request timed out", operation="request",
                                        context={"method": method, "url": url}, original_error=e) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Connection to remote endpoint failed: {e}", operation="request",
                                        context={"method": method, "url": url}, original_error=e) from e
        return RemoteResponse(status=response.status_code, content=response.content, headers=dict(response.headers))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxRemoteEndpoint":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

#
# End of transport.py
#######################################################################################################################
