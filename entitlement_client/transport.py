from typing import Any, Dict, NamedTuple, Optional, Protocol

import httpx

from entitlement_client.config import settings
from entitlement_client.errors import TransportFailure


class TransportResponse(NamedTuple):
    status: int
    body: str


class HttpTransport(Protocol):
    def post_json(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> TransportResponse:
        """POST ``body`` as JSON. Raises TransportFailure if no response was received."""
        ...


class HttpxTransport:
    """
    Transport backed by httpx. Any status code counts as a response;
    only connection-level problems raise.
    """

    def __init__(self, timeout: Optional[float] = None, client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client(
            timeout=settings.AUTH_API_TIMEOUT if timeout is None else timeout
        )

    def post_json(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> TransportResponse:
        try:
            response = self._client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportFailure(f"HTTP error while calling {url}: {str(e)}") from e
        return TransportResponse(status=response.status_code, body=response.text)

    def close(self):
        self._client.close()
