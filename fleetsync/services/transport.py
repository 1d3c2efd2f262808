"""
Remote sync transport over HTTP.

The record service exposes one endpoint: ``GET`` returns a document mapping
sheet names to row-sets, ``POST`` accepts an opaque JSON payload. Failures are
returned as ``Result`` values, never raised.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from fleetsync.core.clock import Clock, system_clock
from fleetsync.core.result import ErrorKind, Result

logger = logging.getLogger(__name__)


class RemoteTransport:
    """Async request/response access to the record service"""

    def __init__(
        self,
        endpoint: str,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            endpoint: Absolute URL of the record service
            client: Preconfigured client; one with redirect following is created otherwise
            clock: Time source for the cache-busting query parameter
        """
        self.endpoint = endpoint
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._clock = clock or system_clock

    @property
    def configured(self) -> bool:
        return self.endpoint.startswith("http")

    async def read(self) -> Result[Dict[str, Any]]:
        """Fetch the full document."""
        if not self.configured:
            return Result.failure(ErrorKind.OFFLINE, "No sync endpoint configured")

        try:
            response = await self._client.get(
                self.endpoint, params={"t": int(self._clock.now() * 1000)}
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Read from record service timed out: {e}")
            return Result.failure(ErrorKind.TIMEOUT, str(e))
        except httpx.HTTPError as e:
            logger.warning(f"Read from record service failed: {e}")
            return Result.failure(ErrorKind.NETWORK, str(e))

        if response.status_code >= 400:
            return Result.failure(
                ErrorKind.NETWORK, f"Record service answered {response.status_code}"
            )

        text = response.text
        # An HTML body is the service's error or login page, not data
        if not text or text.lstrip().startswith("<"):
            return Result.failure(ErrorKind.MALFORMED, "Invalid response format")

        try:
            document = json.loads(text)
        except ValueError as e:
            return Result.failure(ErrorKind.MALFORMED, f"Undecodable document: {e}")

        if not isinstance(document, dict):
            return Result.failure(ErrorKind.MALFORMED, "Document is not a keyed collection")

        return Result.success(document)

    async def write(self, payload: Any, timeout: Optional[float] = None) -> Result[None]:
        """
        Send one payload.

        Args:
            payload: JSON-serializable mutation
            timeout: Hard limit in seconds for the whole exchange

        Returns:
            Success, or TIMEOUT/NETWORK (transient), MALFORMED (payload not
            serializable) or REJECTED (server refused)
        """
        if not self.configured:
            return Result.failure(ErrorKind.OFFLINE, "No sync endpoint configured")

        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as e:
            return Result.failure(ErrorKind.MALFORMED, f"Payload not serializable: {e}")

        request = self._client.post(
            self.endpoint,
            content=body,
            headers={"Content-Type": "text/plain"},
        )
        try:
            if timeout is not None:
                response = await asyncio.wait_for(request, timeout=timeout)
            else:
                response = await request
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(f"Write to record service timed out: {e!r}")
            return Result.failure(ErrorKind.TIMEOUT, "Send timed out")
        except httpx.HTTPError as e:
            logger.warning(f"Write to record service failed: {e}")
            return Result.failure(ErrorKind.NETWORK, str(e))

        if response.status_code >= 400:
            return Result.failure(
                ErrorKind.REJECTED, f"Record service answered {response.status_code}"
            )
        return Result.success()

    async def aclose(self) -> None:
        await self._client.aclose()
