"""
Telemetry client for shield-study pings.

Pings are JSON documents POSTed to `<base_url>/submit/<ping_type>`. This
layer performs no retries; send failures surface as TelemetryError.
"""
import httpx
import structlog
from typing import Any, Dict, Optional

logger = structlog.get_logger()


class TelemetryClient:
    """Async HTTP client for study telemetry."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the telemetry client.

        Args:
            base_url: URL of the telemetry ingestion service
            timeout: Request timeout in seconds
            enabled: Whether to send pings (False = log only)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.enabled = enabled
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, ping_type: str, payload: Dict[str, Any]) -> None:
        """
        Send one ping.

        Raises:
            TelemetryError: On transport failure or a non-2xx response
        """
        if not self.enabled:
            logger.info("telemetry_disabled_ping", ping_type=ping_type, payload=payload)
            return

        client = await self._get_client()
        try:
            response = await client.post(f"/submit/{ping_type}", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "telemetry_send_failed",
                ping_type=ping_type,
                status_code=e.response.status_code
            )
            raise TelemetryError(
                f"telemetry rejected {ping_type} ping: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("telemetry_send_failed", ping_type=ping_type, error=str(e))
            raise TelemetryError(f"telemetry send failed for {ping_type} ping: {e}") from e

        logger.debug("telemetry_ping_sent", ping_type=ping_type)


class TelemetryError(Exception):
    """Raised when a telemetry ping could not be delivered."""
    pass
