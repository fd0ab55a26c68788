"""
n8n API Client for MCP Server

Environment-scoped client: one httpx.AsyncClient is created lazily per
configured environment and reused for every later request to it, so each
environment keeps its own connection pool.
"""
import logging
from typing import Any, Optional

import httpx

from config import ConfigLoader, normalize_base_url
from errors import N8NApiError, classify_error

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class N8NClient:
    """Client for n8n REST API endpoints"""

    def __init__(
        self,
        config: ConfigLoader,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0
    ):
        """
        Initialize API client with configuration.

        Args:
            config: Loader resolving environment names to host and API key
            transport: Optional httpx transport (used by tests to stub the network)
            timeout: Request timeout in seconds
        """
        self.config = config
        self.transport = transport
        self.timeout = timeout
        self._clients: dict[str, httpx.AsyncClient] = {}

    def get_client(self, instance: Optional[str] = None) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client for an environment"""
        name = self.config.resolve_name(instance)
        client = self._clients.get(name)
        if client is None:
            env = self.config.get_environment_config(name)
            base_url = normalize_base_url(env.host)
            logger.debug("Creating HTTP client for environment '%s' at %s", name, base_url)
            client = httpx.AsyncClient(
                base_url=base_url,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "X-N8N-API-KEY": env.api_key
                },
                timeout=self.timeout,
                transport=self.transport
            )
            self._clients[name] = client
        return client

    async def clear_cache(self) -> None:
        """Close cached clients so they are recreated on next use"""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        context: str,
        instance: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
        json_data: Optional[Any] = None
    ) -> Any:
        """Make API request

        Args:
            method: HTTP method
            endpoint: Path relative to the /api/v1 base URL
            context: Description of the operation, used in error messages
            instance: Environment name (default environment when omitted)
            params: Query parameters; None values are dropped
            json_data: JSON request body

        Returns:
            Decoded JSON response, or an empty dict for empty bodies
        """
        client = self.get_client(instance)
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        try:
            response = await client.request(
                method=method,
                url=endpoint,
                params=params or None,
                json=json_data
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(
                "API error during %s: status=%s response=%s",
                context, e.response.status_code, e.response.text
            )
            raise classify_error(
                context, e.response.status_code, message, response_body=e.response.text
            ) from e
        except httpx.HTTPError as e:
            logger.error("API error during %s: %s", context, e)
            raise N8NApiError(f"API error {context}: {e}", context=context) from e

        if not response.content:
            return {}
        return response.json()

    async def close(self):
        """Close all cached clients"""
        await self.clear_cache()
