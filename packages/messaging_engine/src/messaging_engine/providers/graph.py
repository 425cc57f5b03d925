"""
Graph API Transport

Shared HTTP plumbing for the Meta WhatsApp Cloud and Messenger providers.
"""

import hashlib
import hmac
import logging
from typing import Any

import httpx

from messaging_engine.providers.base import ProviderError, ProviderResponse

logger = logging.getLogger(__name__)

# Meta Graph API configuration
GRAPH_API_VERSION = "v18.0"
GRAPH_API_BASE_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"


def compute_signature(payload: bytes, app_secret: str) -> str:
    """X-Hub-Signature-256 header value for a payload."""
    digest = hmac.new(app_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def validate_signature(
    payload: bytes,
    signature_header: str | None,
    app_secret: str,
) -> bool:
    """
    Validate a Meta webhook signature.

    Args:
        payload: Raw request body bytes
        signature_header: X-Hub-Signature-256 header value
        app_secret: Facebook App Secret

    Returns:
        True if signature is valid
    """
    if not signature_header:
        logger.warning("Missing signature header")
        return False

    if not signature_header.startswith("sha256="):
        logger.warning("Invalid signature format")
        return False

    return hmac.compare_digest(compute_signature(payload, app_secret), signature_header)


# Webhook bodies are untrusted JSON; these return None or [] for unexpected shapes
def as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def safe_get(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, dict) else None


def safe_text(value: Any, key: str) -> str | None:
    text = safe_get(value, key)
    return text if isinstance(text, str) else None


class GraphTransport:
    """
    Authenticated JSON requests against the Graph API.

    Owns one lazily created httpx.AsyncClient per provider instance.
    """

    def __init__(
        self,
        base_url: str = GRAPH_API_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        access_token: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an authenticated API request.

        Raises:
            ProviderError: HTTP >= 400 (retryable for 5xx and 429) or transport failure
        """
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            if method.upper() == "GET":
                response = await client.get(path, headers=headers)
            else:
                response = await client.post(path, headers=headers, json=json_data)
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise ProviderError(
                message=f"HTTP request failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            ) from e

        try:
            response_data = response.json()
        except ValueError:
            response_data = {"raw": response.text}

        if response.status_code >= 400:
            error = response_data.get("error", {}) if isinstance(response_data, dict) else {}
            raise ProviderError(
                message=error.get("message", f"HTTP {response.status_code}"),
                code=str(error.get("code", response.status_code)),
                details=error,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        return response_data

    async def post_message(
        self,
        path: str,
        access_token: str,
        payload: dict[str, Any],
        id_getter,
        log_context: dict[str, Any],
    ) -> ProviderResponse:
        """POST a send request and fold the outcome into a ProviderResponse."""
        try:
            response = await self.request("POST", path, access_token, payload)
        except ProviderError as e:
            logger.error(f"Failed to send message: {e}", extra={**log_context, "error_code": e.code})
            return ProviderResponse(
                success=False,
                error_code=e.code,
                error_message=str(e),
                retryable=e.retryable,
                raw_response=e.details,
            )

        message_id = id_getter(response)
        logger.info("Sent message via Graph API", extra={**log_context, "message_id": message_id})
        return ProviderResponse(success=True, message_id=message_id, raw_response=response)
