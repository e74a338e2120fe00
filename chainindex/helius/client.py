"""
Helius webhook API client.

The indexer only needs two capabilities from the event source: register a
callback URL for a set of account addresses (returning a webhook id) and
delete a registration by id.
"""
from typing import Any, Dict, List, Optional

import httpx

from chainindex.core.errors import EventSourceError, classify_http_error
from chainindex.core.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

DEFAULT_TRANSACTION_TYPES = [
    "NFT_SALE",
    "NFT_LISTING",
    "NFT_BID",
    "NFT_CANCEL_LISTING",
    "NFT_CANCEL_BID",
]


def evaluate_response(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = {"text": response.text}
    return {"status_code": response.status_code, "body": body}


class HeliusClient:
    """
    Thin async client for the Helius webhook endpoints.

    The underlying ``httpx.AsyncClient`` is created on first use unless one is
    passed in; ``aclose()`` releases it.
    """

    def __init__(
            self,
            api_url: str,
            api_key: str,
            timeout: float = 10.0,
            transaction_types: Optional[List[str]] = None,
            http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self._api_key = api_key
        self.timeout = timeout
        self.transaction_types = list(transaction_types or DEFAULT_TRANSACTION_TYPES)
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings) -> "HeliusClient":
        return cls(
            api_url=settings.helius_api_url,
            api_key=settings.helius_api_key,
            timeout=settings.event_source_timeout,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    async def _request(self, method: str, path: str, json_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.api_url}{path}"
        logger.debug(f"Helius request {method} {url}")
        try:
            response = await self.http_client.request(method, url, headers=self._headers(), json=json_data)
        except httpx.TimeoutException as e:
            logger.error(f"Helius request {method} {url} timed out: {e}")
            raise EventSourceError(f"Helius request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            logger.error(f"Helius request error {method} {url}: {e}")
            raise EventSourceError(f"Helius request failed: {e}") from e

        result = evaluate_response(response)
        if response.is_error:
            info = classify_http_error(response.status_code, message=str(result["body"])[:500])
            logger.error(f"Helius {method} {path} returned {response.status_code}")
            raise EventSourceError(f"Helius returned HTTP {response.status_code}", info=info)
        return result

    async def create_webhook(self, webhook_url: str, account_addresses: List[str], auth_header: str) -> str:
        """
        Register ``webhook_url`` for events touching ``account_addresses``.

        ``auth_header`` is sent back by Helius verbatim in the Authorization
        header of every delivery.

        Returns:
            The webhook id assigned by Helius.
        """
        result = await self._request("POST", "/webhooks", {
            "webhookURL": webhook_url,
            "accountAddresses": account_addresses,
            "transactionTypes": self.transaction_types,
            "webhookType": "enhanced",
            "authHeader": auth_header,
        })
        body = result["body"] if isinstance(result["body"], dict) else {}
        webhook_id = body.get("webhookID") or body.get("webhookId")
        if not webhook_id:
            raise EventSourceError("Helius response did not contain a webhook id")
        return str(webhook_id)

    async def delete_webhook(self, webhook_id: str) -> None:
        await self._request("DELETE", f"/webhooks/{webhook_id}")

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
