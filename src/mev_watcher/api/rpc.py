"""JSON-RPC client for transaction lookups."""

import itertools
import logging

import httpx

from ..errors import FetchError
from .stream import redact, with_api_key

logger = logging.getLogger(__name__)


class RpcClient:
    """Client for the Solana JSON-RPC endpoint (getTransaction and friends)."""

    COMMITMENT = "confirmed"

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = with_api_key(url, api_key)
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def get_transaction(self, signature: str) -> dict | None:
        """
        Fetch a confirmed transaction in jsonParsed encoding.

        Args:
            signature: Transaction signature (base58)

        Returns:
            The transaction result, or None if the node does not know it

        Raises:
            FetchError: on transport, HTTP or JSON-RPC errors
        """
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.COMMITMENT,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
            context=signature,
        )

    async def get_signatures_for_address(
        self,
        address: str,
        limit: int = 100,
    ) -> list[dict]:
        """
        Fetch recent signatures that touched an address, newest first.

        Args:
            address: Account or program address
            limit: Maximum number of signatures (node caps this at 1000)

        Returns:
            List of {signature, slot, blockTime, err, ...} records
        """
        result = await self._call(
            "getSignaturesForAddress",
            [address, {"limit": min(limit, 1000), "commitment": self.COMMITMENT}],
            context=address,
        )
        return result if isinstance(result, list) else []

    async def _call(self, method: str, params: list, context: str):
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise FetchError(context, f"{method} timed out") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(
                context, f"{method} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(context, f"{method} failed against {redact(self.url)}: {e}") from e
        except ValueError as e:
            raise FetchError(context, f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise FetchError(context, f"{method} returned unexpected payload")

        if data.get("error"):
            raise FetchError(context, f"{method} error: {data['error']}")

        return data.get("result")
