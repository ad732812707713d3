"""LedgerAnchorHttp: ledger anchor backed by HTTP services.

Reads go to the public block explorer REST API
(``GET {explorer_url}/transactions/{tx_id}``). Writes go to a signing daemon
(``POST {submit_url}/v1/anchor``) that owns the wallet, builds and signs the
transaction and answers with its id. Without a submit URL the anchor is
read-only, which is all the verifier needs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .LedgerAnchor import AnchorError, LedgerAnchor, LedgerTransaction, is_valid_tx_id

logger = logging.getLogger(__name__)

# Public explorer API endpoints by network.
DEFAULT_EXPLORER_URL: dict[str, str] = {
    "testnet-10": "https://api-tn10.kaspa.org",
    "testnet-11": "https://api-tn11.kaspa.org",
    "mainnet": "https://api.kaspa.org",
}

# Retry configuration for submissions
MAX_SUBMIT_ATTEMPTS = 3
BACKOFF_BASE = 1.0
BACKOFF_MAX = 5.0


class LedgerAnchorHttp(LedgerAnchor):
    """Ledger anchor talking to an explorer API and a signing daemon.

    :ivar explorer_url: Base URL of the explorer REST API.
    :ivar submit_url: Base URL of the signing daemon, or None for read-only use.
    :ivar timeout: Per-request timeout in seconds.
    """

    name = "http"

    def __init__(
        self,
        explorer_url: str,
        submit_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP anchor.

        :param explorer_url: Base URL of the explorer REST API.
        :param submit_url: Base URL of the signing daemon (optional).
        :param timeout: Per-request timeout in seconds (default: 10).
        :param transport: Optional httpx transport override.
        """
        self.explorer_url = explorer_url.rstrip("/")
        self.submit_url = submit_url.rstrip("/") if submit_url else None
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )

    @classmethod
    def for_network(
        cls, network: str, submit_url: str | None = None, timeout: float = 10.0
    ) -> LedgerAnchorHttp:
        """Create an anchor using the default explorer of a network.

        :raises ValueError: If the network has no known explorer.
        """
        explorer_url = DEFAULT_EXPLORER_URL.get(network)
        if not explorer_url:
            raise ValueError(
                f"No explorer configured for network {network}. "
                f"Known: {', '.join(sorted(DEFAULT_EXPLORER_URL))}"
            )
        return cls(explorer_url, submit_url=submit_url, timeout=timeout)

    @property
    def read_only(self) -> bool:
        """Check if this anchor can only read transactions."""
        return self.submit_url is None

    async def submit(self, payload: bytes) -> str:
        """Submit a payload through the signing daemon with retry and backoff.

        :param payload: Encoded anchor payload.
        :returns: Transaction id.
        :raises AnchorError: If no daemon is configured or all attempts failed.
        """
        if self.submit_url is None:
            raise AnchorError("Anchor is read-only (no submit URL configured)")

        url = f"{self.submit_url}/v1/anchor"
        body = {"payload": payload.hex()}
        last_error = "no attempt made"

        for attempt in range(MAX_SUBMIT_ATTEMPTS):
            try:
                logger.debug(
                    "POST %s payload=%s (attempt %d)", url, body["payload"], attempt + 1
                )
                response = await self._client.post(url, json=body)
                if response.is_success:
                    return self._parse_tx_id(response)
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                # Rejections are final, only server errors are retried
                if response.status_code < 500:
                    raise AnchorError(
                        f"Submission rejected: {last_error}",
                        status_code=response.status_code,
                    )
            except httpx.RequestError as exc:
                last_error = f"Request failed: {exc}"

            logger.warning(
                "Anchor submit failed: %s (attempt %d/%d)",
                last_error,
                attempt + 1,
                MAX_SUBMIT_ATTEMPTS,
            )
            if attempt + 1 < MAX_SUBMIT_ATTEMPTS:
                await asyncio.sleep(min(BACKOFF_BASE * (2 ** attempt), BACKOFF_MAX))

        raise AnchorError(
            f"Submission failed after {MAX_SUBMIT_ATTEMPTS} attempts: {last_error}"
        )

    @staticmethod
    def _parse_tx_id(response: httpx.Response) -> str:
        try:
            tx_id = response.json()["tx_id"]
        except (ValueError, KeyError, TypeError) as e:
            raise AnchorError(f"Malformed submission response: {e}") from e
        if not is_valid_tx_id(tx_id):
            raise AnchorError(f"Daemon returned an invalid transaction id: {tx_id!r}")
        return tx_id.lower()

    async def fetch_transaction(self, tx_id: str) -> LedgerTransaction | None:
        """Fetch a transaction from the explorer API.

        :param tx_id: Transaction id.
        :returns: LedgerTransaction, or None on HTTP 404.
        :raises AnchorError: On network errors, other HTTP errors or malformed data.
        """
        url = f"{self.explorer_url}/transactions/{tx_id}"
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise AnchorError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise AnchorError(f"Request failed: {e}") from e

        if response.status_code == 404:
            return None
        if not response.is_success:
            raise AnchorError(
                f"Explorer returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise AnchorError(f"Explorer returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise AnchorError(
                f"Explorer returned a JSON {type(data).__name__}, expected an object"
            )

        payload_hex = data.get("payload")
        payload: bytes | None = None
        if payload_hex:
            try:
                payload = bytes.fromhex(payload_hex)
            except (ValueError, TypeError) as e:
                raise AnchorError(f"Explorer returned a non-hex payload: {e}") from e

        block_time = data.get("block_time")
        if block_time is not None:
            if isinstance(block_time, bool):
                raise AnchorError(f"Explorer returned an invalid block_time: {block_time!r}")
            try:
                block_time = int(block_time)
            except (TypeError, ValueError, OverflowError) as e:
                raise AnchorError(f"Explorer returned an invalid block_time: {e}") from e

        returned_id = data.get("transaction_id")
        return LedgerTransaction(
            tx_id=returned_id if isinstance(returned_id, str) else tx_id,
            payload=payload,
            block_time=block_time,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
