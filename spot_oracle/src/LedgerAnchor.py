"""LedgerAnchor: Abstract base class for the append-only ledger collaborator."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

_TX_ID_RE = re.compile(r"[0-9a-fA-F]{64}")


class AnchorError(Exception):
    """Raised when the ledger cannot be reached or rejects a request.

    :ivar status_code: HTTP status code, if the failure came from an HTTP API.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class LedgerTransaction:
    """A ledger transaction as seen by the verifier.

    :ivar tx_id: Transaction identifier (64 hex chars).
    :ivar payload: Raw payload bytes, or None if the transaction has none.
    :ivar block_time: Block timestamp in epoch milliseconds, if known.
    """

    tx_id: str
    payload: bytes | None
    block_time: int | None = None


def is_valid_tx_id(tx_id: str) -> bool:
    """Check that a transaction id has the expected format (64 hex chars)."""
    return isinstance(tx_id, str) and _TX_ID_RE.fullmatch(tx_id) is not None


class LedgerAnchor(ABC):
    """Abstract base class for ledger anchor implementations.

    Provides the two operations the oracle core needs: submitting a payload
    and reading a transaction's payload back. Transaction construction and
    signing belong to the implementation.

    :cvar name: Short identifier used in logs.
    """

    name = "ledger"

    @property
    def read_only(self) -> bool:
        """Check if this anchor can only read transactions."""
        return False

    @abstractmethod
    async def submit(self, payload: bytes) -> str:
        """Submit a payload to the ledger.

        :param payload: Encoded anchor payload.
        :returns: Transaction id of the submitted transaction.
        :raises AnchorError: If the submission failed.
        """
        pass

    @abstractmethod
    async def fetch_transaction(self, tx_id: str) -> LedgerTransaction | None:
        """Fetch a transaction by id.

        :param tx_id: Transaction id (64 hex chars).
        :returns: LedgerTransaction, or None if the ledger has no such transaction.
        :raises AnchorError: On transient failures (network, server errors).
        """
        pass

    async def fetch_payload(self, tx_id: str) -> bytes | None:
        """Fetch only the payload of a transaction.

        :param tx_id: Transaction id.
        :returns: Payload bytes, or None if the transaction or payload is missing.
        """
        tx = await self.fetch_transaction(tx_id)
        return tx.payload if tx is not None else None

    async def close(self) -> None:
        """Release resources held by the anchor."""
        pass
