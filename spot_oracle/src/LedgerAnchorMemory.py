"""LedgerAnchorMemory: in-process ledger for local development and tests."""

from __future__ import annotations

import hashlib

from .Evidence import now_millis
from .LedgerAnchor import AnchorError, LedgerAnchor, LedgerTransaction


class LedgerAnchorMemory(LedgerAnchor):
    """Ledger anchor keeping transactions in a dict.

    Transaction ids are derived from the payload and a sequence number, so
    anchoring the same payload twice yields two distinct transactions just
    like a real ledger would.

    :ivar transactions: Submitted transactions by id.
    :ivar max_payload_bytes: Size ceiling enforced on submission.
    :ivar fail_submissions: When True, every submission raises AnchorError.
    """

    name = "memory"

    def __init__(self, max_payload_bytes: int = 80) -> None:
        """Initialize an empty ledger.

        :param max_payload_bytes: Size ceiling enforced on submission.
        """
        self.transactions: dict[str, LedgerTransaction] = {}
        self.max_payload_bytes = max_payload_bytes
        self.fail_submissions = False
        self._sequence = 0

    async def submit(self, payload: bytes) -> str:
        """Record a payload as a new transaction.

        :param payload: Encoded anchor payload.
        :returns: New transaction id.
        :raises AnchorError: If submissions are failing or the payload is too large.
        """
        if self.fail_submissions:
            raise AnchorError("Ledger unavailable")
        if len(payload) > self.max_payload_bytes:
            raise AnchorError(
                f"Payload too large: {len(payload)} bytes (max {self.max_payload_bytes})"
            )

        self._sequence += 1
        tx_id = hashlib.sha256(
            self._sequence.to_bytes(8, "big") + payload
        ).hexdigest()
        self.transactions[tx_id] = LedgerTransaction(
            tx_id=tx_id, payload=bytes(payload), block_time=now_millis()
        )
        return tx_id

    def record(self, tx: LedgerTransaction) -> None:
        """Insert an arbitrary transaction, e.g. one without payload."""
        self.transactions[tx.tx_id.lower()] = tx

    async def fetch_transaction(self, tx_id: str) -> LedgerTransaction | None:
        """Look up a recorded transaction.

        :param tx_id: Transaction id.
        :returns: LedgerTransaction or None if unknown.
        """
        return self.transactions.get(tx_id.lower())
