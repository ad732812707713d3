"""Unit tests for LedgerAnchorHttp and LedgerAnchorMemory."""

import asyncio
import json
from unittest import mock

import httpx
import pytest

from spot_oracle.src.LedgerAnchor import AnchorError, LedgerTransaction, is_valid_tx_id
from spot_oracle.src.LedgerAnchorHttp import LedgerAnchorHttp
from spot_oracle.src.LedgerAnchorMemory import LedgerAnchorMemory

TX_ID = "ab" * 32
EXPLORER = "https://explorer.test"
DAEMON = "http://daemon.test"


def make_anchor(handler, submit_url: str | None = DAEMON) -> LedgerAnchorHttp:
    return LedgerAnchorHttp(
        EXPLORER, submit_url=submit_url, transport=httpx.MockTransport(handler)
    )


class TestForNetwork:
    """Test explorer selection."""

    @pytest.mark.parametrize(
        "network, url",
        [
            ("testnet-10", "https://api-tn10.kaspa.org"),
            ("testnet-11", "https://api-tn11.kaspa.org"),
            ("mainnet", "https://api.kaspa.org"),
        ],
    )
    def test_known_networks(self, network: str, url: str) -> None:
        """Known networks map to their explorer."""
        anchor = LedgerAnchorHttp.for_network(network)
        assert anchor.explorer_url == url
        assert anchor.read_only

    def test_unknown_network(self) -> None:
        """Unknown networks raise ValueError."""
        with pytest.raises(ValueError, match="No explorer configured"):
            LedgerAnchorHttp.for_network("devnet")


class TestFetchTransaction:
    """Test explorer reads."""

    def test_found(self) -> None:
        """A transaction with payload is parsed."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == f"{EXPLORER}/transactions/{TX_ID}"
            return httpx.Response(
                200,
                json={"transaction_id": TX_ID, "payload": "a1616401", "block_time": 1714564800000},
            )

        tx = asyncio.run(make_anchor(handler).fetch_transaction(TX_ID))
        assert tx == LedgerTransaction(TX_ID, bytes.fromhex("a1616401"), 1714564800000)

    def test_no_payload(self) -> None:
        """A transaction without payload has payload None."""
        anchor = make_anchor(lambda r: httpx.Response(200, json={"transaction_id": TX_ID}))
        tx = asyncio.run(anchor.fetch_transaction(TX_ID))
        assert tx.payload is None
        assert tx.block_time is None

    def test_not_found(self) -> None:
        """HTTP 404 means the ledger has no such transaction."""
        anchor = make_anchor(lambda r: httpx.Response(404, json={"detail": "not found"}))
        assert asyncio.run(anchor.fetch_transaction(TX_ID)) is None

    def test_server_error(self) -> None:
        """Other HTTP errors raise AnchorError with the status code."""
        anchor = make_anchor(lambda r: httpx.Response(502, text="bad gateway"))
        with pytest.raises(AnchorError, match="HTTP 502") as exc_info:
            asyncio.run(anchor.fetch_transaction(TX_ID))
        assert exc_info.value.status_code == 502

    def test_network_error(self) -> None:
        """Transport failures raise AnchorError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AnchorError, match="Request failed"):
            asyncio.run(make_anchor(handler).fetch_transaction(TX_ID))

    def test_invalid_json(self) -> None:
        """Non-JSON bodies raise AnchorError."""
        anchor = make_anchor(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(AnchorError, match="invalid JSON"):
            asyncio.run(anchor.fetch_transaction(TX_ID))

    def test_non_hex_payload(self) -> None:
        """Payloads that are not hex raise AnchorError."""
        anchor = make_anchor(lambda r: httpx.Response(200, json={"payload": "zz"}))
        with pytest.raises(AnchorError, match="non-hex payload"):
            asyncio.run(anchor.fetch_transaction(TX_ID))

    @pytest.mark.parametrize("body", ["[1, 2]", "\"a1\"", "null", "5"])
    def test_non_object_body(self, body: str) -> None:
        """JSON bodies that are not objects raise AnchorError."""
        anchor = make_anchor(lambda r: httpx.Response(200, text=body))
        with pytest.raises(AnchorError, match="expected an object"):
            asyncio.run(anchor.fetch_transaction(TX_ID))

    @pytest.mark.parametrize("block_time", ["soon", True, [1], float("inf")])
    def test_invalid_block_time(self, block_time) -> None:
        """Block times that are not integers raise AnchorError."""
        body = json.dumps({"payload": "a0", "block_time": block_time})
        anchor = make_anchor(lambda r: httpx.Response(200, text=body))
        with pytest.raises(AnchorError, match="invalid block_time"):
            asyncio.run(anchor.fetch_transaction(TX_ID))

    def test_numeric_string_block_time(self) -> None:
        """Block times sent as digit strings are accepted."""
        anchor = make_anchor(
            lambda r: httpx.Response(200, json={"payload": "a0", "block_time": "1714564800000"})
        )
        tx = asyncio.run(anchor.fetch_transaction(TX_ID))
        assert tx.block_time == 1714564800000

    def test_non_string_transaction_id_ignored(self) -> None:
        """A malformed transaction_id falls back to the requested id."""
        anchor = make_anchor(
            lambda r: httpx.Response(200, json={"payload": "a0", "transaction_id": 7})
        )
        assert asyncio.run(anchor.fetch_transaction(TX_ID)).tx_id == TX_ID

    def test_fetch_payload(self) -> None:
        """fetch_payload returns only the payload bytes."""
        anchor = make_anchor(lambda r: httpx.Response(200, json={"payload": "00ff"}))
        assert asyncio.run(anchor.fetch_payload(TX_ID)) == b"\x00\xff"


class TestSubmit:
    """Test submissions through the signing daemon."""

    def test_success(self) -> None:
        """The payload is posted hex-encoded and the tx id returned."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"tx_id": TX_ID.upper()})

        tx_id = asyncio.run(make_anchor(handler).submit(b"\x01\x02"))

        assert tx_id == TX_ID
        assert seen[0].method == "POST"
        assert seen[0].url == f"{DAEMON}/v1/anchor"
        assert json.loads(seen[0].content) == {"payload": "0102"}

    def test_read_only(self) -> None:
        """Without a submit URL submissions are refused."""
        anchor = make_anchor(lambda r: httpx.Response(200), submit_url=None)
        with pytest.raises(AnchorError, match="read-only"):
            asyncio.run(anchor.submit(b"\x01"))

    def test_rejection_not_retried(self) -> None:
        """4xx answers are final."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="payload too large")

        with pytest.raises(AnchorError, match="Submission rejected") as exc_info:
            asyncio.run(make_anchor(handler).submit(b"\x01"))
        assert exc_info.value.status_code == 400
        assert len(calls) == 1

    def test_server_error_retried(self) -> None:
        """5xx answers are retried with backoff."""
        responses = [httpx.Response(503), httpx.Response(200, json={"tx_id": TX_ID})]

        sleep = mock.AsyncMock()
        with mock.patch("spot_oracle.src.LedgerAnchorHttp.asyncio.sleep", new=sleep):
            tx_id = asyncio.run(make_anchor(lambda r: responses.pop(0)).submit(b"\x01"))

        assert tx_id == TX_ID
        sleep.assert_awaited_once_with(1.0)

    def test_retries_exhausted(self) -> None:
        """Persistent server errors fail after all attempts."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="down")

        with mock.patch("spot_oracle.src.LedgerAnchorHttp.asyncio.sleep", new=mock.AsyncMock()):
            with pytest.raises(AnchorError, match="after 3 attempts"):
                asyncio.run(make_anchor(handler).submit(b"\x01"))
        assert len(calls) == 3

    def test_malformed_tx_id(self) -> None:
        """An invalid tx id from the daemon raises AnchorError."""
        anchor = make_anchor(lambda r: httpx.Response(200, json={"tx_id": "nope"}))
        with pytest.raises(AnchorError, match="invalid transaction id"):
            asyncio.run(anchor.submit(b"\x01"))


class TestLedgerAnchorMemory:
    """Test the in-process ledger."""

    def test_submit_and_fetch(self) -> None:
        """Submitted payloads can be read back."""
        ledger = LedgerAnchorMemory()
        tx_id = asyncio.run(ledger.submit(b"\x01\x02"))

        assert is_valid_tx_id(tx_id)
        assert asyncio.run(ledger.fetch_payload(tx_id)) == b"\x01\x02"
        assert asyncio.run(ledger.fetch_transaction(tx_id.upper())).tx_id == tx_id

    def test_same_payload_distinct_ids(self) -> None:
        """Each submission is its own transaction."""
        ledger = LedgerAnchorMemory()
        assert asyncio.run(ledger.submit(b"\x01")) != asyncio.run(ledger.submit(b"\x01"))

    def test_failures(self) -> None:
        """Failing mode and oversize payloads raise AnchorError."""
        ledger = LedgerAnchorMemory(max_payload_bytes=4)
        with pytest.raises(AnchorError, match="too large"):
            asyncio.run(ledger.submit(b"\x00" * 5))
        ledger.fail_submissions = True
        with pytest.raises(AnchorError, match="unavailable"):
            asyncio.run(ledger.submit(b"\x00"))

    def test_unknown(self) -> None:
        """Unknown ids return None."""
        assert asyncio.run(LedgerAnchorMemory().fetch_transaction(TX_ID)) is None


class TestIsValidTxId:
    """Test tx id format checks."""

    @pytest.mark.parametrize(
        "value, expected",
        [(TX_ID, True), (TX_ID.upper(), True), (TX_ID[:-1], False), (TX_ID + "\n", False), (None, False)],
    )
    def test_format(self, value, expected: bool) -> None:
        """Exactly 64 hex chars are valid."""
        assert is_valid_tx_id(value) is expected
