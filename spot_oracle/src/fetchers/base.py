"""Provider fetcher interface and the HTTP client shared by all providers.

A fetcher answers one question per tick: what does this provider quote for
these assets right now. ``fetch_many()`` returns the prices it found and
raises FetcherError when the provider could not be asked at all. Assets the
provider does not list are simply missing from the result; the collector
turns both cases into failed observations carrying the error text.

All fetchers go through one httpx.AsyncClient so that a tick touching every
provider reuses connections.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myprovider"

        async def fetch_many(self, assets: list[str], quote: str) -> dict[str, float]:
            data = await self._get_json("https://api.example.com/prices")
            return {a: data[a] for a in assets if a in data}
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

logger = logging.getLogger(__name__)

# Error bodies are copied into the evidence bundle, keep them short
MAX_ERROR_TEXT = 200


class FetcherError(Exception):
    """Provider could not deliver prices."""

    pass


class FetcherConfigError(FetcherError):
    """Raised when a provider is not usable as configured (e.g., missing API key)."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when the provider answered with a non-2xx status.

    :ivar status_code: HTTP status code of the response.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")

    @property
    def rate_limited(self) -> bool:
        """Check if the provider refused the key or throttled the request."""
        return self.status_code in (401, 403, 429)


class BaseFetcher(ABC):
    """Abstract base class for provider fetchers.

    :cvar name: Provider identifier used in configuration and evidence.
    :cvar DEFAULT_TIMEOUT: Request timeout in seconds when none is given.
    :ivar api_key: API key, if the provider needs or accepts one.
    :ivar timeout: Request timeout in seconds.
    """

    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key or None
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        return self.api_key is not None

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Return the shared HTTP client, creating it on first use."""
        client = BaseFetcher._shared_client
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                headers={"Accept": "application/json"},
                follow_redirects=True,
            )
            BaseFetcher._shared_client = client
        return client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Replace the shared HTTP client (e.g., with a mock transport in tests)."""
        BaseFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        client = BaseFetcher._shared_client
        BaseFetcher._shared_client = None
        if client is not None and not client.is_closed:
            await client.aclose()

    @abstractmethod
    async def fetch_many(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch current prices for several assets.

        :param assets: Upper-case asset symbols (e.g., ["BTC", "ETH"]).
        :param quote: Quote currency symbol (e.g., "USD").
        :returns: Dict mapping asset symbol to price; unlisted assets are absent.
        :raises FetcherError: If the provider could not be queried.
        """

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET ``url`` with the shared client and decode the JSON body.

        :raises FetcherHTTPError: On a non-2xx response.
        :raises FetcherError: On network errors, timeouts or a non-JSON body.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

        if not response.is_success:
            body = response.text[:MAX_ERROR_TEXT]
            logger.debug(f"[{self.name}] GET {url} -> {response.status_code}: {body}")
            raise FetcherHTTPError(response.status_code, body)

        try:
            return response.json()
        except ValueError as e:
            raise FetcherError(f"Invalid JSON from {self.name}: {e}") from e


# Provider name -> fetcher class, filled by @register_fetcher on import
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Class decorator adding a fetcher to :data:`FETCHER_REGISTRY`.

    :raises ValueError: If the class defines no provider name.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseFetcher:
    """Instantiate the fetcher of a provider.

    :param name: Provider name, case-insensitive (e.g., "coingecko").
    :param api_key: Optional API key.
    :param timeout: Optional request timeout in seconds.
    :raises ValueError: If the provider is unknown.
    """
    fetcher_cls = FETCHER_REGISTRY.get(name.strip().lower())
    if fetcher_cls is None:
        raise ValueError(
            f"Unknown fetcher '{name}'. Available: {', '.join(get_available_fetchers())}"
        )
    return fetcher_cls(api_key=api_key, timeout=timeout)


def get_available_fetchers() -> list[str]:
    return sorted(FETCHER_REGISTRY)
