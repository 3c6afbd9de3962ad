"""
Binance spot REST API client used for trade sync.

Handles HMAC-SHA256 request signing, a sliding-window rate limiter
(1200 req/min by default) and retry with exponential backoff on rate-limit
and network errors. Only read endpoints are exposed: the journal never
places orders.

API Reference:
    - https://developers.binance.com/docs/binance-spot-api-docs/rest-api
"""

import asyncio
import hashlib
import hmac
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Literal
from urllib.parse import urlencode

from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession
from loguru import logger
from pydantic import BaseModel, Field

from trade_assistant.config import ExchangeConfig
from trade_assistant.exchange.credentials import (
    CredentialCipher,
    CredentialError,
    sanitize_for_log,
)

HttpMethod = Literal["GET", "POST", "DELETE"]

# Exchange error codes
RATE_LIMIT_CODE = -1003
AUTH_ERROR_CODES = {-2014, -2015, -1022}

# ── Response Models ─────────────────────────────────────────────────────────


class BinanceFill(BaseModel):
    """One executed trade from GET /api/v3/myTrades."""

    id: int
    symbol: str
    order_id: int = Field(alias="orderId")
    price: float
    qty: float
    quote_qty: float = Field(alias="quoteQty")
    commission: float = 0.0
    commission_asset: str = Field(default="", alias="commissionAsset")
    time: int = Field(description="Execution time, ms since epoch")
    is_buyer: bool = Field(alias="isBuyer")
    is_maker: bool = Field(default=False, alias="isMaker")

    model_config = {"populate_by_name": True}

    @property
    def executed_at(self) -> datetime:
        return datetime.fromtimestamp(self.time / 1000, tz=timezone.utc)


class AccountBalance(BaseModel):
    asset: str
    free: float = 0.0
    locked: float = 0.0


class AccountInfo(BaseModel):
    """Subset of GET /api/v3/account."""

    can_trade: bool = Field(default=False, alias="canTrade")
    account_type: str = Field(default="SPOT", alias="accountType")
    balances: list[AccountBalance] = Field(default_factory=list)
    update_time: int = Field(default=0, alias="updateTime")

    model_config = {"populate_by_name": True}


# ── Rate Limiter ────────────────────────────────────────────────────────────


class SlidingWindowRateLimiter:
    """At most `max_requests` requests in any `window_seconds` window.

    When the window is full, waits until the oldest request leaves it (plus a
    100 ms buffer) and checks again.
    """

    BUFFER_SECONDS = 0.1

    def __init__(
        self,
        max_requests: int = 1200,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._requests: deque[float] = deque()

    def _evict(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self._window:
            self._requests.popleft()

    @property
    def in_window(self) -> int:
        self._evict(self._clock())
        return len(self._requests)

    async def acquire(self) -> None:
        """Wait for a free slot, then record the request."""
        while True:
            now = self._clock()
            self._evict(now)
            if len(self._requests) < self._max_requests:
                self._requests.append(now)
                return
            wait = self._window - (now - self._requests[0]) + self.BUFFER_SECONDS
            logger.debug("Binance: rate window full, waiting {:.2f}s", wait)
            await asyncio.sleep(wait)


# ── Binance Client ──────────────────────────────────────────────────────────


class BinanceClient:
    """Async client for the Binance spot REST API.

    Usage:
        client = BinanceClient(api_key, api_secret, base_url="https://testnet.binance.vision")
        async with client:
            ok = await client.test_connection()
            fills = await client.get_my_trades("BTCUSDT", limit=500)
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://testnet.binance.vision",
        requests_per_minute: int = 1200,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        recv_window: int = 10000,
    ):
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._recv_window = recv_window

        self._rate_limiter = SlidingWindowRateLimiter(requests_per_minute, 60.0)
        self._session: AsyncSession[Any] | None = None

    @classmethod
    def from_config(
        cls,
        config: ExchangeConfig,
        api_key: str,
        api_secret: str,
        use_testnet: bool | None = None,
    ) -> "BinanceClient":
        """Build a client from the exchange config section."""
        if use_testnet is None:
            base_url = config.base_url
        else:
            base_url = config.testnet_url if use_testnet else config.mainnet_url
        return cls(
            api_key=api_key,
            api_secret=api_secret,
            base_url=base_url,
            requests_per_minute=config.requests_per_minute,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            recv_window=config.recv_window,
        )

    @classmethod
    def from_encrypted(
        cls,
        config: ExchangeConfig,
        cipher: CredentialCipher,
        encrypted_api_key: str,
        encrypted_api_secret: str,
        use_testnet: bool | None = None,
    ) -> "BinanceClient":
        """Build a client from credentials stored encrypted in the journal.

        Raises:
            BinanceAuthError: If the credentials cannot be decrypted.
        """
        try:
            api_key = cipher.decrypt(encrypted_api_key)
            api_secret = cipher.decrypt(encrypted_api_secret)
        except CredentialError as e:
            logger.error("Binance: failed to initialize client: {}", e)
            raise BinanceAuthError("Invalid API credentials") from e
        return cls.from_config(config, api_key, api_secret, use_testnet=use_testnet)

    # ── Context Manager ─────────────────────────────────────────────────

    async def __aenter__(self) -> "BinanceClient":
        self._session = AsyncSession(timeout=30)
        logger.debug(
            "Binance: session opened for {} ({})",
            sanitize_for_log(self._api_key),
            self._base_url,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    # ── Request Plumbing ────────────────────────────────────────────────

    def _sign(self, params: dict[str, Any]) -> str:
        """Add timestamp/recvWindow and return the signed query string."""
        params["timestamp"] = int(time.time() * 1000)
        params["recvWindow"] = self._recv_window
        query = urlencode(params)
        signature = hmac.new(
            self._api_secret.encode(), query.encode(), hashlib.sha256
        ).hexdigest()
        return f"{query}&signature={signature}"

    async def _raw_request(
        self,
        method: HttpMethod,
        path: str,
        params: dict[str, Any] | None = None,
        signed: bool = False,
    ) -> Any:
        """Make one HTTP request without retry logic and return parsed JSON."""
        if not self._session:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        query_params = {k: v for k, v in (params or {}).items() if v is not None}
        query = self._sign(query_params) if signed else urlencode(query_params)
        url = f"{self._base_url}{path}"
        if query:
            url = f"{url}?{query}"

        response = await self._session.request(
            method, url, headers={"X-MBX-APIKEY": self._api_key}
        )

        if response.status_code in (418, 429):
            raise BinanceRateLimitError(f"Rate limit exceeded ({response.status_code}).")

        if response.status_code >= 400:
            code, msg = _parse_error(response)
            if code == RATE_LIMIT_CODE:
                raise BinanceRateLimitError(f"Rate limit exceeded ({code}): {msg}")
            if response.status_code in (401, 403) or code in AUTH_ERROR_CODES:
                raise BinanceAuthError(f"Authentication failed ({code}): {msg}")
            raise BinanceAPIError(response.status_code, code, msg)

        return response.json()

    async def _request(
        self,
        method: HttpMethod,
        path: str,
        params: dict[str, Any] | None = None,
        signed: bool = False,
    ) -> Any:
        """Rate-limited request with exponential backoff on 429/-1003 and network errors."""
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            await self._rate_limiter.acquire()
            try:
                return await self._raw_request(method, path, params=params, signed=signed)

            except BinanceRateLimitError as e:
                wait = self._retry_base_delay * 2**attempt
                logger.warning(
                    "Binance: rate limited, waiting {}s before retry {}/{}",
                    wait,
                    attempt + 1,
                    self._max_retries,
                )
                await asyncio.sleep(wait)
                last_error = e

            except (CurlError, OSError, asyncio.TimeoutError) as e:
                wait = self._retry_base_delay * 2**attempt
                logger.warning(
                    "Binance: network error '{}', retrying in {}s ({}/{})",
                    e,
                    wait,
                    attempt + 1,
                    self._max_retries,
                )
                await asyncio.sleep(wait)
                last_error = e

        raise BinanceError(f"Request failed after {self._max_retries} retries: {last_error}")

    # ── Connectivity ────────────────────────────────────────────────────

    async def ping(self) -> None:
        await self._request("GET", "/api/v3/ping")

    async def test_connection(self) -> bool:
        """Check connectivity and that the signed account endpoint accepts our keys."""
        try:
            await self.ping()
            await self.get_account_info()
            return True
        except BinanceError as e:
            logger.error("Binance: connection test failed: {}", e)
            return False

    # ── Account ─────────────────────────────────────────────────────────

    async def get_account_info(self) -> AccountInfo:
        data = await self._request("GET", "/api/v3/account", signed=True)
        return AccountInfo.model_validate(data)

    async def get_my_trades(self, symbol: str, limit: int = 500) -> list[BinanceFill]:
        """Most recent fills for a symbol (max 1000 per call)."""
        data = await self._request(
            "GET", "/api/v3/myTrades", params={"symbol": symbol, "limit": limit}, signed=True
        )
        return [BinanceFill.model_validate(item) for item in data]

    async def get_all_orders(self, symbol: str, limit: int = 500) -> list[dict[str, Any]]:
        return await self._request(
            "GET", "/api/v3/allOrders", params={"symbol": symbol, "limit": limit}, signed=True
        )

    async def get_open_orders(self, symbol: str | None = None) -> list[dict[str, Any]]:
        return await self._request(
            "GET", "/api/v3/openOrders", params={"symbol": symbol}, signed=True
        )

    # ── Market Data ─────────────────────────────────────────────────────

    async def get_order_book(self, symbol: str, limit: int = 100) -> dict[str, Any]:
        return await self._request(
            "GET", "/api/v3/depth", params={"symbol": symbol, "limit": limit}
        )

    async def get_price(self, symbol: str | None = None) -> dict[str, float]:
        """Latest price(s) as {symbol: price}."""
        data = await self._request("GET", "/api/v3/ticker/price", params={"symbol": symbol})
        items = data if isinstance(data, list) else [data]
        return {item["symbol"]: float(item["price"]) for item in items}

    async def get_24hr_stats(self, symbol: str | None = None) -> Any:
        return await self._request("GET", "/api/v3/ticker/24hr", params={"symbol": symbol})


def _parse_error(response: Any) -> tuple[int | None, str]:
    """Extract Binance's {"code": ..., "msg": ...} error body when present."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text[:500]
    if isinstance(body, dict):
        return body.get("code"), str(body.get("msg", ""))[:500]
    return None, response.text[:500]


# ── Exceptions ──────────────────────────────────────────────────────────────


class BinanceError(Exception):
    """Base exception for Binance API errors."""


class BinanceAuthError(BinanceError):
    """Invalid, expired or undecryptable API credentials."""


class BinanceRateLimitError(BinanceError):
    """HTTP 429/418 or exchange code -1003."""


class BinanceAPIError(BinanceError):
    """Any other error response from the exchange."""

    def __init__(self, status_code: int, code: int | None, msg: str) -> None:
        self.status_code = status_code
        self.code = code
        self.msg = msg
        super().__init__(f"API error {status_code} ({code}): {msg}")
