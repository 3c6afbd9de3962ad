"""
Tests for trade_assistant/exchange/binance_client.py.

Tests cover:
- SlidingWindowRateLimiter window accounting
- Request signing (timestamp, recvWindow, HMAC signature)
- Context manager lifecycle
- Error mapping (429, -1003, auth codes, generic API errors)
- Retry with exponential backoff on rate limits and network errors
- Endpoint parsing (myTrades, account, ticker price)
"""

import hashlib
import hmac
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest

from trade_assistant.config import ExchangeConfig
from trade_assistant.exchange.binance_client import (
    BinanceAPIError,
    BinanceAuthError,
    BinanceClient,
    BinanceError,
    SlidingWindowRateLimiter,
)
from trade_assistant.exchange.credentials import CredentialCipher

API_KEY = "k" * 64
API_SECRET = "s" * 64

# ── Fixtures ────────────────────────────────────────────────────────────────


def _make_response(status_code: int = 200, body: object = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = str(body)
    response.json = MagicMock(return_value=body if body is not None else {})
    return response


@pytest.fixture
def mock_session() -> AsyncMock:
    session = AsyncMock()
    session.request = AsyncMock()
    session.close = AsyncMock()
    return session


def _make_client(max_retries: int = 3) -> BinanceClient:
    return BinanceClient(
        api_key=API_KEY,
        api_secret=API_SECRET,
        base_url="https://testnet.binance.vision",
        max_retries=max_retries,
        retry_base_delay=1.0,
    )


# ── Rate Limiter ────────────────────────────────────────────────────────────


class TestSlidingWindowRateLimiter:
    async def test_allows_up_to_limit(self) -> None:
        limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60, clock=lambda: 0.0)
        for _ in range(3):
            await limiter.acquire()
        assert limiter.in_window == 3

    async def test_waits_for_oldest_to_expire(self) -> None:
        now = {"t": 0.0}
        limiter = SlidingWindowRateLimiter(
            max_requests=2, window_seconds=10, clock=lambda: now["t"]
        )
        await limiter.acquire()
        now["t"] = 4.0
        await limiter.acquire()

        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            now["t"] += seconds

        with patch("asyncio.sleep", fake_sleep):
            await limiter.acquire()

        # Oldest request at t=0 leaves the window at t=10, plus the buffer
        assert sleeps == [pytest.approx(6.1)]
        assert limiter.in_window == 2

    def test_old_requests_evicted(self) -> None:
        now = {"t": 0.0}
        limiter = SlidingWindowRateLimiter(
            max_requests=5, window_seconds=10, clock=lambda: now["t"]
        )
        limiter._requests.extend([0.0, 1.0])
        now["t"] = 10.5
        assert limiter.in_window == 0


# ── Construction ────────────────────────────────────────────────────────────


class TestConstruction:
    def test_from_config_uses_network(self) -> None:
        config = ExchangeConfig(network="mainnet")
        client = BinanceClient.from_config(config, API_KEY, API_SECRET)
        assert client._base_url == "https://api.binance.com"

    def test_from_config_testnet_override(self) -> None:
        config = ExchangeConfig(network="mainnet")
        client = BinanceClient.from_config(config, API_KEY, API_SECRET, use_testnet=True)
        assert client._base_url == "https://testnet.binance.vision"

    def test_from_encrypted_decrypts(self) -> None:
        cipher = CredentialCipher("a-long-enough-secret", iterations=1_000)
        client = BinanceClient.from_encrypted(
            ExchangeConfig(), cipher, cipher.encrypt(API_KEY), cipher.encrypt(API_SECRET)
        )
        assert client._api_key == API_KEY
        assert client._api_secret == API_SECRET

    def test_from_encrypted_bad_token(self) -> None:
        cipher = CredentialCipher("a-long-enough-secret", iterations=1_000)
        with pytest.raises(BinanceAuthError, match="Invalid API credentials"):
            BinanceClient.from_encrypted(ExchangeConfig(), cipher, "garbage", "garbage")


# ── Signing ─────────────────────────────────────────────────────────────────


class TestSigning:
    def test_signature_matches_hmac(self) -> None:
        client = _make_client()
        query = client._sign({"symbol": "BTCUSDT", "limit": 10})

        payload, signature = query.rsplit("&signature=", 1)
        expected = hmac.new(API_SECRET.encode(), payload.encode(), hashlib.sha256).hexdigest()
        assert signature == expected

        params = parse_qs(payload)
        assert params["symbol"] == ["BTCUSDT"]
        assert params["recvWindow"] == ["10000"]
        assert "timestamp" in params


# ── Context Manager ─────────────────────────────────────────────────────────


class TestContextManager:
    async def test_request_outside_context_raises(self) -> None:
        client = _make_client()
        with pytest.raises(RuntimeError, match="not initialized"):
            await client._raw_request("GET", "/api/v3/ping")

    async def test_session_closed_on_exit(self, mock_session: AsyncMock) -> None:
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            client = _make_client()
            async with client:
                assert client._session is mock_session
            mock_session.close.assert_awaited_once()
            assert client._session is None


# ── Requests and Errors ─────────────────────────────────────────────────────


class TestRequests:
    async def test_signed_request_sends_api_key_header(self, mock_session: AsyncMock) -> None:
        mock_session.request.return_value = _make_response(body=[])
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                await client.get_my_trades("BTCUSDT", limit=5)

        method, url = mock_session.request.await_args.args
        assert method == "GET"
        parts = urlsplit(url)
        assert parts.path == "/api/v3/myTrades"
        assert "signature=" in parts.query
        assert mock_session.request.await_args.kwargs["headers"] == {"X-MBX-APIKEY": API_KEY}

    async def test_auth_error_code(self, mock_session: AsyncMock) -> None:
        mock_session.request.return_value = _make_response(
            400, {"code": -2014, "msg": "API-key format invalid."}
        )
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                with pytest.raises(BinanceAuthError, match="-2014"):
                    await client.get_account_info()

    async def test_http_401_is_auth_error(self, mock_session: AsyncMock) -> None:
        mock_session.request.return_value = _make_response(401, {"code": 0, "msg": "nope"})
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                with pytest.raises(BinanceAuthError):
                    await client.get_account_info()

    async def test_generic_api_error(self, mock_session: AsyncMock) -> None:
        mock_session.request.return_value = _make_response(
            400, {"code": -1121, "msg": "Invalid symbol."}
        )
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                with pytest.raises(BinanceAPIError) as exc_info:
                    await client.get_my_trades("NOPE")

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == -1121
        assert exc_info.value.msg == "Invalid symbol."

    async def test_rate_limit_retries_with_backoff(self, mock_session: AsyncMock) -> None:
        mock_session.request.side_effect = [
            _make_response(429, {"code": -1003, "msg": "Too many requests"}),
            _make_response(400, {"code": -1003, "msg": "Too much request weight"}),
            _make_response(200, {}),
        ]
        sleep = AsyncMock()
        with (
            patch(
                "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
            ),
            patch("trade_assistant.exchange.binance_client.asyncio.sleep", sleep),
        ):
            async with _make_client() as client:
                await client.ping()

        assert mock_session.request.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_network_errors_exhaust_retries(self, mock_session: AsyncMock) -> None:
        mock_session.request.side_effect = OSError("connection reset")
        sleep = AsyncMock()
        with (
            patch(
                "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
            ),
            patch("trade_assistant.exchange.binance_client.asyncio.sleep", sleep),
        ):
            async with _make_client(max_retries=2) as client:
                with pytest.raises(BinanceError, match="after 2 retries"):
                    await client.ping()

        assert mock_session.request.await_count == 2

    async def test_api_errors_are_not_retried(self, mock_session: AsyncMock) -> None:
        mock_session.request.return_value = _make_response(400, {"code": -1100, "msg": "bad"})
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                with pytest.raises(BinanceAPIError):
                    await client.ping()

        assert mock_session.request.await_count == 1


# ── Endpoints ───────────────────────────────────────────────────────────────


class TestEndpoints:
    async def test_get_my_trades_parses_fills(self, mock_session: AsyncMock) -> None:
        mock_session.request.return_value = _make_response(
            body=[
                {
                    "id": 1,
                    "symbol": "BTCUSDT",
                    "orderId": 99,
                    "price": "42000.00",
                    "qty": "0.5",
                    "quoteQty": "21000.00",
                    "commission": "0.0005",
                    "commissionAsset": "BTC",
                    "time": 1772442000000,
                    "isBuyer": True,
                    "isMaker": False,
                }
            ]
        )
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                fills = await client.get_my_trades("BTCUSDT")

        assert len(fills) == 1
        assert fills[0].order_id == 99
        assert fills[0].price == 42000.0
        assert fills[0].is_buyer is True
        assert fills[0].executed_at.year == 2026

    async def test_get_price_single_and_all(self, mock_session: AsyncMock) -> None:
        mock_session.request.side_effect = [
            _make_response(body={"symbol": "BTCUSDT", "price": "42000.10"}),
            _make_response(
                body=[
                    {"symbol": "BTCUSDT", "price": "42000.10"},
                    {"symbol": "ETHUSDT", "price": "2500.00"},
                ]
            ),
        ]
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                single = await client.get_price("BTCUSDT")
                every = await client.get_price()

        assert single == {"BTCUSDT": 42000.10}
        assert every["ETHUSDT"] == 2500.0

    async def test_order_endpoints(self, mock_session: AsyncMock) -> None:
        mock_session.request.side_effect = [
            _make_response(body=[{"orderId": 1}]),
            _make_response(body=[]),
            _make_response(body={"bids": [], "asks": []}),
        ]
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                orders = await client.get_all_orders("BTCUSDT", limit=10)
                open_orders = await client.get_open_orders()
                book = await client.get_order_book("BTCUSDT")

        assert orders == [{"orderId": 1}]
        assert open_orders == []
        assert book == {"bids": [], "asks": []}

        urls = [c.args[1] for c in mock_session.request.await_args_list]
        assert "/api/v3/allOrders?symbol=BTCUSDT&limit=10&" in urls[0]
        assert "signature=" in urls[0]
        assert "/api/v3/openOrders?" in urls[1]
        assert "symbol=" not in urls[1]
        assert urls[2].endswith("/api/v3/depth?symbol=BTCUSDT&limit=100")

    async def test_test_connection_false_on_auth_error(self, mock_session: AsyncMock) -> None:
        mock_session.request.side_effect = [
            _make_response(body={}),
            _make_response(401, {"code": -2015, "msg": "Invalid API-key"}),
        ]
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                assert await client.test_connection() is False

    async def test_test_connection_true(self, mock_session: AsyncMock) -> None:
        mock_session.request.side_effect = [
            _make_response(body={}),
            _make_response(body={"canTrade": True, "balances": []}),
        ]
        with patch(
            "trade_assistant.exchange.binance_client.AsyncSession", return_value=mock_session
        ):
            async with _make_client() as client:
                assert await client.test_connection() is True
