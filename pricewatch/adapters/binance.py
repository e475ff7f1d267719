"""Binance ticker price adapter.

This adapter is the production fetch operation for the polling fetcher. It
reads ``GET /api/v3/ticker/price?symbol=<pair>`` with a shared ``httpx``
async client and returns a validated :class:`Quote`. Transport errors,
non-2xx responses and malformed payloads are translated into
:class:`~pricewatch.errors.FetchError` so the fetcher can log and carry on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .. import __version__
from ..domain.models import Quote
from ..errors import FetchError
from ..utils.correlation import get_session_id

logger = logging.getLogger(__name__)


class TickerPrice(BaseModel):
    """Ticker price payload; Binance sends the price as a decimal string."""

    symbol: str
    price: float


class BinancePriceAdapter:
    """Fetch the latest price for one symbol.

    Parameters
    ----------
    symbol: str
        Coin pair (e.g., "BTCUSDT").
    url: str
        Full ticker price endpoint URL.
    timeout: float
        Request timeout in seconds.

    Attributes
    ----------
    _client: httpx.AsyncClient
        Shared async client configured with timeout and headers.
    """

    def __init__(
        self,
        symbol: str,
        url: str = "https://api.binance.com/api/v3/ticker/price",
        timeout: float = 5.0,
        *,
        max_retries: int = 1,
        backoff_initial_ms: int = 200,
    ) -> None:
        self.symbol = symbol
        self._url = url
        self._timeout_seconds = timeout
        self._max_retries = max(0, int(max_retries))
        self._backoff_initial_ms = max(0, int(backoff_initial_ms))
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={
                "Accept": "application/json",
                "User-Agent": f"pricewatch/{__version__}",
            },
        )
        logger.info(
            "binance.adapter.init",
            extra={"symbol": symbol, "url": url, "timeout_seconds": timeout},
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only).

        This allows unit tests to provide a mock compatible with ``get()``.
        """
        self._client = client

    async def __call__(self) -> Quote:
        return await self.fetch_quote()

    async def fetch_quote(self) -> Quote:
        """Return the current price as a :class:`Quote`.

        Raises
        ------
        FetchError
            On transport errors (after retries), non-2xx status, or a payload
            that does not carry a numeric price.
        """
        data = await self._get_json()
        try:
            ticker = TickerPrice.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "binance.payload.invalid",
                extra={"symbol": self.symbol, "error": str(exc)},
            )
            raise FetchError(f"Unexpected ticker payload for {self.symbol}") from exc
        logger.debug(
            "binance.quote",
            extra={
                "session_id": get_session_id(),
                "symbol": ticker.symbol,
                "price": ticker.price,
            },
        )
        return Quote(subject=ticker.symbol, value=ticker.price)

    async def _get_json(self) -> Any:
        attempt = 0
        last_exc: Optional[Exception] = None
        while attempt <= self._max_retries:
            try:
                resp = await self._client.get(
                    self._url, params={"symbol": self.symbol}
                )
                resp.raise_for_status()
                return resp.json()
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exc = exc
                logger.warning(
                    "binance.http.transient",
                    extra={
                        "symbol": self.symbol,
                        "attempt": attempt + 1,
                        "max_retries": self._max_retries,
                        "timeout_seconds": self._timeout_seconds,
                        "error": str(exc) or type(exc).__name__,
                    },
                )
                if attempt < self._max_retries:
                    delay = (self._backoff_initial_ms / 1000.0) * (2**attempt)
                    await asyncio.sleep(delay)
                attempt += 1
            except httpx.HTTPStatusError as exc:
                body_preview = exc.response.text[:500]
                logger.error(
                    "binance.http.status_error",
                    extra={
                        "symbol": self.symbol,
                        "status": exc.response.status_code,
                        "body_preview": body_preview,
                    },
                )
                raise FetchError(
                    f"Price API returned {exc.response.status_code} for {self.symbol}"
                ) from exc
            except (httpx.HTTPError, ValueError) as exc:
                raise FetchError(
                    f"Price request failed for {self.symbol}: {exc}"
                ) from exc
        raise FetchError(
            f"Price request for {self.symbol} failed after "
            f"{self._max_retries + 1} attempt(s): {last_exc}"
        ) from last_exc

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
