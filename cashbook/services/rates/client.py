"""
Dashboard Rate Client

What the dashboard widget shows, in order of preference:

1. The proxy's quote
2. Binance BUSDUSDT ticker x open.er-api USD/VND (sell = buy = cross)
3. The last prices stored under `rate-settings`

Displayed prices are whole VND, rounded half-up.
"""

from typing import Any, Mapping, Optional

import requests
import structlog

from cashbook.config import AppSettings, get_settings
from cashbook.formulas import round_half_up
from cashbook.models.rate import RateQuote, RateSource, utcnow
from cashbook.models.sheet import RateSettings
from cashbook.services.rates.providers import (
    RateProviderError,
    fetch_usd_vnd,
    get_json,
    positive_float,
)


class RateClient:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        settings: Optional[AppSettings] = None,
        timeout: float = 10.0,
    ):
        self._session = session or requests.Session()
        self._settings = settings or get_settings().app
        self._timeout = timeout
        self._logger = structlog.get_logger(__name__)

    def _from_proxy(self) -> Optional[RateQuote]:
        try:
            data = get_json(self._session, self._settings.rate_proxy_url, self._timeout)
        except (requests.RequestException, ValueError) as e:
            self._logger.warning("rate_proxy_failed", error=str(e))
            return None
        if not isinstance(data, dict):
            return None

        sell = positive_float(data.get("sellPrice"))
        buy = positive_float(data.get("buyPrice"))
        if sell is None or buy is None:
            self._logger.warning("rate_proxy_incomplete", payload=data)
            return None
        try:
            source = RateSource(data.get("source"))
        except ValueError:
            source = RateSource.BINANCE_P2P
        return RateQuote(
            sell_price=sell,
            buy_price=buy,
            source=source,
            cross_rate=positive_float(data.get("crossRate")) or sell,
            last_fetched_at=data.get("lastFetchedAt") or utcnow(),
        )

    def _from_ticker(self) -> Optional[RateQuote]:
        try:
            ticker = get_json(self._session, self._settings.binance_ticker_url, self._timeout)
            busd_price = positive_float(ticker.get("price")) if isinstance(ticker, dict) else None
            usdt_usd = 1 / busd_price if busd_price else 1.0
            usd_vnd = fetch_usd_vnd(self._session, self._settings.fx_api_url, self._timeout)
        except (requests.RequestException, ValueError, RateProviderError) as e:
            self._logger.warning("rate_fallback_failed", error=str(e))
            return None

        cross = usdt_usd * usd_vnd
        return RateQuote(
            sell_price=cross,
            buy_price=cross,
            source=RateSource.BINANCE_TICKER,
            cross_rate=cross,
        )

    def _from_stored(self, stored: Any) -> Optional[RateQuote]:
        if not isinstance(stored, Mapping):
            return None
        try:
            saved = RateSettings.model_validate(stored)
        except ValueError:
            return None
        sell = positive_float(saved.sell_price)
        buy = positive_float(saved.buy_price)
        if sell is None and buy is None:
            return None
        return RateQuote(
            sell_price=sell or buy,
            buy_price=buy or sell,
            source=RateSource.STORED,
            last_fetched_at=saved.updated_at or utcnow(),
        )

    def fetch(self, stored_settings: Any = None) -> Optional[RateQuote]:
        """Best available quote with prices rounded to whole VND, or None."""
        quote = self._from_proxy() or self._from_ticker() or self._from_stored(stored_settings)
        if quote is None:
            self._logger.error("no_rate_available")
            return None
        return quote.model_copy(update={
            "sell_price": round_half_up(quote.sell_price, 0),
            "buy_price": round_half_up(quote.buy_price, 0),
        })


def remember_quote(quote: RateQuote, stored_settings: Any = None) -> dict:
    """New `rate-settings` value carrying the quote, keeping other fields."""
    value = dict(stored_settings) if isinstance(stored_settings, Mapping) else {}
    value.update({
        "sellPrice": quote.sell_price,
        "buyPrice": quote.buy_price,
        "updatedAt": quote.last_fetched_at.isoformat(),
    })
    return value


def usdt_value(quote: Optional[RateQuote], amount: Any) -> tuple[float, float]:
    """VND value of a USDT amount at (sell, buy) price."""
    if quote is None:
        return 0.0, 0.0
    qty = positive_float(amount) or 0.0
    return quote.sell_price * qty, quote.buy_price * qty
