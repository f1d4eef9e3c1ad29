"""
USDT→VND Rate Providers

Each provider turns one upstream API into a RateQuote or raises
RateProviderError. The service tries them in priority order.

Binance P2P      real advert prices, SELL and BUY searched separately
CoinGecko + FX   tether/USD x USD/VND, adjusted, with an artificial spread
FX only          USD/VND, adjusted, with the same spread

DESIGN DECISION: Only transport errors are retried (tenacity). An
upstream that answers with garbage will answer with the same garbage
on the next attempt, so bad payloads fail fast and the next provider
gets its turn.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import requests
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cashbook.config import RateProxySettings, get_settings
from cashbook.models.rate import RateQuote, RateSource


logger = structlog.get_logger(__name__)


# =============================================================================
# Errors
# =============================================================================

class RateProviderError(Exception):
    """One provider could not produce a quote."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.message = message
        self.source = source
        super().__init__(message)


class AllProvidersFailedError(RateProviderError):
    """Every source in the chain failed."""

    def __init__(self, message: str, attempted_sources: list[str], details: Optional[str] = None):
        super().__init__(message)
        self.attempted_sources = attempted_sources
        self.details = details


# =============================================================================
# HTTP helpers
# =============================================================================

_http_retry = retry(
    retry=retry_if_exception_type(requests.RequestException),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


@_http_retry
def get_json(session: requests.Session, url: str, timeout: float) -> Any:
    response = session.get(url, timeout=timeout, headers={"Cache-Control": "no-cache"})
    response.raise_for_status()
    return response.json()


@_http_retry
def post_json(session: requests.Session, url: str, payload: dict, timeout: float) -> Any:
    response = session.post(url, json=payload, timeout=timeout)
    response.raise_for_status()
    return response.json()


def positive_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def apply_spread(base_rate: float, spread_percent: float) -> tuple[float, float]:
    """(sell, buy) placed symmetrically around the base rate."""
    spread = base_rate * (spread_percent / 100)
    return base_rate + spread / 2, base_rate - spread / 2


def fetch_usd_vnd(session: requests.Session, url: str, timeout: float) -> float:
    """USD→VND from an open.er-api style table (`rates.VND`)."""
    try:
        data = get_json(session, url, timeout)
    except requests.RequestException as e:
        raise RateProviderError(f"FX API unreachable: {e}", RateSource.FX_API.value)
    except ValueError:
        raise RateProviderError("FX API returned invalid JSON", RateSource.FX_API.value)

    rate = positive_float((data or {}).get("rates", {}).get("VND")) if isinstance(data, dict) else None
    if rate is None:
        raise RateProviderError("FX API returned invalid VND rate", RateSource.FX_API.value)
    return rate


# =============================================================================
# Providers
# =============================================================================

class RateProvider(ABC):
    """One upstream source of USDT→VND quotes."""

    source: RateSource

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        settings: Optional[RateProxySettings] = None,
    ):
        self._session = session or requests.Session()
        self._settings = settings or get_settings().rate_proxy

    @abstractmethod
    def fetch(self) -> RateQuote:
        """Produce a quote or raise RateProviderError."""
        pass


class BinanceP2PProvider(RateProvider):
    """Average of the best N advert prices, per trade side."""

    source = RateSource.BINANCE_P2P

    def _search(self, trade_type: str) -> list[float]:
        payload = {
            "page": 1,
            "rows": 10,
            "tradeType": trade_type,
            "asset": "USDT",
            "fiat": "VND",
            "payTypes": [],
        }
        try:
            data = post_json(
                self._session,
                self._settings.binance_p2p_api_url,
                payload,
                self._settings.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise RateProviderError(f"Binance P2P unreachable: {e}", self.source.value)
        except ValueError:
            raise RateProviderError("Binance P2P returned invalid JSON", self.source.value)

        adverts = data.get("data") if isinstance(data, dict) else None
        if not adverts:
            raise RateProviderError("Binance P2P API returned no data", self.source.value)
        if not isinstance(adverts, list):
            raise RateProviderError("Binance P2P data is not a list of adverts", self.source.value)

        prices = []
        for item in adverts[: self._settings.binance_top_n]:
            advert = item.get("adv") if isinstance(item, dict) else None
            price = positive_float(advert.get("price")) if isinstance(advert, dict) else None
            if price is not None:
                prices.append(price)
        if not prices:
            raise RateProviderError(f"Binance P2P {trade_type} adverts carry no price", self.source.value)
        return prices

    def fetch(self) -> RateQuote:
        sell_prices = self._search("SELL")
        buy_prices = self._search("BUY")
        sell = sum(sell_prices) / len(sell_prices)
        buy = sum(buy_prices) / len(buy_prices)
        logger.info(
            "binance_p2p_fetched",
            sell_price=sell,
            buy_price=buy,
            sell_prices=sell_prices,
            buy_prices=buy_prices,
        )
        return RateQuote(sell_price=sell, buy_price=buy, source=self.source)


class CoinGeckoFxProvider(RateProvider):
    """Spot USDT/VND estimated from CoinGecko and an FX table."""

    source = RateSource.COINGECKO_FX

    def _usdt_usd(self) -> float:
        try:
            data = get_json(
                self._session,
                self._settings.coingecko_api_url,
                self._settings.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise RateProviderError(f"CoinGecko unreachable: {e}", self.source.value)
        except ValueError:
            raise RateProviderError("CoinGecko returned invalid JSON", self.source.value)

        price = positive_float((data or {}).get("tether", {}).get("usd")) if isinstance(data, dict) else None
        if price is None:
            raise RateProviderError("CoinGecko USDT price not available", self.source.value)
        return price

    def fetch(self) -> RateQuote:
        usdt_usd = self._usdt_usd()
        usd_vnd = fetch_usd_vnd(
            self._session,
            self._settings.fx_api_url,
            self._settings.request_timeout_seconds,
        )
        base = usdt_usd * usd_vnd * self._settings.p2p_adjustment
        sell, buy = apply_spread(base, self._settings.p2p_spread_percent)
        return RateQuote(sell_price=sell, buy_price=buy, source=self.source, cross_rate=base)


class FxOnlyProvider(RateProvider):
    """USD/VND treated as USDT/VND, the last resort."""

    source = RateSource.FX_API

    def fetch(self) -> RateQuote:
        usd_vnd = fetch_usd_vnd(
            self._session,
            self._settings.fx_api_url,
            self._settings.request_timeout_seconds,
        )
        base = usd_vnd * self._settings.p2p_adjustment
        sell, buy = apply_spread(base, self._settings.p2p_spread_percent)
        return RateQuote(sell_price=sell, buy_price=buy, source=self.source, cross_rate=base)


def default_providers(
    session: Optional[requests.Session] = None,
    settings: Optional[RateProxySettings] = None,
) -> list[RateProvider]:
    session = session or requests.Session()
    return [
        BinanceP2PProvider(session, settings),
        CoinGeckoFxProvider(session, settings),
        FxOnlyProvider(session, settings),
    ]
