"""
Rate Service

Picks the quote the proxy serves:

1. A manual rate, while it is younger than the configured max age
2. Each provider in turn (Binance P2P, CoinGecko + FX, FX only)

Also owns the two small JSON files next to the proxy: the manual rate
and the snapshot the alert job writes.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from cashbook.config import RateProxySettings, get_settings
from cashbook.models.rate import AlertState, ManualRate, RateQuote, RateSource, utcnow
from cashbook.services.rates.providers import (
    AllProvidersFailedError,
    RateProvider,
    RateProviderError,
    default_providers,
)


logger = structlog.get_logger(__name__)


def _read_json(path: Path) -> Optional[dict]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("rate_file_unreadable", path=str(path), error=str(e))
        return None
    return data if isinstance(data, dict) else None


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


class ManualRateStore:
    """`manual-rate.json`: {sellPrice, buyPrice, timestamp, source}."""

    def __init__(self, path: Path, max_age_days: int = 7):
        self._path = Path(path)
        self._max_age_days = max_age_days

    def load(self, now: Optional[datetime] = None) -> Optional[ManualRate]:
        """The stored rate, or None when missing, unreadable or too old."""
        data = _read_json(self._path)
        if data is None:
            return None
        try:
            rate = ManualRate.model_validate(data)
        except ValidationError as e:
            logger.warning("manual_rate_invalid", error=str(e))
            return None

        age = rate.age_days(now)
        if age > self._max_age_days:
            logger.warning("manual_rate_expired", age_days=round(age, 2))
            return None
        return rate

    def save(self, sell_price: float, buy_price: float) -> ManualRate:
        rate = ManualRate(sell_price=float(sell_price), buy_price=float(buy_price), timestamp=utcnow())
        _write_json(self._path, rate.to_json_dict())
        logger.info("manual_rate_saved", sell_price=rate.sell_price, buy_price=rate.buy_price)
        return rate


class AlertStateStore:
    """`rate-snapshot.json`, written by the alert job and read by the proxy."""

    def __init__(self, path: Path):
        self._path = Path(path)

    def load(self) -> AlertState:
        data = _read_json(self._path)
        if data is None:
            return AlertState()
        try:
            return AlertState.model_validate(data)
        except ValidationError as e:
            logger.warning("alert_state_invalid", error=str(e))
            return AlertState()

    def save(self, state: AlertState) -> None:
        _write_json(self._path, state.to_json_dict())


class RateService:
    """Manual rate first, then providers in order."""

    def __init__(
        self,
        providers: Optional[list[RateProvider]] = None,
        manual_store: Optional[ManualRateStore] = None,
        settings: Optional[RateProxySettings] = None,
    ):
        self._settings = settings or get_settings().rate_proxy
        self._providers = providers if providers is not None else default_providers(settings=self._settings)
        self._manual = manual_store or ManualRateStore(
            self._settings.manual_rate_file,
            self._settings.manual_rate_max_age_days,
        )

    @property
    def manual_store(self) -> ManualRateStore:
        return self._manual

    @property
    def attempted_sources(self) -> list[str]:
        return [RateSource.MANUAL.value] + [p.source.value for p in self._providers]

    def get_quote(self) -> RateQuote:
        """
        Raises:
            AllProvidersFailedError: When no manual rate is set and every
                provider failed
        """
        manual = self._manual.load()
        if manual is not None:
            logger.info("using_manual_rate", sell_price=manual.sell_price, buy_price=manual.buy_price)
            return RateQuote(
                sell_price=manual.sell_price,
                buy_price=manual.buy_price,
                source=RateSource.MANUAL,
                last_fetched_at=manual.timestamp,
            )

        errors = []
        for provider in self._providers:
            try:
                quote = provider.fetch()
            except RateProviderError as e:
                logger.warning("rate_provider_failed", source=provider.source.value, error=e.message)
                errors.append(e.message)
                continue
            logger.info(
                "rate_fetched",
                source=quote.source.value,
                sell_price=quote.sell_price,
                buy_price=quote.buy_price,
            )
            return quote

        logger.error("all_rate_providers_failed", errors=errors)
        raise AllProvidersFailedError(
            "Unable to reach any rate provider",
            attempted_sources=self.attempted_sources,
            details=errors[-1] if errors else None,
        )
