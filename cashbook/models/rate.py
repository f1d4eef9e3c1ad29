"""
Exchange Rate Models

The proxy speaks camelCase JSON (sellPrice, buyPrice, lastFetchedAt)
because that is what the dashboard and older deployments expect.
The models accept and emit both spellings through aliases.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateSource(str, Enum):
    """Where a quote came from, in priority order."""
    MANUAL = "manual"
    BINANCE_P2P = "binance-p2p"
    COINGECKO_FX = "coingecko-fx"
    FX_API = "fx-api"
    BINANCE_TICKER = "binance-ticker"
    STORED = "stored"


class RateQuote(BaseModel):
    """A USDT→VND quote with separate sell and buy prices."""
    model_config = ConfigDict(populate_by_name=True)

    sell_price: float = Field(..., ge=0, alias="sellPrice")
    buy_price: float = Field(..., ge=0, alias="buyPrice")
    source: RateSource
    last_fetched_at: datetime = Field(default_factory=utcnow, alias="lastFetchedAt")
    cross_rate: Optional[float] = Field(default=None, alias="crossRate")

    def to_response(self) -> dict:
        return {
            "sellPrice": self.sell_price,
            "buyPrice": self.buy_price,
            "lastFetchedAt": self.last_fetched_at.isoformat(),
            "source": self.source.value,
        }


class ManualRate(BaseModel):
    """Rate pinned by an operator; wins over every provider while fresh."""
    model_config = ConfigDict(populate_by_name=True)

    sell_price: float = Field(..., gt=0, alias="sellPrice")
    buy_price: float = Field(..., gt=0, alias="buyPrice")
    timestamp: datetime = Field(default_factory=utcnow)
    source: str = "manual"

    def age_days(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        stamp = self.timestamp
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return (now - stamp).total_seconds() / 86400

    def to_json_dict(self) -> dict:
        return {
            "sellPrice": self.sell_price,
            "buyPrice": self.buy_price,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }


class AlertState(BaseModel):
    """
    Snapshot written by the alert job after every check.

    `rate` is the reference the next check compares against.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rate: Optional[float] = None
    timestamp: Optional[datetime] = None
    last_checked_at: Optional[datetime] = Field(default=None, alias="lastCheckedAt")
    last_change_percent: float = Field(default=0.0, alias="lastChangePercent")
    threshold_percent: float = Field(default=0.0, alias="thresholdPercent")
    last_alert_at: Optional[datetime] = Field(default=None, alias="lastAlertAt")
    last_alert_change: Optional[float] = Field(default=None, alias="lastAlertChange")
    last_alert_rate: Optional[float] = Field(default=None, alias="lastAlertRate")

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
