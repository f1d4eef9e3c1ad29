"""USDT→VND rates: upstream providers, the proxy's service, the dashboard client and the alert job."""

from cashbook.services.rates.client import RateClient, remember_quote, usdt_value
from cashbook.services.rates.providers import (
    AllProvidersFailedError,
    BinanceP2PProvider,
    CoinGeckoFxProvider,
    FxOnlyProvider,
    RateProvider,
    RateProviderError,
    apply_spread,
    default_providers,
)
from cashbook.services.rates.service import AlertStateStore, ManualRateStore, RateService

__all__ = [
    "AlertStateStore",
    "AllProvidersFailedError",
    "BinanceP2PProvider",
    "CoinGeckoFxProvider",
    "FxOnlyProvider",
    "ManualRateStore",
    "RateClient",
    "RateProvider",
    "RateProviderError",
    "RateService",
    "apply_spread",
    "default_providers",
    "remember_quote",
    "usdt_value",
]
