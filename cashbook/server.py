"""
P2P Rate Proxy

Small Flask service the dashboard calls instead of hitting Binance
directly (browsers cannot, because of CORS).

GET  /api/p2p-rate          current quote, 502 when every source failed
GET  /api/p2p-rate/alert    last snapshot written by the alert job
GET  /api/p2p-rate/manual   pinned manual rate, 404 when none
POST /api/p2p-rate/manual   pin a manual rate {sellPrice, buyPrice}
GET  /health, GET /
"""

import re
from datetime import datetime, timezone
from typing import Optional

import structlog
from flask import Flask, jsonify, request
from flask_cors import CORS

from cashbook.config import RateProxySettings, get_settings
from cashbook.services.rates.providers import AllProvidersFailedError, positive_float
from cashbook.services.rates.service import AlertStateStore, RateService


logger = structlog.get_logger(__name__)


def _origins(settings: RateProxySettings) -> list:
    return [re.compile(o) if o.startswith("^") else o for o in settings.cors_origins_list]


def create_app(
    service: Optional[RateService] = None,
    alert_store: Optional[AlertStateStore] = None,
    settings: Optional[RateProxySettings] = None,
) -> Flask:
    settings = settings or get_settings().rate_proxy
    service = service or RateService(settings=settings)
    alert_store = alert_store or AlertStateStore(settings.state_file)

    app = Flask(__name__)
    CORS(app, origins=_origins(settings), supports_credentials=True)

    @app.get("/api/p2p-rate")
    def p2p_rate():
        try:
            quote = service.get_quote()
        except AllProvidersFailedError as e:
            return jsonify({
                "message": e.message,
                "details": e.details,
                "attemptedSources": e.attempted_sources,
            }), 502
        return jsonify(quote.to_response())

    @app.get("/api/p2p-rate/alert")
    def alert_state():
        state = alert_store.load()
        last_checked = state.last_checked_at or state.timestamp
        return jsonify({
            "lastCheckedAt": last_checked.isoformat() if last_checked else None,
            "lastAlertAt": state.last_alert_at.isoformat() if state.last_alert_at else None,
            "lastChangePercent": state.last_change_percent,
            "thresholdPercent": state.threshold_percent,
            "lastAlertChange": state.last_alert_change,
            "lastAlertRate": state.last_alert_rate,
        })

    @app.get("/api/p2p-rate/manual")
    def get_manual_rate():
        rate = service.manual_store.load()
        if rate is None:
            return jsonify({"message": "No manual rate found"}), 404
        return jsonify(rate.to_json_dict())

    @app.post("/api/p2p-rate/manual")
    def save_manual_rate():
        body = request.get_json(silent=True) or {}
        sell = positive_float(body.get("sellPrice"))
        buy = positive_float(body.get("buyPrice"))
        if sell is None or buy is None:
            return jsonify({"message": "sellPrice and buyPrice are required"}), 400
        try:
            rate = service.manual_store.save(sell, buy)
        except OSError as e:
            logger.error("manual_rate_save_failed", error=str(e))
            return jsonify({"message": "Failed to save manual rate", "details": str(e)}), 500
        return jsonify({"message": "Manual rate saved successfully", "data": rate.to_json_dict()})

    @app.get("/health")
    def health():
        return jsonify({
            "status": "ok",
            "service": "p2p-rate-proxy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.get("/")
    def index():
        return (
            "P2P rate proxy is running. Using Binance P2P API as primary source, "
            "with CoinGecko + FX API fallback."
        )

    return app


def main() -> None:
    settings = get_settings().rate_proxy
    app = create_app(settings=settings)
    logger.info("rate_proxy_starting", host=settings.host, port=settings.port)
    app.run(host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
