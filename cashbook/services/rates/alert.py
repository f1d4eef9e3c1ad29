"""
Rate Change Alert Job

Run periodically (cron, pm2). Each run:

1. Reads the current rate from the proxy (sell price, buy if sell is 0)
2. Compares it with the rate stored in the snapshot file
3. Notifies by e-mail and webhook when the change reaches the threshold
4. Always writes a fresh snapshot

The first run has no previous rate and so never alerts.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

import requests
import structlog
from pydantic import BaseModel

from cashbook.audit.logger import AuditLogger
from cashbook.config import RateAlertSettings, get_settings
from cashbook.models.audit import AuditEventBuilder
from cashbook.models.rate import AlertState, utcnow
from cashbook.services.rates.providers import get_json, positive_float
from cashbook.services.rates.service import AlertStateStore


logger = structlog.get_logger(__name__)


class AlertError(Exception):
    pass


class AlertResult(BaseModel):
    previous_rate: float
    current_rate: float
    change_percent: float
    triggered: bool
    state: AlertState


def change_percent(previous: float, current: float) -> float:
    if previous <= 0:
        return 0.0
    return abs(current - previous) / previous * 100


def _vnd(value: float) -> str:
    return f"{value:,.0f}".replace(",", ".") + "₫"


def alert_message(previous: float, current: float, percent: float, source: str) -> str:
    return (
        f"Giá cũ: {_vnd(previous)}\n"
        f"Giá mới: {_vnd(current)}\n"
        f"Thay đổi: {percent:.2f}%\n"
        f"Nguồn: {source}"
    )


class RateAlertJob:
    SUBJECT = "Alert: Tỷ giá USDT→VND thay đổi"

    def __init__(
        self,
        state_store: Optional[AlertStateStore] = None,
        settings: Optional[RateAlertSettings] = None,
        session: Optional[requests.Session] = None,
        smtp_factory=None,
    ):
        self._settings = settings or get_settings().rate_alert
        self._state = state_store or AlertStateStore(get_settings().rate_proxy.state_file)
        self._session = session or requests.Session()
        self._smtp_factory = smtp_factory

    def fetch_rate(self) -> float:
        try:
            payload = get_json(self._session, self._settings.proxy_url, 10.0)
        except (requests.RequestException, ValueError) as e:
            raise AlertError(f"Proxy fetch failed: {e}")
        if not isinstance(payload, dict):
            raise AlertError("Proxy returned an unexpected payload")
        rate = positive_float(payload.get("sellPrice")) or positive_float(payload.get("buyPrice"))
        if rate is None:
            raise AlertError("Proxy returned zero rate")
        return rate

    def send_email(self, text: str) -> bool:
        if not self._settings.email_configured:
            logger.info("alert_email_skipped", reason="not configured")
            return False

        message = EmailMessage()
        message["Subject"] = self.SUBJECT
        message["From"] = self._settings.email_from
        message["To"] = self._settings.email_to
        message.set_content(text)

        use_ssl = self._settings.smtp_port == 465
        factory = self._smtp_factory or (smtplib.SMTP_SSL if use_ssl else smtplib.SMTP)
        server = factory(self._settings.smtp_host, self._settings.smtp_port)
        try:
            if not use_ssl:
                server.starttls()
            if self._settings.smtp_user:
                server.login(self._settings.smtp_user, self._settings.smtp_password or "")
            server.send_message(message)
        finally:
            server.quit()
        logger.info("alert_email_sent", to=self._settings.email_to)
        return True

    def post_webhook(self, text: str) -> bool:
        if not self._settings.webhook_url:
            return False
        try:
            response = self._session.post(self._settings.webhook_url, json={"text": text}, timeout=10)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("alert_webhook_failed", error=str(e))
            return False
        logger.info("alert_webhook_sent")
        return True

    def notify(self, previous: float, current: float, percent: float) -> None:
        text = alert_message(previous, current, percent, self._settings.proxy_url)
        logger.warning("rate_threshold_reached", previous=previous, current=current, change_percent=percent)
        try:
            self.send_email(text)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("alert_email_failed", error=str(e))
        self.post_webhook(text)

    def run(self) -> AlertResult:
        current = self.fetch_rate()
        snapshot = self._state.load()
        previous = snapshot.rate or current
        percent = change_percent(previous, current)
        threshold = self._settings.threshold_percent
        triggered = previous > 0 and percent >= threshold

        if triggered:
            self.notify(previous, current, percent)
        else:
            logger.info("rate_change_below_threshold", change_percent=round(percent, 4))

        now = utcnow()
        state = AlertState(
            rate=current,
            timestamp=now,
            last_checked_at=now,
            last_change_percent=percent,
            threshold_percent=threshold,
            last_alert_at=now if triggered else snapshot.last_alert_at,
            last_alert_change=percent if triggered else snapshot.last_alert_change,
            last_alert_rate=current if triggered else snapshot.last_alert_rate,
        )
        self._state.save(state)
        return AlertResult(
            previous_rate=previous,
            current_rate=current,
            change_percent=percent,
            triggered=triggered,
            state=state,
        )


def main() -> int:
    settings = get_settings().rate_alert
    try:
        result = RateAlertJob(settings=settings).run()
    except AlertError as e:
        logger.error("rate_alert_job_failed", error=str(e))
        return 1

    if result.triggered:
        asyncio.run(AuditLogger().log(AuditEventBuilder.rate_alert_triggered(
            old_rate=result.previous_rate,
            new_rate=result.current_rate,
            change_percent=result.change_percent,
            threshold_percent=settings.threshold_percent,
        )))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
