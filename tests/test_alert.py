"""Tests for the rate change alert job."""

from unittest.mock import MagicMock

import pytest
import requests

from cashbook.config import RateAlertSettings
from cashbook.models.rate import AlertState
from cashbook.services.rates import AlertStateStore
from cashbook.services.rates import alert
from cashbook.services.rates.alert import AlertError, RateAlertJob, alert_message, change_percent

from tests.conftest import fake_response


def make_job(tmp_path, payload, smtp_factory=None, **settings):
    session = MagicMock()
    session.get.return_value = fake_response(payload)
    session.post.return_value = fake_response({})
    store = AlertStateStore(tmp_path / "rate-snapshot.json")
    job = RateAlertJob(
        state_store=store,
        settings=RateAlertSettings(proxy_url="http://proxy/api/p2p-rate", **settings),
        session=session,
        smtp_factory=smtp_factory,
    )
    return job, store, session


class TestHelpers:
    """Tests for the change maths and message text."""

    def test_change_percent(self):
        assert change_percent(25000, 25250) == pytest.approx(1.0)
        assert change_percent(25000, 24750) == pytest.approx(1.0)
        assert change_percent(0, 25000) == 0.0

    def test_message(self):
        text = alert_message(25000, 25250, 1.0, "http://proxy")
        assert "Giá cũ: 25.000₫" in text
        assert "Giá mới: 25.250₫" in text
        assert "Thay đổi: 1.00%" in text


class TestFetchRate:
    """Tests for reading the proxy."""

    def test_sell_price_preferred(self, tmp_path):
        job, _, _ = make_job(tmp_path, {"sellPrice": 26000, "buyPrice": 25900})
        assert job.fetch_rate() == 26000

    def test_buy_price_when_sell_missing(self, tmp_path):
        job, _, _ = make_job(tmp_path, {"sellPrice": 0, "buyPrice": 25900})
        assert job.fetch_rate() == 25900

    def test_zero_rate(self, tmp_path):
        job, _, _ = make_job(tmp_path, {"sellPrice": 0, "buyPrice": 0})
        with pytest.raises(AlertError, match="zero rate"):
            job.fetch_rate()


class TestRun:
    """Tests for one alert check."""

    def test_first_run_never_alerts(self, tmp_path):
        job, store, session = make_job(tmp_path, {"sellPrice": 26000}, webhook_url="http://hook")
        result = job.run()
        assert not result.triggered
        assert result.previous_rate == result.current_rate == 26000
        assert store.load().rate == 26000
        session.post.assert_not_called()

    def test_below_threshold(self, tmp_path):
        job, store, session = make_job(tmp_path, {"sellPrice": 26010}, webhook_url="http://hook")
        store.save(AlertState(rate=26000))
        result = job.run()
        assert not result.triggered
        assert result.state.last_change_percent == pytest.approx(10 / 260)
        session.post.assert_not_called()

    def test_threshold_posts_webhook(self, tmp_path):
        job, store, session = make_job(
            tmp_path, {"sellPrice": 26200}, webhook_url="http://hook", threshold_percent=0.5
        )
        store.save(AlertState(rate=26000))

        result = job.run()
        assert result.triggered
        assert session.post.call_args.args[0] == "http://hook"
        assert "Giá mới: 26.200₫" in session.post.call_args.kwargs["json"]["text"]

        saved = store.load()
        assert saved.rate == 26200
        assert saved.last_alert_rate == 26200
        assert saved.last_alert_at is not None

    def test_quiet_run_keeps_last_alert(self, tmp_path):
        job, store, _ = make_job(tmp_path, {"sellPrice": 26000})
        store.save(AlertState(rate=26000, last_alert_rate=25000, last_alert_change=2.0))
        job.run()
        saved = store.load()
        assert saved.last_alert_rate == 25000
        assert saved.last_alert_change == 2.0

    def test_webhook_failure_tolerated(self, tmp_path):
        job, store, session = make_job(tmp_path, {"sellPrice": 27000}, webhook_url="http://hook")
        session.post.side_effect = requests.ConnectionError("down")
        store.save(AlertState(rate=26000))
        assert job.run().triggered
        assert store.load().rate == 27000


class TestEmail:
    """Tests for SMTP delivery."""

    def test_not_configured(self, tmp_path):
        job, _, _ = make_job(tmp_path, {})
        assert job.send_email("x") is False

    def test_starttls_and_login(self, tmp_path):
        server = MagicMock()
        factory = MagicMock(return_value=server)
        job, _, _ = make_job(
            tmp_path,
            {},
            smtp_factory=factory,
            email_to="boss@example.com",
            email_from="bot@example.com",
            smtp_host="smtp.example.com",
            smtp_user="bot",
            smtp_password="secret",
        )
        assert job.send_email("body") is True
        factory.assert_called_once_with("smtp.example.com", 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "secret")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "boss@example.com"
        assert message["Subject"] == RateAlertJob.SUBJECT
        server.quit.assert_called_once()

    def test_ssl_port_skips_starttls(self, tmp_path):
        server = MagicMock()
        job, _, _ = make_job(
            tmp_path,
            {},
            smtp_factory=MagicMock(return_value=server),
            email_to="a@example.com",
            email_from="b@example.com",
            smtp_host="smtp.example.com",
            smtp_port=465,
        )
        job.send_email("body")
        server.starttls.assert_not_called()
        server.login.assert_not_called()


class TestMain:
    """Tests for the command entry point."""

    def test_failure_exit_code(self, monkeypatch):
        class FailingJob:
            def __init__(self, **kwargs):
                pass

            def run(self):
                raise AlertError("Proxy returned zero rate")

        monkeypatch.setattr(alert, "RateAlertJob", FailingJob)
        assert alert.main() == 1
