"""
Tests for stock alerts, the rate limiter and the app shell (health, error responses, lifespan).
"""
import asyncio
from datetime import datetime
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

import main
from database import get_db
from rate_limit import RateLimiter
from stock_alerts import seconds_until, send_low_stock_digest


class TestStockCheckup:
    def test_low_stock_sends_alert(self, client, make_user, make_product, mailer):
        seller_id, _ = make_user(role="seller")
        _, admin_headers = make_user(role="admin")
        product_id = make_product(seller_id, stock=3)

        res = client.post(f"/api/admin/stock-checkup/{product_id}", headers=admin_headers)
        assert res.status_code == 200
        assert res.json()["message"] == "Low stock alert sent"
        assert mailer.sent[0]["to"] == mailer.admin_address
        assert product_id in mailer.sent[0]["html"]

    def test_sufficient_stock(self, client, make_user, make_product, mailer):
        seller_id, _ = make_user(role="seller")
        _, admin_headers = make_user(role="admin")
        product_id = make_product(seller_id, stock=30)

        res = client.post(f"/api/admin/stock-checkup/{product_id}", headers=admin_headers)
        assert res.json()["message"] == "Stock level is sufficient"
        assert mailer.sent == []

    def test_admin_only(self, client, make_user, make_product):
        seller_id, seller_headers = make_user(role="seller")
        product_id = make_product(seller_id, stock=1)
        assert client.post(f"/api/admin/stock-checkup/{product_id}", headers=seller_headers).status_code == 403

    def test_unknown_product(self, client, make_user):
        _, admin_headers = make_user(role="admin")
        assert client.post("/api/admin/stock-checkup/64b7f0c2a1b2c3d4e5f60718", headers=admin_headers).status_code == 404

    def test_mail_failure(self, client, make_user, make_product, mailer):
        seller_id, _ = make_user(role="seller")
        _, admin_headers = make_user(role="admin")
        product_id = make_product(seller_id, stock=0)
        mailer.send = MagicMock(side_effect=OSError("smtp down"))

        res = client.post(f"/api/admin/stock-checkup/{product_id}", headers=admin_headers)
        assert res.status_code == 500


class TestDailyDigest:
    def test_digest_lists_low_stock_products(self, mongo_db, make_user, make_product, mailer):
        seller_id, _ = make_user(role="seller")
        make_product(seller_id, name="Almost Gone", stock=2)
        make_product(seller_id, name="Plenty", stock=50)

        assert send_low_stock_digest(mongo_db, mailer) == 1
        assert "Almost Gone" in mailer.sent[0]["html"]
        assert "Plenty" not in mailer.sent[0]["html"]

    def test_no_mail_when_stock_is_fine(self, mongo_db, make_user, make_product, mailer):
        seller_id, _ = make_user(role="seller")
        make_product(seller_id, stock=50)
        assert send_low_stock_digest(mongo_db, mailer) == 0
        assert mailer.sent == []

    def test_seconds_until_next_run(self):
        assert seconds_until(9, datetime(2024, 1, 1, 8, 0, 0)) == 3600
        assert seconds_until(9, datetime(2024, 1, 1, 9, 0, 0)) == 24 * 3600
        assert seconds_until(9, datetime(2024, 1, 1, 10, 30, 0)) == 22.5 * 3600


class TestRateLimiter:
    def test_window_limit(self):
        limiter = RateLimiter()
        assert limiter.is_allowed("ip:1", max_requests=2)[0]
        assert limiter.is_allowed("ip:1", max_requests=2)[0]
        allowed, remaining, retry_after = limiter.is_allowed("ip:1", max_requests=2)
        assert not allowed
        assert remaining == 0
        assert 1 <= retry_after <= 61
        assert limiter.is_allowed("ip:2", max_requests=2)[0]

    def test_idle_identifiers_are_dropped(self):
        clock = {"now": 0.0}
        with patch("rate_limit.time.time", side_effect=lambda: clock["now"]):
            limiter = RateLimiter()
            for i in range(1000):
                limiter.is_allowed(f"ip:{i}", max_requests=5)
            assert limiter.tracked_identifiers() == 1000

            clock["now"] = 10000.0
            assert limiter.is_allowed("ip:fresh", max_requests=5)[0]
            assert limiter.tracked_identifiers() == 1

    def test_active_identifiers_survive_cleanup(self):
        clock = {"now": 0.0}
        with patch("rate_limit.time.time", side_effect=lambda: clock["now"]):
            limiter = RateLimiter()
            limiter.is_allowed("ip:idle", max_requests=2, window_seconds=100)
            clock["now"] = 130.0
            limiter.is_allowed("ip:busy", max_requests=2, window_seconds=100)
            clock["now"] = 200.0
            allowed, remaining, _ = limiter.is_allowed("ip:busy", max_requests=2, window_seconds=100)
            assert allowed
            assert remaining == 0
            assert limiter.tracked_identifiers() == 1


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "E-commerce backend is running"}

    def test_health_reports_cache(self, client):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json()["cache"] == "ok"
        assert "X-Request-ID" in res.headers

    def test_unhandled_error_still_gets_request_id(self, client):
        def broken_db():
            raise RuntimeError("mongo exploded")

        main.app.dependency_overrides[get_db] = broken_db
        res = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert res.status_code == 500
        assert res.json() == {"detail": "Internal server error"}
        assert res.headers["X-Request-ID"] == "req-42"


class TestLifespan:
    def test_digest_task_is_awaited_on_shutdown(self, monkeypatch):
        state = {"started": False, "cancelled": False}

        async def fake_digest(database, mailer, hour):
            state["started"] = True
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                state["cancelled"] = True
                raise

        monkeypatch.setattr(main, "run_daily_digest", fake_digest)
        monkeypatch.setattr(main, "ensure_indexes", lambda database: None)
        monkeypatch.setattr(main.settings, "SCHEDULER_ENABLED", True)

        with TestClient(main.app) as client:
            assert client.get("/").status_code == 200

        assert state == {"started": True, "cancelled": True}
