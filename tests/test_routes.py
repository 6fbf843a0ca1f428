"""
Integration Tests for the Newsletter Blueprint and CLI
======================================================

Run with: pytest tests/test_routes.py -v

NOTE: pytest is listed under extras_require["dev"] in setup.py.
Install with: pip install -e ".[dev]"
"""

import json
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from flask import Flask

from subscription_store import Newsletter, newsletter_bp
from subscription_store.core.logging_service import LoggingService


ADMIN_KEY = "test-admin-key"
AUTH = {"Authorization": f"Bearer {ADMIN_KEY}"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_data_dir():
    """Create a temporary data directory, cleaned up after."""
    d = tempfile.mkdtemp(prefix="newsletter-test-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def app(tmp_data_dir):
    """Flask app with the Newsletter extension initialised."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"
    Newsletter(app, {
        "DATA_DIR": tmp_data_dir,
        "ADMIN_API_KEY": ADMIN_KEY,
        "EMAIL_BRAND_NAME": "Test Weekly",
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["newsletter"].store


# ---------------------------------------------------------------------------
# 1. Extension initialisation
# ---------------------------------------------------------------------------

def test_extension_initialisation(app, tmp_data_dir):
    ext = app.extensions["newsletter"]

    assert app.config["SUBSCRIPTIONS_FILE"] == os.path.join(tmp_data_dir, "email-subscriptions.json")
    assert app.config["SUBSCRIPTIONS_BACKUP_FILE"] == os.path.join(
        tmp_data_dir, "email-subscriptions-backup.json")
    assert app.config["LOG_DB"] == os.path.join(tmp_data_dir, "app_logs.db")
    assert ext.store.file_path == app.config["SUBSCRIPTIONS_FILE"]
    assert ext.store.fail_open is False


def test_data_dir_creation(tmp_data_dir):
    target = os.path.join(tmp_data_dir, "sub", "data")
    app = Flask(__name__)
    Newsletter(app, {"DATA_DIR": target})
    assert os.path.isdir(target)


def test_routes_registered(app):
    rules = {rule.rule: rule.methods for rule in app.url_map.iter_rules()}
    assert "POST" in rules["/api/newsletter/subscribe"]
    assert "POST" in rules["/api/newsletter/unsubscribe"]
    assert "GET" in rules["/api/newsletter/stats"]
    assert {"GET", "POST"} <= rules["/api/newsletter/export"]
    assert "GET" in rules["/api/newsletter/analytics"]
    assert "DELETE" in rules["/api/newsletter/subscription"]


def test_blueprint_without_extension_uses_app_config(tmp_data_dir):
    """Registering only the blueprint builds a store from app.config."""
    app = Flask(__name__)
    app.config["SUBSCRIPTIONS_FILE"] = os.path.join(tmp_data_dir, "subs.json")
    app.config["SUBSCRIPTIONS_BACKUP_FILE"] = os.path.join(tmp_data_dir, "subs-backup.json")
    app.config["LOG_DB"] = os.path.join(tmp_data_dir, "logs.db")
    app.register_blueprint(newsletter_bp)

    response = app.test_client().post("/api/newsletter/subscribe", json={"email": "solo@example.com"})

    assert response.status_code == 201
    assert os.path.isfile(os.path.join(tmp_data_dir, "subs.json"))


# ---------------------------------------------------------------------------
# 2. Subscribe
# ---------------------------------------------------------------------------

def test_subscribe_new_email(client, store):
    response = client.post(
        "/api/newsletter/subscribe",
        json={"email": "reader@gmail.com", "signupSource": "Footer form"},
        headers={
            "User-Agent": "pytest-agent",
            "Referer": "https://example.com/blog",
            "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
        },
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["success"] is True
    assert "Test Weekly" in body["message"]

    record = store.get_subscription("reader@gmail.com")
    assert record["status"] == "subscribed"
    assert record["metadata"]["ipAddress"] == "203.0.113.7"
    assert record["metadata"]["userAgent"] == "pytest-agent"
    assert record["metadata"]["referer"] == "https://example.com/blog"
    assert record["metadata"]["signupSource"] == "Footer form"
    assert record["metadata"]["emailProvider"] == "Gmail"


def test_subscribe_twice_reactivates(client, store):
    client.post("/api/newsletter/subscribe", json={"email": "again@example.com"})
    store.update_subscription_status("again@example.com", "unsubscribed")

    response = client.post("/api/newsletter/subscribe", json={"email": "again@example.com"})

    assert response.status_code == 200
    assert response.get_json()["data"]["status"] == "subscribed"
    assert len(store.get_all_subscriptions()) == 1


@pytest.mark.parametrize("payload", [
    {},
    {"email": ""},
    {"email": "not-an-email"},
    {"email": "two..dots@example.com"},
    {"email": 42},
])
def test_subscribe_rejects_invalid_email(client, store, payload):
    response = client.post("/api/newsletter/subscribe", json=payload)
    assert response.status_code == 400
    assert "error" in response.get_json()
    assert store.get_all_subscriptions() == []


def test_subscribe_storage_failure_returns_500(client):
    with patch("subscription_store.core.storage.os.replace", side_effect=OSError("read-only fs")):
        response = client.post("/api/newsletter/subscribe", json={"email": "x@example.com"})

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to subscribe. Please try again."}


def test_subscribe_writes_persistent_log(app, client):
    client.post("/api/newsletter/subscribe", json={"email": "logged@example.com"})

    with app.app_context():
        entries = LoggingService.get_recent_logs(source="newsletter")

    assert entries[0]["message"] == "New subscriber: logged@example.com"
    assert entries[0]["level"] == "INFO"
    assert entries[0]["request_path"] == "/api/newsletter/subscribe"


def test_subscribe_status_code_follows_store_insert_flag(client, store):
    client.post("/api/newsletter/subscribe", json={"email": "flag@example.com"})

    # A stale lookup must not turn the second request into a fresh signup
    with patch.object(store, "get_subscription", return_value=None):
        response = client.post("/api/newsletter/subscribe", json={"email": "flag@example.com"})

    assert response.status_code == 200
    assert response.get_json()["message"].startswith("Welcome back")


def test_subscribe_storage_failure_logs_traceback(app, client):
    with patch("subscription_store.core.storage.os.replace", side_effect=OSError("read-only fs")):
        client.post("/api/newsletter/subscribe", json={"email": "x@example.com"})

    with app.app_context():
        entry = LoggingService.get_recent_logs(source="newsletter")[0]

    assert entry["level"] == "ERROR"
    assert entry["message"] == "Exception occurred: OSError"
    details = json.loads(entry["details"])
    assert details["error_message"] == "read-only fs"
    assert "Traceback" in details["traceback"]
    assert details["additional_details"] == {"operation": "subscribe"}


# ---------------------------------------------------------------------------
# 3. Unsubscribe
# ---------------------------------------------------------------------------

def test_unsubscribe_records_reason(client, store):
    client.post("/api/newsletter/subscribe", json={"email": "bye@example.com"})

    response = client.post(
        "/api/newsletter/unsubscribe",
        json={"email": "bye@example.com", "reason": "Too many emails"},
    )

    assert response.status_code == 200
    record = store.get_subscription("bye@example.com")
    assert record["status"] == "unsubscribed"
    assert record["metadata"]["unsubscribeReason"] == "Too many emails"
    assert record["metadata"]["unsubscribeDate"]


def test_unsubscribe_unknown_email_is_404(client):
    response = client.post("/api/newsletter/unsubscribe", json={"email": "ghost@example.com"})
    assert response.status_code == 404


def test_unsubscribe_requires_valid_email(client):
    response = client.post("/api/newsletter/unsubscribe", json={"email": "nope"})
    assert response.status_code == 400


# ---------------------------------------------------------------------------
# 4. Stats
# ---------------------------------------------------------------------------

def test_stats_endpoint(client):
    client.post("/api/newsletter/subscribe", json={"email": "a@gmail.com"})
    client.post("/api/newsletter/subscribe", json={"email": "b@yahoo.com", "source": "blog"})
    client.post("/api/newsletter/unsubscribe", json={"email": "b@yahoo.com"})

    response = client.get("/api/newsletter/stats")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["totalSubscriptions"] == 2
    assert data["activeSubscriptions"] == 1
    assert data["unsubscribed"] == 1
    assert data["topEmailProviders"] == {"Gmail": 1, "Yahoo": 1}
    assert data["sources"] == {"website": 1, "blog": 1}
    assert sum(data["subscriptionsByMonth"].values()) == 2


def test_stats_on_corrupt_file_returns_500(app, client):
    with open(app.config["SUBSCRIPTIONS_FILE"], "w") as f:
        f.write("garbage")

    response = client.get("/api/newsletter/stats")
    assert response.status_code == 500


def test_stats_on_non_utf8_file_returns_json_500(app, client):
    with open(app.config["SUBSCRIPTIONS_FILE"], "wb") as f:
        f.write(b'[{"email": "\xff\xfe"}]')

    response = client.get("/api/newsletter/stats")

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to retrieve statistics"}

    with app.app_context():
        entry = LoggingService.get_recent_logs(source="newsletter")[0]
    assert entry["message"] == "Exception occurred: CorruptStoreError"


def test_analytics_requires_api_key(client):
    assert client.get("/api/newsletter/analytics").status_code == 401


def test_analytics_endpoint(client, store):
    client.post(
        "/api/newsletter/subscribe",
        json={"email": "a@gmail.com", "signupSource": "Footer"},
        headers={"Referer": "https://blog.example.com/post?utm_source=x", "User-Agent": "iPhone Safari"},
    )
    client.post("/api/newsletter/subscribe", json={"email": "b@yahoo.com"})
    client.post("/api/newsletter/unsubscribe", json={"email": "b@yahoo.com"})

    fixed_now = datetime.now(timezone.utc) + timedelta(hours=1)
    with patch("subscription_store.modules.subscribers.analytics._utcnow", return_value=fixed_now):
        response = client.get("/api/newsletter/analytics", headers=AUTH)

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["overview"]["totalSubscriptions"] == 2
    assert data["overview"]["activeSubscriptions"] == 1
    assert data["overview"]["unsubscribed"] == 1
    assert data["overview"]["last24Hours"] == 2
    assert data["overview"]["growthRate"] == 100
    assert data["sources"]["breakdown"] == {"Footer": 1, "Newsletter form": 1}
    assert data["sources"]["topReferrers"] == {"blog.example.com/post": 1}
    assert data["demographics"]["deviceTypes"] == {"Mobile": 1, "Desktop": 1}
    assert data["quality"] == {"hasReferrer": 1, "organicSignups": 1}
    assert len(data["trends"]["dailySignups"]) == 30
    assert data["trends"]["dailySignups"][-1]["date"] == fixed_now.date().isoformat()
    assert data["generatedAt"].startswith(fixed_now.date().isoformat())


def test_analytics_on_corrupt_file_returns_500(app, client):
    with open(app.config["SUBSCRIPTIONS_FILE"], "w") as f:
        f.write("garbage")

    response = client.get("/api/newsletter/analytics", headers=AUTH)

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to retrieve analytics"}


# ---------------------------------------------------------------------------
# 5. Admin export / erase
# ---------------------------------------------------------------------------

def test_export_requires_api_key(client):
    assert client.get("/api/newsletter/export").status_code == 401
    assert client.get(
        "/api/newsletter/export", headers={"Authorization": "Bearer wrong"}
    ).status_code == 401


def test_export_disabled_without_configured_key(tmp_data_dir):
    app = Flask(__name__)
    Newsletter(app, {"DATA_DIR": tmp_data_dir, "ADMIN_API_KEY": None})
    response = app.test_client().get("/api/newsletter/export", headers={"Authorization": "Bearer None"})
    assert response.status_code == 401


def test_rejected_admin_call_is_logged(app, client):
    client.get("/api/newsletter/export")

    with app.app_context():
        entries = LoggingService.get_recent_logs(source="security")

    assert entries
    assert entries[0]["level"] == "WARNING"


def test_export_all(client):
    client.post("/api/newsletter/subscribe", json={"email": "one@example.com"})
    client.post("/api/newsletter/subscribe", json={"email": "two@example.com"})

    response = client.get("/api/newsletter/export", headers=AUTH)

    assert response.status_code == 200
    body = response.get_json()
    assert body["totalRecords"] == 2
    assert [r["email"] for r in body["data"]] == ["one@example.com", "two@example.com"]
    assert body["exportedAt"]


def test_export_single(client):
    client.post("/api/newsletter/subscribe", json={"email": "one@example.com"})

    found = client.post("/api/newsletter/export", json={"email": "one@example.com"}, headers=AUTH)
    missing = client.post("/api/newsletter/export", json={"email": "zzz@example.com"}, headers=AUTH)
    no_email = client.post("/api/newsletter/export", json={}, headers=AUTH)

    assert found.status_code == 200
    assert found.get_json()["data"]["email"] == "one@example.com"
    assert missing.status_code == 404
    assert no_email.status_code == 400


def test_erase_subscriber(client, store):
    client.post("/api/newsletter/subscribe", json={"email": "erase@example.com"})

    response = client.delete("/api/newsletter/subscription", json={"email": "erase@example.com"}, headers=AUTH)
    again = client.delete("/api/newsletter/subscription", json={"email": "erase@example.com"}, headers=AUTH)

    assert response.status_code == 200
    assert again.status_code == 404
    assert store.get_subscription("erase@example.com") is None


# ---------------------------------------------------------------------------
# 6. CLI commands
# ---------------------------------------------------------------------------

def test_cli_stats(app, store):
    store.add_subscription("cli@gmail.com")

    result = app.test_cli_runner().invoke(args=["newsletter", "stats"])

    assert result.exit_code == 0
    stats = json.loads(result.output)
    assert stats["totalSubscriptions"] == 1
    assert stats["topEmailProviders"] == {"Gmail": 1}


def test_cli_export_to_file(app, store, tmp_data_dir):
    store.add_subscription("cli@example.com")
    output = os.path.join(tmp_data_dir, "export.json")

    result = app.test_cli_runner().invoke(args=["newsletter", "export", "--output", output])

    assert result.exit_code == 0
    with open(output, encoding="utf-8") as f:
        assert [r["email"] for r in json.load(f)] == ["cli@example.com"]


def test_cli_delete(app, store):
    store.add_subscription("cli@example.com")
    runner = app.test_cli_runner()

    result = runner.invoke(args=["newsletter", "delete", "cli@example.com"])
    assert result.exit_code == 0
    assert store.get_all_subscriptions() == []

    result = runner.invoke(args=["newsletter", "delete", "cli@example.com"])
    assert result.exit_code != 0
    assert "No subscription found" in result.output


def test_cli_prune_logs(app, client):
    client.post("/api/newsletter/subscribe", json={"email": "old@example.com"})

    result = app.test_cli_runner().invoke(args=["newsletter", "prune-logs", "--days", "0"])

    assert result.exit_code == 0
    assert "Removed" in result.output
