import base64
import hashlib
import hmac
import json
import time

from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.row_mapping import to_row

OTHER_USER = {"Authorization": "Bearer other-token"}


def analyze(client, headers, image, focus="health"):
    return client.post("/analysis", headers=headers, json={"image_data_url": image, "focus": focus})


def stripe_signature(payload: bytes, secret: str = "whsec_test_secret") -> str:
    ts = int(time.time())
    mac = hmac.new(secret.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256)
    return f"t={ts},v1={mac.hexdigest()}"


def test_root_and_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["service"] == "mealappeal-backend"
    assert r.headers["X-Content-Type-Options"] == "nosniff"

    assert client.get("/health").json() == {"status": "healthy"}

    detailed = client.get("/health/detailed")
    assert detailed.status_code == 200
    checks = detailed.json()["checks"]
    assert checks["database"]["mode"] == "memory"
    assert checks["openai"]["status"] == "degraded"


def test_detailed_health_reports_missing_configuration(client, monkeypatch):
    monkeypatch.delenv("SUPABASE_DISABLED", raising=False)
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)

    r = client.get("/health/detailed")

    assert r.status_code == 503
    body = r.json()
    assert body["status"] == "unhealthy"
    assert body["checks"]["environment"]["missing"] == ["SUPABASE_URL", "SUPABASE_ANON_KEY"]


def test_auth_required(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/meals").status_code == 401


def test_auth_validate_creates_free_profile(client, auth_header):
    r = client.post("/auth/validate", headers=auth_header)
    assert r.status_code == 200
    data = r.json()
    assert data["user_id"]
    assert data["subscription_tier"] == "free"

    me = client.get("/auth/me", headers=auth_header).json()
    assert me["id"] == data["user_id"]
    assert me["is_premium"] is False
    assert me["shares_remaining"] == 3


def test_update_profile_name(client, auth_header):
    r = client.patch("/auth/profile", headers=auth_header, json={"full_name": "  Jamie  "})
    assert r.status_code == 200
    assert r.json()["full_name"] == "Jamie"

    blank = client.patch("/auth/profile", headers=auth_header, json={"full_name": "   "})
    assert blank.status_code == 400


def test_avatar_upload(client, auth_header, image_data_url):
    data = base64.b64decode(image_data_url.split(",", 1)[1])
    r = client.post(
        "/auth/profile/avatar", headers=auth_header, files={"file": ("me.jpg", data, "image/jpeg")}
    )
    assert r.status_code == 200, r.text
    avatar_url = r.json()["avatar_url"]
    assert client.get(avatar_url).status_code == 200

    bad = client.post(
        "/auth/profile/avatar", headers=auth_header, files={"file": ("me.txt", b"hello", "text/plain")}
    )
    assert bad.status_code == 400


def test_tier_switch_is_hidden_unless_enabled(client, auth_header, monkeypatch):
    monkeypatch.delenv("ENABLE_TIER_TESTING", raising=False)
    body = {"tier": "premium_yearly"}
    assert client.post("/auth/profile/tier", headers=auth_header, json=body).status_code == 404

    monkeypatch.setenv("ENABLE_TIER_TESTING", "1")
    r = client.post("/auth/profile/tier", headers=auth_header, json=body)
    assert r.status_code == 200
    assert r.json()["billing_cycle"] == "yearly"


def test_analysis_saves_meal_and_lists_it(client, auth_header, image_data_url):
    r = analyze(client, auth_header, image_data_url)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["meal_id"]
    assert data["metadata"]["model"] == "mock"

    meals = client.get("/meals", headers=auth_header).json()
    assert meals["total"] == 1
    meal = meals["meals"][0]
    assert meal["id"] == data["meal_id"]
    assert meal["days_left"] == 14
    assert client.get(meal["thumbnail_url"]).status_code == 200

    stats = client.get("/meals/stats", headers=auth_header).json()
    assert stats["total_meals"] == 1
    assert stats["analyses_remaining_today"] == 2


def test_meal_list_total_ignores_page_limit(client, auth_header, make_image):
    for shade in range(2):
        analyze(client, auth_header, make_image(color=(10, 10, shade * 90)))

    page = client.get("/meals", headers=auth_header, params={"limit": 1}).json()
    assert len(page["meals"]) == 1
    assert page["total"] == 2


def test_analysis_rejects_bad_input(client, auth_header):
    r = analyze(client, auth_header, "data:text/plain;base64,AAAA")
    assert r.status_code == 400
    assert r.json()["detail"]

    r = analyze(client, auth_header, "data:image/jpeg;base64,AAAA", focus="astrology")
    assert r.status_code == 422


def test_free_daily_limit(client, auth_header, make_image):
    for shade in range(3):
        assert analyze(client, auth_header, make_image(color=(shade * 60, 0, 0))).status_code == 200

    r = analyze(client, auth_header, make_image(color=(0, 0, 250)))
    assert r.status_code == 429
    body = r.json()
    assert body["upgrade_required"] is True
    assert body["limit"] == 3


def test_meal_visibility_and_delete(client, auth_header, image_data_url):
    meal_id = analyze(client, auth_header, image_data_url).json()["meal_id"]

    assert client.get(f"/meals/{meal_id}", headers=OTHER_USER).status_code == 404
    assert client.delete(f"/meals/{meal_id}", headers=OTHER_USER).status_code == 404

    r = client.delete(f"/meals/{meal_id}", headers=auth_header)
    assert r.status_code == 200
    assert client.get(f"/meals/{meal_id}", headers=auth_header).status_code == 404


def test_meal_image_urls(client, auth_header, image_data_url):
    meal_id = analyze(client, auth_header, image_data_url).json()["meal_id"]

    r = client.get(f"/meals/{meal_id}/image-urls", headers=auth_header)
    assert r.status_code == 200
    body = r.json()
    assert body["expires_in"] == 3600
    assert client.get(body["signed_url"]).status_code == 200
    assert set(body["variants"]) == {"placeholder", "thumbnail", "medium", "full", "webp"}

    assert client.get(f"/meals/{meal_id}/image-urls", headers=OTHER_USER).status_code == 404


def test_share_limit(client, auth_header, make_image):
    ids = [analyze(client, auth_header, make_image(color=(0, shade * 60, 0))).json()["meal_id"] for shade in range(3)]

    shared = client.post(f"/meals/{ids[0]}/share", headers=auth_header)
    assert shared.status_code == 200
    body = shared.json()
    assert body["share_url"].endswith(f"/share/{ids[0]}")
    assert body["shares_remaining"] == 2
    assert client.get(f"/meals/{ids[0]}", headers=OTHER_USER).status_code == 200

    client.post(f"/meals/{ids[1]}/share", headers=auth_header)
    client.post(f"/meals/{ids[2]}/share", headers=auth_header)

    # the daily analysis limit is spent, so the fourth meal is stored directly
    meals = MealRepository(None)
    row = to_row(meals.get(ids[0]))
    row.pop("id")
    extra = meals.create({**row, "is_public": False})

    r = client.post(f"/meals/{extra.id}/share", headers=auth_header)
    assert r.status_code == 429
    assert r.json()["shares_remaining"] == 0


def test_notification_settings(client, auth_header):
    defaults = client.get("/notifications/settings", headers=auth_header).json()
    assert defaults["email_weekly_summary"] is True
    assert defaults["push_premium_tips"] is False

    updated = {**defaults, "email_weekly_summary": False}
    r = client.put("/notifications/settings", headers=auth_header, json=updated)
    assert r.status_code == 200
    assert client.get("/notifications/settings", headers=auth_header).json() == updated


def test_billing_subscription_and_checkout_errors(client, auth_header, monkeypatch):
    monkeypatch.delenv("STRIPE_PREMIUM_MONTHLY_PRICE_ID", raising=False)
    sub = client.get("/billing/subscription", headers=auth_header).json()
    assert sub["subscription_tier"] == "free"
    assert sub["has_billing_account"] is False

    r = client.post("/billing/checkout", headers=auth_header, json={"plan_type": "monthly"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid plan type"

    portal = client.post("/billing/portal", headers=auth_header)
    assert portal.status_code == 400


def test_webhook_downgrades_canceled_subscription(client, auth_header, monkeypatch):
    monkeypatch.setenv("ENABLE_TIER_TESTING", "1")
    user_id = client.post("/auth/validate", headers=auth_header).json()["user_id"]
    client.post("/auth/profile/tier", headers=auth_header, json={"tier": "premium_monthly"})

    payload = json.dumps(
        {
            "id": "evt_1",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_1", "metadata": {"userId": user_id}}},
        }
    ).encode()
    r = client.post(
        "/billing/webhook", content=payload, headers={"Stripe-Signature": stripe_signature(payload)}
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"received": True, "handled": True}

    me = client.get("/auth/me", headers=auth_header).json()
    assert me["subscription_tier"] == "free"
    assert me["subscription_status"] == "canceled"


def test_webhook_for_missing_profile_is_acknowledged(client):
    payload = json.dumps(
        {
            "id": "evt_2",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_2", "metadata": {"userId": "deleted-user"}}},
        }
    ).encode()
    r = client.post(
        "/billing/webhook", content=payload, headers={"Stripe-Signature": stripe_signature(payload)}
    )
    assert r.status_code == 200
    assert r.json() == {"received": True, "handled": False}


def test_webhook_rejects_missing_or_bad_signature(client):
    payload = b'{"type": "charge.refunded"}'
    assert client.post("/billing/webhook", content=payload).status_code == 400
    r = client.post(
        "/billing/webhook",
        content=payload,
        headers={"Stripe-Signature": stripe_signature(payload, secret="whsec_wrong")},
    )
    assert r.status_code == 400


def test_admin_endpoints_require_admin(client, auth_header, admin_header):
    assert client.get("/admin/stats", headers=auth_header).status_code == 403
    assert client.post("/ops/backup", headers=auth_header, json={"action": "list_backups"}).status_code == 403

    client.post("/auth/validate", headers=auth_header)
    client.post("/auth/validate", headers=admin_header)
    r = client.get("/admin/stats", headers=admin_header)
    assert r.status_code == 200
    assert r.json()["total_users"] == 2


def test_ops_actions(client, admin_header):
    assert "create_backup" in client.get("/ops/backup", headers=admin_header).json()["actions"]

    r = client.post("/ops/backup", headers=admin_header, json={"action": "drop_everything"})
    assert r.status_code == 400
    assert r.json() == {"error": "Unknown action"}

    created = client.post("/ops/backup", headers=admin_header, json={"action": "create_backup"})
    assert created.status_code == 200
    backup_id = created.json()["backupId"]
    listed = client.post("/ops/backup", headers=admin_header, json={"action": "list_backups"}).json()
    assert backup_id in [b["id"] for b in listed]

    errors = client.post("/ops/monitoring", headers=admin_header, json={"action": "track_errors"})
    assert errors.status_code == 200
    assert errors.json()["last24Hours"]["total"] == 0


def test_ops_cleanup(client, auth_header, admin_header, image_data_url):
    user_id = client.post("/auth/validate", headers=auth_header).json()["user_id"]
    analyze(client, auth_header, image_data_url)

    missing = client.post("/ops/cleanup", headers=admin_header, json={"user_id": user_id})
    assert missing.status_code == 400

    assert client.post("/ops/cleanup", headers=admin_header, json={}).json()["deleted"] == 0
    r = client.post("/ops/cleanup", headers=admin_header, json={"user_id": user_id, "retention_days": 0})
    assert r.json()["deleted"] == 1


def test_account_export_and_delete(client, auth_header, image_data_url):
    meal_id = analyze(client, auth_header, image_data_url).json()["meal_id"]

    export = client.get("/auth/account/export", headers=auth_header)
    assert export.status_code == 200, export.text
    body = export.json()
    assert body["format"] == "gdpr_export_v1"
    assert [m["id"] for m in body["meals"]] == [meal_id]
    assert "analysis" in [e["action"] for e in body["audit_logs"]]

    r = client.delete("/auth/account", headers=auth_header)
    assert r.status_code == 200, r.text
    assert r.json()["meals_deleted"] == 1
    assert r.json()["errors"] == []

    assert client.get("/meals", headers=auth_header).json()["total"] == 0
    assert client.get(f"/meals/{meal_id}", headers=auth_header).status_code == 404


def test_ops_compliance(client, auth_header, admin_header, image_data_url):
    user_id = client.post("/auth/validate", headers=auth_header).json()["user_id"]
    analyze(client, auth_header, image_data_url)
    client.post("/auth/validate", headers=admin_header)

    assert client.post("/ops/compliance", headers=auth_header, json={"action": "get_audit_logs"}).status_code == 403
    assert "gdpr_delete" in client.get("/ops/compliance", headers=admin_header).json()["actions"]

    logs = client.post("/ops/compliance", headers=admin_header, json={"action": "get_audit_logs", "userId": user_id})
    assert logs.status_code == 200
    assert {e["user_id"] for e in logs.json()} == {user_id}

    missing = client.post("/ops/compliance", headers=admin_header, json={"action": "gdpr_export"})
    assert missing.status_code == 400
    assert missing.json() == {"error": "userId is required"}

    unknown = client.post("/ops/compliance", headers=admin_header, json={"action": "forget_everyone"})
    assert unknown.status_code == 400

    export = client.post("/ops/compliance", headers=admin_header, json={"action": "gdpr_export", "userId": user_id})
    assert export.status_code == 200
    assert len(export.json()["meals"]) == 1

    erased = client.post("/ops/compliance", headers=admin_header, json={"action": "gdpr_delete", "userId": user_id})
    assert erased.status_code == 200
    assert erased.json()["meals_deleted"] == 1

    gone = client.post("/ops/compliance", headers=admin_header, json={"action": "gdpr_export", "userId": user_id})
    assert gone.status_code == 404
