"""HTTP tests for campaign, subscription and scheduler endpoints."""
from datetime import datetime, timedelta, timezone

from pushsaas.core.security import create_access_token
from pushsaas.db.models import Campaign, CampaignStatus, SendType, Subscription

API = "/api/v1"


def _future_iso(hours: int = 1) -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()


def test_health_reports_scheduler_state(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "scheduler": False}


def test_campaign_endpoints_require_authentication(client):
    assert client.get(f"{API}/campaigns").status_code == 401
    assert client.post(f"{API}/campaigns", json={}).status_code == 401

    response = client.get(f"{API}/campaigns", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_refresh_token_is_rejected(client, user):
    from jose import jwt

    from pushsaas.config import settings

    token = jwt.encode(
        {"sub": str(user.id), "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        settings.SECRET_KEY,
        algorithm="HS256",
    )

    response = client.get(f"{API}/campaigns", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_create_immediate_campaign_sends_and_reports(client, auth_headers, make_subscription, push_provider):
    make_subscription(site_id=7)
    make_subscription(site_id=7)
    make_subscription(site_id=8)

    response = client.post(
        f"{API}/campaigns",
        json={
            "name": "Launch",
            "title": "Hi",
            "body": "Test",
            "siteId": 7,
            "sendType": "immediate",
            "actions": [{"text": "Open", "url": "https://example.com"}],
        },
        headers=auth_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Campaign created and sent"
    assert body["campaign"]["status"] == "sent"
    assert body["campaign"]["totalSent"] == 2
    assert body["campaign"]["actions"] == [{"text": "Open", "url": "https://example.com", "order": 1}]
    assert body["execution"] == {
        "sent": 2,
        "failed": 0,
        "expired": 0,
        "total": 2,
        "message": "Campaign executed: 2 sent, 0 failed, 0 expired",
    }
    assert len(push_provider.sent) == 2


def test_create_immediate_with_no_audience(client, auth_headers):
    response = client.post(
        f"{API}/campaigns",
        json={"name": "Launch", "title": "Hi", "body": "Test"},
        headers=auth_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["campaign"]["status"] == "sent"
    assert body["execution"]["message"] == "No target subscriptions"


def test_create_scheduled_campaign(client, auth_headers, db_session):
    response = client.post(
        f"{API}/campaigns",
        json={
            "name": "Later",
            "title": "Soon",
            "body": "Stay tuned",
            "sendType": "scheduled",
            "scheduledAt": _future_iso(),
        },
        headers=auth_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Campaign scheduled"
    assert body["execution"] is None
    stored = db_session.get(Campaign, body["campaign"]["id"])
    assert stored.status == CampaignStatus.SCHEDULED.value


def test_create_rejects_business_rule_violations(client, auth_headers):
    response = client.post(
        f"{API}/campaigns",
        json={"name": "Later", "title": "Soon", "body": "x", "sendType": "scheduled"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["message"] == "Invalid campaign data"
    assert "scheduledAt is required for scheduled campaigns" in detail["details"]["errors"]


def test_create_rejects_malformed_body(client, auth_headers):
    response = client.post(f"{API}/campaigns", json={"title": "Hi"}, headers=auth_headers)

    assert response.status_code == 422
    assert response.json()["message"] == "Validation failed"


def test_list_and_get_campaign(client, auth_headers, make_campaign, other_user):
    own = make_campaign(name="Mine")
    foreign = make_campaign(name="Theirs", owner=other_user)

    listing = client.get(f"{API}/campaigns", params={"limit": 10}, headers=auth_headers)
    assert listing.status_code == 200
    body = listing.json()
    assert [item["name"] for item in body["items"]] == ["Mine"]
    assert body["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}

    detail = client.get(f"{API}/campaigns/{own.id}", headers=auth_headers)
    assert detail.status_code == 200
    assert detail.json()["campaign"]["name"] == "Mine"
    assert detail.json()["executionStats"] == {}

    assert client.get(f"{API}/campaigns/{foreign.id}", headers=auth_headers).status_code == 404


def test_update_draft_and_refuse_sent(client, auth_headers, make_campaign):
    draft = make_campaign()
    sent = make_campaign(status=CampaignStatus.SENT, send_type=SendType.IMMEDIATE)

    response = client.put(
        f"{API}/campaigns/{draft.id}",
        json={"name": "Edited", "title": "New", "body": "Body", "sendType": "scheduled", "scheduledAt": _future_iso()},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "scheduled"
    assert response.json()["name"] == "Edited"

    conflict = client.put(
        f"{API}/campaigns/{sent.id}",
        json={"name": "Edited", "title": "New", "body": "Body"},
        headers=auth_headers,
    )
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["details"] == {"status": "sent"}


def test_send_draft_then_conflict_on_resend(client, auth_headers, make_campaign, make_subscription):
    make_subscription()
    draft = make_campaign()

    first = client.post(f"{API}/campaigns/{draft.id}/send", headers=auth_headers)
    assert first.status_code == 200
    assert first.json()["execution"]["sent"] == 1

    second = client.post(f"{API}/campaigns/{draft.id}/send", headers=auth_headers)
    assert second.status_code == 409


def test_cancel_scheduled_campaign(client, auth_headers, make_campaign):
    scheduled = make_campaign(
        status=CampaignStatus.SCHEDULED,
        send_type=SendType.SCHEDULED,
        scheduled_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )

    response = client.post(f"{API}/campaigns/{scheduled.id}/cancel", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    again = client.post(f"{API}/campaigns/{scheduled.id}/cancel", headers=auth_headers)
    assert again.status_code == 409


def test_delete_campaign(client, auth_headers, make_campaign, db_session):
    campaign_id = make_campaign().id

    response = client.delete(f"{API}/campaigns/{campaign_id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"message": "Campaign deleted", "id": campaign_id}
    db_session.expunge_all()
    assert db_session.get(Campaign, campaign_id) is None
    assert client.delete(f"{API}/campaigns/{campaign_id}", headers=auth_headers).status_code == 404


def test_inactive_user_is_rejected(client, user, db_session):
    user.is_active = False
    db_session.commit()
    headers = {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    assert client.get(f"{API}/campaigns", headers=headers).status_code == 401


def test_scheduler_stats_is_admin_only(client, auth_headers, admin_headers):
    assert client.get(f"{API}/scheduler/stats", headers=auth_headers).status_code == 403

    response = client.get(f"{API}/scheduler/stats", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"isRunning": False, "scheduledCampaigns": 0, "campaignIds": []}


def test_vapid_public_key_is_public(client, monkeypatch):
    from pushsaas.config import settings

    monkeypatch.setattr(settings, "VAPID_PUBLIC_KEY", "BPublicKey")

    response = client.get(f"{API}/push/vapid-public-key")

    assert response.status_code == 200
    assert response.json() == {"publicKey": "BPublicKey"}


def test_subscribe_registers_and_refreshes_endpoint(client, db_session):
    body = {
        "endpoint": "https://push.example.com/send/abc",
        "keys": {"p256dh": "key-1", "auth": "secret-1"},
        "siteId": 7,
    }

    created = client.post(f"{API}/subscribe", json=body, headers={"User-Agent": "Chrome/120"})
    assert created.status_code == 201
    assert created.json()["siteId"] == 7

    body["keys"] = {"p256dh": "key-2", "auth": "secret-2"}
    refreshed = client.post(f"{API}/subscribe", json=body, headers={"User-Agent": "Chrome/121"})
    assert refreshed.json()["id"] == created.json()["id"]

    stored = db_session.query(Subscription).one()
    assert stored.p256dh == "key-2"
    assert stored.user_agent == "Chrome/121"


def test_subscribe_rejects_missing_keys(client):
    response = client.post(
        f"{API}/subscribe",
        json={"endpoint": "https://push.example.com/send/abc", "keys": {"p256dh": "k"}},
    )

    assert response.status_code == 422
