import os
import sys
from uuid import uuid4

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from localtrades.auth import hash_password
from localtrades.main import app
from localtrades.models import UserRole
from localtrades.services.trade_store import trade_store

client = TestClient(app)


def _login(email: str, password: str) -> dict:
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _search_ids() -> list:
    response = client.get("/search", params={"postcode": "SW1A 1AA", "category": "PLUMBER"})
    assert response.status_code == 200
    return [item["id"] for item in response.json()["trades"]]


def test_golden_path_register_verify_search_enquire_subscribe_respond():
    trade_email = f"golden_trade_{uuid4().hex[:8]}@example.com"
    admin_email = f"golden_admin_{uuid4().hex[:8]}@example.com"
    client_email = f"golden_client_{uuid4().hex[:8]}@example.com"

    registered = client.post(
        "/auth/register",
        json={
            "email": trade_email,
            "password": "golden-trade",
            "name": "Goldie Pipes",
            "phone": "07888888888",
            "role": "TRADE",
            "trade_profile": {
                "business_name": "Golden Pipes",
                "category": "PLUMBER",
                "description": "Emergency call-outs and boiler servicing.",
                "postcode": "SW1A 2AA",
                "service_radius": 10,
            },
        },
    )
    assert registered.status_code == 200
    profile_id = registered.json()["trade_profile"]["id"]
    trade_headers = _login(trade_email, "golden-trade")

    # Unverified trades are not listed.
    assert profile_id not in _search_ids()

    trade_store.create_user(
        email=admin_email,
        name="Golden Admin",
        password_hash=hash_password("golden-admin"),
        role=UserRole.ADMIN,
    )
    admin_headers = _login(admin_email, "golden-admin")
    assert client.post(f"/admin/trades/{profile_id}/verify", headers=admin_headers).status_code == 200
    assert profile_id in _search_ids()

    client.post(
        "/auth/register",
        json={"email": client_email, "password": "golden-client", "name": "Goldie Client", "role": "CLIENT"},
    )
    client_headers = _login(client_email, "golden-client")
    enquiry_payload = {
        "trade_profile_id": profile_id,
        "client_name": "Goldie Client",
        "client_email": client_email,
        "client_phone": "07999999999",
        "client_postcode": "SW1A 1AA",
        "job_description": "Burst pipe under the kitchen sink, water everywhere.",
    }

    enquiry_ids = []
    for _ in range(3):
        created = client.post("/enquiries", json=enquiry_payload, headers=client_headers)
        assert created.status_code == 200
        enquiry_ids.append(created.json()["id"])

    subscription = client.get("/trades/subscription", headers=trade_headers)
    assert subscription.status_code == 200
    assert subscription.json()["active"] is False
    assert subscription.json()["enquiries_remaining_free"] == 0
    assert profile_id not in _search_ids()

    blocked = client.post("/enquiries", json=enquiry_payload, headers=client_headers)
    assert blocked.status_code == 409

    subscribed = client.post("/trades/subscription", headers=trade_headers)
    assert subscribed.status_code == 200
    assert subscribed.json()["subscription_active"] is True
    assert subscribed.json()["active"] is False

    reopened = client.patch("/trades/profile", json={"active": True}, headers=trade_headers)
    assert reopened.status_code == 200
    assert reopened.json()["active"] is True
    assert profile_id in _search_ids()

    for _ in range(2):
        created = client.post("/enquiries", json=enquiry_payload, headers=client_headers)
        assert created.status_code == 200
        enquiry_ids.append(created.json()["id"])

    for enquiry_id in enquiry_ids:
        response = client.patch(f"/enquiries/{enquiry_id}", json={"status": "ACCEPTED"}, headers=trade_headers)
        assert response.status_code == 200

    reliability = client.get("/trades/profile/reliability", headers=trade_headers)
    assert reliability.status_code == 200
    score = reliability.json()
    assert score["percentage"] == 95
    assert score["label"] == "Highly Reliable"
    assert score["display_label"] == "95% Reliable"

    profile = client.get("/trades/profile", headers=trade_headers).json()["profile"]
    assert profile["active"] is True
    assert profile["enquiries_received"] == 5
    assert profile["enquiries_responded"] == 5
    assert profile["enquiries_accepted"] == 5

    client_notifications = client.get("/notifications", headers=client_headers)
    assert client_notifications.status_code == 200
    assert len([item for item in client_notifications.json() if item["category"] == "enquiry"]) == 5

    trade_notifications = client.get("/notifications", params={"unread_only": True}, headers=trade_headers)
    first = trade_notifications.json()[0]
    marked = client.post(f"/notifications/{first['id']}/read", headers=trade_headers)
    assert marked.status_code == 200
    assert marked.json()["read"] is True

    unread = client.get("/notifications/unread-count", headers=trade_headers).json()["unread"]
    assert unread == len(trade_notifications.json()) - 1
    cleared = client.post("/notifications/read-all", headers=trade_headers)
    assert cleared.json()["marked_read"] == unread
    assert client.get("/notifications/unread-count", headers=trade_headers).json()["unread"] == 0
