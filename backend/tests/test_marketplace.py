import os
import sys
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from localtrades.models import (
    EnquiryCreateRequest,
    EnquiryStatus,
    RegisterRequest,
    TradeCategory,
    TradeProfileCreate,
    TradeProfileUpdateRequest,
    UserRole,
)
from localtrades.services.marketplace import Marketplace
from localtrades.services.notification_store import NotificationStore
from localtrades.services.trade_store import (
    EnquiryGateRejectedError,
    TradeStore,
    TradeStoreNotFoundError,
    TradeStorePermissionError,
    TradeStoreValidationError,
)

NOW = datetime(2026, 4, 6, 8, 0, tzinfo=timezone.utc)


class RecordingEmails:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send_enquiry_notification(self, **kwargs):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append(kwargs)
        return True

    def send_welcome_email(self, email, name, role):
        self.sent.append({"welcome": email, "role": role})
        return True


class BrokenNotifications(NotificationStore):
    def create(self, *args, **kwargs):
        raise RuntimeError("push backend unavailable")


def _marketplace(tmp_path, **kwargs):
    store = TradeStore(db_path=str(tmp_path / "trades.sqlite3"))
    kwargs.setdefault("notifications", NotificationStore())
    return Marketplace(store=store, **kwargs)


def _trade(market, postcode="SW1A2AA", radius=10, verified=True):
    user, profile = market.store.create_user(
        email=f"trade_{uuid4().hex[:8]}@example.com",
        name="Pat Plumber",
        password_hash="not-a-real-hash",
        role=UserRole.TRADE,
        phone="07333333333",
        trade_profile={
            "business_name": "Pat's Plumbing",
            "description": "Boilers, leaks and bathroom installs.",
            "category": TradeCategory.PLUMBER,
            "postcode": postcode,
            "service_radius": radius,
        },
    )
    if verified:
        profile = market.store.update_provider(profile.id, {"verified": True})
    return user, profile


def _client(market):
    user, _ = market.store.create_user(
        email=f"client_{uuid4().hex[:8]}@example.com",
        name="Casey Client",
        password_hash="not-a-real-hash",
        role=UserRole.CLIENT,
    )
    return user


def _enquiry_fields(provider_id, **overrides):
    values = dict(
        trade_profile_id=provider_id,
        client_name="Casey Client",
        client_email="casey@example.com",
        client_phone="07444444444",
        client_postcode="sw1a 1aa",
        job_description="Dripping tap and a slow draining bath.",
    )
    values.update(overrides)
    return EnquiryCreateRequest(**values)


def test_free_quota_walkthrough(tmp_path):
    market = _marketplace(tmp_path)
    _, profile = _trade(market)
    client = _client(market)

    results = market.search("SW1A1AA", now=NOW)
    assert [result.id for result in results] == [profile.id]
    assert results[0].distance == 5

    for _ in range(2):
        market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id), now=NOW)
    assert market.store.get_provider_by_id(profile.id).active is True

    third = market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id), now=NOW)
    assert third.client_postcode == "SW1A1AA"
    paused = market.store.get_provider_by_id(profile.id)
    assert paused.enquiries_received == 3
    assert paused.active is False
    assert market.search("SW1A1AA", now=NOW) == []

    with pytest.raises(EnquiryGateRejectedError):
        market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id), now=NOW)
    assert market.store.get_provider_by_id(profile.id).enquiries_received == 3

    subscribed = market.activate_subscription(profile.id, now=NOW)
    assert subscribed.subscription_active is True
    assert subscribed.subscription_ends == NOW + timedelta(days=30)
    assert subscribed.active is False

    reopened = market.update_profile(paused.user_id, TradeProfileUpdateRequest(active=True))
    assert reopened.active is True
    for _ in range(3):
        market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id), now=NOW)
    after = market.store.get_provider_by_id(profile.id)
    assert after.enquiries_received == 6
    assert after.active is True

    assert len(market.list_enquiries(client)) == 6


def test_unverified_or_missing_trade_rejects_enquiries(tmp_path):
    market = _marketplace(tmp_path)
    _, unverified = _trade(market, verified=False)
    client = _client(market)

    with pytest.raises(EnquiryGateRejectedError):
        market.submit_enquiry(unverified.id, client.id, _enquiry_fields(unverified.id))
    with pytest.raises(TradeStoreNotFoundError):
        market.submit_enquiry("trd_missing", client.id, _enquiry_fields("trd_missing"))


def test_enquiry_fields_are_validated(tmp_path):
    market = _marketplace(tmp_path)
    _, profile = _trade(market)
    client = _client(market)

    with pytest.raises(TradeStoreValidationError):
        market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id, job_description="Too short"))
    with pytest.raises(TradeStoreValidationError):
        market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id, client_phone="123"))
    assert market.store.get_provider_by_id(profile.id).enquiries_received == 0


def test_status_updates_drive_counters_and_notify_client(tmp_path):
    market = _marketplace(tmp_path)
    _, profile = _trade(market)
    client = _client(market)
    enquiry = market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id), now=NOW)

    declined = market.update_enquiry_status(enquiry.id, "DECLINED", profile.id, now=NOW + timedelta(minutes=30))
    accepted = market.update_enquiry_status(enquiry.id, EnquiryStatus.ACCEPTED, profile.id, now=NOW + timedelta(hours=5))

    assert declined.responded_at == accepted.responded_at == NOW + timedelta(minutes=30)
    stored = market.store.get_provider_by_id(profile.id)
    assert stored.enquiries_responded == 1
    assert stored.enquiries_accepted == 1
    assert stored.average_response_time == 30

    inbox = market.notifications.list_for_user(client.id)
    assert [item.body for item in inbox] == [
        "Pat's Plumbing marked your enquiry as accepted",
        "Pat's Plumbing marked your enquiry as declined",
    ]
    assert market.notifications.unread_count(client.id) == 2


def test_status_update_guards(tmp_path):
    market = _marketplace(tmp_path)
    _, profile = _trade(market)
    _, other = _trade(market, postcode="SW1A9ZZ")
    client = _client(market)
    enquiry = market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id))

    with pytest.raises(TradeStorePermissionError):
        market.update_enquiry_status(enquiry.id, "ACCEPTED", other.id)
    with pytest.raises(TradeStoreValidationError):
        market.update_enquiry_status(enquiry.id, "PENDING", profile.id)
    with pytest.raises(TradeStoreValidationError):
        market.update_enquiry_status(enquiry.id, "MAYBE", profile.id)
    with pytest.raises(TradeStoreNotFoundError):
        market.update_enquiry_status("enq_missing", "ACCEPTED", profile.id)

    untouched = market.store.get_provider_by_id(profile.id)
    assert untouched.enquiries_responded == 0


def test_notification_failures_do_not_undo_enquiry(tmp_path):
    emails = RecordingEmails(fail=True)
    market = _marketplace(tmp_path, notifications=BrokenNotifications(), emails=emails)
    _, profile = _trade(market)
    client = _client(market)

    enquiry = market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id))
    assert market.store.get_enquiry_by_id(enquiry.id) is not None
    assert market.store.get_provider_by_id(profile.id).enquiries_received == 1

    updated = market.update_enquiry_status(enquiry.id, "CONTACTED", profile.id)
    assert updated.status == EnquiryStatus.CONTACTED


class OwnerLookupFailingStore(TradeStore):
    def get_user_by_id(self, user_id):
        raise RuntimeError("store read failed")


def test_owner_lookup_failure_after_commit_does_not_fail_enquiry(tmp_path):
    store = OwnerLookupFailingStore(db_path=str(tmp_path / "trades.sqlite3"))
    emails = RecordingEmails()
    market = Marketplace(store=store, notifications=NotificationStore(), emails=emails)
    _, profile = _trade(market)
    client = _client(market)

    enquiry = market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id))

    assert store.get_enquiry_by_id(enquiry.id) is not None
    assert store.get_provider_by_id(profile.id).enquiries_received == 1
    assert emails.sent == []
    assert market.notifications.list_for_user(profile.user_id)[0].title == "New job enquiry"


def test_trade_is_notified_by_inbox_and_email(tmp_path):
    emails = RecordingEmails()
    market = _marketplace(tmp_path, emails=emails)
    owner, profile = _trade(market)
    client = _client(market)

    market.submit_enquiry(profile.id, client.id, _enquiry_fields(profile.id))
    assert emails.sent[0]["trade_email"] == owner.email
    assert emails.sent[0]["client_phone"] == "07444444444"
    inbox = market.notifications.list_for_user(owner.id)
    assert inbox[0].title == "New job enquiry"
    assert "plumber" in inbox[0].body


def test_register_trade_and_authenticate(tmp_path):
    emails = RecordingEmails()
    market = _marketplace(tmp_path, emails=emails)
    user, profile = market.register(
        RegisterRequest(
            email="New.Trade@example.com",
            password="correct horse",
            name="New Trade",
            phone="07555555555",
            role="TRADE",
            trade_profile=TradeProfileCreate(
                business_name="New Trade Carpentry",
                category=TradeCategory.CARPENTER,
                description="Fitted wardrobes, doors and flooring.",
                postcode="ec1a 1bb",
                service_radius=20,
            ),
        )
    )
    assert user.role == UserRole.TRADE
    assert profile.postcode == "EC1A1BB"
    assert profile.verified is False
    assert emails.sent == [{"welcome": "new.trade@example.com", "role": "TRADE"}]

    assert market.authenticate("new.trade@example.com", "correct horse").id == user.id
    assert market.authenticate("new.trade@example.com", "wrong password") is None
    assert market.authenticate("nobody@example.com", "correct horse") is None


def test_register_validation(tmp_path):
    market = _marketplace(tmp_path)
    with pytest.raises(TradeStoreValidationError):
        market.register(RegisterRequest(email="short@example.com", password="short", name="Shorty", role="CLIENT"))
    with pytest.raises(TradeStoreValidationError):
        market.register(RegisterRequest(email="trade@example.com", password="long enough", name="Trade", role="TRADE"))
    with pytest.raises(TradeStoreValidationError):
        market.register(
            RegisterRequest(
                email="radius@example.com",
                password="long enough",
                name="Radius",
                role="TRADE",
                trade_profile=TradeProfileCreate(
                    business_name="Radius Roofing",
                    category=TradeCategory.ROOFER,
                    description="Flat roofs and chimney repairs done right.",
                    postcode="SW1A1AA",
                    service_radius=75,
                ),
            )
        )


def test_admin_verification(tmp_path):
    market = _marketplace(tmp_path)
    _, profile = _trade(market, verified=False)
    admin = market.ensure_admin("admin@example.com", "admin-password")
    assert market.ensure_admin("admin@example.com", "ignored").id == admin.id
    client = _client(market)

    assert market.set_verified(profile.id, True, actor=admin).verified is True
    assert [result.id for result in market.search("SW1A1AA")] == [profile.id]
    with pytest.raises(TradeStorePermissionError):
        market.set_verified(profile.id, False, actor=client)
    assert market.set_verified(profile.id, False, actor=admin).verified is False
    assert market.search("SW1A1AA") == []


def test_subscription_status_and_cancel(tmp_path):
    market = _marketplace(tmp_path)
    _, profile = _trade(market)
    market.activate_subscription(profile.id, now=NOW)

    status = market.subscription_status(profile.id, now=NOW)
    assert status.subscription_active is True
    assert status.days_remaining == 30

    cancelled = market.cancel_subscription(profile.id)
    assert cancelled.subscription_active is False
    with pytest.raises(TradeStoreNotFoundError):
        market.subscription_status("trd_missing")
