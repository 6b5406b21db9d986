import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from localtrades.models import TradeCategory, TradeProfile
from localtrades.services import subscription_gate

NOW = datetime(2026, 1, 31, 10, 30, tzinfo=timezone.utc)


def _provider(**overrides):
    values = dict(
        id="trd_gate",
        user_id="usr_gate",
        business_name="Gate Roofing",
        description="Slate and tile roof repairs across London.",
        category=TradeCategory.ROOFER,
        postcode="E16AN",
        service_radius=20,
        verified=True,
    )
    values.update(overrides)
    return TradeProfile(**values)


def test_can_receive_requires_active_and_verified():
    assert subscription_gate.can_receive_enquiry(_provider()) is True
    assert subscription_gate.can_receive_enquiry(_provider(active=False)) is False
    assert subscription_gate.can_receive_enquiry(_provider(verified=False)) is False


def test_free_trade_is_deactivated_exactly_at_quota():
    profile = _provider()
    for expected in (1, 2):
        profile = subscription_gate.on_enquiry_received(profile)
        assert profile.enquiries_received == expected
        assert profile.active is True
    profile = subscription_gate.on_enquiry_received(profile)
    assert profile.enquiries_received == 3
    assert profile.active is False


def test_subscribed_trade_is_never_deactivated():
    profile = _provider(subscription_active=True)
    for _ in range(10):
        profile = subscription_gate.on_enquiry_received(profile)
    assert profile.enquiries_received == 10
    assert profile.active is True


def test_custom_quota_is_respected():
    profile = _provider(free_quota=1)
    assert subscription_gate.on_enquiry_received(profile).active is False


def test_activate_sets_one_month_and_keeps_listing_paused():
    paused = _provider(active=False, enquiries_received=3)
    subscribed = subscription_gate.activate_subscription(paused, NOW)
    assert subscribed.subscription_active is True
    assert subscribed.subscription_ends == datetime(2026, 2, 28, 10, 30, tzinfo=timezone.utc)
    assert subscribed.active is False


def test_add_months_clamps_to_month_end_and_rolls_year():
    assert subscription_gate.add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert subscription_gate.add_months(datetime(2025, 12, 15), 1) == datetime(2026, 1, 15)


def test_cancel_clears_subscription():
    subscribed = subscription_gate.activate_subscription(_provider(), NOW)
    cancelled = subscription_gate.cancel_subscription(subscribed)
    assert cancelled.subscription_active is False
    assert cancelled.subscription_ends is None


def test_status_reports_remaining_free_enquiries_and_days():
    status = subscription_gate.subscription_status(_provider(enquiries_received=2), NOW)
    assert status.enquiries_remaining_free == 1
    assert status.days_remaining is None

    subscribed = subscription_gate.activate_subscription(_provider(enquiries_received=7), NOW)
    status = subscription_gate.subscription_status(subscribed, NOW)
    assert status.enquiries_remaining_free == 0
    assert status.days_remaining == 28
    assert status.subscription_active is True
