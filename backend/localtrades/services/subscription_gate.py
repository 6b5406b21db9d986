import calendar
import logging
from datetime import datetime
from typing import Optional

from localtrades.models import SubscriptionStatus, TradeProfile, as_utc, utc_now

logger = logging.getLogger(__name__)

SUBSCRIPTION_PERIOD_MONTHS = 1


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def can_receive_enquiry(profile: TradeProfile) -> bool:
    return profile.active and profile.verified


def on_enquiry_received(profile: TradeProfile) -> TradeProfile:
    """Count a new enquiry and switch the listing off once the free quota is used up.

    Subscribed trades are never deactivated here, whatever their count.
    """
    received = profile.enquiries_received + 1
    updates = {"enquiries_received": received}
    if received >= profile.free_quota and not profile.subscription_active and profile.active:
        updates["active"] = False
        logger.info(
            "Trade %s reached its free quota (%d/%d) and was deactivated",
            profile.id,
            received,
            profile.free_quota,
        )
    return profile.model_copy(update=updates)


def activate_subscription(profile: TradeProfile, now: Optional[datetime] = None) -> TradeProfile:
    # Leaves `active` untouched: a quota-deactivated listing needs an explicit profile edit.
    current = as_utc(now or utc_now())
    return profile.model_copy(
        update={
            "subscription_active": True,
            "subscription_ends": add_months(current, SUBSCRIPTION_PERIOD_MONTHS),
        }
    )


def cancel_subscription(profile: TradeProfile) -> TradeProfile:
    return profile.model_copy(update={"subscription_active": False, "subscription_ends": None})


def subscription_status(profile: TradeProfile, now: Optional[datetime] = None) -> SubscriptionStatus:
    days_remaining = None
    if profile.subscription_active and profile.subscription_ends is not None:
        remaining = as_utc(profile.subscription_ends) - as_utc(now or utc_now())
        days_remaining = max(0, remaining.days)
    return SubscriptionStatus(
        trade_profile_id=profile.id,
        subscription_active=profile.subscription_active,
        subscription_ends=profile.subscription_ends,
        days_remaining=days_remaining,
        free_quota=profile.free_quota,
        enquiries_received=profile.enquiries_received,
        enquiries_remaining_free=max(0, profile.free_quota - profile.enquiries_received),
        active=profile.active,
    )
