import math
from datetime import datetime
from typing import Optional

from localtrades.models import ReliabilityScore, TradeProfile, as_utc, utc_now

MIN_ENQUIRIES_FOR_SCORE = 5
MAX_RELIABILITY_PERCENTAGE = 95

RESPONSE_RATE_WEIGHT = 40
ACCEPTANCE_RATE_WEIGHT = 30
RECENCY_WEIGHT = 20
VERIFIED_BONUS = 10

# (max days since last activity, points)
RECENCY_BANDS = ((7, 20), (14, 15), (30, 10), (60, 5))

HIGHLY_RELIABLE_THRESHOLD = 85
RELIABLE_THRESHOLD = 70
MODERATELY_RELIABLE_THRESHOLD = 50


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def recency_points(last_active: datetime, now: Optional[datetime] = None) -> int:
    current = as_utc(now or utc_now())
    days_since_active = max(0, (current - as_utc(last_active)).days)
    for max_days, points in RECENCY_BANDS:
        if days_since_active <= max_days:
            return points
    return 0


def reliability_label(percentage: int) -> str:
    if percentage >= HIGHLY_RELIABLE_THRESHOLD:
        return "Highly Reliable"
    if percentage >= RELIABLE_THRESHOLD:
        return "Reliable"
    if percentage >= MODERATELY_RELIABLE_THRESHOLD:
        return "Moderately Reliable"
    return "Building Reputation"


def reliability_description(percentage: int, profile: TradeProfile) -> str:
    if percentage >= HIGHLY_RELIABLE_THRESHOLD:
        response_rate = _round_half_up(profile.enquiries_responded / profile.enquiries_received * 100)
        return f"Responds to {response_rate}% of enquiries and stays active"
    if percentage >= RELIABLE_THRESHOLD:
        return "Good response rate and regular activity"
    if percentage >= MODERATELY_RELIABLE_THRESHOLD:
        return "Responds to some enquiries"
    return "Still building track record"


def format_reliability_label(percentage: int) -> str:
    if percentage == 0:
        return "New"
    return f"{percentage}% Reliable"


def calculate_reliability_score(profile: TradeProfile, now: Optional[datetime] = None) -> ReliabilityScore:
    """Turn a profile's enquiry counters into a 0-95 trust percentage.

    The score is derived on every read and never stored. Profiles with fewer
    than five enquiries always score 0. The verification bonus and its ten
    points of headroom are added together, so an unverified profile is
    scored out of 90 rather than penalised by a missing 10.
    """
    received = profile.enquiries_received
    if received == 0:
        return ReliabilityScore(
            percentage=0,
            label="New",
            description="No enquiries received yet",
            display_label=format_reliability_label(0),
        )
    if received < MIN_ENQUIRIES_FOR_SCORE:
        return ReliabilityScore(
            percentage=0,
            label="Building History",
            description="Establishing track record",
            display_label=format_reliability_label(0),
        )

    score = profile.enquiries_responded / received * RESPONSE_RATE_WEIGHT
    score += profile.enquiries_accepted / received * ACCEPTANCE_RATE_WEIGHT
    score += recency_points(profile.last_active, now)
    max_score = RESPONSE_RATE_WEIGHT + ACCEPTANCE_RATE_WEIGHT + RECENCY_WEIGHT
    if profile.verified:
        score += VERIFIED_BONUS
        max_score += VERIFIED_BONUS

    percentage = min(MAX_RELIABILITY_PERCENTAGE, _round_half_up(score / max_score * 100))
    return ReliabilityScore(
        percentage=percentage,
        label=reliability_label(percentage),
        description=reliability_description(percentage, profile),
        display_label=format_reliability_label(percentage),
    )
