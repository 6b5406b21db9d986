"""Enquiry status transitions and the trade counters they drive.

The first move out of PENDING is the trade's *response*: it fixes
``responded_at``, counts towards the response rate and feeds the running
average response time. Later changes between ACCEPTED, DECLINED and
CONTACTED only touch acceptance accounting, and an enquiry adds to
``enquiries_accepted`` at most once however often it is re-accepted.

Everything here is pure. The caller persists the returned enquiry and
profile together (see ``TradeStore.transition_enquiry``).
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from localtrades.models import Enquiry, EnquiryStatus, TradeProfile, as_utc
from localtrades.services.trade_store import TradeStorePermissionError, TradeStoreValidationError

RESPONSE_STATUSES = {EnquiryStatus.ACCEPTED, EnquiryStatus.DECLINED, EnquiryStatus.CONTACTED}


@dataclass(frozen=True)
class EnquiryTransition:
    enquiry: Enquiry
    provider: TradeProfile
    previous_status: EnquiryStatus
    first_response: bool
    response_time_minutes: Optional[int] = None


def response_time_minutes(created_at: datetime, responded_at: datetime) -> int:
    elapsed = (as_utc(responded_at) - as_utc(created_at)).total_seconds()
    return max(0, math.floor(elapsed / 60))


def running_average(previous_average: Optional[int], previous_count: int, sample: int) -> int:
    new_count = previous_count + 1
    return math.floor(((previous_average or 0) * previous_count + sample) / new_count)


def apply_status(
    enquiry: Enquiry,
    provider: TradeProfile,
    new_status: EnquiryStatus,
    acting_provider_id: str,
    now: datetime,
) -> EnquiryTransition:
    if enquiry.trade_profile_id != provider.id or provider.id != acting_provider_id:
        raise TradeStorePermissionError("Only the trade that received this enquiry can update it")
    if new_status not in RESPONSE_STATUSES:
        raise TradeStoreValidationError("Status must be one of ACCEPTED, DECLINED, CONTACTED")

    previous_status = enquiry.status
    accepted = new_status == EnquiryStatus.ACCEPTED

    if enquiry.responded_at is None:
        elapsed = response_time_minutes(enquiry.created_at, now)
        provider_updates = {
            "enquiries_responded": provider.enquiries_responded + 1,
            "average_response_time": running_average(
                provider.average_response_time, provider.enquiries_responded, elapsed
            ),
            "last_active": now,
        }
        if accepted:
            provider_updates["enquiries_accepted"] = provider.enquiries_accepted + 1
        updated_enquiry = enquiry.model_copy(
            update={"status": new_status, "responded_at": now, "acceptance_counted": accepted}
        )
        return EnquiryTransition(
            enquiry=updated_enquiry,
            provider=provider.model_copy(update=provider_updates),
            previous_status=previous_status,
            first_response=True,
            response_time_minutes=elapsed,
        )

    updated_provider = provider
    enquiry_updates = {"status": new_status}
    if accepted and previous_status != EnquiryStatus.ACCEPTED and not enquiry.acceptance_counted:
        updated_provider = provider.model_copy(
            update={"enquiries_accepted": provider.enquiries_accepted + 1, "last_active": now}
        )
        enquiry_updates["acceptance_counted"] = True
    return EnquiryTransition(
        enquiry=enquiry.model_copy(update=enquiry_updates),
        provider=updated_provider,
        previous_status=previous_status,
        first_response=False,
    )
