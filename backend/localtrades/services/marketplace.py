import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from localtrades.auth import hash_password, verify_password
from localtrades.models import (
    Enquiry,
    EnquiryCreateRequest,
    EnquiryStatus,
    RegisterRequest,
    ReliabilityScore,
    SearchResult,
    SubscriptionStatus,
    TradeCategory,
    TradeProfile,
    TradeProfileUpdateRequest,
    User,
    UserRole,
    as_utc,
    format_category,
    utc_now,
)
from localtrades.services import subscription_gate
from localtrades.services.email_notifier import EmailNotifier, email_notifier
from localtrades.services.enquiry_lifecycle import EnquiryTransition, apply_status
from localtrades.services.notification_store import NotificationStore, notification_store
from localtrades.services.postcodes import normalize_postcode
from localtrades.services.reliability import calculate_reliability_score
from localtrades.services.search import SearchMatcher
from localtrades.services.trade_store import (
    EnquiryGateRejectedError,
    TradeStore,
    TradeStoreNotFoundError,
    TradeStorePermissionError,
    TradeStoreValidationError,
    trade_store,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MIN_NAME_LENGTH = 2
MIN_BUSINESS_NAME_LENGTH = 2
MIN_DESCRIPTION_LENGTH = 20
MIN_POSTCODE_LENGTH = 5
MIN_PHONE_LENGTH = 10
MIN_JOB_DESCRIPTION_LENGTH = 20
MIN_SERVICE_RADIUS = 1
MAX_SERVICE_RADIUS = 50


def _require_min_length(value: Optional[str], minimum: int, field_name: str) -> str:
    cleaned = (value or "").strip()
    if len(cleaned) < minimum:
        raise TradeStoreValidationError(f"{field_name} must be at least {minimum} characters")
    return cleaned


def _require_postcode(value: Optional[str], field_name: str = "postcode") -> str:
    postcode = normalize_postcode(value or "")
    if len(postcode) < MIN_POSTCODE_LENGTH:
        raise TradeStoreValidationError(f"{field_name} must be at least {MIN_POSTCODE_LENGTH} characters")
    return postcode


def _require_service_radius(value: int) -> int:
    if not MIN_SERVICE_RADIUS <= int(value) <= MAX_SERVICE_RADIUS:
        raise TradeStoreValidationError(
            f"service_radius must be between {MIN_SERVICE_RADIUS} and {MAX_SERVICE_RADIUS} miles"
        )
    return int(value)


@dataclass
class Marketplace:
    """The operations the HTTP layer exposes, wired to the store and notifiers.

    Notifications go out after the store has committed and are best effort:
    a failing email or push never undoes an enquiry or a status change.
    """

    store: TradeStore
    notifications: NotificationStore = field(default_factory=NotificationStore)
    emails: Optional[EmailNotifier] = None
    matcher: Optional[SearchMatcher] = None

    def __post_init__(self) -> None:
        if self.matcher is None:
            self.matcher = SearchMatcher(store=self.store)

    # Accounts

    def register(self, request: RegisterRequest) -> Tuple[User, Optional[TradeProfile]]:
        name = _require_min_length(request.name, MIN_NAME_LENGTH, "name")
        if len(request.password) < MIN_PASSWORD_LENGTH:
            raise TradeStoreValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")

        profile_fields: Optional[Dict[str, Any]] = None
        if request.role == UserRole.TRADE.value:
            if request.trade_profile is None:
                raise TradeStoreValidationError("trade_profile is required for trade accounts")
            details = request.trade_profile
            profile_fields = {
                "business_name": _require_min_length(details.business_name, MIN_BUSINESS_NAME_LENGTH, "business_name"),
                "category": details.category,
                "description": _require_min_length(details.description, MIN_DESCRIPTION_LENGTH, "description"),
                "postcode": _require_postcode(details.postcode),
                "service_radius": _require_service_radius(details.service_radius),
            }

        user, profile = self.store.create_user(
            email=str(request.email),
            name=name,
            password_hash=hash_password(request.password),
            role=UserRole(request.role),
            phone=request.phone,
            trade_profile=profile_fields,
        )
        logger.info("Registered %s account %s", user.role.value, user.id)
        self._dispatch(
            "welcome email",
            lambda: self.emails and self.emails.send_welcome_email(user.email, user.name, user.role.value),
        )
        return user, profile

    def authenticate(self, email: str, password: str) -> Optional[User]:
        credentials = self.store.get_user_credentials(email)
        if not credentials:
            return None
        user, password_hash = credentials
        return user if verify_password(password, password_hash) else None

    def ensure_admin(self, email: str, password: str, name: str = "Administrator") -> User:
        credentials = self.store.get_user_credentials(email)
        if credentials:
            return credentials[0]
        user, _ = self.store.create_user(
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
        )
        logger.info("Seeded admin account %s", user.id)
        return user

    # Search and scoring

    def search(
        self,
        postcode: Optional[str],
        category: Union[str, TradeCategory, None] = None,
        include_reliability: bool = True,
        now: Optional[datetime] = None,
    ) -> List[SearchResult]:
        return self.matcher.search(postcode, category, include_reliability=include_reliability, now=now)

    def score_provider(self, provider: TradeProfile, now: Optional[datetime] = None) -> ReliabilityScore:
        return calculate_reliability_score(provider, now)

    # Enquiries

    def submit_enquiry(
        self,
        provider_id: str,
        client_id: str,
        fields: EnquiryCreateRequest,
        now: Optional[datetime] = None,
    ) -> Enquiry:
        client_name = _require_min_length(fields.client_name, MIN_NAME_LENGTH, "client_name")
        client_phone = _require_min_length(fields.client_phone, MIN_PHONE_LENGTH, "client_phone")
        client_postcode = _require_postcode(fields.client_postcode, "client_postcode")
        job_description = _require_min_length(fields.job_description, MIN_JOB_DESCRIPTION_LENGTH, "job_description")
        created_at = as_utc(now or utc_now())

        def build(profile: TradeProfile) -> Tuple[Enquiry, TradeProfile]:
            if not subscription_gate.can_receive_enquiry(profile):
                raise EnquiryGateRejectedError("Trade is not accepting enquiries")
            enquiry = Enquiry(
                id=f"enq_{uuid4().hex[:10]}",
                trade_profile_id=profile.id,
                client_id=client_id,
                client_name=client_name,
                client_email=str(fields.client_email),
                client_phone=client_phone,
                client_postcode=client_postcode,
                job_description=job_description,
                status=EnquiryStatus.PENDING,
                created_at=created_at,
            )
            return enquiry, subscription_gate.on_enquiry_received(profile)

        enquiry, profile = self.store.create_enquiry_atomic(provider_id, build)
        logger.info(
            "Enquiry %s sent to trade %s (%d received, active=%s)",
            enquiry.id,
            profile.id,
            profile.enquiries_received,
            profile.active,
        )
        self._notify_new_enquiry(enquiry, profile)
        return enquiry

    def list_enquiries(self, user: User) -> List[Enquiry]:
        if user.role == UserRole.TRADE:
            profile = self.store.get_provider_by_user_id(user.id)
            return self.store.list_enquiries_for_provider(profile.id) if profile else []
        return self.store.list_enquiries_for_client(user.id)

    def update_enquiry_status(
        self,
        enquiry_id: str,
        new_status: Union[str, EnquiryStatus],
        caller_provider_id: str,
        now: Optional[datetime] = None,
    ) -> Enquiry:
        try:
            status = EnquiryStatus(new_status)
        except ValueError:
            raise TradeStoreValidationError(f"Invalid status: {new_status}") from None
        changed_at = as_utc(now or utc_now())
        transitions: List[EnquiryTransition] = []

        def mutate(enquiry: Enquiry, profile: TradeProfile) -> Tuple[Enquiry, TradeProfile]:
            transition = apply_status(enquiry, profile, status, caller_provider_id, changed_at)
            transitions.append(transition)
            return transition.enquiry, transition.provider

        enquiry, profile = self.store.transition_enquiry(enquiry_id, mutate)
        transition = transitions[-1]
        if transition.first_response:
            logger.info(
                "Trade %s responded to enquiry %s in %d min (%s)",
                caller_provider_id,
                enquiry.id,
                transition.response_time_minutes,
                enquiry.status.value,
            )
        if transition.previous_status != enquiry.status:
            self._dispatch(
                "enquiry status notification",
                lambda: self.notifications.notify_enquiry_status(enquiry, profile.business_name),
            )
        return enquiry

    # Trade profiles

    def get_profile_for_user(self, user_id: str) -> TradeProfile:
        profile = self.store.get_provider_by_user_id(user_id)
        if not profile:
            raise TradeStoreNotFoundError("Profile not found")
        return profile

    def update_profile(self, user_id: str, request: TradeProfileUpdateRequest) -> TradeProfile:
        profile = self.get_profile_for_user(user_id)
        changes: Dict[str, Any] = {}
        if request.business_name is not None:
            changes["business_name"] = _require_min_length(
                request.business_name, MIN_BUSINESS_NAME_LENGTH, "business_name"
            )
        if request.category is not None:
            changes["category"] = request.category
        if request.description is not None:
            changes["description"] = _require_min_length(request.description, MIN_DESCRIPTION_LENGTH, "description")
        if request.postcode is not None:
            changes["postcode"] = _require_postcode(request.postcode)
        if request.service_radius is not None:
            changes["service_radius"] = _require_service_radius(request.service_radius)
        if request.active is not None:
            changes["active"] = request.active
        if not changes:
            return profile
        updated = self.store.update_provider(profile.id, changes)
        if "active" in changes and changes["active"] != profile.active:
            logger.info("Trade %s set active=%s", profile.id, updated.active)
        return updated

    # Subscriptions

    def activate_subscription(self, provider_id: str, now: Optional[datetime] = None) -> TradeProfile:
        profile = self.store.atomic_update_provider(
            provider_id, lambda current: subscription_gate.activate_subscription(current, now)
        )
        logger.info("Trade %s subscribed until %s", profile.id, profile.subscription_ends)
        return profile

    def cancel_subscription(self, provider_id: str) -> TradeProfile:
        profile = self.store.atomic_update_provider(provider_id, subscription_gate.cancel_subscription)
        logger.info("Trade %s cancelled its subscription", profile.id)
        return profile

    def subscription_status(self, provider_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        profile = self.store.get_provider_by_id(provider_id)
        if not profile:
            raise TradeStoreNotFoundError("Trade not found")
        return subscription_gate.subscription_status(profile, now)

    # Admin

    def list_trades(self) -> List[TradeProfile]:
        return self.store.list_providers()

    def set_verified(self, provider_id: str, verified: bool, actor: User) -> TradeProfile:
        if actor.role != UserRole.ADMIN:
            raise TradeStorePermissionError("Only admins can change verification")
        profile = self.store.update_provider(provider_id, {"verified": verified})
        logger.info("Admin %s set trade %s verified=%s", actor.id, provider_id, verified)
        return profile

    # Notifications

    def _notify_new_enquiry(self, enquiry: Enquiry, profile: TradeProfile) -> None:
        self._dispatch(
            "new enquiry notification",
            lambda: self.notifications.notify_new_enquiry(
                profile.user_id, enquiry, format_category(profile.category)
            ),
        )
        if not profile.active and not profile.subscription_active:
            self._dispatch(
                "quota notification",
                lambda: self.notifications.notify_quota_reached(profile.user_id, profile.free_quota),
            )
        if self.emails is not None:
            self._dispatch("enquiry email", lambda: self._email_trade(enquiry, profile))

    def _email_trade(self, enquiry: Enquiry, profile: TradeProfile) -> None:
        owner = self.store.get_user_by_id(profile.user_id)
        if owner is None:
            logger.warning("Trade %s has no owner account, enquiry email skipped", profile.id)
            return
        self.emails.send_enquiry_notification(
            trade_email=owner.email,
            trade_name=owner.name,
            client_name=enquiry.client_name,
            client_email=enquiry.client_email,
            client_phone=enquiry.client_phone,
            job_description=enquiry.job_description,
        )

    def _dispatch(self, description: str, send) -> None:
        try:
            send()
        except Exception:
            logger.exception("Failed to dispatch %s", description)


marketplace = Marketplace(store=trade_store, notifications=notification_store, emails=email_notifier)

_admin_email = os.getenv("ADMIN_EMAIL", "").strip()
_admin_password = os.getenv("ADMIN_PASSWORD", "")
if _admin_email and _admin_password:
    marketplace.ensure_admin(_admin_email, _admin_password)
