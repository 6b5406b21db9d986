from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TradeCategory(str, Enum):
    """Closed set of trades a profile can be listed under."""

    PLUMBER = "PLUMBER"
    ELECTRICIAN = "ELECTRICIAN"
    CARPENTER = "CARPENTER"
    PAINTER = "PAINTER"
    BUILDER = "BUILDER"
    ROOFER = "ROOFER"
    PLASTERER = "PLASTERER"
    TILER = "TILER"
    LANDSCAPER = "LANDSCAPER"
    WINDOW_CLEANER = "WINDOW_CLEANER"
    HANDYMAN = "HANDYMAN"
    CLEANER = "CLEANER"
    MOBILE_BARBER = "MOBILE_BARBER"
    MOBILE_BEAUTICIAN = "MOBILE_BEAUTICIAN"
    MASSAGE_THERAPIST = "MASSAGE_THERAPIST"
    PERSONAL_TRAINER = "PERSONAL_TRAINER"
    MOBILE_MECHANIC = "MOBILE_MECHANIC"
    IT_SUPPORT = "IT_SUPPORT"
    PHOTOGRAPHER = "PHOTOGRAPHER"
    OTHER = "OTHER"


def format_category(category: Union[str, TradeCategory]) -> str:
    value = category.value if isinstance(category, TradeCategory) else str(category)
    return " ".join(word[:1] + word[1:].lower() for word in value.split("_"))


class EnquiryStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    CONTACTED = "CONTACTED"


class UserRole(str, Enum):
    TRADE = "TRADE"
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"


class User(BaseModel):
    id: str
    email: str
    name: str
    phone: Optional[str] = None
    role: UserRole
    created_at: datetime = Field(default_factory=utc_now)


class TradeProfile(BaseModel):
    id: str
    user_id: str
    business_name: str
    description: str
    category: TradeCategory
    postcode: str
    service_radius: int = Field(ge=1, le=50)
    verified: bool = False
    active: bool = True
    subscription_active: bool = False
    subscription_ends: Optional[datetime] = None
    free_quota: int = 3
    enquiries_received: int = 0
    enquiries_responded: int = 0
    enquiries_accepted: int = 0
    average_response_time: Optional[int] = None
    last_active: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    version: int = 0


class Enquiry(BaseModel):
    id: str
    trade_profile_id: str
    client_id: str
    client_name: str
    client_email: str
    client_phone: str
    client_postcode: str
    job_description: str
    status: EnquiryStatus = EnquiryStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    responded_at: Optional[datetime] = None
    acceptance_counted: bool = False


class ReliabilityScore(BaseModel):
    percentage: int = Field(ge=0, le=95)
    label: str
    description: str
    display_label: str


class SearchResult(TradeProfile):
    distance: int
    reliability: Optional[ReliabilityScore] = None
    category_label: str = ""
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    owner_phone: Optional[str] = None


class SearchResponse(BaseModel):
    trades: list[SearchResult]


class SubscriptionStatus(BaseModel):
    trade_profile_id: str
    subscription_active: bool
    subscription_ends: Optional[datetime] = None
    days_remaining: Optional[int] = None
    free_quota: int
    enquiries_received: int
    enquiries_remaining_free: int
    active: bool


class TradeProfileCreate(BaseModel):
    business_name: str
    category: TradeCategory
    description: str
    postcode: str
    service_radius: int


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str
    phone: Optional[str] = None
    role: Literal["TRADE", "CLIENT"]
    trade_profile: Optional[TradeProfileCreate] = None


class RegisterResponse(BaseModel):
    user: User
    trade_profile: Optional[TradeProfile] = None


class TradeProfileUpdateRequest(BaseModel):
    business_name: Optional[str] = None
    category: Optional[TradeCategory] = None
    description: Optional[str] = None
    postcode: Optional[str] = None
    service_radius: Optional[int] = None
    active: Optional[bool] = None


class TradeProfileView(BaseModel):
    profile: TradeProfile
    reliability: ReliabilityScore
    owner_name: str
    owner_email: str
    owner_phone: Optional[str] = None


class EnquiryCreateRequest(BaseModel):
    trade_profile_id: str
    client_name: str
    client_email: EmailStr
    client_phone: str
    client_postcode: str
    job_description: str


class EnquiryStatusUpdateRequest(BaseModel):
    status: EnquiryStatus


class AuthLoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: UserRole
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    email: str
    name: str
    role: UserRole


class DeviceTokenRegisterRequest(BaseModel):
    device_token: str
    platform: Literal["android", "ios", "web"] = "android"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["enquiry", "subscription", "account", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None
