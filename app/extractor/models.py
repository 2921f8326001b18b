"""Records shared by the extraction engine and its collaborators."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ExtractionStatus(str, Enum):
    STOPPED = "Stopped"
    EXTRACTING = "Extracting"


class ReportStatus(str, Enum):
    OK = "OK"
    UNAVAILABLE = "UNAVAILABLE"
    DISTANCE_ERROR = "DISTANCE_ERROR"
    ERROR = "ERROR"


class RequestKind(str, Enum):
    PROFILE = "PROFILE"
    COMPANY = "COMPANY"


@dataclass
class Account:
    """One controlled browser identity and its daily counters."""

    tab_id: str
    logged_in: bool = False
    full_name: Optional[str] = None
    primary_id: Optional[str] = None
    encoded_id: Optional[str] = None
    user_agent: Optional[str] = None
    today_profiles: Optional[int] = 0
    max_daily_profiles: int = 0
    min_request_interval: int = 18000
    max_request_interval: int = 26000
    ok_profiles: int = 0
    distance_errors: int = 0
    unavailable_profiles: int = 0
    other_errors: int = 0

    def clear_identity(self) -> None:
        self.full_name = None
        self.primary_id = None
        self.encoded_id = None
        self.logged_in = False
        self.user_agent = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "tab_id": self.tab_id,
            "logged_in": self.logged_in,
            "full_name": self.full_name,
            "primary_id": self.primary_id,
            "encoded_id": self.encoded_id,
            "today_profiles": self.today_profiles,
            "max_daily_profiles": self.max_daily_profiles,
            "min_request_interval": self.min_request_interval,
            "max_request_interval": self.max_request_interval,
            "ok_profiles": self.ok_profiles,
            "distance_errors": self.distance_errors,
            "unavailable_profiles": self.unavailable_profiles,
            "other_errors": self.other_errors,
        }


@dataclass
class Notification:
    id: Any
    message: str
    start_date: Optional[str] = None
    read: bool = False


@dataclass
class UserProfile:
    email: str
    balance: float = 0.0
    completed: int = 0
    paypal_email: Optional[str] = None
    btc_address: Optional[str] = None
    referral_link: Optional[str] = None
    usd_per_1000: float = 0.0
    last_update: Optional[float] = None
    notifications: list[Notification] = field(default_factory=list)


@dataclass
class ExtractionJob:
    """One unit of work handed out by the backend. Consumed exactly once."""

    kind: str
    reference: int
    in_profile: Optional[str] = None
    enc_profile: Optional[str] = None
    sales_nav_profile: Optional[str] = None
    pub_profile: Optional[str] = None
    company_profile: Optional[str] = None
    company_identifier: Optional[str] = None
    extract_full_profile: bool = False

    @property
    def is_company(self) -> bool:
        return self.kind == RequestKind.COMPANY.value and bool(self.company_profile)

    @property
    def has_profile_locator(self) -> bool:
        return any((self.in_profile, self.enc_profile, self.sales_nav_profile, self.pub_profile))

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> "ExtractionJob":
        full = response.get("ExtractFullProfile")
        return cls(
            kind=str(response["RequestType"]).upper(),
            reference=response["Reference"],
            in_profile=response.get("InProfile"),
            enc_profile=response.get("EncProfile"),
            sales_nav_profile=response.get("SalesNavProfile"),
            pub_profile=response.get("PubProfile"),
            company_profile=response.get("CompanyProfile"),
            company_identifier=response.get("CompanyIdentifier"),
            extract_full_profile=full if isinstance(full, bool) else False,
        )


@dataclass
class NetworkInfo:
    distance: int = -1
    followers: int = 0
    following: bool = False
    connections: int = 0
    encoded_id: str = ""
    status: int = 200

    @property
    def logged_out(self) -> bool:
        return self.status == 401


@dataclass
class ExtractionOutcome:
    """Decoded payload of an ``extractProfile``/``extractCompany`` reply."""

    error: Optional[str] = None
    html: Optional[str] = None
    in_id: Optional[str] = None
    enc_id: Optional[str] = None
    distance: Optional[Any] = None

    @classmethod
    def from_reply(cls, payload: Any) -> "ExtractionOutcome":
        if not isinstance(payload, dict):
            return cls()
        error = payload.get("error")
        return cls(
            error=str(error) if error else None,
            html=payload.get("html") or None,
            in_id=payload.get("inLinkedInId"),
            enc_id=payload.get("encLinkedInId"),
            distance=payload.get("distance"),
        )


@dataclass
class PendingReply:
    key: str
    action: str
    future: asyncio.Future


@dataclass
class PacingState:
    next_allowed_at: float = 0.0


@dataclass
class ExtractionState:
    """Mutable engine flags. Written only by the engine and its routines."""

    is_extracting: bool = False
    busy: bool = False
    quota_waiting: bool = False
    needs_closing_confirmation: bool = False
    current_job: Optional[ExtractionJob] = None
    current_target: Optional[str] = None
    last_activity_at: Optional[float] = None
    pacing: PacingState = field(default_factory=PacingState)

    def owns(self, job: Optional[ExtractionJob]) -> bool:
        """Return True when ``job`` is still the live job of a running loop."""

        return self.is_extracting and job is not None and self.current_job is job


__all__ = [
    "ExtractionStatus",
    "ReportStatus",
    "RequestKind",
    "Account",
    "Notification",
    "UserProfile",
    "ExtractionJob",
    "NetworkInfo",
    "ExtractionOutcome",
    "PendingReply",
    "PacingState",
    "ExtractionState",
]
