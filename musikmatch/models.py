# musikmatch/models.py
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator, model_validator

# ──────────────────────────────────────────────────────────────────────────────
# Rows (shape matches the Supabase tables)
# ──────────────────────────────────────────────────────────────────────────────
Role = Literal["musician", "venue"]


class ApplicationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"

    @property
    def resolved(self) -> bool:
        return self is not ApplicationStatus.pending


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ContactSnapshot(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("email", "phone", mode="before")
    @classmethod
    def _strip(cls, v):
        return _blank_to_none(v) if isinstance(v, str) else v

    @classmethod
    def of(cls, row: Dict) -> "ContactSnapshot":
        return cls(email=row.get("contact_email"), phone=row.get("contact_phone"))

    @property
    def empty(self) -> bool:
        return self.email is None and self.phone is None


class Profile(BaseModel):
    id: str
    role: Role
    display_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    music_type: Optional[str] = None
    rating: Optional[float] = None
    bankid_verified: Optional[bool] = None

    @property
    def contact(self) -> ContactSnapshot:
        return ContactSnapshot(email=self.contact_email, phone=self.contact_phone)


class Gig(BaseModel):
    id: int
    venue_id: str
    title: str
    description: Optional[str] = None
    city: Optional[str] = None
    start_time: datetime
    duration_minutes: int
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    image_url: Optional[str] = None

    @property
    def ends_at(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)


class Application(BaseModel):
    id: int
    gig_id: Optional[int] = None
    musician_id: Optional[str] = None
    message: Optional[str] = None
    status: ApplicationStatus = ApplicationStatus.pending
    created_at: Optional[datetime] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    musician_name: Optional[str] = None

    @property
    def contact(self) -> ContactSnapshot:
        return ContactSnapshot(email=self.contact_email, phone=self.contact_phone)

    def for_owner(self) -> "Application":
        """The owner only sees contact details once the application is accepted."""
        if self.status is ApplicationStatus.accepted:
            return self
        return self.model_copy(update={"contact_email": None, "contact_phone": None})


class GigSummary(BaseModel):
    title: str
    city: Optional[str] = None
    start_time: datetime


class ApplicationSummary(BaseModel):
    id: int
    gig_id: int
    status: ApplicationStatus
    message: Optional[str] = None
    created_at: datetime
    gig: Optional[GigSummary] = Field(default=None, validation_alias=AliasChoices("gigs", "gig"))


class Message(BaseModel):
    id: int
    application_id: int
    sender_id: str
    body: str
    created_at: datetime


# ──────────────────────────────────────────────────────────────────────────────
# Payloads
# ──────────────────────────────────────────────────────────────────────────────
class OnboardingIn(BaseModel):
    role: Role
    display_name: str

    @field_validator("display_name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("display name must be at least 2 characters")
        return v


class ContactIn(BaseModel):
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None

    @field_validator("contact_email", "contact_phone", mode="before")
    @classmethod
    def _strip(cls, v):
        return _blank_to_none(v) if isinstance(v, str) else v

    def snapshot(self) -> ContactSnapshot:
        return ContactSnapshot(email=self.contact_email, phone=self.contact_phone)


class GigIn(BaseModel):
    title: str
    description: Optional[str] = None
    city: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: int = Field(default=60, ge=15)
    budget_min: Optional[int] = Field(default=None, ge=0)
    budget_max: Optional[int] = Field(default=None, ge=0)

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("title must be at least 3 characters")
        return v

    @field_validator("description", "city", mode="before")
    @classmethod
    def _optional_text(cls, v):
        return _blank_to_none(v) if isinstance(v, str) else v

    @model_validator(mode="after")
    def _window(self) -> "GigIn":
        if self.end_time is not None:
            if self.end_time <= self.start_time:
                raise ValueError("end_time must be after start_time")
            self.duration_minutes = int((self.end_time - self.start_time).total_seconds() // 60)
            if self.duration_minutes < 15:
                raise ValueError("a gig lasts at least 15 minutes")
        if (
            self.budget_min is not None
            and self.budget_max is not None
            and self.budget_min > self.budget_max
        ):
            raise ValueError("budget_min cannot exceed budget_max")
        return self

    def row(self, venue_id: str) -> Dict:
        return {
            "venue_id": venue_id,
            "title": self.title,
            "description": self.description,
            "city": self.city,
            "start_time": self.start_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
        }


class ApplyIn(BaseModel):
    message: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None

    @field_validator("email", "phone", mode="before")
    @classmethod
    def _strip(cls, v):
        return _blank_to_none(v) if isinstance(v, str) else v


class MessageIn(BaseModel):
    body: str


class StatusIn(BaseModel):
    status: Literal["accepted", "rejected"]


class MyGig(Gig):
    application_count: int = 0


# ──────────────────────────────────────────────────────────────────────────────
# Screen state (what the gig detail view renders)
# ──────────────────────────────────────────────────────────────────────────────
class ContactFormState(BaseModel):
    message: str = ""
    email: str = ""
    phone: str = ""
    touched: List[str] = []


class GigScreenState(BaseModel):
    gig: Optional[Gig] = None
    role: Optional[Role] = None
    viewer_id: Optional[str] = None
    is_owner: bool = False
    applications: List[Application] = []
    my_application: Optional[Application] = None
    form: Optional[ContactFormState] = None
    messages: Dict[int, List[Message]] = {}
    drafts: Dict[int, str] = {}
    message_errors: Dict[int, str] = {}
    notice: Optional[str] = None


class LiveCommand(BaseModel):
    """One instruction sent by the client over the live gig socket."""

    action: Literal["edit", "edit_message", "apply", "draft", "send", "set_status"]
    field: Optional[str] = None
    value: Optional[str] = None
    application_id: Optional[int] = None
    status: Optional[Literal["accepted", "rejected"]] = None
