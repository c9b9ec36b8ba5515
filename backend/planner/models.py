"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table owned by a single user.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return `value` as an aware UTC datetime (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class User(SQLModel, table=True):
    """A registered student.

    Fields:
    - `email`: unique login identifier
    - `password_hash`: hashed password string (never store plaintext)
    - `has_access`: set once a plan has been paid for
    - `onboarding_data`: free-form answers captured by the onboarding wizard
    - `utm_*`: campaign attribution copied from the UTM cookie
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    name: Optional[str] = None
    password_hash: Optional[str] = None
    has_access: bool = False
    has_completed_onboarding: bool = False
    onboarding_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    reached_payment_at: Optional[datetime] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_captured_at: Optional[datetime] = None
    weekday_earliest_time: Optional[str] = None
    weekday_latest_time: Optional[str] = None
    weekend_earliest_time: Optional[str] = None
    weekend_latest_time: Optional[str] = None
    use_same_weekend_times: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class Payment(SQLModel, table=True):
    """A one-time plan purchase. `amount` is in minor units (pence)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    provider_session_id: str = Field(unique=True)
    provider_customer_id: Optional[str] = None
    amount: int
    currency: str = 'GBP'
    status: str = Field(default='paid', index=True)
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Block(SQLModel, table=True):
    """A scheduled revision session for one topic."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    topic_id: Optional[str] = None
    subject: Optional[str] = None
    scheduled_at: datetime
    duration_minutes: int = 25
    status: str = Field(default='scheduled', index=True)
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class TopicRating(SQLModel, table=True):
    """Self-reported confidence for a topic.

    Ratings run 1-5; 0 means not learned yet, -1 and -2 mark topics the
    student is not studying.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    topic_id: str = Field(index=True)
    rating: int
    updated_at: datetime = Field(default_factory=utcnow)


class UnavailableTime(SQLModel, table=True):
    """A period the student has blocked out of their calendar."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    start_datetime: datetime
    end_datetime: datetime
    reason: Optional[str] = None


class EventLog(SQLModel, table=True):
    """Append-only analytics event for a user."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key='user.id', index=True)
    event_type: str = Field(index=True)
    event_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class SupportMessage(SQLModel, table=True):
    """A message sent through the in-app support form."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key='user.id')
    message_type: str
    message: str
    email: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
