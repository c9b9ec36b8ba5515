"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Field aliases follow the camelCase names
the web client sends.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class RegisterIn(BaseModel):
    """Payload for user registration."""
    email: str
    password: str
    name: Optional[str] = None


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class BlockAction(BaseModel):
    """Body shared by the block status endpoints."""
    model_config = ConfigDict(populate_by_name=True)
    block_id: Optional[int] = Field(default=None, alias='blockId')


class RefundRequestIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    payment_id: Optional[int] = Field(default=None, alias='paymentId')


class NameYearIn(BaseModel):
    name: Optional[str] = None
    year: Optional[str] = None


class ProgressIn(BaseModel):
    """Onboarding progress; accepts both spellings the client has used."""
    maxUnlockedSlide: Optional[Any] = None
    max_unlocked_slide: Optional[Any] = None


class BlockedTimeIn(BaseModel):
    start: str
    end: str
    reason: Optional[str] = None


class TimePreferencesIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    weekday_earliest: Optional[str] = Field(default=None, alias='weekdayEarliest')
    weekday_latest: Optional[str] = Field(default=None, alias='weekdayLatest')
    weekend_earliest: Optional[str] = Field(default=None, alias='weekendEarliest')
    weekend_latest: Optional[str] = Field(default=None, alias='weekendLatest')
    use_same_weekend_times: Optional[bool] = Field(default=None, alias='useSameWeekendTimes')


class QuizAnswersIn(BaseModel):
    """Everything the onboarding wizard collected."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')
    q1: Any = None
    q2: Any = None
    q3: Any = None
    q4: Any = None
    q5: Any = None
    q6: Any = None
    q7: Any = None
    q8: Any = None
    referral_source: Optional[str] = Field(default=None, alias='referralSource')
    selected_subjects: Optional[List[str]] = Field(default=None, alias='selectedSubjects')
    subject_boards: Optional[Dict[str, str]] = Field(default=None, alias='subjectBoards')
    topic_ratings: Optional[Dict[str, Optional[int]]] = Field(default=None, alias='topicRatings')
    weekly_availability: Optional[Any] = Field(default=None, alias='weeklyAvailability')
    time_preferences: Optional[TimePreferencesIn] = Field(default=None, alias='timePreferences')
    blocked_times: Optional[List[BlockedTimeIn]] = Field(default=None, alias='blockedTimes')


class OnboardingSaveIn(BaseModel):
    quizAnswers: Optional[QuizAnswersIn] = None


class TopicRatingIn(BaseModel):
    """A single re-rating; a null rating removes it."""
    model_config = ConfigDict(populate_by_name=True)
    topic_id: Optional[str] = Field(default=None, alias='topicId')
    rating: Any = None


class TopicRatingsBulkIn(BaseModel):
    ratings: Any = None


class SupportIn(BaseModel):
    type: Optional[str] = None
    message: Optional[str] = None
