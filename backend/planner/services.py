"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and auxiliary logic. Services are intentionally thin: they perform
validation, apply the planner's rules and persist aggregates via
repositories. Failures are raised as `planner.errors` exceptions so the
controllers can stay free of status-code mapping.
"""

from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
import jwt
import logging
import math
import re
import secrets
import time
from typing import List, Optional
from . import models, repositories
from .config import settings
from .errors import NotFound, StoreError, ValidationFailed
from .models import as_utc, utcnow
from sqlmodel import Session

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger("planner.services")

TEST_PAYMENT_AMOUNT = 2999
BLOCK_MINUTES = 25
SLIDE_MIN = 1
SLIDE_MAX = 23
RATING_MIN = -2
RATING_MAX = 5
VALID_YEARS = ("Year 12", "Year 13")
SUPPORT_TYPE_LABELS = {"issue": "Issue", "idea": "Idea", "other": "Other"}

_TOPIC_ID_RE = re.compile(r"^[0-9a-fA-F-]{36}$")
_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _parse_datetime(raw: str, field: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValidationFailed(f"invalid {field}: {raw!r}")
    return as_utc(parsed)


def is_valid_rating(value) -> bool:
    """Integer confidence rating in [-2, 5]; booleans are not ratings."""
    return isinstance(value, int) and not isinstance(value, bool) and RATING_MIN <= value <= RATING_MAX


def days_since(moment: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days elapsed since `moment` (floored)."""
    now = now or utcnow()
    return math.floor((now - as_utc(moment)).total_seconds() / 86400)


def payment_to_dict(p: models.Payment) -> dict:
    return {
        'id': p.id,
        'user_id': p.user_id,
        'provider_session_id': p.provider_session_id,
        'provider_customer_id': p.provider_customer_id,
        'amount': p.amount,
        'currency': p.currency,
        'status': p.status,
        'paid_at': _iso(p.paid_at),
        'refunded_at': _iso(p.refunded_at),
        'created_at': _iso(p.created_at),
    }


def block_to_dict(b: models.Block) -> dict:
    return {
        'id': b.id,
        'topic_id': b.topic_id,
        'subject': b.subject,
        'scheduled_at': _iso(b.scheduled_at),
        'duration_minutes': b.duration_minutes,
        'status': b.status,
        'completed_at': _iso(b.completed_at),
    }


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, name: Optional[str] = None) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationFailed("a valid email is required")
        if not password:
            raise ValidationFailed("password is required")
        hashed = PWD_CTX.hash(password)
        u = models.User(email=email, name=name, password_hash=hashed)
        return self.user_repo.create(u)

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_email((email or "").strip().lower())
        if not user or not user.password_hash:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return issue_token(user)


def issue_token(user: models.User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {"user_id": user.id, "email": user.email, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class DevUserService:
    """Resolve (and lazily create) the shared development test user."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def ensure(self) -> models.User:
        existing = self.user_repo.get_by_email(settings.DEV_USER_EMAIL)
        if existing:
            return existing
        try:
            user = self.user_repo.create(models.User(email=settings.DEV_USER_EMAIL, name="Dev Tester"))
        except SQLAlchemyError:
            # another request created it first
            self.session.rollback()
            user = self.user_repo.get_by_email(settings.DEV_USER_EMAIL)
            if not user:
                logger.exception("Failed to create dev user")
                raise StoreError("Failed to create dev user")
        logger.info("Dev mode: created test user %s", user.id)
        return user


class PaymentService:
    """Plan purchases: history, test payments and refunds."""
    def __init__(self, session: Session):
        self.session = session
        self.payment_repo = repositories.PaymentRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.log_repo = repositories.EventLogRepository(session)

    def list_payments(self, user_id: int) -> List[dict]:
        """Return the user's payments, newest first."""
        try:
            payments = self.payment_repo.list_for_user(user_id)
        except SQLAlchemyError:
            logger.exception("Error fetching payments for user %s", user_id)
            raise StoreError("Failed to fetch payments")
        return [payment_to_dict(p) for p in payments]

    def create_test_payment(self, user: models.User) -> dict:
        """Ensure the user has a refundable paid payment.

        An existing paid payment still inside the refund window is reused;
        otherwise a new paid payment is inserted.
        """
        existing = self.payment_repo.latest_paid(user.id)
        if existing:
            remaining = settings.REFUND_WINDOW_DAYS - days_since(existing.paid_at or existing.created_at)
            if remaining > 0:
                return {
                    'success': True,
                    'message': 'Eligible payment already exists',
                    'payment': {
                        'id': existing.id,
                        'amount': existing.amount,
                        'daysRemaining': remaining,
                        'eligible': True,
                    },
                }
        stamp = int(time.time() * 1000)
        payment = models.Payment(
            user_id=user.id,
            provider_session_id=f"cs_test_{stamp}_{secrets.token_hex(4)}",
            provider_customer_id=f"cus_test_{stamp}",
            amount=TEST_PAYMENT_AMOUNT,
            currency='GBP',
            status='paid',
            paid_at=utcnow(),
        )
        try:
            payment = self.payment_repo.create(payment)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Error creating test payment")
            raise StoreError("Failed to create test payment")
        return {
            'success': True,
            'message': 'Test payment created successfully',
            'payment': {
                'id': payment.id,
                'amount': payment.amount,
                'amountInPounds': f"{payment.amount / 100:.2f}",
                'status': payment.status,
                'paidAt': _iso(payment.paid_at),
            },
        }

    def request_refund(self, user: models.User, payment_id: Optional[int]) -> dict:
        """Refund a paid payment inside the refund window and revoke access."""
        if not payment_id:
            raise ValidationFailed("Payment ID is required")
        payment = self.payment_repo.get_for_user(payment_id, user.id)
        if not payment:
            raise NotFound("Payment not found")
        if payment.status != 'paid':
            raise ValidationFailed("Payment is not eligible for refund")
        window = settings.REFUND_WINDOW_DAYS
        if days_since(payment.paid_at or payment.created_at) > window:
            raise ValidationFailed(f"Refund period has expired ({window} days)")
        now = utcnow()
        payment.status = 'refunded'
        payment.refunded_at = now
        self.payment_repo.save(payment)
        user.has_access = False
        user.updated_at = now
        self.user_repo.save(user)
        self.log_repo.record(user.id, 'refund_requested', {'payment_id': payment.id, 'amount': payment.amount})
        logger.info("Refund recorded for payment %s (user %s)", payment.id, user.id)
        return {'success': True, 'payment': payment_to_dict(payment)}


class AttributionService:
    """Copy captured UTM values onto a user record."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def attribute(self, user: models.User, utm: dict) -> models.User:
        user.utm_source = utm.get('utm_source')
        user.utm_medium = utm.get('utm_medium')
        user.utm_campaign = utm.get('utm_campaign')
        user.utm_captured_at = utcnow()
        try:
            return self.user_repo.save(user)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("[attribution] Failed to update user %s", user.id)
            raise StoreError("Failed to save attribution")


class OnboardingService:
    """Persist what the onboarding wizard collects."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.rating_repo = repositories.TopicRatingRepository(session)
        self.unavailable_repo = repositories.UnavailableTimeRepository(session)
        self.log_repo = repositories.EventLogRepository(session)

    def save_quiz_answers(self, user: models.User, answers) -> dict:
        """Store the wizard answers, topic ratings, time preferences and blocked times.

        `has_completed_onboarding` is only set when subjects, boards, ratings
        and weekly availability were all supplied.
        """
        quiz_data = {
            'q1': answers.q1, 'q2': answers.q2, 'q3': answers.q3, 'q4': answers.q4,
            'q5': answers.q5, 'q6': answers.q6, 'q7': answers.q7, 'q8': answers.q8,
            'referral_source': answers.referral_source,
            'selected_subjects': answers.selected_subjects,
            'subject_boards': answers.subject_boards,
            'weekly_availability': answers.weekly_availability,
        }
        has_required = bool(
            answers.selected_subjects
            and answers.subject_boards is not None
            and answers.topic_ratings is not None
            and answers.weekly_availability is not None
        )
        blocked = self._parse_blocked_times(answers.blocked_times or [])

        user.onboarding_data = {**(user.onboarding_data or {}), **quiz_data}
        user.has_completed_onboarding = has_required
        prefs = answers.time_preferences
        if prefs is not None:
            user.weekday_earliest_time = prefs.weekday_earliest or '4:30'
            user.weekday_latest_time = prefs.weekday_latest or '23:30'
            user.weekend_earliest_time = prefs.weekend_earliest or None
            user.weekend_latest_time = prefs.weekend_latest or None
            user.use_same_weekend_times = prefs.use_same_weekend_times is not False
        user.updated_at = utcnow()
        self.user_repo.save(user)

        ratings = [
            models.TopicRating(topic_id=topic_id, rating=rating)
            for topic_id, rating in (answers.topic_ratings or {}).items()
            if _TOPIC_ID_RE.match(topic_id) and is_valid_rating(rating)
        ]
        saved_ratings = 0
        if ratings:
            saved_ratings = self.rating_repo.replace_for_user(user.id, ratings)

        if blocked:
            first_day = min(e.start_datetime for e in blocked).replace(hour=0, minute=0, second=0, microsecond=0)
            last_day = max(e.start_datetime for e in blocked).replace(hour=0, minute=0, second=0, microsecond=0)
            self.unavailable_repo.replace_range(user.id, first_day, last_day + timedelta(days=1), blocked)

        return {
            'success': True,
            'has_completed_onboarding': has_required,
            'ratings_saved': saved_ratings,
            'blocked_times_saved': len(blocked),
        }

    def _parse_blocked_times(self, items) -> List[models.UnavailableTime]:
        out = []
        for item in items:
            start = _parse_datetime(item.start, 'start')
            end = _parse_datetime(item.end, 'end')
            if end <= start:
                raise ValidationFailed("blocked time must end after it starts")
            out.append(models.UnavailableTime(start_datetime=start, end_datetime=end, reason=item.reason or None))
        return out

    def save_name_year(self, user: models.User, name: Optional[str], year: Optional[str]) -> dict:
        if not name or not year:
            raise ValidationFailed("Name and year are required")
        if year not in VALID_YEARS:
            raise ValidationFailed("Year must be Year 12 or Year 13")
        user.onboarding_data = {**(user.onboarding_data or {}), 'name': str(name).strip(), 'year': year}
        user.updated_at = utcnow()
        self.user_repo.save(user)
        return {'success': True}

    @staticmethod
    def max_unlocked_slide(user: models.User):
        data = user.onboarding_data or {}
        current = data.get('max_unlocked_slide')
        if current is None:
            current = data.get('maxUnlockedSlide')
        return current or 0

    def update_progress(self, user: models.User, raw_slide) -> dict:
        """Raise the furthest unlocked slide; lower values never move it back."""
        slide = _coerce_slide(raw_slide)
        current = self.max_unlocked_slide(user)
        if slide <= current:
            return {'success': True, 'maxUnlockedSlide': current}
        user.onboarding_data = {
            **(user.onboarding_data or {}),
            'max_unlocked_slide': slide,
            'maxUnlockedSlide': slide,
        }
        user.updated_at = utcnow()
        self.user_repo.save(user)
        return {'success': True, 'maxUnlockedSlide': slide}

    def record_reached_payment(self, user: models.User) -> dict:
        """Stamp the first visit to the payment page and log it once."""
        if not user.reached_payment_at:
            now = utcnow()
            user.reached_payment_at = now
            self.user_repo.save(user)
            self.log_repo.record(user.id, 'reached_payment_page', {'reached_at': now.isoformat()})
        return {'success': True}


def _coerce_slide(raw):
    if raw is None or isinstance(raw, bool):
        raise ValidationFailed("Invalid maxUnlockedSlide")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid maxUnlockedSlide")
    if math.isnan(value) or value < SLIDE_MIN or value > SLIDE_MAX:
        raise ValidationFailed("Invalid maxUnlockedSlide")
    return int(value) if value.is_integer() else value


class SettingsService:
    """Read and update the profile shown on the settings page."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def get(self, user: models.User) -> dict:
        return {
            'id': user.id,
            'email': user.email,
            'name': user.name,
            'has_access': user.has_access,
            'has_completed_onboarding': user.has_completed_onboarding,
            'onboarding_data': user.onboarding_data or {},
            'time_preferences': {
                'weekday_earliest_time': user.weekday_earliest_time,
                'weekday_latest_time': user.weekday_latest_time,
                'weekend_earliest_time': user.weekend_earliest_time,
                'weekend_latest_time': user.weekend_latest_time,
                'use_same_weekend_times': user.use_same_weekend_times,
            },
            'attribution': {
                'utm_source': user.utm_source,
                'utm_medium': user.utm_medium,
                'utm_campaign': user.utm_campaign,
                'utm_captured_at': _iso(user.utm_captured_at),
            },
        }

    def update_time_preferences(self, user: models.User, prefs) -> dict:
        fields = {
            'weekday_earliest_time': prefs.weekday_earliest,
            'weekday_latest_time': prefs.weekday_latest,
            'weekend_earliest_time': prefs.weekend_earliest,
            'weekend_latest_time': prefs.weekend_latest,
        }
        for name, value in fields.items():
            if value is not None and not _TIME_RE.match(value):
                raise ValidationFailed(f"{name} must be HH:MM")
        for name, value in fields.items():
            if value is not None:
                setattr(user, name, value)
        if prefs.use_same_weekend_times is not None:
            user.use_same_weekend_times = prefs.use_same_weekend_times
        user.updated_at = utcnow()
        self.user_repo.save(user)
        return self.get(user)


class BlockService:
    """Status transitions for revision blocks."""
    ACTIONS = {
        'done': ('done', 'block_done'),
        'missed': ('missed', 'block_missed'),
        'skip': ('skipped', 'block_skipped'),
        'scheduled': ('scheduled', 'block_rescheduled'),
    }

    def __init__(self, session: Session):
        self.session = session
        self.block_repo = repositories.BlockRepository(session)
        self.log_repo = repositories.EventLogRepository(session)

    def list_blocks(self, user_id: int, status: Optional[str] = None) -> List[dict]:
        return [block_to_dict(b) for b in self.block_repo.list_for_user(user_id, status)]

    def apply(self, user_id: int, block_id: Optional[int], action: str) -> dict:
        """Move a block owned by `user_id` to the status named by `action`.

        Done, missed and skipped blocks get `completed_at` stamped; moving a
        block back to scheduled clears it. Every transition is logged. A
        block that is already missed, or already done, cannot be marked missed.
        """
        if not block_id:
            raise ValidationFailed("Block ID is required")
        status, event_type = self.ACTIONS[action]
        block = self.block_repo.get_for_user(block_id, user_id)
        if not block:
            raise NotFound("Block not found")
        if action == 'missed':
            if block.status == 'missed':
                raise ValidationFailed("Block is already marked as missed")
            if block.status == 'done':
                raise ValidationFailed("Cannot mark a completed block as missed")
        now = utcnow()
        block.status = status
        block.completed_at = None if status == 'scheduled' else now
        self.block_repo.save(block)
        self.log_repo.record(user_id, event_type, {'block_id': block.id, 'at': now.isoformat()})
        return {'success': True, 'block': block_to_dict(block)}


class TopicRatingService:
    """Re-rating topics from the settings page."""
    def __init__(self, session: Session):
        self.session = session
        self.rating_repo = repositories.TopicRatingRepository(session)
        self.log_repo = repositories.EventLogRepository(session)

    def list_ratings(self, user_id: int) -> List[dict]:
        return [{'topic_id': r.topic_id, 'rating': r.rating} for r in self.rating_repo.list_for_user(user_id)]

    def save_rating(self, user_id: int, topic_id: Optional[str], rating) -> dict:
        """Upsert one rating, or delete it when `rating` is null.

        Ratings of 1-5 also log a `topic_rerated` event.
        """
        if not topic_id:
            raise ValidationFailed("Topic ID is required")
        if rating is None:
            self.rating_repo.delete_one(user_id, topic_id)
            return {'success': True, 'message': 'Rating deleted'}
        if not is_valid_rating(rating):
            raise ValidationFailed(f"Rating must be an integer from {RATING_MIN} to {RATING_MAX}")
        self.rating_repo.upsert_many(user_id, {topic_id: rating})
        if rating >= 1:
            self.log_repo.record(user_id, 'topic_rerated', {
                'topic_id': topic_id,
                'rerating_score': rating,
                'source': 'manual_rerate',
            })
        return {'success': True, 'message': 'Rating saved', 'data': {'topicId': topic_id, 'rating': rating}}

    def save_bulk(self, user_id: int, ratings) -> dict:
        """Upsert every well-formed entry of `{topicId: rating}`; others are skipped."""
        if not isinstance(ratings, dict):
            raise ValidationFailed("Body must include ratings object: { [topicId]: number }")
        valid = {
            topic_id: rating
            for topic_id, rating in ratings.items()
            if _TOPIC_ID_RE.match(topic_id) and is_valid_rating(rating)
        }
        if not valid:
            return {'success': True, 'savedCount': 0}
        return {'success': True, 'savedCount': self.rating_repo.upsert_many(user_id, valid)}


class StatsService:
    """Aggregate progress numbers for the insights page."""
    def __init__(self, session: Session):
        self.session = session
        self.block_repo = repositories.BlockRepository(session)
        self.log_repo = repositories.EventLogRepository(session)
        self.rating_repo = repositories.TopicRatingRepository(session)

    def compute(self, user_id: int) -> dict:
        """Return the stats payload for `user_id`.

        `blocks_missed` counts missed events, so a block missed twice counts
        twice. A done block counts as completed on first attempt when it was
        never marked missed before it was completed.
        """
        blocks = self.block_repo.list_for_user(user_id)
        done_blocks = [b for b in blocks if b.status == 'done']
        done = len(done_blocks)
        scheduled = sum(1 for b in blocks if b.status == 'scheduled')
        currently_missed = sum(1 for b in blocks if b.status == 'missed')

        missed_logs = self.log_repo.list_for_user(user_id, 'block_missed')
        first_missed = {}
        for log in missed_logs:
            block_id = (log.event_data or {}).get('block_id')
            if block_id is None:
                continue
            at = as_utc(log.created_at)
            if block_id not in first_missed or at < first_missed[block_id]:
                first_missed[block_id] = at

        first_attempt = 0
        for b in done_blocks:
            missed_at = first_missed.get(b.id)
            if missed_at is None:
                first_attempt += 1
            elif b.completed_at is not None and missed_at >= as_utc(b.completed_at):
                first_attempt += 1

        active_days = {as_utc(b.completed_at).date() for b in done_blocks if b.completed_at}
        total_minutes = done * BLOCK_MINUTES
        offered = done + scheduled
        positive = [r.rating for r in self.rating_repo.list_for_user(user_id) if r.rating > 0]
        return {
            'blocks_done': done,
            'blocks_missed': len(missed_logs),
            'currently_missed_blocks': currently_missed,
            'blocks_scheduled': scheduled,
            'active_days': len(active_days),
            'completed_on_first_attempt': first_attempt,
            'total_blocks_offered': offered,
            'first_attempt_completion_rate': (first_attempt / offered) * 100 if offered else 0,
            'hours_revised': {'hours': total_minutes // 60, 'minutes': total_minutes % 60},
            'completion_percentage': (done / offered) * 100 if offered else 0,
            'avg_confidence': round(sum(positive) / len(positive), 2) if positive else 0,
        }


class SupportService:
    def __init__(self, session: Session):
        self.session = session
        self.message_repo = repositories.SupportMessageRepository(session)
        self.log_repo = repositories.EventLogRepository(session)

    def submit(self, user: Optional[models.User], message_type: Optional[str], message: Optional[str]) -> dict:
        if not message_type or not message:
            raise ValidationFailed("Type and message are required")
        label = SUPPORT_TYPE_LABELS.get(message_type, "Support")
        saved = self.message_repo.create(models.SupportMessage(
            user_id=user.id if user else None,
            message_type=message_type,
            message=message,
            email=user.email if user else None,
        ))
        self.log_repo.record(user.id if user else None, 'support_message', {'support_message_id': saved.id, 'type': message_type})
        logger.info("[%s] support message %s queued for %s", label, saved.id, settings.SUPPORT_EMAIL)
        return {'success': True, 'id': saved.id}


class DevToolsService:
    """Destructive helpers behind the development-only endpoints."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.block_repo = repositories.BlockRepository(session)
        self.rating_repo = repositories.TopicRatingRepository(session)
        self.unavailable_repo = repositories.UnavailableTimeRepository(session)
        self.log_repo = repositories.EventLogRepository(session)

    def set_access(self, user: models.User) -> dict:
        user.has_access = True
        self.user_repo.save(user)
        return {'success': True, 'message': 'Dev access granted'}

    def reset_plan(self, user: models.User) -> dict:
        """Delete every block, keeping ratings, onboarding and preferences."""
        deleted = self.block_repo.delete_for_user(user.id)
        logger.info("Deleted %s blocks for user %s", deleted, user.email)
        return {'success': True, 'message': 'All blocks deleted successfully', 'deletedCount': deleted}

    def reset_onboarding(self, user: models.User) -> dict:
        self.block_repo.delete_for_user(user.id, commit=False)
        self.unavailable_repo.delete_for_user(user.id, commit=False)
        user.has_completed_onboarding = False
        user.has_access = False
        self.user_repo.save(user)
        return {'success': True, 'message': 'Onboarding reset; clear the quizAnswers key in browser storage and refresh.'}

    def full_reset(self, user: models.User) -> dict:
        """Delete all of the user's planner data but keep the account itself."""
        self.block_repo.delete_for_user(user.id, commit=False)
        self.rating_repo.delete_for_user(user.id, commit=False)
        self.unavailable_repo.delete_for_user(user.id, commit=False)
        self.log_repo.delete_for_user(user.id, commit=False)
        user.onboarding_data = {}
        user.has_completed_onboarding = False
        user.has_access = False
        user.reached_payment_at = None
        user.weekday_earliest_time = None
        user.weekday_latest_time = None
        user.weekend_earliest_time = None
        user.weekend_latest_time = None
        user.use_same_weekend_times = True
        user.updated_at = utcnow()
        self.user_repo.save(user)
        logger.info("Full reset completed for user %s", user.email)
        return {'success': True, 'message': 'Full reset completed successfully'}
