"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
payments, blocks, ratings, unavailable times, event logs, support
messages). Repositories return SQLModel objects and perform
commits/refreshes where appropriate.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional
from sqlmodel import Session, select
from sqlalchemy import delete
from . import models
from .models import utcnow


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def save(self, user: models.User) -> models.User:
        """Commit pending changes on `user`."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class PaymentRepository:
    """Queries and updates for `Payment` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, payment: models.Payment) -> models.Payment:
        self.session.add(payment)
        self.session.commit()
        self.session.refresh(payment)
        return payment

    def list_for_user(self, user_id: int) -> List[models.Payment]:
        """Return the user's payments, newest first."""
        stmt = (
            select(models.Payment)
            .where(models.Payment.user_id == user_id)
            .order_by(models.Payment.created_at.desc(), models.Payment.id.desc())
        )
        return self.session.exec(stmt).all()

    def get_for_user(self, payment_id: int, user_id: int) -> Optional[models.Payment]:
        stmt = select(models.Payment).where(models.Payment.id == payment_id, models.Payment.user_id == user_id)
        return self.session.exec(stmt).first()

    def latest_paid(self, user_id: int) -> Optional[models.Payment]:
        """Most recent payment still in `paid` status."""
        stmt = (
            select(models.Payment)
            .where(models.Payment.user_id == user_id, models.Payment.status == 'paid')
            .order_by(models.Payment.created_at.desc(), models.Payment.id.desc())
        )
        return self.session.exec(stmt).first()

    def save(self, payment: models.Payment) -> models.Payment:
        self.session.add(payment)
        self.session.commit()
        self.session.refresh(payment)
        return payment


class BlockRepository:
    """Queries and status updates for revision `Block`s."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, block: models.Block) -> models.Block:
        self.session.add(block)
        self.session.commit()
        self.session.refresh(block)
        return block

    def get_for_user(self, block_id: int, user_id: int) -> Optional[models.Block]:
        stmt = select(models.Block).where(models.Block.id == block_id, models.Block.user_id == user_id)
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: int, status: Optional[str] = None) -> List[models.Block]:
        """Return the user's blocks in schedule order, optionally by status."""
        stmt = select(models.Block).where(models.Block.user_id == user_id)
        if status:
            stmt = stmt.where(models.Block.status == status)
        stmt = stmt.order_by(models.Block.scheduled_at, models.Block.id)
        return self.session.exec(stmt).all()

    def save(self, block: models.Block) -> models.Block:
        self.session.add(block)
        self.session.commit()
        self.session.refresh(block)
        return block

    def delete_for_user(self, user_id: int, commit: bool = True) -> int:
        """Delete every block owned by `user_id`; return how many were removed."""
        result = self.session.exec(delete(models.Block).where(models.Block.user_id == user_id))
        if commit:
            self.session.commit()
        return result.rowcount or 0


class TopicRatingRepository:
    """Per-user topic confidence ratings."""
    def __init__(self, session: Session):
        self.session = session

    def replace_for_user(self, user_id: int, ratings: Iterable[models.TopicRating]) -> int:
        """Drop the user's existing ratings and store `ratings` instead."""
        self.session.exec(delete(models.TopicRating).where(models.TopicRating.user_id == user_id))
        count = 0
        for r in ratings:
            r.user_id = user_id
            self.session.add(r)
            count += 1
        self.session.commit()
        return count

    def list_for_user(self, user_id: int) -> List[models.TopicRating]:
        stmt = select(models.TopicRating).where(models.TopicRating.user_id == user_id)
        return self.session.exec(stmt).all()

    def get(self, user_id: int, topic_id: str) -> Optional[models.TopicRating]:
        stmt = select(models.TopicRating).where(
            models.TopicRating.user_id == user_id,
            models.TopicRating.topic_id == topic_id,
        )
        return self.session.exec(stmt).first()

    def upsert_many(self, user_id: int, ratings: Dict[str, int]) -> int:
        """Insert or update one rating per topic id; other topics are untouched."""
        now = utcnow()
        for topic_id, value in ratings.items():
            row = self.get(user_id, topic_id)
            if row is None:
                row = models.TopicRating(user_id=user_id, topic_id=topic_id, rating=value)
            else:
                row.rating = value
            row.updated_at = now
            self.session.add(row)
        self.session.commit()
        return len(ratings)

    def delete_one(self, user_id: int, topic_id: str) -> int:
        result = self.session.exec(
            delete(models.TopicRating).where(
                models.TopicRating.user_id == user_id,
                models.TopicRating.topic_id == topic_id,
            )
        )
        self.session.commit()
        return result.rowcount or 0

    def delete_for_user(self, user_id: int, commit: bool = True) -> None:
        self.session.exec(delete(models.TopicRating).where(models.TopicRating.user_id == user_id))
        if commit:
            self.session.commit()


class UnavailableTimeRepository:
    """Blocked-out calendar periods."""
    def __init__(self, session: Session):
        self.session = session

    def replace_range(self, user_id: int, start: datetime, end: datetime, entries: Iterable[models.UnavailableTime]) -> None:
        """Replace the user's entries starting within [start, end) with `entries`."""
        self.session.exec(
            delete(models.UnavailableTime).where(
                models.UnavailableTime.user_id == user_id,
                models.UnavailableTime.start_datetime >= start,
                models.UnavailableTime.start_datetime < end,
            )
        )
        for e in entries:
            e.user_id = user_id
            self.session.add(e)
        self.session.commit()

    def list_for_user(self, user_id: int) -> List[models.UnavailableTime]:
        stmt = (
            select(models.UnavailableTime)
            .where(models.UnavailableTime.user_id == user_id)
            .order_by(models.UnavailableTime.start_datetime)
        )
        return self.session.exec(stmt).all()

    def delete_for_user(self, user_id: int, commit: bool = True) -> None:
        self.session.exec(delete(models.UnavailableTime).where(models.UnavailableTime.user_id == user_id))
        if commit:
            self.session.commit()


class EventLogRepository:
    """Append-only analytics events."""
    def __init__(self, session: Session):
        self.session = session

    def record(self, user_id: Optional[int], event_type: str, event_data: Optional[dict] = None) -> models.EventLog:
        entry = models.EventLog(user_id=user_id, event_type=event_type, event_data=event_data or {})
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_for_user(self, user_id: int, event_type: Optional[str] = None) -> List[models.EventLog]:
        stmt = select(models.EventLog).where(models.EventLog.user_id == user_id)
        if event_type:
            stmt = stmt.where(models.EventLog.event_type == event_type)
        stmt = stmt.order_by(models.EventLog.created_at, models.EventLog.id)
        return self.session.exec(stmt).all()

    def delete_for_user(self, user_id: int, commit: bool = True) -> None:
        self.session.exec(delete(models.EventLog).where(models.EventLog.user_id == user_id))
        if commit:
            self.session.commit()


class SupportMessageRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, message: models.SupportMessage) -> models.SupportMessage:
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        return message
