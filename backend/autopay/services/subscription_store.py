"""Subscription persistence helpers"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from autopay.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


def _live(db: Session):
    return db.query(Subscription).filter(Subscription.deleted_at.is_(None))


def insert(subscription: Subscription, db: Session) -> Subscription:
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def get_by_id(subscription_id: UUID, db: Session) -> Optional[Subscription]:
    return _live(db).filter(Subscription.id == subscription_id).first()


def get_by_gateway_id(razorpay_subscription_id: str, db: Session) -> Optional[Subscription]:
    return _live(db).filter(
        Subscription.razorpay_subscription_id == razorpay_subscription_id
    ).first()


def get_latest_by_phone_and_app(phone: str, app_name: str, db: Session) -> Optional[Subscription]:
    return _live(db).filter(
        Subscription.phone == phone,
        Subscription.app_name == app_name
    ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()


def list_query(db: Session, app_name: Optional[str] = None):
    query = _live(db)
    if app_name:
        query = query.filter(Subscription.app_name == app_name)
    return query.order_by(Subscription.created_at.desc(), Subscription.id.desc())


def has_authenticated(phone: str, app_name: str, db: Session) -> bool:
    """True if any subscription for (phone, app) carries the authenticated marker"""
    # JSON path operators differ between SQLite and Postgres, so check in Python
    rows = _live(db).filter(
        Subscription.phone == phone,
        Subscription.app_name == app_name
    ).all()
    return any((row.metadata_ or {}).get("authenticated") is True for row in rows)


def update(subscription: Subscription, db: Session) -> Subscription:
    """Persist every pending change on the record"""
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def update_status(subscription_id: UUID, status: SubscriptionStatus, db: Session) -> None:
    """Change only the status column"""
    updated = _live(db).filter(Subscription.id == subscription_id).update(
        {Subscription.status: status}, synchronize_session="fetch"
    )
    db.commit()
    if not updated:
        logger.warning(f"Status update to {status.value} matched no subscription for {subscription_id}")
