"""
Notification reads. Notifications are written by the ledger; the only change a
user can make is marking one as read.
"""

from typing import Callable, List

from errors import NotFound
from schemas import NOTIFICATIONS, Notification
from storage import Store, Subscription


def list_notifications(store: Store, user_id: str, limit: int = 50) -> List[Notification]:
    docs = store.query(NOTIFICATIONS, {"user_id": user_id}, limit=limit)
    return [Notification.model_validate(d) for d in docs]


def unread_count(store: Store, user_id: str) -> int:
    return len(store.query(NOTIFICATIONS, {"user_id": user_id, "is_read": False}, order_by=None))


def mark_as_read(store: Store, notification_id: str) -> Notification:
    doc = store.get(NOTIFICATIONS, notification_id)
    if not doc:
        raise NotFound("Notification not found")
    if not doc.get("is_read"):
        batch = store.batch()
        batch.update(NOTIFICATIONS, notification_id, {"is_read": True})
        batch.commit()
        doc["is_read"] = True
    return Notification.model_validate(doc)


def subscribe_notifications(store: Store, user_id: str,
                            callback: Callable[[List[Notification]], None],
                            limit: int = 50) -> Subscription:
    return store.watch_query(
        NOTIFICATIONS, {"user_id": user_id},
        lambda docs: callback([Notification.model_validate(d) for d in docs]),
        limit=limit,
    )
