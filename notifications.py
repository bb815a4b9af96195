# Giglet in-app notifications

import logging
from typing import Optional

from db import Store
from errors import NotFoundError
from models import Notification, new_id

log = logging.getLogger("giglet")


class Notifier:
    def __init__(self, store: Store):
        self.store = store

    def notify(self, user_id: str, type: str, title: str, message: str,
               gig_id: Optional[str] = None, submission_id: Optional[str] = None) -> Notification:
        note = Notification(
            id=new_id("ntf"),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            gig_id=gig_id,
            submission_id=submission_id,
        )
        self.store.put("notifications", note.to_dict())
        log.debug("NOTIFY %s %s: %s", user_id, type, title)
        return note

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list:
        filters = {"user_id": user_id}
        if unread_only:
            filters["read"] = False
        return self.store.find("notifications", order_by="created_at", descending=True,
                               limit=limit, **filters)

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "notifications", notification_id)
            if doc is None or doc.get("user_id") != user_id:
                raise NotFoundError(f"Notification {notification_id} not found")
            note = Notification.from_dict(doc)
            note.read = True
            self.store.ops.put(conn, "notifications", note.to_dict())
        return note
