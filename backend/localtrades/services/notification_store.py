from collections import deque
from threading import Lock
from typing import Deque, Dict, List, Optional, Set
from uuid import uuid4

from localtrades.models import Enquiry, NotificationRecord, utc_now
from localtrades.services.push_sender import PushSender, push_sender

MAX_NOTIFICATIONS_PER_USER = 100


class NotificationStore:
    """Per-user in-app inbox, newest first, mirrored to registered devices by push.

    Each inbox keeps at most ``MAX_NOTIFICATIONS_PER_USER`` records; older
    ones fall off the end.
    """

    def __init__(self, sender: Optional[PushSender] = None):
        self._lock = Lock()
        self._sender = sender or push_sender
        self._inboxes: Dict[str, Deque[NotificationRecord]] = {}
        self._device_tokens: Dict[str, Set[str]] = {}

    def register_device_token(self, user_id: str, device_token: str) -> None:
        token = device_token.strip()
        if not token:
            return
        with self._lock:
            self._device_tokens.setdefault(user_id, set()).add(token)

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=f"ntf_{uuid4().hex[:10]}",
            user_id=user_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            created_at=utc_now().isoformat(),
            deep_link=deep_link,
        )
        with self._lock:
            inbox = self._inboxes.setdefault(user_id, deque(maxlen=MAX_NOTIFICATIONS_PER_USER))
            inbox.appendleft(record)
            tokens = sorted(self._device_tokens.get(user_id, set()))
        self._push(user_id, record, tokens)
        return record

    def _push(self, user_id: str, record: NotificationRecord, tokens: List[str]) -> None:
        invalid_tokens = self._sender.send_notification(
            tokens=tokens,
            title=record.title,
            body=record.body,
            data={
                "notification_id": record.id,
                "category": record.category,
                "deep_link": record.deep_link or "",
            },
        )
        if invalid_tokens:
            with self._lock:
                self._device_tokens.get(user_id, set()).difference_update(invalid_tokens)

    # Marketplace events

    def notify_new_enquiry(self, trade_user_id: str, enquiry: Enquiry, category_label: str) -> NotificationRecord:
        return self.create(
            user_id=trade_user_id,
            title="New job enquiry",
            body=f"{enquiry.client_name} ({enquiry.client_postcode}) needs a {category_label.lower()}",
            category="enquiry",
            deep_link=f"enquiry:{enquiry.id}",
        )

    def notify_quota_reached(self, trade_user_id: str, free_quota: int) -> NotificationRecord:
        return self.create(
            user_id=trade_user_id,
            title="Free enquiries used up",
            body=f"You've had your {free_quota} free enquiries and your listing is paused. "
            "Subscribe to keep receiving enquiries.",
            category="subscription",
            deep_link="subscription",
        )

    def notify_enquiry_status(self, enquiry: Enquiry, business_name: str) -> NotificationRecord:
        return self.create(
            user_id=enquiry.client_id,
            title="Enquiry updated",
            body=f"{business_name} marked your enquiry as {enquiry.status.value.lower()}",
            category="enquiry",
            deep_link=f"enquiry:{enquiry.id}",
        )

    # Inbox reads

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = list(self._inboxes.get(user_id, ()))
        if unread_only:
            rows = [n for n in rows if not n.read]
        return rows

    def unread_count(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for n in self._inboxes.get(user_id, ()) if not n.read)

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            inbox = self._inboxes.get(user_id)
            if not inbox:
                return None
            for idx in range(len(inbox)):
                if inbox[idx].id == notification_id:
                    updated = inbox[idx].model_copy(update={"read": True})
                    inbox[idx] = updated
                    return updated
        return None

    def mark_all_read(self, user_id: str) -> int:
        with self._lock:
            inbox = self._inboxes.get(user_id)
            if not inbox:
                return 0
            changed = 0
            for idx in range(len(inbox)):
                row = inbox[idx]
                if not row.read:
                    inbox[idx] = row.model_copy(update={"read": True})
                    changed += 1
            return changed


notification_store = NotificationStore()
