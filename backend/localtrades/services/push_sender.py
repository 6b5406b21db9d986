import logging
import os
from threading import Lock
from typing import List

logger = logging.getLogger(__name__)

# Substrings of FCM errors that mean the device token will never work again.
INVALID_TOKEN_MARKERS = ("registration token", "invalid argument", "not a valid fcm")


class PushSender:
    """Best-effort Firebase Cloud Messaging sender.

    Disabled (every send is a no-op) unless FIREBASE_CREDENTIALS_PATH points at
    a service account file and firebase-admin initializes cleanly.
    """

    def __init__(self):
        self._lock = Lock()
        self._initialized = False
        self._enabled = False
        self._messaging = None

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._enabled

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            credentials_path = os.getenv("FIREBASE_CREDENTIALS_PATH", "").strip()
            if not credentials_path:
                self._initialized = True
                logger.info("Push sender disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                import firebase_admin
                from firebase_admin import credentials, messaging

                cred = credentials.Certificate(credentials_path)
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(cred)
                self._messaging = messaging
                self._enabled = True
                logger.info("Push sender initialized")
            except Exception:
                self._enabled = False
                logger.exception("Push sender disabled: Firebase init failed")
            finally:
                self._initialized = True

    def send_notification(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> List[str]:
        """Send to every token and return the ones FCM rejected as invalid."""
        self._ensure_initialized()
        if not self._enabled or not tokens:
            return []
        assert self._messaging is not None
        try:
            message = self._messaging.MulticastMessage(
                notification=self._messaging.Notification(title=title, body=body),
                tokens=tokens,
                data=data,
            )
            batch = self._messaging.send_each_for_multicast(message)
        except Exception:
            logger.exception("Push send failed for %d device(s)", len(tokens))
            return []
        invalid: List[str] = []
        for idx, response in enumerate(batch.responses):
            if response.success:
                continue
            error_text = str(response.exception).lower() if response.exception else ""
            if any(marker in error_text for marker in INVALID_TOKEN_MARKERS):
                invalid.append(tokens[idx])
        if invalid:
            logger.info("Dropping %d invalid device token(s)", len(invalid))
        return invalid


push_sender = PushSender()
