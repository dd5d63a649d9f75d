"""
Push notifications through Firebase Cloud Messaging
"""

import asyncio
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, messaging

from ..config import FIREBASE_CREDENTIALS_PATH, FIREBASE_PROJECT_ID
from .retry import retry_async

logger = logging.getLogger(__name__)

PUSH_RETRY_BACKOFF = (1.0, 1.0)


class PushSender:
    """FCM transport; ``start()`` initializes the Firebase app once"""

    def __init__(
        self,
        project_id: Optional[str] = FIREBASE_PROJECT_ID,
        credentials_path: Optional[str] = FIREBASE_CREDENTIALS_PATH,
        backoff=PUSH_RETRY_BACKOFF,
    ):
        self.project_id = project_id
        self.credentials_path = credentials_path
        self.backoff = backoff
        self._app = None

    @property
    def ready(self) -> bool:
        return self._app is not None

    def start(self) -> None:
        if self._app is not None or not self.project_id:
            return
        try:
            self._app = firebase_admin.get_app()
        except ValueError:
            try:
                if self.credentials_path:
                    cred = credentials.Certificate(self.credentials_path)
                else:
                    cred = credentials.ApplicationDefault()
                self._app = firebase_admin.initialize_app(cred, {"projectId": self.project_id})
                logger.info("✅ Firebase Admin initialized for push notifications")
            except Exception as e:
                logger.error(f"❌ Firebase Admin initialization failed - push disabled: {e}")
                self._app = None

    def stop(self) -> None:
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None

    async def send(self, token: str, title: str, body: str, data: Optional[dict] = None) -> bool:
        if not self.ready:
            logger.debug("Push transport not started - push skipped")
            return False

        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in (data or {}).items()},
        )

        async def _send():
            return await asyncio.to_thread(messaging.send, message, app=self._app)

        message_id = await retry_async(_send, label="Push notification", backoff=self.backoff)
        logger.info(f"✅ Push sent: {message_id}")
        return True
