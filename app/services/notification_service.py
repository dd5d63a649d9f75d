"""
Unified Notification Service
Writes the in-app inbox entry and fans out to push, email and SMS.

External delivery is always best-effort: ``dispatch`` never raises, and the
services that trigger it schedule it through an ``Outbox`` so nothing leaves
the process until the owning unit of work has committed.
"""

import asyncio
import logging
import threading
from contextlib import contextmanager
from typing import Callable, NamedTuple, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from ..config import DEFAULT_LANGUAGE
from ..database import SessionLocal, unit_of_work
from ..email_service import EmailSender, render_notification_html
from ..models import Notification, User
from ..shared.localization import NotificationContent
from .push_service import PushSender
from .twilio_service import SmsSender

logger = logging.getLogger(__name__)

CATEGORY_APPOINTMENT = "appointment"
CATEGORY_REMINDER = "reminder"
CATEGORY_WALLET = "wallet"
CATEGORY_SYSTEM = "system"

NOTIFICATION_CATEGORIES = (
    CATEGORY_APPOINTMENT,
    CATEGORY_REMINDER,
    CATEGORY_WALLET,
    CATEGORY_SYSTEM,
)


class Recipient(NamedTuple):
    id: int
    disabled: bool
    language: Optional[str]
    fcm_token: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    notify_push: bool
    notify_email: bool
    notify_sms: bool


class NotificationDispatcher:
    """Owns the channel transports and the background delivery tasks"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        push: Optional[PushSender] = None,
        email: Optional[EmailSender] = None,
        sms: Optional[SmsSender] = None,
    ):
        self.session_factory = session_factory
        self.push = push if push is not None else PushSender()
        self.email = email if email is not None else EmailSender()
        self.sms = sms if sms is not None else SmsSender()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: set = set()
        self.running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self.push.start()
        self.email.start()
        self.running = True
        logger.info("📨 Notification dispatcher started")

    async def stop(self) -> None:
        self.running = False
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} pending notification(s)")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.push.stop()
        self._loop = None
        logger.info("📨 Notification dispatcher stopped")

    # ------------------------------------------------------------------
    # In-app inbox
    # ------------------------------------------------------------------

    def record(
        self, db: Session, user_id: int, category: str, content: NotificationContent
    ) -> Notification:
        """Add the inbox row to ``db``; committed by the caller's unit of work"""
        if category not in NOTIFICATION_CATEGORIES:
            raise ValueError(f"Unknown notification category: {category}")
        notification = Notification(
            user_id=user_id,
            category=category,
            title=content.title.to_dict(),
            body=content.body.to_dict(),
            data=content.data or None,
        )
        db.add(notification)
        return notification

    # ------------------------------------------------------------------
    # External channels
    # ------------------------------------------------------------------

    def _load_recipient(self, user_id: int) -> Optional[Recipient]:
        db = self.session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                return None
            return Recipient(
                id=user.id,
                disabled=bool(user.is_disabled or not user.is_active),
                language=user.preferred_language,
                fcm_token=user.fcm_token,
                email=user.email,
                phone=user.phone,
                notify_push=user.notify_push,
                notify_email=user.notify_email,
                notify_sms=user.notify_sms,
            )
        finally:
            db.close()

    async def dispatch(
        self,
        user_id: int,
        category: str,
        content: NotificationContent,
        language: Optional[str] = None,
    ) -> dict:
        """
        Deliver ``content`` on every channel the recipient has enabled.

        Returns:
            Dict of channel -> delivered flag; never raises
        """
        result = {"push": False, "email": False, "sms": False}

        try:
            recipient = await asyncio.to_thread(self._load_recipient, user_id)
        except Exception as e:
            logger.error(f"❌ Could not load notification recipient {user_id} ({category}): {e}")
            return result

        if recipient is None:
            logger.debug(f"⚠️ Notification recipient {user_id} not found")
            return result
        if recipient.disabled:
            logger.debug(f"⚠️ Skipping {category} notification for disabled user {user_id}")
            return result

        lang = language or recipient.language or DEFAULT_LANGUAGE
        title = content.title.resolve(lang)
        body = content.body.resolve(lang)

        if recipient.notify_push and recipient.fcm_token:
            try:
                result["push"] = await self.push.send(
                    recipient.fcm_token, title, body, {"category": category, **content.data}
                )
            except Exception as e:
                logger.error(f"❌ Push {category} notification to user {user_id} failed: {e}")

        if recipient.notify_email and recipient.email:
            try:
                result["email"] = await self.email.send(
                    recipient.email, title, render_notification_html(title, body, lang)
                )
            except Exception as e:
                logger.error(f"❌ Email {category} notification to {recipient.email} failed: {e}")

        if recipient.notify_sms and recipient.phone:
            try:
                result["sms"] = await self.sms.send(recipient.phone, f"{title}\n{body}")
            except Exception as e:
                logger.error(f"❌ SMS {category} notification to {recipient.phone} failed: {e}")

        logger.info(f"📊 {category} notification for user {user_id}: {result}")
        return result

    def dispatch_later(
        self,
        user_id: int,
        category: str,
        content: NotificationContent,
        language: Optional[str] = None,
    ) -> None:
        """Schedule ``dispatch`` without waiting for it"""
        coro = self.dispatch(user_id, category, content, language)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        elif self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
            future.add_done_callback(self._task_done)
        else:
            threading.Thread(target=asyncio.run, args=(coro,), daemon=True).start()

    def _task_done(self, task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ Background notification failed: {error}")


class Outbox:
    """External notifications queued during a unit of work, released after commit"""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher
        self._pending: list[tuple] = []

    def add(
        self,
        user_id: int,
        category: str,
        content: NotificationContent,
        language: Optional[str] = None,
    ) -> None:
        self._pending.append((user_id, category, content, language))

    def release(self) -> int:
        pending, self._pending = self._pending, []
        for user_id, category, content, language in pending:
            self.dispatcher.dispatch_later(user_id, category, content, language)
        return len(pending)

    def __len__(self) -> int:
        return len(self._pending)


def notify(
    db: Session,
    outbox: Outbox,
    user_id: int,
    category: str,
    content: NotificationContent,
    language: Optional[str] = None,
) -> Notification:
    """Record the inbox entry now and queue the external delivery"""
    notification = outbox.dispatcher.record(db, user_id, category, content)
    outbox.add(user_id, category, content, language)
    return notification


@contextmanager
def notifying_unit_of_work(db: Session, dispatcher: NotificationDispatcher):
    """
    ``unit_of_work`` that also yields an ``Outbox``.

    Queued notifications are only released once the commit has succeeded;
    a rollback discards them.
    """
    outbox = Outbox(dispatcher)
    with unit_of_work(db):
        yield outbox
    released = outbox.release()
    if released:
        logger.debug(f"📨 Released {released} notification(s) after commit")


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """FastAPI dependency returning the application's dispatcher"""
    return request.app.state.dispatcher
