"""Reminders router - operator endpoints for the doctor reminder scheduler"""

import logging

from fastapi import APIRouter, Depends, Request

from ...auth import require_super_admin
from ...models import User
from .scheduler import ReminderScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reminders", tags=["Reminders"])


def get_reminder_scheduler(request: Request) -> ReminderScheduler:
    return request.app.state.reminder_scheduler


@router.post("/trigger")
async def trigger_reminders(
    current_user: User = Depends(require_super_admin),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
):
    """Run both reminder passes now and return the processing summary"""
    logger.info(f"🔔 Manual reminder run requested by user {current_user.id}")
    return await scheduler.trigger_now()


@router.get("/status")
async def get_scheduler_status(
    current_user: User = Depends(require_super_admin),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
):
    return scheduler.status()
