"""
Doctor reminder service - 24h and 1h appointment reminders sent to doctors

Each pass scans Upcoming appointments whose flag for that reminder class is
still unset, keeps the ones inside the lead-time window and, for an eligible
doctor, dispatches the reminder and then persists the sent flag and timestamp.
The flag write is the only idempotency guard.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session, joinedload

from ...database import unit_of_work
from ...models import APPOINTMENT_UPCOMING, Appointment
from ...notification_templates import doctor_reminder
from ...services.notification_service import CATEGORY_REMINDER, NotificationDispatcher
from ...shared.timeutils import Weekday, appointment_datetime, local_now, parse_date
from ..scheduling.schedule import WeeklySchedule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderClass:
    name: str
    lead: timedelta
    tolerance: timedelta
    sent_flag: str
    sent_at: str
    preference: str


REMINDER_24H = ReminderClass(
    name="24h",
    lead=timedelta(hours=24),
    tolerance=timedelta(minutes=30),
    sent_flag="doctor_reminder_24h_sent",
    sent_at="doctor_reminder_24h_sent_at",
    preference="reminder_24h",
)
REMINDER_1H = ReminderClass(
    name="1h",
    lead=timedelta(hours=1),
    tolerance=timedelta(minutes=7),
    sent_flag="doctor_reminder_1h_sent",
    sent_at="doctor_reminder_1h_sent_at",
    preference="reminder_1h",
)
REMINDER_CLASSES = {r.name: r for r in (REMINDER_24H, REMINDER_1H)}


def eligibility_problem(doctor, reminder: ReminderClass) -> Optional[str]:
    """First reason this doctor should not get the reminder, or None"""
    if doctor is None or doctor.is_disabled or not doctor.is_active:
        return "Doctor account is disabled or inactive"
    if not doctor.reminders_enabled:
        return "Doctor has disabled appointment reminders"
    if not getattr(doctor, reminder.preference):
        return f"Doctor has disabled {reminder.name} reminders"
    return None


def _overnight_start(appointment: Appointment) -> Optional[int]:
    if appointment.doctor is None:
        return None
    weekday = Weekday.of(parse_date(appointment.date))
    return WeeklySchedule.from_rows(appointment.doctor.availability).for_day(weekday).overnight_start()


class DoctorReminderService:
    """Runs the reminder passes against one database session"""

    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = local_now,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock

    def _candidates(self, reminder: ReminderClass) -> list[Appointment]:
        return (
            self.db.query(Appointment)
            .options(
                joinedload(Appointment.doctor),
                joinedload(Appointment.patient),
                joinedload(Appointment.service_type),
                joinedload(Appointment.hospital),
            )
            .filter(
                Appointment.status == APPOINTMENT_UPCOMING,
                getattr(Appointment, reminder.sent_flag).is_(False),
            )
            .order_by(Appointment.id.asc())
            .all()
        )

    def run_pass(self, reminder_class: str) -> dict:
        """
        Run one reminder class.

        Returns:
            Dict with total/processed/sent/failed/skipped counts and per-appointment details
        """
        reminder = REMINDER_CLASSES[reminder_class]
        now = self.clock()
        target = now + reminder.lead
        window_start, window_end = target - reminder.tolerance, target + reminder.tolerance

        candidates = self._candidates(reminder)
        results = {
            "reminderType": reminder.name,
            "total": len(candidates),
            "processed": 0,
            "sent": 0,
            "failed": 0,
            "skipped": 0,
            "details": [],
        }

        for appointment in candidates:
            try:
                overnight = _overnight_start(appointment)
                at = appointment_datetime(appointment.date, appointment.time, overnight)
            except ValueError as e:
                results["failed"] += 1
                results["details"].append(
                    {"appointmentId": appointment.id, "success": False, "error": str(e)}
                )
                logger.error(f"❌ Cannot parse appointment {appointment.id} time: {e}")
                continue

            if not window_start <= at <= window_end or at < now:
                results["skipped"] += 1
                continue

            problem = eligibility_problem(appointment.doctor, reminder)
            if problem:
                results["skipped"] += 1
                results["details"].append(
                    {"appointmentId": appointment.id, "success": False, "skipped": True, "reason": problem}
                )
                logger.debug(f"Reminder {reminder.name} skipped for appointment {appointment.id}: {problem}")
                continue

            results["processed"] += 1
            try:
                self._send(appointment, reminder)
            except Exception as e:
                results["failed"] += 1
                results["details"].append(
                    {"appointmentId": appointment.id, "success": False, "error": str(e)}
                )
                logger.error(f"❌ Error sending {reminder.name} reminder for appointment {appointment.id}: {e}")
                continue

            results["sent"] += 1
            results["details"].append(
                {
                    "appointmentId": appointment.id,
                    "doctorId": appointment.doctor_id,
                    "reminderType": reminder.name,
                    "success": True,
                }
            )

        logger.info(
            f"📅 {reminder.name} reminder pass: {results['sent']} sent, {results['failed']} failed, "
            f"{results['skipped']} skipped out of {results['total']} appointments"
        )
        return results

    def _send(self, appointment: Appointment, reminder: ReminderClass) -> None:
        content = doctor_reminder(appointment, reminder.name)
        self.dispatcher.dispatch_later(appointment.doctor_id, CATEGORY_REMINDER, content)

        with unit_of_work(self.db):
            self.dispatcher.record(self.db, appointment.doctor_id, CATEGORY_REMINDER, content)
            setattr(appointment, reminder.sent_flag, True)
            setattr(appointment, reminder.sent_at, self.clock())
        logger.info(
            f"✅ Doctor reminder sent: {reminder.name} reminder for appointment {appointment.id} "
            f"to doctor {appointment.doctor_id}"
        )

    def run_all(self) -> dict:
        """Both passes plus combined totals and processing time"""
        started = time.perf_counter()
        results_24h = self.run_pass(REMINDER_24H.name)
        results_1h = self.run_pass(REMINDER_1H.name)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        summary = {
            "timestamp": self.clock().isoformat(),
            "processingTime": f"{elapsed_ms}ms",
            "reminders24h": results_24h,
            "reminders1h": results_1h,
            "totalCandidates": results_24h["total"] + results_1h["total"],
            "totalSent": results_24h["sent"] + results_1h["sent"],
            "totalFailed": results_24h["failed"] + results_1h["failed"],
            "totalSkipped": results_24h["skipped"] + results_1h["skipped"],
        }
        logger.info(
            f"📊 Reminder summary: {summary['totalSent']} sent, {summary['totalFailed']} failed in {elapsed_ms}ms"
        )
        return summary
