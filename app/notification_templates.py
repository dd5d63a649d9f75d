"""
Localized notification content for appointment, queue, reminder and wallet events
Every builder returns a NotificationContent with English and Arabic text
"""

from decimal import Decimal

from .models import Appointment, User
from .shared.localization import LocalizedText, NotificationContent
from .shared.timeutils import appointment_datetime

REMINDER_OPTION_TEXT = {
    "1-hour-before": LocalizedText(en="in 1 hour", ar="خلال ساعة"),
    "1-day-before": LocalizedText(en="in 1 day", ar="خلال يوم"),
    "2-days-before": LocalizedText(en="in 2 days", ar="خلال يومين"),
}


def _name(entity, lang: str, fallback_en: str, fallback_ar: str) -> str:
    if entity is None:
        return fallback_en if lang == "en" else fallback_ar
    if lang == "ar":
        return entity.name_ar or entity.name_en
    return entity.name_en


def _money(amount) -> str:
    return f"{Decimal(amount):.2f}"


def appointment_confirmed(appointment: Appointment) -> NotificationContent:
    doctor, service = appointment.doctor, appointment.service_type
    return NotificationContent(
        title=LocalizedText(en="Appointment Confirmed", ar="تم تأكيد الموعد"),
        body=LocalizedText(
            en=(
                f"Your appointment for a {_name(service, 'en', 'Service', 'خدمة')} with "
                f"Dr. {_name(doctor, 'en', 'Doctor', 'طبيب')} on {appointment.date} "
                f"at {appointment.time} is confirmed."
            ),
            ar=(
                f"تم تأكيد موعدك لـ {_name(service, 'ar', 'Service', 'خدمة')} مع "
                f"د. {_name(doctor, 'ar', 'Doctor', 'طبيب')} في {appointment.date} الساعة {appointment.time}."
            ),
        ),
        data={
            "appointmentId": appointment.id,
            "date": appointment.date,
            "time": appointment.time,
            "queueNumber": appointment.queue_number,
            "link": "#/appointments",
        },
    )


def appointment_cancelled(appointment: Appointment, refund_amount) -> NotificationContent:
    if refund_amount and Decimal(refund_amount) > 0:
        body = LocalizedText(
            en=f"Your appointment on {appointment.date} has been cancelled. {_money(refund_amount)} has been refunded to your wallet.",
            ar=f"تم إلغاء موعدك في {appointment.date}. تم استرجاع {_money(refund_amount)} إلى محفظتك.",
        )
    else:
        body = LocalizedText(
            en=f"Your appointment on {appointment.date} has been cancelled.",
            ar=f"تم إلغاء موعدك في {appointment.date}.",
        )
    return NotificationContent(
        title=LocalizedText(en="Appointment Cancelled", ar="تم إلغاء الموعد"),
        body=body,
        data={"appointmentId": appointment.id, "status": appointment.status},
    )


def doctor_apology(appointment: Appointment) -> NotificationContent:
    doctor = appointment.doctor
    return NotificationContent(
        title=LocalizedText(en="Doctor Unavailable", ar="اعتذار الطبيب"),
        body=LocalizedText(
            en=(
                f"Dr. {_name(doctor, 'en', 'Doctor', 'طبيب')} has apologized for the appointment on "
                f"{appointment.date} at {appointment.time}. Please open the app to choose a resolution."
            ),
            ar=(
                f"نعتذر منك، لقد تعذر حضور الدكتور {_name(doctor, 'ar', 'Doctor', 'طبيب')} لموعدكم يوم "
                f"{appointment.date}. يرجى الدخول للتطبيق لاختيار بديل."
            ),
        ),
        data={"appointmentId": appointment.id, "type": "doctor_apology"},
    )


def resolution_refunded(appointment: Appointment) -> NotificationContent:
    return NotificationContent(
        title=LocalizedText(en="Appointment Cancelled", ar="تم إلغاء الموعد"),
        body=LocalizedText(
            en="Your appointment has been cancelled and a full refund has been processed.",
            ar="تم إلغاء موعدك وتمت معالجة الاسترجاع بالكامل.",
        ),
        data={"appointmentId": appointment.id, "status": appointment.status},
    )


def appointment_rescheduled(appointment: Appointment) -> NotificationContent:
    doctor = appointment.doctor
    return NotificationContent(
        title=LocalizedText(en="Appointment Updated", ar="تم تحديث الموعد"),
        body=LocalizedText(
            en=(
                f"Your appointment is now with Dr. {_name(doctor, 'en', 'Doctor', 'طبيب')} on "
                f"{appointment.date} at {appointment.time}."
            ),
            ar=(
                f"موعدك الآن مع د. {_name(doctor, 'ar', 'Doctor', 'طبيب')} في "
                f"{appointment.date} الساعة {appointment.time}."
            ),
        ),
        data={
            "appointmentId": appointment.id,
            "date": appointment.date,
            "time": appointment.time,
            "queueNumber": appointment.queue_number,
        },
    )


def patient_reminder(appointment: Appointment, option: str) -> NotificationContent:
    when = REMINDER_OPTION_TEXT.get(option, LocalizedText(en="soon", ar="قريباً"))
    doctor = appointment.doctor
    return NotificationContent(
        title=LocalizedText(en="Appointment Reminder", ar="تذكير بالموعد"),
        body=LocalizedText(
            en=(
                f"Reminder: Your appointment with Dr. {_name(doctor, 'en', 'Doctor', 'طبيب')} is "
                f"{when['en']}. ({appointment.date} at {appointment.time})"
            ),
            ar=(
                f"تذكير: موعدك مع د. {_name(doctor, 'ar', 'Doctor', 'طبيب')} "
                f"{when['ar']}. ({appointment.date} الساعة {appointment.time})"
            ),
        ),
        data={"appointmentId": appointment.id, "reminderType": option},
    )


def doctor_reminder(appointment: Appointment, reminder_class: str) -> NotificationContent:
    """Reminder sent to the doctor ahead of a booked patient ("24h" or "1h")"""
    patient, service, hospital = appointment.patient, appointment.service_type, appointment.hospital
    at = appointment_datetime(appointment.date, appointment.time).strftime("%I:%M %p").lstrip("0")
    patient_en = _name(patient, "en", "Patient", "مريض")
    patient_ar = _name(patient, "ar", "Patient", "مريض")
    service_en = _name(service, "en", "Service", "خدمة")
    service_ar = _name(service, "ar", "Service", "خدمة")
    hospital_en = _name(hospital, "en", "Hospital", "المستشفى")
    hospital_ar = _name(hospital, "ar", "Hospital", "المستشفى")

    if reminder_class == "24h":
        title = LocalizedText(en="Appointment Reminder - 24 Hours", ar="تذكير بالموعد - 24 ساعة")
        body = LocalizedText(
            en=f"You have an appointment with {patient_en} tomorrow at {at} for {service_en} at {hospital_en}.",
            ar=f"لديك موعد مع {patient_ar} غداً في {at} لـ {service_ar} في {hospital_ar}.",
        )
    else:
        title = LocalizedText(en="Appointment Reminder - 1 Hour", ar="تذكير بالموعد - ساعة واحدة")
        body = LocalizedText(
            en=f"You have an appointment with {patient_en} in 1 hour ({at}) for {service_en} at {hospital_en}.",
            ar=f"لديك موعد مع {patient_ar} خلال ساعة واحدة ({at}) لـ {service_ar} في {hospital_ar}.",
        )
    return NotificationContent(
        title=title,
        body=body,
        data={"appointmentId": appointment.id, "reminderType": reminder_class},
    )


def next_in_line(doctor: User) -> NotificationContent:
    return NotificationContent(
        title=LocalizedText(en="Next in Line", ar="دورك القادم"),
        body=LocalizedText(
            en=f"Heads up! You are next in line for Dr. {_name(doctor, 'en', 'the doctor', 'الطبيب')}. Please be ready.",
            ar=f"تنبيه! أنت التالي في الدور لـ د. {_name(doctor, 'ar', 'the doctor', 'الطبيب')}. يرجى الاستعداد.",
        ),
        data={"link": "#/queue"},
    )


def wallet_credited(amount, currency: str) -> NotificationContent:
    return NotificationContent(
        title=LocalizedText(en="Wallet Credited", ar="تم شحن المحفظة"),
        body=LocalizedText(
            en=f"Your wallet has been credited with {_money(amount)} {currency}.",
            ar=f"تم إضافة {_money(amount)} {currency} إلى محفظتك.",
        ),
        data={"amount": _money(amount), "link": "#/wallet"},
    )
