import asyncio
import threading
from datetime import date, datetime

import pytest

from app.services.notification_service import CATEGORY_APPOINTMENT, NotificationDispatcher
from app.services.retry import retry_async
from app.shared.localization import LocalizedText, NotificationContent
from app.shared.timeutils import (
    Weekday,
    appointment_datetime,
    minutes_to_time,
    parse_time_to_minutes,
    skew_tolerant_dates,
    time_sort_key,
)
from app.shared.validators import validate_email, validate_phone


# ============================================================================
# Time of day
# ============================================================================


@pytest.mark.parametrize(
    "value, minutes",
    [
        ("9:30 AM", 570),
        ("09:30", 570),
        ("21:30", 1290),
        ("12:00 am", 0),
        ("12:15 PM", 735),
        ("00:00", 0),
        ("24:00", 1440),
        ("7:05:00 pm", 1145),
    ],
)
def test_parse_time_to_minutes(value, minutes):
    assert parse_time_to_minutes(value) == minutes


@pytest.mark.parametrize("value", ["", "noon", "13:00 PM", "9:75", "25:00", "24:30"])
def test_parse_time_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_time_to_minutes(value)


def test_minutes_to_time_wraps_past_midnight():
    assert minutes_to_time(0) == "12:00 AM"
    assert minutes_to_time(13 * 60 + 5) == "1:05 PM"
    assert minutes_to_time(24 * 60 + 30) == "12:30 AM"


def test_time_sort_key_puts_unparseable_last():
    assert sorted(["2:00 PM", "bogus", "9:00 AM"], key=time_sort_key) == ["9:00 AM", "2:00 PM", "bogus"]


def test_appointment_datetime_accepts_iso_prefix():
    assert appointment_datetime("2026-03-11T00:00:00Z", "8:45 PM") == datetime(2026, 3, 11, 20, 45)


def test_appointment_datetime_rolls_overnight_slots_forward():
    night_shift = parse_time_to_minutes("10:00 PM")
    assert appointment_datetime("2026-03-10", "1:30 AM", night_shift) == datetime(2026, 3, 11, 1, 30)
    assert appointment_datetime("2026-03-10", "11:00 PM", night_shift) == datetime(2026, 3, 10, 23, 0)
    assert appointment_datetime("2026-03-10", "1:30 AM") == datetime(2026, 3, 10, 1, 30)


def test_skew_tolerant_dates_today_first():
    assert skew_tolerant_dates(date(2026, 3, 10)) == ["2026-03-10", "2026-03-11", "2026-03-09"]
    assert skew_tolerant_dates(date(2026, 3, 10), tolerance=0) == ["2026-03-10"]


def test_weekday_names():
    assert Weekday.of(date(2026, 3, 10)) is Weekday.TUESDAY
    assert Weekday.from_name(" sunday ").label == "Sunday"
    with pytest.raises(ValueError):
        Weekday.from_name("Caturday")


# ============================================================================
# Localized text
# ============================================================================


def test_localized_text_rejects_bare_string():
    with pytest.raises(TypeError):
        LocalizedText("Confirmed")
    with pytest.raises(TypeError):
        LocalizedText(en=None)


def test_localized_text_resolve_falls_back():
    text = LocalizedText(en="Confirmed", ar="تم التأكيد")
    assert text.resolve("ar") == "تم التأكيد"
    assert text.resolve("fr") == "Confirmed"
    assert LocalizedText(ar="تم التأكيد").resolve() == "تم التأكيد"
    assert LocalizedText().resolve("en") == ""


def test_localized_text_is_immutable():
    text = LocalizedText({"en": "Hi"})
    with pytest.raises(AttributeError):
        text.extra = "x"
    assert text == {"en": "Hi"}
    assert text.to_dict() == {"en": "Hi"}


def test_notification_content_requires_localized_parts():
    with pytest.raises(TypeError):
        NotificationContent(title="Hi", body=LocalizedText(en="Body"))


# ============================================================================
# Validators
# ============================================================================


@pytest.mark.parametrize(
    "raw, normalized",
    [
        ("091 234 5678", "+218912345678"),
        ("+44 20 7946 0958", "+442079460958"),
        ("00218912345678", "+218912345678"),
        ("912345678", "+218912345678"),
    ],
)
def test_validate_phone(raw, normalized):
    assert validate_phone(raw) == normalized


def test_validate_phone_rejects_short_numbers():
    with pytest.raises(ValueError):
        validate_phone("+12")


def test_validate_email():
    assert validate_email("  Dr.Karim@Example.COM ") == "dr.karim@example.com"
    with pytest.raises(ValueError):
        validate_email("karim@")


# ============================================================================
# Retry
# ============================================================================


def test_retry_async_retries_then_succeeds():
    calls, delays = [], []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("down")
        return "ok"

    async def fake_sleep(delay):
        delays.append(delay)

    result = asyncio.run(retry_async(flaky, label="test", backoff=(0.5, 2.0), sleep=fake_sleep))

    assert result == "ok"
    assert delays == [0.5, 2.0]


def test_retry_async_reraises_last_error():
    async def always_down():
        raise ConnectionError("still down")

    async def fake_sleep(delay):
        return None

    with pytest.raises(ConnectionError):
        asyncio.run(retry_async(always_down, label="test", backoff=(0.1,), sleep=fake_sleep))


# ============================================================================
# Notification dispatch
# ============================================================================


def test_dispatch_loads_recipient_off_the_event_loop(session_factory, factory):
    patient = factory.patient(is_disabled=True)
    loaded_on = []

    def tracking_factory():
        loaded_on.append(threading.get_ident())
        return session_factory()

    dispatcher = NotificationDispatcher(session_factory=tracking_factory)
    content = NotificationContent(title=LocalizedText(en="Hi"), body=LocalizedText(en="Body"))

    async def deliver():
        return threading.get_ident(), await dispatcher.dispatch(patient.id, CATEGORY_APPOINTMENT, content)

    loop_thread, result = asyncio.run(deliver())

    assert result == {"push": False, "email": False, "sms": False}
    assert len(loaded_on) == 1
    assert loaded_on[0] != loop_thread
