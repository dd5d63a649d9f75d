import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./myclinic.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "43200"))

# Clinic clock: "now" and "today" are always evaluated in this zone
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Africa/Tripoli")

# Wallet
WALLET_CURRENCY = os.getenv("WALLET_CURRENCY", "LYD")

# Notifications
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "ar")

# Booking rules
AVERAGE_CONSULTATION_MINUTES = int(os.getenv("AVERAGE_CONSULTATION_MINUTES", "15"))
BOOKING_LEAD_MINUTES = int(os.getenv("BOOKING_LEAD_MINUTES", "15"))
BOOKING_CONFLICT_BUFFER_MINUTES = int(os.getenv("BOOKING_CONFLICT_BUFFER_MINUTES", "60"))

# Reminder scheduler
REMINDER_INTERVAL_MINUTES = int(os.getenv("REMINDER_INTERVAL_MINUTES", "15"))
REMINDER_SCHEDULER_ENABLED = os.getenv("REMINDER_SCHEDULER_ENABLED", "true").lower() == "true"

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "MyClinic <noreply@myclinic.ly>")

# Twilio SMS Configuration
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER")

# Firebase Configuration (push notifications)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH")

# Redis (ARQ worker and health check)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# CORS
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")
