"""
Twilio SMS Service
Sends notification text messages through the Twilio REST API
"""

import logging
from typing import Optional

import httpx

from ..config import TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER
from ..shared.validators import validate_phone
from .retry import retry_async

logger = logging.getLogger(__name__)

SMS_RETRY_BACKOFF = (1.0, 1.0)


class TwilioError(Exception):
    pass


class SmsSender:
    """SMS transport; a no-op when Twilio credentials are not configured"""

    def __init__(
        self,
        account_sid: Optional[str] = TWILIO_ACCOUNT_SID,
        auth_token: Optional[str] = TWILIO_AUTH_TOKEN,
        from_number: Optional[str] = TWILIO_FROM_NUMBER,
        backoff=SMS_RETRY_BACKOFF,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.backoff = backoff

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, to_phone: str, message_body: str) -> bool:
        success, error = await send_sms(self, to_phone, message_body)
        if not success and error:
            logger.debug(f"ℹ️ SMS not delivered to {to_phone}: {error}")
        return success

    async def _post(self, to_phone: str, message_body: str) -> dict:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json",
                auth=(self.account_sid, self.auth_token),
                data={"To": to_phone, "From": self.from_number, "Body": message_body},
                timeout=10.0,
            )
        logger.info(f"📡 Twilio API response status: {response.status_code}")
        if response.status_code not in (200, 201):
            try:
                error = response.json().get("message", response.text)
            except ValueError:
                error = response.text
            raise TwilioError(f"Twilio API error {response.status_code}: {error}")
        return response.json()


async def send_sms(
    sender: SmsSender, to_phone: str, message_body: str
) -> tuple[bool, Optional[str]]:
    """
    Send SMS via Twilio

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    if not to_phone:
        return False, "No phone number provided"

    try:
        to_phone = validate_phone(to_phone)
    except ValueError as e:
        logger.warning(f"Phone number not usable for SMS: {to_phone} ({e})")
        return False, str(e)

    if not sender.configured:
        return False, "Twilio not configured"

    try:
        result = await retry_async(
            lambda: sender._post(to_phone, message_body),
            label=f"SMS to {to_phone}",
            backoff=sender.backoff,
        )
    except (httpx.HTTPError, TwilioError) as e:
        return False, str(e)

    logger.info(f"✅ SMS sent to {to_phone} (sid={result.get('sid')})")
    return True, None
