from __future__ import annotations

import base64
import logging
import re
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from otpcore.config import settings
from otpcore.schemas.errors import SmsSendError

LOGGER = logging.getLogger(__name__)


class TwilioSmsGateway:
    def __init__(
        self,
        account_sid: str = settings.twilio_account_sid,
        auth_token: str = settings.twilio_auth_token,
        from_phone: str = settings.twilio_phone_number,
        default_country_code: str = settings.default_country_code,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_phone = from_phone
        self._default_country_code = default_country_code

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_phone)

    def send_sms(self, to_phone: str, body: str, timeout: Optional[float] = None) -> None:
        if not self.configured:
            raise SmsSendError("Twilio is not configured")
        if timeout is None:
            timeout = settings.dispatch_timeout_seconds

        to_number = self._normalize_e164(to_phone)
        from_number = self._normalize_e164(self._from_phone)
        LOGGER.info("Sending OTP SMS to=%s from=%s", to_number, from_number)
        endpoint = (
            "https://api.twilio.com/2010-04-01/Accounts/"
            f"{self._account_sid}/Messages.json"
        )
        payload = urlencode({"To": to_number, "From": from_number, "Body": body}).encode(
            "utf-8"
        )
        token = base64.b64encode(
            f"{self._account_sid}:{self._auth_token}".encode("utf-8")
        ).decode("ascii")
        request = Request(
            endpoint,
            data=payload,
            headers={
                "Authorization": f"Basic {token}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=timeout) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error(
                "Twilio API error to=%s from=%s response=%s",
                to_number,
                from_number,
                error_body,
            )
            raise SmsSendError("Failed to send OTP SMS") from exc
        except URLError as exc:
            raise SmsSendError("Failed to reach Twilio API") from exc
        except TimeoutError as exc:
            raise SmsSendError("Timed out sending OTP SMS") from exc

    def _normalize_e164(self, phone_number: str) -> str:
        raw = phone_number.strip()
        digits = re.sub(r"\D", "", raw)
        if not digits:
            raise SmsSendError("Phone number is missing")
        if len(digits) == 10:
            default_code = re.sub(r"\D", "", self._default_country_code)
            if not default_code:
                raise SmsSendError("Default country code is not configured")
            digits = f"{default_code}{digits}"
        if len(digits) < 10 or len(digits) > 15:
            raise SmsSendError("Phone number must include a valid country code")
        return f"+{digits}"


class NullSmsGateway:
    """Accepts every message without sending it; for local runs."""

    def send_sms(self, to_phone: str, body: str, timeout: Optional[float] = None) -> None:
        LOGGER.warning("SMS gateway is not configured, dropping message to=%s", to_phone)


def build_sms_gateway():
    gateway = TwilioSmsGateway()
    if gateway.configured:
        return gateway
    return NullSmsGateway()
