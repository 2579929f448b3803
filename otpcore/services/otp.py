import hmac
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from otpcore.config import settings
from otpcore.schemas.errors import (
    InvalidArgumentError,
    InvalidConfigurationError,
    OtpExpiredError,
    OtpNotFoundError,
)
from otpcore.schemas.otp import (
    MAX_LIFETIME_SECONDS,
    DispatchOutcome,
    OtpChannel,
    OtpConfig,
    OtpRecord,
    OtpSendStatus,
    OtpSettings,
    SendPinResponse,
    VerifyPinResponse,
)
from otpcore.services.configs import SqlConfigResolver
from otpcore.services.email import build_email_gateway
from otpcore.services.generator import PinGenerator, pin_generator
from otpcore.services.persons import SqlPersonDirectory, send_to_address
from otpcore.services.settings import SettingsStore
from otpcore.services.sms import build_sms_gateway
from otpcore.services.store import OtpStorage, SqlOtpStore
from otpcore.services.templates import (
    DEFAULT_BODY_TEMPLATE,
    DEFAULT_CONFIG_SUBJECT,
    DEFAULT_EMAIL_BODY_TEMPLATE,
    DEFAULT_EMAIL_SUBJECT_TEMPLATE,
    DEFAULT_SUBJECT_TEMPLATE,
    channel_values,
    or_default,
    render,
)

LOGGER = logging.getLogger(__name__)

# (wrong secret, expired secret) per channel.
FAILURE_MESSAGES = {
    OtpChannel.SMS: (
        "Wrong one time pin",
        "One-time pin has expired, try to send a new one",
    ),
    OtpChannel.EMAIL: (
        "Wrong one time pin",
        "One-time pin has expired, try to send a new one",
    ),
    OtpChannel.EMAIL_LINK: (
        "Invalid email link",
        "The link you have supplied has expired",
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _first_positive(*values: Optional[int]) -> int:
    for value in values:
        if value is not None and value > 0:
            if value > MAX_LIFETIME_SECONDS:
                raise InvalidArgumentError(
                    f"OTP lifetime must not exceed {MAX_LIFETIME_SECONDS} seconds"
                )
            return value
    raise InvalidConfigurationError("OTP lifetime must be positive")


def _error_text(exc: BaseException) -> str:
    messages = []
    current: Optional[BaseException] = exc
    while current is not None:
        messages.append(str(current) or type(current).__name__)
        current = current.__cause__
    return ": ".join(messages)


def _require_channel(config: OtpConfig) -> None:
    if config.send_type is None:
        raise InvalidArgumentError("send_type must be specified within config")


def _to_channel(value) -> OtpChannel:
    try:
        return OtpChannel(value)
    except ValueError as exc:
        raise InvalidArgumentError(f"Unsupported send type: {value}") from exc


class OtpEngine:
    """Issues, re-sends and verifies one-time pins.

    Settings are read from ``settings_store`` at the start of every call.
    Delivery is best effort: a gateway failure is stored on the record as
    ``OtpSendStatus.FAILED`` and never fails ``send_pin``/``resend_pin``.
    Verification does not consume the pin, it stays valid until it
    expires.
    """

    def __init__(
        self,
        store: OtpStorage,
        settings_store,
        sms_gateway,
        email_gateway,
        config_resolver=None,
        person_directory=None,
        generator: PinGenerator = pin_generator,
        clock: Callable[[], datetime] = _utcnow,
        dispatch_timeout: float = settings.dispatch_timeout_seconds,
    ) -> None:
        self._store = store
        self._settings_store = settings_store
        self._sms_gateway = sms_gateway
        self._email_gateway = email_gateway
        self._config_resolver = config_resolver
        self._person_directory = person_directory
        self._generator = generator
        self._clock = clock
        self._dispatch_timeout = dispatch_timeout

    def send_pin(
        self,
        send_to: str,
        send_type=OtpChannel.SMS,
        lifetime: Optional[int] = None,
        recipient_id: Optional[str] = None,
        recipient_type: Optional[str] = None,
        action_type: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> SendPinResponse:
        otp_settings = self._settings_store.get()
        if send_to is None or not send_to.strip():
            raise InvalidArgumentError("send_to must be specified")
        channel = _to_channel(send_type)

        record = self._new_record(
            send_to=send_to,
            channel=channel,
            otp_settings=otp_settings,
            lifetime=_first_positive(lifetime, otp_settings.default_lifetime),
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            action_type=action_type,
        )
        subject, body = self._settings_templates(channel, otp_settings)
        self._issue(record, otp_settings, subject, body, timeout)
        return SendPinResponse(operation_id=record.operation_id, sent_to=record.send_to)

    def send_pin_with_config(
        self,
        module: str,
        config_name: str,
        send_to: str,
        source_entity_id: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> SendPinResponse:
        config = self._resolve_config(module, config_name)
        if send_to is None or not send_to.strip():
            raise InvalidArgumentError("send_to must be specified")
        return self._send_for_config(config, send_to, source_entity_id, None, timeout)

    def send_pin_to_person_with_config(
        self,
        module: str,
        config_name: str,
        person_id: str,
        source_entity_id: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> SendPinResponse:
        config = self._resolve_config(module, config_name)
        _require_channel(config)
        if self._person_directory is None:
            raise InvalidConfigurationError("Person directory is not configured")
        person = self._person_directory.get(person_id)
        if person is None:
            raise OtpNotFoundError("Person not found")
        send_to = send_to_address(person, config.send_type)
        return self._send_for_config(
            config, send_to, source_entity_id, str(person.id), timeout
        )

    def resend_pin(
        self,
        operation_id: Optional[str] = None,
        module_name: Optional[str] = None,
        action_type: Optional[str] = None,
        source_entity_id: Optional[str] = None,
        lifetime: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> SendPinResponse:
        otp_settings = self._settings_store.get()
        record = self._find_resendable(
            operation_id, module_name, action_type, source_entity_id
        )
        # The bypass flag is ignored here, a resend is always a user request.
        subject, body = self._settings_templates(record.send_type, otp_settings)
        self._redeliver(
            record,
            subject,
            body,
            _first_positive(lifetime, otp_settings.default_lifetime),
            timeout,
        )
        return SendPinResponse(operation_id=record.operation_id, sent_to=record.send_to)

    def resend_pin_with_config(
        self,
        module: str,
        config_name: str,
        operation_id: Optional[str] = None,
        module_name: Optional[str] = None,
        action_type: Optional[str] = None,
        source_entity_id: Optional[str] = None,
        lifetime: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> SendPinResponse:
        config = self._resolve_config(module, config_name)
        otp_settings = self._settings_store.get()
        record = self._find_resendable(
            operation_id, module_name, action_type, source_entity_id
        )
        template = config.notification_template
        self._redeliver(
            record,
            template.subject or DEFAULT_CONFIG_SUBJECT,
            template.body,
            _first_positive(lifetime, config.lifetime, otp_settings.default_lifetime),
            timeout,
        )
        return SendPinResponse(
            operation_id=record.operation_id,
            sent_to=record.send_to,
            module_name=record.module_name,
            action_type=record.action_type,
            source_entity_id=record.source_entity_id,
        )

    def verify_pin(
        self,
        pin: str,
        operation_id: Optional[str] = None,
        module_name: Optional[str] = None,
        action_type: Optional[str] = None,
        source_entity_id: Optional[str] = None,
    ) -> VerifyPinResponse:
        otp_settings = self._settings_store.get()
        if otp_settings.ignore_otp_validation:
            return VerifyPinResponse.success()

        record = self._find(operation_id, module_name, action_type, source_entity_id)
        if record is None:
            raise OtpNotFoundError("OTP not found, try to request a new one")
        return self._check(record, pin)

    def verify_pin_with_config(
        self,
        pin: str,
        module: str,
        config_name: str,
        operation_id: Optional[str] = None,
        module_name: Optional[str] = None,
        action_type: Optional[str] = None,
        source_entity_id: Optional[str] = None,
    ) -> VerifyPinResponse:
        self._resolve_config(module, config_name)
        return self.verify_pin(
            pin,
            operation_id=operation_id,
            module_name=module_name,
            action_type=action_type,
            source_entity_id=source_entity_id,
        )

    def get(self, operation_id: str) -> Optional[OtpRecord]:
        return self._store.get_by_operation_id(operation_id)

    def get_with_composite_key(
        self,
        module_name: str,
        action_type: str,
        source_entity_id: Optional[str] = None,
    ) -> Optional[OtpRecord]:
        if not module_name:
            raise InvalidArgumentError("ModuleName is required to get Otp item")
        if not action_type:
            raise InvalidArgumentError("ActionType is required to get Otp item")
        return self._store.get_by_composite_key(
            module_name, action_type, source_entity_id
        )

    def get_settings(self) -> OtpSettings:
        return self._settings_store.get()

    def update_settings(self, otp_settings: OtpSettings) -> bool:
        self._settings_store.set(otp_settings)
        LOGGER.info(
            "OTP settings updated ignore_validation=%s lifetime=%s",
            otp_settings.ignore_otp_validation,
            otp_settings.default_lifetime,
        )
        return True

    def _send_for_config(
        self,
        config: OtpConfig,
        send_to: str,
        source_entity_id: Optional[str],
        recipient_id: Optional[str],
        timeout: Optional[float],
    ) -> SendPinResponse:
        otp_settings = self._settings_store.get()
        _require_channel(config)

        record = self._new_record(
            send_to=send_to,
            channel=config.send_type,
            otp_settings=otp_settings,
            lifetime=_first_positive(config.lifetime, otp_settings.default_lifetime),
            recipient_id=recipient_id,
            recipient_type=config.recipient_type,
            action_type=config.effective_action_type,
            module_name=config.module,
            source_entity_id=source_entity_id,
        )
        template = config.notification_template
        self._issue(
            record,
            otp_settings,
            template.subject or DEFAULT_CONFIG_SUBJECT,
            template.body,
            timeout,
        )
        return SendPinResponse(
            operation_id=record.operation_id,
            sent_to=record.send_to,
            module_name=record.module_name,
            action_type=record.action_type,
        )

    def _new_record(
        self,
        *,
        send_to: str,
        channel: OtpChannel,
        otp_settings: OtpSettings,
        lifetime: int,
        recipient_id: Optional[str] = None,
        recipient_type: Optional[str] = None,
        action_type: Optional[str] = None,
        module_name: Optional[str] = None,
        source_entity_id: Optional[str] = None,
    ) -> OtpRecord:
        now = self._clock()
        return OtpRecord(
            operation_id=str(uuid.uuid4()),
            pin=self._generator.generate_secret(channel, otp_settings),
            send_to=send_to.strip(),
            send_type=channel,
            module_name=module_name,
            action_type=action_type,
            source_entity_id=source_entity_id,
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            expires_on=now + timedelta(seconds=lifetime),
            send_status=OtpSendStatus.IGNORED,
            created_on=now,
        )

    def _issue(
        self,
        record: OtpRecord,
        otp_settings: OtpSettings,
        subject: str,
        body: str,
        timeout: Optional[float],
    ) -> None:
        # The record is saved once, after the outcome is known.
        if otp_settings.ignore_otp_validation:
            record.send_status = OtpSendStatus.IGNORED
        else:
            outcome = self._deliver(record, subject, body, timeout, record.created_on)
            record.sent_on = outcome.sent_on
            record.send_status = outcome.status
            record.error_message = outcome.error_message
        self._store.save(record)
        LOGGER.info(
            "OTP issued operation_id=%s channel=%s status=%s",
            record.operation_id,
            record.send_type.value,
            record.send_status.value,
        )

    def _redeliver(
        self,
        record: OtpRecord,
        subject: str,
        body: str,
        lifetime: int,
        timeout: Optional[float],
    ) -> None:
        extension = timedelta(seconds=lifetime)
        outcome = self._deliver(record, subject, body, timeout, self._clock())

        def record_outcome(draft: OtpRecord) -> None:
            draft.sent_on = outcome.sent_on
            draft.send_status = outcome.status
            draft.error_message = outcome.error_message

        self._store.update(record.operation_id, record_outcome)

        expires_on = self._clock() + extension

        def extend(draft: OtpRecord) -> None:
            draft.expires_on = expires_on

        self._store.update(record.operation_id, extend)
        LOGGER.info(
            "OTP resent operation_id=%s status=%s",
            record.operation_id,
            outcome.status.value,
        )

    def _deliver(
        self,
        record: OtpRecord,
        subject: str,
        body: str,
        timeout: Optional[float],
        sent_on: datetime,
    ) -> DispatchOutcome:
        if timeout is None:
            timeout = self._dispatch_timeout
        try:
            self._dispatch(record, subject, body, timeout)
        except Exception as exc:
            LOGGER.warning(
                "OTP dispatch failed operation_id=%s channel=%s error=%s",
                record.operation_id,
                record.send_type.value,
                exc,
            )
            return DispatchOutcome(
                status=OtpSendStatus.FAILED,
                sent_on=sent_on,
                error_message=_error_text(exc),
            )
        return DispatchOutcome(status=OtpSendStatus.SENT, sent_on=sent_on)

    def _dispatch(
        self, record: OtpRecord, subject: str, body: str, timeout: float
    ) -> None:
        values = channel_values(record)
        if record.send_type == OtpChannel.SMS:
            self._sms_gateway.send_sms(
                record.send_to, render(body, values), timeout=timeout
            )
        elif record.send_type == OtpChannel.EMAIL:
            self._email_gateway.send_email(
                record.send_to,
                render(subject, values),
                render(body, values),
                is_html=False,
                timeout=timeout,
            )
        elif record.send_type == OtpChannel.EMAIL_LINK:
            self._email_gateway.send_email(
                record.send_to,
                render(subject, values),
                render(body, values),
                is_html=True,
                timeout=timeout,
            )
        else:
            raise InvalidConfigurationError(f"Unsupported send type: {record.send_type}")

    def _settings_templates(
        self, channel: OtpChannel, otp_settings: OtpSettings
    ) -> tuple[str, str]:
        if channel == OtpChannel.EMAIL_LINK:
            return (
                or_default(
                    otp_settings.default_email_subject_template,
                    DEFAULT_EMAIL_SUBJECT_TEMPLATE,
                ),
                or_default(
                    otp_settings.default_email_body_template,
                    DEFAULT_EMAIL_BODY_TEMPLATE,
                ),
            )
        return (
            or_default(otp_settings.default_subject_template, DEFAULT_SUBJECT_TEMPLATE),
            or_default(otp_settings.default_body_template, DEFAULT_BODY_TEMPLATE),
        )

    def _resolve_config(self, module: str, config_name: str) -> OtpConfig:
        if self._config_resolver is None:
            raise InvalidConfigurationError("OTP configs are not available")
        config = self._config_resolver.resolve(module, config_name)
        template = config.notification_template
        if template is None or not template.is_enabled:
            raise InvalidConfigurationError(
                "Invalid or disabled notification template in config"
            )
        return config

    def _find(
        self,
        operation_id: Optional[str],
        module_name: Optional[str],
        action_type: Optional[str],
        source_entity_id: Optional[str],
    ) -> Optional[OtpRecord]:
        record = None
        if operation_id:
            record = self._store.get_by_operation_id(operation_id)
        if record is None:
            record = self._store.get_by_composite_key(
                module_name, action_type, source_entity_id
            )
        return record

    def _find_resendable(
        self,
        operation_id: Optional[str],
        module_name: Optional[str],
        action_type: Optional[str],
        source_entity_id: Optional[str],
    ) -> OtpRecord:
        record = self._find(operation_id, module_name, action_type, source_entity_id)
        if record is None:
            raise OtpNotFoundError("OTP not found, try to request a new one")
        if self._clock() > record.expires_on:
            raise OtpExpiredError("OTP has expired, try to request a new one")
        return record

    def _check(self, record: OtpRecord, pin: str) -> VerifyPinResponse:
        wrong_message, expired_message = FAILURE_MESSAGES[record.send_type]
        if not hmac.compare_digest(record.pin.encode("utf-8"), (pin or "").encode("utf-8")):
            return VerifyPinResponse.failed(wrong_message, "mismatch")
        if self._clock() > record.expires_on:
            return VerifyPinResponse.failed(expired_message, "expired")
        return VerifyPinResponse.success()


otp_engine = OtpEngine(
    store=SqlOtpStore(),
    settings_store=SettingsStore(),
    sms_gateway=build_sms_gateway(),
    email_gateway=build_email_gateway(),
    config_resolver=SqlConfigResolver(),
    person_directory=SqlPersonDirectory(),
)
