from typing import Iterable, Optional

from otpcore.database import session_scope
from otpcore.models.db_operation import _select_one_or_none
from otpcore.schemas.errors import InvalidConfigurationError
from otpcore.schemas.otp import NotificationTemplate, OtpChannel, OtpConfig


class SqlConfigResolver:
    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory

    def resolve(self, module: str, name: str) -> OtpConfig:
        with session_scope(self._session_factory) as session:
            entry = _select_one_or_none(session, "otp_config", module=module, name=name)
            if entry is None:
                raise InvalidConfigurationError("Invalid OTP Config")
            return _to_config(entry)


class InMemoryConfigResolver:
    def __init__(self, configs: Iterable[OtpConfig] = ()) -> None:
        self._configs = {(config.module, config.name): config for config in configs}

    def add(self, config: OtpConfig) -> None:
        self._configs[(config.module, config.name)] = config

    def resolve(self, module: str, name: str) -> OtpConfig:
        config = self._configs.get((module, name))
        if config is None:
            raise InvalidConfigurationError("Invalid OTP Config")
        return config


def _to_config(entry) -> OtpConfig:
    template: Optional[NotificationTemplate] = None
    if entry.notification_template is not None:
        template = NotificationTemplate(
            subject=entry.notification_template.subject,
            body=entry.notification_template.body,
            is_enabled=bool(entry.notification_template.is_enabled),
        )
    return OtpConfig(
        module=entry.module,
        name=entry.name,
        action_type=entry.action_type,
        send_type=OtpChannel(entry.send_type) if entry.send_type else None,
        recipient_type=entry.recipient_type,
        lifetime=entry.lifetime,
        notification_template=template,
    )
