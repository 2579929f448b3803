from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from otpcore.config import settings
from otpcore.database import session_scope
from otpcore.models.db_operation import (
    _add_record,
    _select_one_or_none,
    _update_records,
)
from otpcore.schemas.otp import OtpSettings

SETTINGS_ROW_ID = 1


def default_otp_settings() -> OtpSettings:
    return OtpSettings(
        password_length=settings.otp_password_length,
        alphabet=settings.otp_alphabet,
        default_lifetime=settings.otp_default_lifetime,
        ignore_otp_validation=settings.otp_ignore_validation,
        default_body_template=settings.otp_body_template,
        default_subject_template=settings.otp_subject_template,
        default_email_body_template=settings.otp_email_body_template,
        default_email_subject_template=settings.otp_email_subject_template,
    )


class SettingsStore:
    """Process-wide OTP settings, persisted as a single row.

    Nothing is cached: every ``get`` reads the row, so an update is seen
    by the next call. Until the first update the environment defaults
    apply.
    """

    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory

    def get(self) -> OtpSettings:
        with session_scope(self._session_factory) as session:
            entry = _select_one_or_none(session, "settings", id=SETTINGS_ROW_ID)
            if entry is None:
                return default_otp_settings()
            return OtpSettings(
                password_length=entry.password_length,
                alphabet=entry.alphabet,
                default_lifetime=entry.default_lifetime,
                ignore_otp_validation=entry.ignore_otp_validation,
                default_body_template=entry.default_body_template or "",
                default_subject_template=entry.default_subject_template or "",
                default_email_body_template=entry.default_email_body_template or "",
                default_email_subject_template=entry.default_email_subject_template or "",
            )

    def set(self, otp_settings: OtpSettings) -> None:
        values = otp_settings.model_dump()
        values["updated_at"] = datetime.now(timezone.utc)
        try:
            with session_scope(self._session_factory) as session:
                if _update_records(session, "settings", values=values, id=SETTINGS_ROW_ID):
                    return
                _add_record(session, "settings", id=SETTINGS_ROW_ID, **values)
        except IntegrityError:
            # A concurrent first update inserted the row.
            with session_scope(self._session_factory) as session:
                _update_records(session, "settings", values=values, id=SETTINGS_ROW_ID)
