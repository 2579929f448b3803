import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./otp.db")
    otp_password_length: int = int(os.getenv("OTP_PASSWORD_LENGTH", "6"))
    otp_alphabet: str = os.getenv("OTP_ALPHABET", "1234567890")
    otp_default_lifetime: int = int(os.getenv("OTP_DEFAULT_LIFETIME", "180"))
    otp_ignore_validation: bool = _env_bool("OTP_IGNORE_VALIDATION", False)
    otp_body_template: str = os.getenv("OTP_BODY_TEMPLATE", "")
    otp_subject_template: str = os.getenv("OTP_SUBJECT_TEMPLATE", "")
    otp_email_body_template: str = os.getenv("OTP_EMAIL_BODY_TEMPLATE", "")
    otp_email_subject_template: str = os.getenv("OTP_EMAIL_SUBJECT_TEMPLATE", "")
    dispatch_timeout_seconds: float = float(
        os.getenv("DISPATCH_TIMEOUT_SECONDS", "10")
    )
    otp_email_sender: str = (
        os.getenv("OTP_EMAIL_SENDER")
        or os.getenv("GMAIL_SENDER")
        or os.getenv("FROM_EMAIL", "")
    )
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv(
        "TWILIO_PHONE_NUMBER", os.getenv("PHONE_NUMBER", "")
    )
    default_country_code: str = os.getenv("DEFAULT_COUNTRY_CODE", "+1")
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv(
        "GMAIL_CREDENTIALS_FILE", os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "")
    )


settings = Settings()
