from typing import Mapping, Optional

from otpcore.schemas.otp import OtpChannel, OtpRecord

DEFAULT_BODY_TEMPLATE = "Your one-time pin is {{password}}"
DEFAULT_SUBJECT_TEMPLATE = "One Time Pin"
DEFAULT_EMAIL_SUBJECT_TEMPLATE = "Email verification"
DEFAULT_EMAIL_BODY_TEMPLATE = (
    "<p>Please confirm your email address by following "
    '<a href="/verify-email?token={{token}}&userid={{userid}}">this link</a>.</p>'
)
DEFAULT_CONFIG_SUBJECT = "One Time Pin"


def render(template: str, values: Mapping[str, Optional[str]]) -> str:
    """Replace ``{{name}}`` placeholders literally; unknown ones stay as they are."""
    rendered = template
    for name, value in values.items():
        rendered = rendered.replace("{{" + name + "}}", value or "")
    return rendered


def channel_values(record: OtpRecord) -> dict[str, Optional[str]]:
    if record.send_type == OtpChannel.EMAIL_LINK:
        return {"token": record.pin, "userid": record.recipient_id}
    return {"password": record.pin}


def or_default(template: Optional[str], default: str) -> str:
    if template is None or not template.strip():
        return default
    return template
