from typing import Optional

from otpcore.database import session_scope
from otpcore.models.db_operation import _select_one_or_none
from otpcore.schemas.errors import InvalidArgumentError, InvalidConfigurationError
from otpcore.schemas.otp import OtpChannel, Person


class SqlPersonDirectory:
    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory

    def get(self, person_id: str) -> Optional[Person]:
        with session_scope(self._session_factory) as session:
            entry = _select_one_or_none(session, "person", id=person_id)
            if entry is None:
                return None
            return Person(
                id=entry.id,
                mobile_number1=entry.mobile_number1,
                mobile_number2=entry.mobile_number2,
                email_address1=entry.email_address1,
                email_address2=entry.email_address2,
            )


def send_to_address(person: Person, channel: Optional[OtpChannel]) -> str:
    """Pick the primary, then the secondary, mobile or email for ``channel``."""
    if channel == OtpChannel.SMS:
        address = person.mobile_number1 or person.mobile_number2
        if not address:
            raise InvalidArgumentError("No valid mobile number found")
        return address
    if channel in (OtpChannel.EMAIL, OtpChannel.EMAIL_LINK):
        address = person.email_address1 or person.email_address2
        if not address:
            raise InvalidArgumentError("No valid email address found")
        return address
    raise InvalidConfigurationError("Unsupported send type in config")
