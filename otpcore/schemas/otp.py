from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# One year, in seconds.
MAX_LIFETIME_SECONDS = 366 * 24 * 60 * 60


class OtpChannel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    EMAIL_LINK = "email_link"


class OtpSendStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    IGNORED = "ignored"


@dataclass
class OtpRecord:
    operation_id: str
    pin: str
    send_to: str
    send_type: OtpChannel
    expires_on: datetime
    send_status: OtpSendStatus
    created_on: datetime
    module_name: Optional[str] = None
    action_type: Optional[str] = None
    source_entity_id: Optional[str] = None
    recipient_id: Optional[str] = None
    recipient_type: Optional[str] = None
    sent_on: Optional[datetime] = None
    error_message: Optional[str] = None

    def composite_key(self) -> tuple:
        return (self.module_name, self.action_type, self.source_entity_id)


@dataclass(frozen=True)
class DispatchOutcome:
    status: OtpSendStatus
    sent_on: Optional[datetime] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class NotificationTemplate:
    body: str
    subject: Optional[str] = None
    is_enabled: bool = True


@dataclass(frozen=True)
class OtpConfig:
    module: str
    name: str
    send_type: Optional[OtpChannel] = None
    action_type: Optional[str] = None
    recipient_type: Optional[str] = None
    lifetime: Optional[int] = None
    notification_template: Optional[NotificationTemplate] = None

    @property
    def effective_action_type(self) -> str:
        return self.action_type or self.name


@dataclass(frozen=True)
class Person:
    id: str
    mobile_number1: Optional[str] = None
    mobile_number2: Optional[str] = None
    email_address1: Optional[str] = None
    email_address2: Optional[str] = None


class OtpSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    password_length: int = Field(ge=1, le=64)
    alphabet: str = Field(min_length=1, max_length=255)
    default_lifetime: int = Field(ge=1, le=MAX_LIFETIME_SECONDS)
    ignore_otp_validation: bool = False
    default_body_template: str = ""
    default_subject_template: str = ""
    default_email_body_template: str = ""
    default_email_subject_template: str = ""


class SendPinRequest(BaseModel):
    send_to: str = Field(min_length=1, max_length=255)
    send_type: OtpChannel = OtpChannel.SMS
    lifetime: Optional[int] = Field(default=None, le=MAX_LIFETIME_SECONDS)
    recipient_id: Optional[str] = None
    recipient_type: Optional[str] = None
    action_type: Optional[str] = None


class SendPinWithConfigRequest(BaseModel):
    module: str
    config_name: str
    send_to: str
    source_entity_id: Optional[str] = None


class SendPinToPersonRequest(BaseModel):
    module: str
    config_name: str
    person_id: str
    source_entity_id: Optional[str] = None


class ResendPinRequest(BaseModel):
    operation_id: Optional[str] = None
    module_name: Optional[str] = None
    action_type: Optional[str] = None
    source_entity_id: Optional[str] = None
    lifetime: Optional[int] = Field(default=None, le=MAX_LIFETIME_SECONDS)


class ResendPinWithConfigRequest(ResendPinRequest):
    module: str
    config_name: str


class VerifyPinRequest(BaseModel):
    pin: str = Field(min_length=1, max_length=64)
    operation_id: Optional[str] = None
    module_name: Optional[str] = None
    action_type: Optional[str] = None
    source_entity_id: Optional[str] = None


class VerifyPinWithConfigRequest(VerifyPinRequest):
    module: str
    config_name: str


class SendPinResponse(BaseModel):
    operation_id: str
    sent_to: str
    module_name: Optional[str] = None
    action_type: Optional[str] = None
    source_entity_id: Optional[str] = None


class VerifyPinResponse(BaseModel):
    is_success: bool
    error_message: Optional[str] = None
    failure: Optional[Literal["mismatch", "expired"]] = None

    @classmethod
    def success(cls) -> "VerifyPinResponse":
        return cls(is_success=True)

    @classmethod
    def failed(
        cls, message: str, failure: Literal["mismatch", "expired"]
    ) -> "VerifyPinResponse":
        return cls(is_success=False, error_message=message, failure=failure)
