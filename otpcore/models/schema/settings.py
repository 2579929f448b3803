from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from otpcore.database import Base


class OtpSettingsEntry(Base):
    __tablename__ = "otp_settings"

    id = Column(Integer, primary_key=True)
    password_length = Column(Integer, nullable=False)
    alphabet = Column(String(255), nullable=False)
    default_lifetime = Column(Integer, nullable=False)
    ignore_otp_validation = Column(Boolean, nullable=False, default=False)
    default_body_template = Column(Text, nullable=True)
    default_subject_template = Column(Text, nullable=True)
    default_email_body_template = Column(Text, nullable=True)
    default_email_subject_template = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
