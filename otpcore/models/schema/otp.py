from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from otpcore.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation_id = Column(String(36), nullable=False, unique=True)
    pin = Column(String(64), nullable=False)
    send_to = Column(String(255), nullable=False)
    send_type = Column(String(16), nullable=False)
    module_name = Column(String(255), nullable=True)
    action_type = Column(String(255), nullable=True)
    source_entity_id = Column(String(64), nullable=True)
    recipient_id = Column(String(64), nullable=True)
    recipient_type = Column(String(255), nullable=True)
    sent_on = Column(DateTime(timezone=True), nullable=True)
    expires_on = Column(DateTime(timezone=True), nullable=False)
    send_status = Column(String(16), nullable=False)
    error_message = Column(Text, nullable=True)
    created_on = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index(
            "ix_otp_records_composite_key",
            "module_name",
            "action_type",
            "source_entity_id",
        ),
    )
