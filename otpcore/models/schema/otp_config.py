from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from otpcore.database import Base


class NotificationTemplateEntry(Base):
    __tablename__ = "notification_templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=True)
    body = Column(Text, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)


class OtpConfigEntry(Base):
    __tablename__ = "otp_configs"

    id = Column(Integer, primary_key=True)
    module = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    action_type = Column(String(255), nullable=True)
    send_type = Column(String(16), nullable=True)
    recipient_type = Column(String(255), nullable=True)
    lifetime = Column(Integer, nullable=True)
    notification_template_id = Column(
        Integer, ForeignKey("notification_templates.id"), nullable=True
    )

    notification_template = relationship(NotificationTemplateEntry, lazy="joined")

    __table_args__ = (
        UniqueConstraint("module", "name", name="uq_otp_config_module_name"),
    )
