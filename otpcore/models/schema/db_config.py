from otpcore.models.schema.otp import OtpEntry
from otpcore.models.schema.otp_config import NotificationTemplateEntry, OtpConfigEntry
from otpcore.models.schema.person import PersonEntry
from otpcore.models.schema.settings import OtpSettingsEntry


class Databases:
    otp = OtpEntry
    otp_config = OtpConfigEntry
    notification_template = NotificationTemplateEntry
    person = PersonEntry
    settings = OtpSettingsEntry
