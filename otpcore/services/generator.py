import secrets

from otpcore.schemas.errors import InvalidConfigurationError
from otpcore.schemas.otp import OtpChannel, OtpSettings

TOKEN_BYTES = 16


class PinGenerator:
    def generate_pin(self, otp_settings: OtpSettings) -> str:
        length = otp_settings.password_length
        alphabet = otp_settings.alphabet
        if length < 1:
            raise InvalidConfigurationError("Pin length must be at least 1")
        if not alphabet:
            raise InvalidConfigurationError("Pin alphabet is empty")
        return "".join(secrets.choice(alphabet) for _ in range(length))

    def generate_token(self) -> str:
        # Link tokens double as bearer credentials, never derive them from the pin alphabet.
        return secrets.token_hex(TOKEN_BYTES)

    def generate_secret(self, channel: OtpChannel, otp_settings: OtpSettings) -> str:
        if channel == OtpChannel.EMAIL_LINK:
            return self.generate_token()
        return self.generate_pin(otp_settings)


pin_generator = PinGenerator()
