class OtpError(Exception):
    pass


class InvalidArgumentError(OtpError, ValueError):
    pass


class InvalidConfigurationError(OtpError):
    pass


class OtpNotFoundError(OtpError):
    pass


class OtpExpiredError(OtpError):
    pass


class DuplicateKeyError(OtpError):
    pass


class DispatchError(OtpError, RuntimeError):
    pass


class SmsSendError(DispatchError):
    pass


class EmailSendError(DispatchError):
    pass
