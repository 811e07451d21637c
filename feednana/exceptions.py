class FeednanaError(Exception):
    """Base class."""


class ValidationError(FeednanaError):
    pass


class RecaptchaError(ValidationError):
    pass


class StorageError(FeednanaError):
    pass


class NotFoundError(FeednanaError):
    pass


class UploadError(FeednanaError):
    pass


class AuthenticationError(FeednanaError):
    pass
