class ReconcilerError(Exception):
    """Base class for every error the service raises on purpose."""

    status_code = 500

    def __init__(self, message: str, *, provider: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class ConfigurationError(ReconcilerError):
    """Credentials missing or rejected by the provider."""

    status_code = 503


class ValidationError(ReconcilerError):
    """Bad input: missing id, amount below minimum, malformed webhook."""

    status_code = 400


class ActiveIntentExists(ValidationError):
    status_code = 409


class ProviderUnavailable(ReconcilerError):
    """Network error or 5xx from the provider. Retryable."""

    status_code = 502


class NotFound(ReconcilerError):
    status_code = 404
