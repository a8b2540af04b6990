"""Custom API exceptions for the application."""


class ApiException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        status_code: int,
        message: str,
        details: dict | None = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(ApiException):
    """Resource not found exception."""

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(404, f"{resource} not found: {identifier}")


class UnauthorizedError(ApiException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(401, message)


class ExternalServiceError(ApiException):
    """External service (GitLab, LLM provider) error."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        super().__init__(502, f"{service} error: {message}", {"upstream_status": status_code})
        self.upstream_status = status_code


class FileNotFoundInRepoError(NotFoundError):
    """File does not exist at the requested ref."""

    def __init__(self, path: str, ref: str) -> None:
        super().__init__("File", f"{path}@{ref}")


class SignatureVerificationError(UnauthorizedError):
    """Webhook token verification failed."""

    def __init__(self, source: str = "webhook") -> None:
        super().__init__(f"Invalid {source} token")


class LLMNotConfiguredError(Exception):
    """The selected completion backend has no credentials."""

    def __init__(self, backend: str) -> None:
        super().__init__(f"No API key configured for reviewer backend '{backend}'")
