"""Custom exceptions for Mailbox Automation."""


class MailboxAutomationError(Exception):
    """Base exception for all Mailbox Automation errors."""


class NotAuthenticated(MailboxAutomationError):
    """Raised when no valid mailbox credential is available."""


class JobNotFound(MailboxAutomationError):
    """Raised when an operation references a job id with no document."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidTransition(MailboxAutomationError):
    """Raised when a requested lifecycle change is not allowed from the current state."""

    def __init__(self, message: str, *, status: str | None = None, event: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.event = event


class ValidationError(MailboxAutomationError):
    """Exception raised for malformed job input."""


class UpstreamError(MailboxAutomationError):
    """Base exception for mail API failures."""


class UpstreamTransient(UpstreamError):
    """Rate limit or timeout from the mail API; safe to retry the batch."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamPermanent(UpstreamError):
    """Credential revoked or another irrecoverable mail API error."""


class PersistenceError(MailboxAutomationError):
    """Exception raised when the document store is unavailable."""


class ConfigurationError(MailboxAutomationError):
    """Exception raised for configuration related errors."""
