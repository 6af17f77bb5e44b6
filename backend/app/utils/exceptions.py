"""Custom exception classes for the signing engine.

Every error carries a stable ``error_code`` and the HTTP status the API layer
renders it with. Messages are safe to show to the signer: they name the gate
that failed, never the expected identity values.
"""
from typing import Optional


class SigningEngineError(Exception):
    """Base exception for all engine errors."""

    error_code = "ENGINE_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", error_code: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.error_code)
        if error_code:
            self.error_code = error_code

    @property
    def message(self) -> str:
        return str(self)


# ─── Session resolution ──────────────────────────────────────────────

class SessionNotFound(SigningEngineError):
    """Invalid or expired signing link."""

    error_code = "NOT_FOUND"
    status_code = 404


class SessionExpired(SessionNotFound):
    """This signing link has expired."""

    error_code = "EXPIRED"
    status_code = 404


# ─── Workflow gates ──────────────────────────────────────────────────

class TransitionConflict(SigningEngineError):
    """The session changed while the request was in flight. Reload and retry."""

    error_code = "CONFLICT"
    status_code = 409
    retryable = True


class InvalidStateError(SigningEngineError):
    """The requested step is not available in the current workflow state."""

    error_code = "INVALID_STATE"
    status_code = 409

    def __init__(self, message: str = "", error_code: Optional[str] = None, gate: Optional[str] = None):
        super().__init__(message, error_code)
        self.gate = gate


class ValidationFailed(SigningEngineError):
    """The submitted data is malformed or incomplete."""

    error_code = "VALIDATION_FAILED"
    status_code = 422


class SecurityLimitReached(SigningEngineError):
    """A security limit has been reached for this session."""

    error_code = "LIMIT_REACHED"
    status_code = 429


# ─── Collaborators ───────────────────────────────────────────────────

class CollaboratorError(SigningEngineError):
    """An external service failed."""

    error_code = "COLLABORATOR_FAILED"
    status_code = 502
    retryable = True


class CollaboratorTimeout(CollaboratorError):
    """An external service did not answer in time."""

    error_code = "COLLABORATOR_TIMEOUT"
    status_code = 504


class NotificationError(CollaboratorError):
    """The notification provider could not deliver the message."""

    error_code = "NOTIFICATION_FAILED"


class SealingError(CollaboratorError):
    """The signing service could not seal the document."""

    error_code = "SEALING_FAILED"


class EvidencePersistError(CollaboratorError):
    """The evidence record could not be stored."""

    error_code = "EVIDENCE_NOT_PERSISTED"
    status_code = 503


class DocumentScanError(CollaboratorError):
    """The document scan could not be processed."""

    error_code = "SCAN_FAILED"
    status_code = 422
    retryable = False


class AssertionInvalid(CollaboratorError):
    """The identity assertion could not be verified."""

    error_code = "ASSERTION_INVALID"
    status_code = 422
    retryable = False


class ConfigurationError(SigningEngineError):
    """Exception raised when configuration is invalid or missing."""

    error_code = "CONFIGURATION_ERROR"
    status_code = 503
