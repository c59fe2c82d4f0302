"""
Custom exception classes for the editorial pipeline.

Exceptions follow the fail-fast philosophy: no fallbacks, surface errors
immediately with clear context.  Every domain error carries a stable
``code`` string so an outer layer (UI, API) can tell "wait and retry"
apart from "fix your input" without parsing messages.

Hierarchy:
    Exception
    +-- EditorialError (base for all domain errors, has ``code``)
    |   +-- ValidationError (also ValueError)
    |   |   +-- EmptyNotesError
    |   |   +-- InvalidTransitionError
    |   |       +-- NoOpTransitionError
    |   +-- ConcurrencyConflictError
    |   |   +-- OperationInProgressError
    |   |   +-- RevisionInProgressError
    |   |   +-- ShareInProgressError
    |   +-- PreconditionError
    |   |   +-- DraftNotFoundError
    |   |   +-- PublishNotApprovedError
    |   |   +-- NoPendingRevisionError
    |   |   +-- NotPublishedError
    |   |   +-- AlreadySharedError
    |   +-- ExternalServiceError
    |       +-- RevisionGenerationError
    |       +-- SocialPublishError
    |       +-- ImageGenerationError
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
"""

from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class EditorialError(Exception):
    """Base exception for all editorial pipeline errors.

    Attributes:
        code: Stable machine-readable error code.
    """

    code: str = "EDITORIAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================


class ValidationError(EditorialError, ValueError):
    """Raised when input validation fails."""

    code = "VALIDATION_ERROR"


class EmptyNotesError(ValidationError):
    """Raised when a revision is requested without instructions."""

    code = "EMPTY_NOTES"


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not in the transition table.

    Attributes:
        field: Name of the state variable (``review_status`` or ``status``).
        current: Current value.
        target: Requested value.
    """

    code = "INVALID_TRANSITION"

    def __init__(self, field: str, current: str, target: str, reason: str = ""):
        self.field = field
        self.current = current
        self.target = target
        message = f"{field}: transition {current} -> {target} is not allowed"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class NoOpTransitionError(InvalidTransitionError):
    """Raised when a state variable is set to the value it already holds."""

    code = "NO_OP_TRANSITION"

    def __init__(self, field: str, current: str):
        super().__init__(field, current, current, reason="already in this state")


# =============================================================================
# CONCURRENCY CONFLICTS
# =============================================================================


class ConcurrencyConflictError(EditorialError):
    """Raised when an operation collides with one already running."""

    code = "CONFLICT"


class OperationInProgressError(ConcurrencyConflictError):
    """Raised when a single-flight lock is already held.

    Attributes:
        key: Lock key (``scan``, ``generation``, ...).
        holder: Identifier of whoever holds the lock, if known.
    """

    def __init__(self, key: str, holder: Optional[str] = None):
        self.key = key
        self.holder = holder
        message = f"{key} already in progress"
        if holder:
            message = f"{message} (held by {holder})"
        super().__init__(message, code=f"{key.upper()}_IN_PROGRESS")


class RevisionInProgressError(ConcurrencyConflictError):
    """Raised when a draft already has an outstanding revision job."""

    code = "REVISION_IN_PROGRESS"


class ShareInProgressError(ConcurrencyConflictError):
    """Raised when a draft is already being shared to the social channel."""

    code = "SHARE_IN_PROGRESS"


# =============================================================================
# STATE PRECONDITIONS
# =============================================================================


class PreconditionError(EditorialError):
    """Raised when the target entity is not in a state that allows the call."""

    code = "PRECONDITION_FAILED"


class DraftNotFoundError(PreconditionError):
    """Raised when a draft id does not resolve to a record."""

    code = "DRAFT_NOT_FOUND"

    def __init__(self, draft_id: str):
        self.draft_id = draft_id
        super().__init__(f"Draft {draft_id} not found")


class PublishNotApprovedError(PreconditionError):
    """Raised when publishing or scheduling a draft that is not approved."""

    code = "PUBLISH_REQUIRES_APPROVAL"


class NoPendingRevisionError(PreconditionError):
    """Raised when applying a revision that is not ready."""

    code = "NO_PENDING_REVISION"


class NotPublishedError(PreconditionError):
    """Raised when sharing content that is not published on the site."""

    code = "NOT_PUBLISHED"


class AlreadySharedError(PreconditionError):
    """Raised when sharing content already posted to the social channel."""

    code = "ALREADY_SHARED"


# =============================================================================
# EXTERNAL SERVICE FAILURES
# =============================================================================


class ExternalServiceError(EditorialError):
    """Raised when an external collaborator (AI, social, images) fails."""

    code = "EXTERNAL_SERVICE_ERROR"


class RevisionGenerationError(ExternalServiceError):
    """Raised when the AI reviser returns unusable output."""

    code = "REVISION_FAILED"


class SocialPublishError(ExternalServiceError):
    """Raised by social publishers when a post is rejected.

    Attributes:
        kind: Failure class (``ALREADY_PUBLISHED``, ``RATE_LIMITED``,
            ``INVALID_TOKEN``, ``PERMISSIONS_ERROR``, ``INVALID_PARAMS``,
            ``UPSTREAM_ERROR``).
    """

    code = "SOCIAL_PUBLISH_FAILED"

    ALREADY_PUBLISHED = "ALREADY_PUBLISHED"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_TOKEN = "INVALID_TOKEN"
    PERMISSIONS_ERROR = "PERMISSIONS_ERROR"
    INVALID_PARAMS = "INVALID_PARAMS"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"

    def __init__(self, message: str, kind: str = UPSTREAM_ERROR):
        self.kind = kind
        super().__init__(message)


class ImageGenerationError(ExternalServiceError):
    """Raised when cover image generation fails."""

    code = "IMAGE_GENERATION_FAILED"


# =============================================================================
# INFRASTRUCTURE EXCEPTIONS
# =============================================================================


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "EditorialError",
    # Validation
    "ValidationError",
    "EmptyNotesError",
    "InvalidTransitionError",
    "NoOpTransitionError",
    # Concurrency
    "ConcurrencyConflictError",
    "OperationInProgressError",
    "RevisionInProgressError",
    "ShareInProgressError",
    # Preconditions
    "PreconditionError",
    "DraftNotFoundError",
    "PublishNotApprovedError",
    "NoPendingRevisionError",
    "NotPublishedError",
    "AlreadySharedError",
    # External services
    "ExternalServiceError",
    "RevisionGenerationError",
    "SocialPublishError",
    "ImageGenerationError",
    # Infrastructure
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
]
