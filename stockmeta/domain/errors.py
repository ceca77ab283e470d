"""Domain error taxonomy for the dispatch layer.

Credential-level failures are resolved locally by rotating to the next
credential in the pool. Only exhaustion of the whole eligible pool, or of the
retry budget, surfaces as the final error for a batch item.
"""

from typing import Any, List, Optional


def status_code_of(error: BaseException) -> Optional[int]:
    """Returns the HTTP status carried by an error, if any.

    Understands the ``status_code`` attribute used by the openai/groq SDKs and
    by this module's errors, and the ``status`` attribute used by some HTTP
    clients. Network-level failures carry neither and yield ``None``.
    """
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


class DispatchError(Exception):
    """Base class for every error raised by the dispatch layer."""

    status_code: Optional[int] = None

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(DispatchError):
    """Invalid configuration value or unknown provider."""


class TransientNetworkError(DispatchError):
    """The request never produced an HTTP response (connection reset, DNS, timeout)."""


class ProviderError(DispatchError):
    """A live call returned an HTTP status that is not credential-related."""


class OutputParseError(DispatchError):
    """The provider answered, but the response body could not be parsed."""


# --- Credential-level failures ---

class CredentialError(DispatchError):
    """A failure attributable to the credential used for the call."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        credential_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.provider = provider
        self.credential_id = credential_id


class AuthError(CredentialError):
    """HTTP 401: the credential was rejected."""

    status_code = 401


class QuotaExhaustedError(CredentialError):
    """HTTP 402: the credential has no balance left."""

    status_code = 402


class RateLimitedError(CredentialError):
    """HTTP 429: the credential is being throttled by the provider."""

    status_code = 429


CREDENTIAL_FAILURE_STATUSES = frozenset({401, 402, 429})


def is_credential_failure(error: BaseException) -> bool:
    """True when the error should rotate to the next credential."""
    if isinstance(error, CredentialError):
        return True
    return status_code_of(error) in CREDENTIAL_FAILURE_STATUSES


class PoolExhaustedError(DispatchError):
    """No eligible credential remained for the provider."""

    def __init__(self, provider: str, last_error: Optional[BaseException] = None):
        message = f"No eligible credential left for provider '{provider}'"
        if last_error is not None:
            message += f" (last error: {type(last_error).__name__}: {last_error})"
        super().__init__(message)
        self.provider = provider
        self.last_error = last_error


# --- Batch-level markers ---

class BatchItemFailure(DispatchError):
    """Marker stored in a batch result slot when the item's worker failed."""

    def __init__(self, index: int, item: Any, cause: BaseException):
        self.message = str(cause) or type(cause).__name__
        super().__init__(f"Item {index} failed: {self.message}", status_code=status_code_of(cause))
        self.index = index
        self.item = item
        self.cause = cause


class BatchFailedError(DispatchError):
    """Raised after a batch settles when the caller asked failures to escalate."""

    def __init__(self, failures: List[BatchItemFailure], results: List[Any]):
        super().__init__(f"{len(failures)} of {len(results)} batch items failed")
        self.failures = failures
        self.results = results
