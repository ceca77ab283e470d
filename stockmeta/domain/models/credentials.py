"""Domain models for providers and the credentials that authenticate against them."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .common import CredentialId, ProviderName, SecretValue


class Provider(str, Enum):
    """Known third-party AI backends. Values double as pool keys."""
    GEMINI = "Gemini"
    OPENAI = "OpenAI"
    MISTRAL = "Mistral"
    DEEPSEEK = "DeepSeek"
    GROQ = "Groq"
    GITHUB = "GitHub Models"
    OPENROUTER = "OpenRouter"


class CredentialStatus(str, Enum):
    """Live status of a credential.

    ``testing`` means unknown (never probed, or the probe hit a network error).
    ``invalid`` is sticky until the user re-validates. ``rate_limited`` and
    ``exhausted`` are recoverable through a fresh validation.
    """
    TESTING = "testing"
    VALID = "valid"
    INVALID = "invalid"
    RATE_LIMITED = "rate_limited"
    EXHAUSTED = "exhausted"


ELIGIBLE_STATUSES = frozenset({CredentialStatus.VALID, CredentialStatus.TESTING})


def provider_key(provider) -> ProviderName:
    """Normalizes a ``Provider`` member or a plain string to a pool key."""
    if isinstance(provider, Provider):
        return ProviderName(provider.value)
    return ProviderName(str(provider))


@dataclass
class Credential:
    """A secret value plus its live status, scoped to one provider."""
    id: CredentialId
    provider: ProviderName
    secret: SecretValue = field(repr=False)
    status: CredentialStatus = CredentialStatus.TESTING
    last_checked: Optional[float] = None  # epoch seconds of the last probe
    last_used: Optional[float] = None     # epoch seconds of the last live call

    @property
    def is_eligible(self) -> bool:
        return self.status in ELIGIBLE_STATUSES

    @property
    def masked(self) -> str:
        """Secret with everything but the last four characters hidden."""
        if len(self.secret) <= 4:
            return "****"
        return f"****{self.secret[-4:]}"
