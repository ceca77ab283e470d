"""Credential validation probe.

Sends the smallest possible chat completion (one user message,
``max_tokens=1``) with the credential and reports the HTTP status the
provider answered with. Mapping that status to a credential status is the
pool manager's job.
"""

import logging
from typing import Any, Callable, Optional

import groq
import openai

from stockmeta.domain.interfaces.credential_probe import CredentialProbe
from stockmeta.domain.models.common import ProbePayload
from .providers import create_async_client, get_provider_spec

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_S = 15.0

STATUS_ERRORS = (openai.APIStatusError, groq.APIStatusError)
CONNECTION_ERRORS = (openai.APIConnectionError, groq.APIConnectionError)
SDK_ERRORS = (openai.APIError, groq.APIError)

ClientFactory = Callable[[str, str, float], Any]


def build_probe_payload(model: str) -> ProbePayload:
    return {
        "model": model,
        "messages": [{"role": "user", "content": "hi"}],
        "max_tokens": 1,
    }


class KeyValidator(CredentialProbe):
    """Probes provider credentials through the provider SDKs."""

    def __init__(
        self,
        client_factory: ClientFactory = create_async_client,
        timeout: float = DEFAULT_PROBE_TIMEOUT_S,
    ):
        """Initializes the KeyValidator.

        Args:
            client_factory: Builds an async SDK client from (provider, api_key, timeout).
            timeout: Per-probe timeout in seconds. A timed-out probe counts as
                a network failure.
        """
        self._client_factory = client_factory
        self.timeout = timeout

    async def probe(self, provider: str, secret: str) -> Optional[int]:
        spec = get_provider_spec(provider)
        payload = build_probe_payload(spec.probe_model)
        client = self._client_factory(spec.provider.value, secret, self.timeout)
        try:
            await client.chat.completions.create(**payload)
            return 200
        except STATUS_ERRORS as e:
            logger.debug(f"Validation probe for {spec.provider.value} answered {e.status_code}")
            return e.status_code
        except CONNECTION_ERRORS as e:
            logger.warning(f"Validation probe failed for {spec.provider.value}: {type(e).__name__}: {e}")
            return None
        except SDK_ERRORS as e:
            # Answered, but not with anything that says whether the key works
            logger.warning(f"Unexpected validation probe error for {spec.provider.value}: {type(e).__name__}: {e}")
            return None
        finally:
            await client.close()
