"""Default request executor: one chat completion per batch item.

Hides the specifics of the provider SDKs and translates their errors into the
dispatch layer's taxonomy, so credential failures rotate, transient failures
retry, and malformed output is reported as a parse error.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Optional

from stockmeta.domain.errors import (
    AuthError,
    DispatchError,
    OutputParseError,
    ProviderError,
    QuotaExhaustedError,
    RateLimitedError,
    TransientNetworkError,
)
from stockmeta.domain.interfaces.request_executor import RequestExecutor
from stockmeta.domain.models.common import ChatMessages
from stockmeta.domain.models.credentials import Credential
from .key_validator import CONNECTION_ERRORS, SDK_ERRORS, STATUS_ERRORS, ClientFactory
from .providers import DEFAULT_REQUEST_TIMEOUT_S, create_async_client, get_provider_spec

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_CREDENTIAL_ERRORS = {
    401: AuthError,
    402: QuotaExhaustedError,
    429: RateLimitedError,
}


def parse_json_payload(text: Optional[str]) -> Dict[str, Any]:
    """Extracts the JSON object from a model reply.

    Tolerates markdown code fences and prose around the object.

    Raises:
        OutputParseError: If no JSON object can be decoded.
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    match = _OBJECT_RE.search(cleaned)
    if not match:
        raise OutputParseError("AI failed to return valid JSON metadata.")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise OutputParseError(f"Metadata response was corrupted: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise OutputParseError("Metadata response is not a JSON object.")
    return parsed


def translate_provider_error(
    error: Exception,
    provider: str,
    credential_id: Optional[str] = None,
) -> DispatchError:
    """Maps an SDK exception to the dispatch error taxonomy."""
    if isinstance(error, STATUS_ERRORS):
        status = error.status_code
        error_cls = _CREDENTIAL_ERRORS.get(status)
        if error_cls is not None:
            return error_cls(
                f"{provider} rejected credential {credential_id} ({status})",
                provider=provider,
                credential_id=credential_id,
            )
        return ProviderError(f"{provider} API Error: {status}", status_code=status)
    if isinstance(error, CONNECTION_ERRORS):
        return TransientNetworkError(f"{provider} unreachable: {type(error).__name__}: {error}")
    return ProviderError(f"Unexpected {provider} error: {type(error).__name__}: {error}")


class ChatCompletionExecutor(RequestExecutor):
    """Sends one chat completion per item to an OpenAI-compatible provider."""

    def __init__(
        self,
        provider: str,
        build_messages: Callable[[Any], ChatMessages],
        model: Optional[str] = None,
        client_factory: ClientFactory = create_async_client,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
        parse: Callable[[Optional[str]], Any] = parse_json_payload,
        completion_options: Optional[Dict[str, Any]] = None,
    ):
        """Initializes the executor.

        Args:
            provider: Provider name or ``Provider`` member.
            build_messages: Shapes the request messages for an item; owned by
                the caller since payloads are provider and product specific.
            model: Active model id; the provider default if None.
            client_factory: Builds an async SDK client from (provider, api_key, timeout).
            timeout: Per-call timeout in seconds, so a stalled call cannot hold
                a worker slot indefinitely.
            parse: Turns the reply text into the item's result.
            completion_options: Extra keyword arguments for the completion call
                (temperature, response_format, ...).
        """
        self.spec = get_provider_spec(provider)
        self.provider = self.spec.provider.value
        self.model = model or self.spec.default_model
        self.build_messages = build_messages
        self.timeout = timeout
        self.parse = parse
        self.completion_options = dict(completion_options or {})
        self._client_factory = client_factory
        logger.info(f"ChatCompletionExecutor initialized for {self.provider} model: {self.model}")

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        build_messages: Callable[[Any], ChatMessages],
        provider: Optional[str] = None,
        **kwargs: Any,
    ) -> "ChatCompletionExecutor":
        """Builds an executor from a ``DispatchSettings`` snapshot.

        Uses the snapshot's provider unless ``provider`` is given, that
        provider's active model and the snapshot's request timeout.
        """
        name = get_provider_spec(provider or settings.provider).provider.value
        kwargs.setdefault("model", settings.active_models.get(name))
        kwargs.setdefault("timeout", settings.request_timeout)
        return cls(name, build_messages, **kwargs)

    async def execute(self, item: Any, credential: Credential) -> Any:
        messages = self.build_messages(item)
        client = self._client_factory(self.provider, credential.secret, self.timeout)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                **self.completion_options,
            )
        except SDK_ERRORS as e:
            translated = translate_provider_error(e, self.provider, credential.id)
            logger.warning(f"{self.provider} call with {credential.masked} failed: {translated}")
            raise translated from e
        finally:
            await client.close()

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise OutputParseError(f"Invalid response structure from {self.provider}: {e}") from e
        return self.parse(content)
