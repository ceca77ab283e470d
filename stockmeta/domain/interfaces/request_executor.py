"""Interface for the external call made on behalf of one batch item.

Payload shaping is provider specific and lives outside the dispatch layer;
the orchestrator only needs something that turns (item, credential) into a
result or a classified error.
"""

import abc
from typing import Any

from ..models.credentials import Credential


class RequestExecutor(abc.ABC):
    """Abstract Base Class for executing one provider request."""

    @abc.abstractmethod
    async def execute(self, item: Any, credential: Credential) -> Any:
        """Performs the external call for ``item`` authenticated by ``credential``.

        Args:
            item: The opaque batch item (asset reference, prompt inputs, ...).
            credential: The credential selected from the provider's pool.

        Returns:
            The parsed result for the item.

        Raises:
            CredentialError: On 401/402/429, so the caller can rotate credentials.
            TransientNetworkError: When no HTTP response was received.
            OutputParseError: When the response body is malformed.
            ProviderError: For any other HTTP status.
        """
        pass
