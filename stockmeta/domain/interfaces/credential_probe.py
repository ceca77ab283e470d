"""Interface for probing whether a credential is accepted by its provider."""

import abc
from typing import Optional


class CredentialProbe(abc.ABC):
    """Abstract Base Class for credential validation probes."""

    @abc.abstractmethod
    async def probe(self, provider: str, secret: str) -> Optional[int]:
        """Issues a minimal request to the provider using ``secret``.

        Returns:
            The HTTP status of the response, or None when no usable response
            was received (network failure, timeout, unreadable reply).
        """
        pass
