"""Domain Interfaces (Ports):

Defines the contracts (Abstract Base Classes) that infrastructure components
must implement. Core services depend on these interfaces, not on concrete
provider clients.
"""

from .credential_probe import CredentialProbe
from .request_executor import RequestExecutor

__all__ = ["CredentialProbe", "RequestExecutor"]
