"""Defines common Value Objects used across the dispatch layer.

These objects represent simple values like provider names, credential ids
and model identifiers, keeping signatures self-describing.
"""

from typing import Any, Dict, List, NewType, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are plain values at runtime.
ProviderName = NewType("ProviderName", str)    # e.g. 'OpenAI', 'Groq'
CredentialId = NewType("CredentialId", str)    # Unique id of a credential within its pool
SecretValue = NewType("SecretValue", str)      # Raw API key, never logged
ModelId = NewType("ModelId", str)              # Provider model identifier
ItemIndex = NewType("ItemIndex", int)          # Position of an item in its batch
HttpStatus = NewType("HttpStatus", int)        # HTTP status code of a provider response


# --- Structured Data ---

class ChatMessage(TypedDict):
    """Message structure expected by OpenAI-compatible chat endpoints."""
    role: str
    content: Any  # str, or a list of content parts for multimodal requests


ChatMessages = List[ChatMessage]
ProbePayload = Dict[str, Any]
