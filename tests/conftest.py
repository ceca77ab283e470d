import asyncio
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from stockmeta.core.services.credential_pool import CredentialPoolManager
from stockmeta.domain.interfaces.credential_probe import CredentialProbe
from stockmeta.domain.interfaces.request_executor import RequestExecutor
from stockmeta.domain.models.credentials import Credential
from stockmeta.infrastructure.config.settings import clear_test_config

CHAT_URL = "https://api.openai.com/v1/chat/completions"


def make_response(status: int, url: str = CHAT_URL) -> httpx.Response:
    """Builds the httpx response the SDK status errors are constructed from."""
    return httpx.Response(status, request=httpx.Request("POST", url))


class StaticProbe(CredentialProbe):
    """Probe answering a fixed HTTP status per secret."""

    def __init__(self, statuses: Dict[str, Optional[int]]):
        self.statuses = statuses
        self.calls: List[str] = []

    async def probe(self, provider: str, secret: str) -> Optional[int]:
        self.calls.append(secret)
        await asyncio.sleep(0)
        return self.statuses[secret]


class ScriptedExecutor(RequestExecutor):
    """Executor whose behavior per secret is a value, an exception, or a list of those."""

    def __init__(self, script: Dict[str, Any]):
        self.script = {k: list(v) if isinstance(v, list) else v for k, v in script.items()}
        self.calls: List[str] = []

    async def execute(self, item: Any, credential: Credential) -> Any:
        self.calls.append(credential.secret)
        await asyncio.sleep(0)
        behavior = self.script[credential.secret]
        if isinstance(behavior, list):
            behavior = behavior.pop(0) if len(behavior) > 1 else behavior[0]
        if isinstance(behavior, BaseException):
            raise behavior
        if callable(behavior):
            return behavior(item)
        return behavior


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps) -> Callable[[float], Any]:
    """Instant replacement for asyncio.sleep that records requested delays."""
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(0)
    return _sleep


@pytest.fixture
def events() -> List[Any]:
    return []


@pytest.fixture
def pool(events) -> CredentialPoolManager:
    return CredentialPoolManager(event_sink=events.append, clock=lambda: 1000.0)


@pytest.fixture(autouse=True)
def reset_test_config():
    """Keeps configuration overrides from leaking between tests."""
    clear_test_config()
    yield
    clear_test_config()


@pytest.fixture
def make_probe() -> Callable[..., StaticProbe]:
    return StaticProbe


@pytest.fixture
def make_executor() -> Callable[..., ScriptedExecutor]:
    return ScriptedExecutor


@pytest.fixture
def http_response() -> Callable[..., httpx.Response]:
    return make_response


@pytest.fixture
def mock_sdk_client(mocker):
    """Stands in for an AsyncOpenAI/AsyncGroq client."""
    client = mocker.MagicMock()
    client.chat.completions.create = mocker.AsyncMock(return_value=mocker.MagicMock())
    client.close = mocker.AsyncMock()
    return client


@pytest.fixture
def client_factory(mocker, mock_sdk_client):
    """Client factory always returning ``mock_sdk_client``."""
    return mocker.MagicMock(return_value=mock_sdk_client)
