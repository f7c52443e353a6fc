"""
Shared fixtures for the agent core test suite.

Everything runs in-process: the model provider, the auth service and the
interaction store are replaced by the fakes below, and HTTP/WebSocket tests go
through FastAPI's TestClient.
"""
import asyncio
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from agentcore.auth import JwtAuthenticator, Principal
from agentcore.errors import Unauthenticated
from agentcore.llm.client import ModelClient, parse_structured_output
from agentcore.main import create_app
from agentcore.services import Services

JWT_TEST_SECRET = "test-secret-test-secret-test-secret-0123"

ADMIN = Principal(id="admin-1", role="admin", email="admin@example.com")
CUSTOMER = Principal(id="user-1", role="customer", email="user@example.com")
ARTISAN = Principal(id="artisan-1", role="artisan")

TOKENS = {
    "admin-token": ADMIN,
    "customer-token": CUSTOMER,
    "artisan-token": ARTISAN,
}


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class FakeModelClient(ModelClient):
    """
    Scripted model provider.

    ``text`` answers every free-form call. ``structured`` maps a response
    schema name to either a value or raw provider text (parsed the way the
    real client parses it). ``error`` is raised instead of answering.
    """

    def __init__(
        self,
        text: str = "R1",
        structured: Optional[dict[str, Any]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self.model_id = "fake-model"
        self.text = text
        self.structured = dict(structured or {})
        self.delay = delay
        self.error = error
        self.calls: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def _answer(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def complete(self, system_instruction, messages, sampling):
        self.calls.append({"kind": "complete", "system": system_instruction, "messages": list(messages), "sampling": sampling})
        await self._answer()
        return self.text

    async def complete_structured(self, system_instruction, messages, sampling, response_schema):
        self.calls.append({
            "kind": "structured",
            "system": system_instruction,
            "messages": list(messages),
            "sampling": sampling,
            "schema": response_schema.name,
        })
        await self._answer()
        raw = self.structured.get(response_schema.name)
        if isinstance(raw, str):
            return parse_structured_output(raw, response_schema)
        return response_schema.validate(raw)


class FakeAuthenticator:
    def __init__(self, tokens: Optional[dict[str, Principal]] = None) -> None:
        self.tokens = dict(tokens or TOKENS)
        self.calls = 0

    async def authenticate(self, token: str) -> Principal:
        self.calls += 1
        principal = self.tokens.get(token)
        if principal is None:
            raise Unauthenticated("Invalid token")
        return principal


class MemorySink:
    def __init__(self, fail: bool = False) -> None:
        self.items = []
        self.fail = fail

    async def write(self, item) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.items.append(item)


async def fake_store_probe() -> dict:
    return {"connected": True, "responseTime": 0.1, "interactions": 0}


def build_services(model_client: Optional[ModelClient] = None, **kwargs) -> Services:
    kwargs.setdefault("store_probe", fake_store_probe)
    return Services.build(
        model_client=model_client or FakeModelClient(),
        authenticator=kwargs.pop("authenticator", FakeAuthenticator()),
        realtime_auth=kwargs.pop("realtime_auth", JwtAuthenticator(JWT_TEST_SECRET)),
        interaction_sink=kwargs.pop("interaction_sink", MemorySink()),
        **kwargs,
    )


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def services(model_client):
    return build_services(model_client)


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def jwt_auth(services):
    return services.realtime_auth
