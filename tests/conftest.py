import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.ai_feature.llm_gateway import LLMGateway
from app.ai_feature.schema_introspector import SchemaIntrospector
from app.ai_feature.service import QueryService, get_query_service
from app.core.config import settings
from app.core.database import DatastoreError, get_datastore

LLM_URL = "https://llm.test/v1/chat/completions"


class ScriptedLLM:
    """
    MockTransport handler that replays a script of completion replies.

    Each step is one of:
        - str: 200 with that text as choices[0].message.content
        - int: bare response with that status code
        - Exception: raised as a transport failure
    """

    def __init__(self, *steps: Any):
        self.steps = list(steps)
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if not self.steps:
            raise AssertionError("LLM called more times than scripted")
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        if isinstance(step, int):
            return httpx.Response(step, text=f"status {step}")
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": step}}]}
        )

    @property
    def prompts(self) -> List[str]:
        return [r["messages"][0]["content"] for r in self.requests]


class FakeDatastore:
    """exec_sql stand-in: canned payloads per query, everything else -> default."""

    def __init__(self, default: Any = None, responses: Optional[Dict[str, Any]] = None):
        self.default = default
        self.responses = responses or {}
        self.executed: List[str] = []
        self.closed = False

    async def execute(self, query: str) -> Any:
        self.executed.append(query)
        for fragment, payload in self.responses.items():
            if fragment in query:
                if isinstance(payload, Exception):
                    raise payload
                return payload
        if isinstance(self.default, Exception):
            raise self.default
        return self.default

    async def aclose(self) -> None:
        self.closed = True

    @property
    def data_queries(self) -> List[str]:
        return [q for q in self.executed if "information_schema" not in q]


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


def make_gateway(script: ScriptedLLM, sleep=None, **kwargs) -> LLMGateway:
    options = {"api_key": "test-key", "model": "mistral-small-latest"}
    options.update(kwargs)
    return LLMGateway(
        api_url=LLM_URL,
        transport=httpx.MockTransport(script),
        sleep=sleep or SleepRecorder(),
        **options,
    )


def make_service(script: ScriptedLLM, datastore: FakeDatastore, **kwargs) -> QueryService:
    return QueryService(
        gateway=make_gateway(script, **kwargs),
        datastore=datastore,
        introspector=SchemaIntrospector(datastore, []),
    )


@pytest.fixture
def members_columns():
    return [{"json_agg": [{"column_name": c} for c in ("id", "name", "email", "joined_at")]}]


@pytest.fixture
def datastore(members_columns):
    return FakeDatastore(
        default=[{"count": 42}],
        responses={"information_schema": members_columns},
    )


@pytest.fixture
def failing_datastore():
    return FakeDatastore(default=DatastoreError('42P01 relation "members" does not exist'))


# Client wired to a scripted LLM and a fake datastore
@pytest_asyncio.fixture(scope="function")
async def client_factory():
    clients = []

    async def build(script: ScriptedLLM, datastore: FakeDatastore, **kwargs):
        app.dependency_overrides[get_query_service] = lambda: make_service(
            script, datastore, **kwargs
        )
        app.dependency_overrides[get_datastore] = lambda: datastore
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield build

    for ac in clients:
        await ac.aclose()
    app.dependency_overrides.clear()


# Token signed the way the identity provider signs access tokens
@pytest.fixture
def auth_headers(monkeypatch):
    monkeypatch.setattr(settings, "SECRET_KEY", "test-jwt-secret")
    token = jwt.encode(
        {
            "sub": "7f0c2a4e-0000-4000-8000-000000000001",
            "email": "admin@simbah.test",
            "role": "authenticated",
            "aud": "authenticated",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
        },
        "test-jwt-secret",
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}
