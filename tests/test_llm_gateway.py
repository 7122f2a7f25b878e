import httpx
import pytest

from app.ai_feature.llm_gateway import LLMResponseError, LLMRetryExhaustedError
from conftest import LLM_URL, ScriptedLLM, SleepRecorder, make_gateway


@pytest.mark.asyncio
async def test_three_rate_limits_then_success_with_four_attempts():
    script = ScriptedLLM(429, 429, 429, "SELECT 1 FROM members")
    sleep = SleepRecorder()
    gateway = make_gateway(script, sleep=sleep, max_retries=4, initial_delay_ms=1000)

    content = await gateway.complete("prompt", temperature=0)

    assert content == "SELECT 1 FROM members"
    assert len(script.requests) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_three_rate_limits_exhaust_three_attempts():
    script = ScriptedLLM(429, 429, 429, "never reached")
    sleep = SleepRecorder()
    gateway = make_gateway(script, sleep=sleep, max_retries=3, initial_delay_ms=1000)

    with pytest.raises(LLMRetryExhaustedError) as exc_info:
        await gateway.complete("prompt", temperature=0)

    assert str(exc_info.value) == f"Failed to fetch from {LLM_URL} after 3 attempts."
    assert len(script.requests) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_backoff_starts_at_initial_delay():
    script = ScriptedLLM(429, 429, "ok")
    sleep = SleepRecorder()
    gateway = make_gateway(script, sleep=sleep, initial_delay_ms=250)

    await gateway.complete("prompt", temperature=0)

    assert sleep.delays == [0.25, 0.5]


@pytest.mark.asyncio
async def test_network_error_is_retried():
    script = ScriptedLLM(httpx.ConnectError("connection refused"), "SELECT 1 FROM orders")
    sleep = SleepRecorder()
    gateway = make_gateway(script, sleep=sleep)

    assert await gateway.complete("prompt", temperature=0) == "SELECT 1 FROM orders"
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_other_error_status_is_not_retried():
    script = ScriptedLLM(500)
    sleep = SleepRecorder()
    gateway = make_gateway(script, sleep=sleep)

    response = await gateway.post({"model": "m", "messages": []})

    assert response.status_code == 500
    assert len(script.requests) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_error_status_raises_from_complete():
    script = ScriptedLLM(401)
    gateway = make_gateway(script)

    with pytest.raises(LLMResponseError) as exc_info:
        await gateway.complete("prompt", temperature=0)

    assert exc_info.value.status_code == 401
    assert exc_info.value.body == "status 401"


@pytest.mark.asyncio
async def test_chat_request_shape():
    script = ScriptedLLM("hello")
    gateway = make_gateway(script, model="mistral-small-latest")

    await gateway.complete("You are a SQL generator", temperature=0.2)

    assert script.requests == [
        {
            "model": "mistral-small-latest",
            "messages": [{"role": "system", "content": "You are a SQL generator"}],
            "temperature": 0.2,
        }
    ]


@pytest.mark.asyncio
async def test_missing_content_returns_empty_string():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    gateway = make_gateway(ScriptedLLM())
    gateway._transport = httpx.MockTransport(handler)

    assert await gateway.complete("prompt", temperature=0) == ""
