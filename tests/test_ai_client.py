import asyncio
import json

import httpx
import pytest

from backend.academy.ai_client import (
    AIAnalysisClient,
    AIProviderError,
    AIRateLimitedError,
    AnalysisRequest,
    GeminiProvider,
    OpenAIProvider,
    build_ai_client,
    extract_json_object,
)
from backend.academy.analysis import aggregate_attempt
from backend.academy.grading import normalize_questions
from backend.academy.settings import Settings

from conftest import AI_RESPONSE, ANSWERS, QUESTIONS, FakeProvider


def _request():
    score = aggregate_attempt("att-1", "stu-1", "exam-1", ANSWERS, normalize_questions(QUESTIONS))
    return AnalysisRequest(prompt="analyse", student_name="김민지", score=score)


def _gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _openai_body(text):
    return {"choices": [{"message": {"content": text}}]}


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _scripted(responses, seen):
    """MockTransport handler replaying (status, body) pairs; the last one repeats."""
    queue = list(responses)

    def handler(request):
        seen.append(request)
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status, json=body)

    return handler


def test_extract_json_object_variants():
    payload = json.dumps(AI_RESPONSE, ensure_ascii=False)
    assert extract_json_object(payload) == AI_RESPONSE
    assert extract_json_object(f"```json\n{payload}\n```") == AI_RESPONSE
    assert extract_json_object(f"분석 결과입니다:\n{payload}\n감사합니다.") == AI_RESPONSE
    for bad in ("", "   ", "no json here", "[1, 2, 3]", "{broken"):
        with pytest.raises(AIProviderError):
            extract_json_object(bad)


def test_gemini_retries_with_exponential_backoff():
    seen = []
    fenced = "```json\n" + json.dumps(AI_RESPONSE, ensure_ascii=False) + "\n```"
    transport = httpx.MockTransport(_scripted([(503, {}), (503, {}), (200, _gemini_body(fenced))], seen))
    gemini = GeminiProvider("test-key", transport=transport)
    sleep = Recorder()
    client = AIAnalysisClient([gemini], sleep=sleep)

    result = asyncio.run(client.analyze(_request()))

    assert result.provider == "gemini"
    assert result.data["propensityType"] == "도전적 성장형"
    assert sleep.delays == [1.0, 2.0]
    assert len(seen) == 3
    assert seen[0].url.params["key"] == "test-key"
    body = json.loads(seen[0].content)
    assert body["contents"][0]["parts"][0]["text"] == "analyse"
    assert body["generationConfig"]["responseMimeType"] == "application/json"
    asyncio.run(client.aclose())


def test_vertex_sends_key_in_header():
    seen = []
    transport = httpx.MockTransport(_scripted([(200, _gemini_body(json.dumps(AI_RESPONSE)))], seen))
    gemini = GeminiProvider(
        "vertex-key", provider="vertex", vertex_region="asia-northeast3", vertex_project="academy", transport=transport
    )
    asyncio.run(gemini.complete("hello"))
    request = seen[0]
    assert request.headers["x-goog-api-key"] == "vertex-key"
    assert "key" not in request.url.params
    assert request.url.host == "asia-northeast3-aiplatform.googleapis.com"
    assert "/projects/academy/" in request.url.path


def test_malformed_json_is_retried():
    provider = FakeProvider(["I cannot answer in JSON", json.dumps(AI_RESPONSE)])
    sleep = Recorder()
    client = AIAnalysisClient([provider], sleep=sleep)
    result = asyncio.run(client.analyze(_request()))
    assert result.provider == "gemini"
    assert provider.calls == 2
    assert sleep.delays == [1.0]


def test_falls_back_to_openai_then_succeeds():
    seen = []
    gemini = FakeProvider([AIProviderError("boom")])
    transport = httpx.MockTransport(_scripted([(200, _openai_body(json.dumps(AI_RESPONSE)))], seen))
    openai = OpenAIProvider("sk-test", model="gpt-test", transport=transport)
    client = AIAnalysisClient([gemini, openai], sleep=Recorder())

    result = asyncio.run(client.analyze(_request()))

    assert result.provider == "openai"
    assert gemini.calls == 3
    assert len(seen) == 1
    assert seen[0].headers["authorization"] == "Bearer sk-test"
    body = json.loads(seen[0].content)
    assert body["model"] == "gpt-test"
    assert body["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in body["messages"]] == ["system", "user"]


def test_non_transient_error_skips_retries():
    seen = []
    transport = httpx.MockTransport(_scripted([(401, {"error": "bad key"})], seen))
    gemini = GeminiProvider("bad", transport=transport)
    sleep = Recorder()
    client = AIAnalysisClient([gemini], sleep=sleep)
    result = asyncio.run(client.analyze(_request()))
    assert len(seen) == 1
    assert sleep.delays == []
    assert result.provider == "fallback"


def test_unreachable_providers_use_local_strategy():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    gemini = GeminiProvider("k", transport=httpx.MockTransport(refuse))
    openai = OpenAIProvider("k", transport=httpx.MockTransport(refuse))
    client = AIAnalysisClient([gemini, openai], sleep=Recorder())

    result = asyncio.run(client.analyze(_request()))

    assert result.provider == "fallback"
    assert result.data["overallSummary"].startswith("김민지 학생은")
    assert "문학에서 보완이 필요합니다." in result.data["overallSummary"]
    assert result.data["propensityType"] == "균형 잡힌 발전형"


def test_rate_limit_surfaces_after_retries():
    seen = []
    gemini = GeminiProvider("k", transport=httpx.MockTransport(_scripted([(429, {})], seen)))
    openai = FakeProvider([json.dumps(AI_RESPONSE)], name="openai")
    sleep = Recorder()
    client = AIAnalysisClient([gemini, openai], sleep=sleep)

    with pytest.raises(AIRateLimitedError):
        asyncio.run(client.analyze(_request()))

    assert len(seen) == 3
    assert sleep.delays == [1.0, 2.0]
    assert openai.calls == 0


def test_rate_limit_then_success_recovers():
    seen = []
    gemini = GeminiProvider("k", transport=httpx.MockTransport(_scripted([(429, {}), (200, _gemini_body(json.dumps(AI_RESPONSE)))], seen)))
    client = AIAnalysisClient([gemini], sleep=Recorder())
    result = asyncio.run(client.analyze(_request()))
    assert result.provider == "gemini"
    assert len(seen) == 2


def test_no_providers_goes_straight_to_local():
    client = AIAnalysisClient([])
    result = asyncio.run(client.analyze(_request()))
    assert result.provider == "fallback"
    assert client.provider_names == []


def test_build_ai_client_from_settings():
    cfg = Settings(GEMINI_API_KEY="g", OPENAI_API_KEY="o", AI_MAX_ATTEMPTS=5)
    client = build_ai_client(cfg)
    assert client.provider_names == ["gemini", "openai"]
    assert client.max_attempts == 5
    asyncio.run(client.aclose())

    assert build_ai_client(Settings(GEMINI_API_KEY="", OPENAI_API_KEY="")).provider_names == []


def test_provider_requires_key():
    with pytest.raises(ValueError):
        GeminiProvider("")
    with pytest.raises(ValueError):
        OpenAIProvider("")
