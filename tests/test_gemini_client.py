import httpx
import pytest

from assessor import gemini_client
from assessor.errors import UpstreamFailed, UpstreamRateLimited
from assessor.gemini_client import GeminiClient, OpenRouterFallback


@pytest.fixture(autouse=True)
def _ai_studio(monkeypatch):
	monkeypatch.setattr(gemini_client.settings, "gemini_provider", "ai_studio")
	monkeypatch.setattr(gemini_client.settings, "openrouter_api_key", None)


def _client(handler):
	return GeminiClient("g-key", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _candidate(text):
	return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.mark.anyio
async def test_generate_returns_candidate_text():
	seen = []

	def handler(request):
		seen.append(request)
		return httpx.Response(200, json=_candidate("Coherence and Clarity: 8"))

	client = _client(handler)
	assert await client.generate("Evaluate this", temperature=0.7, max_output_tokens=800) == "Coherence and Clarity: 8"
	assert seen[0].url.params["key"] == "g-key"
	body = seen[0].read()
	assert b'"maxOutputTokens":800' in body.replace(b" ", b"")
	await client.aclose()


@pytest.mark.anyio
async def test_rate_limit_is_classified():
	client = _client(lambda request: httpx.Response(429, json={"error": {"code": 429}}))
	with pytest.raises(UpstreamRateLimited):
		await client.generate("Evaluate this")


@pytest.mark.anyio
async def test_server_error_is_upstream_failure():
	client = _client(lambda request: httpx.Response(500, text="internal"))
	with pytest.raises(UpstreamFailed):
		await client.generate("Evaluate this")


@pytest.mark.anyio
async def test_unexpected_envelope_is_upstream_failure():
	client = _client(lambda request: httpx.Response(200, json={"candidates": []}))
	with pytest.raises(UpstreamFailed, match="Unexpected Gemini response"):
		await client.generate("Evaluate this")


@pytest.mark.anyio
async def test_openrouter_fallback():
	fallback_requests = []

	def handler(request):
		fallback_requests.append(request)
		return httpx.Response(200, json={"choices": [{"message": {"content": "fallback text"}}]})

	fallback = OpenRouterFallback("or-key", timeout=5, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
	primary = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503, text="overloaded")))
	client = GeminiClient("g-key", client=primary, fallback=fallback)
	assert await client.generate("Evaluate this", max_output_tokens=800) == "fallback text"
	assert fallback_requests[0].headers["Authorization"] == "Bearer or-key"
	assert b"max_tokens" in fallback_requests[0].read()
	await client.aclose()


@pytest.mark.anyio
async def test_no_fallback_surfaces_primary_error():
	client = _client(lambda request: httpx.Response(503, text="overloaded"))
	assert client.fallback is None
	with pytest.raises(UpstreamFailed, match="Gemini"):
		await client.generate("Evaluate this")


def test_missing_key_is_rejected(monkeypatch):
	monkeypatch.setattr(gemini_client.settings, "gemini_api_key", None)
	with pytest.raises(ValueError):
		GeminiClient()


@pytest.mark.anyio
async def test_rate_limit_survives_failed_fallback():
	fallback = OpenRouterFallback(
		"or-key",
		timeout=5,
		client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="internal"))),
	)
	primary = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(429, json={"error": {"code": 429}})))
	client = GeminiClient("g-key", client=primary, fallback=fallback)
	with pytest.raises(UpstreamRateLimited) as excinfo:
		await client.generate("Evaluate this")
	assert isinstance(excinfo.value.__cause__, UpstreamFailed)
	await client.aclose()


@pytest.mark.anyio
async def test_server_error_with_failed_fallback_is_upstream_failure():
	fallback = OpenRouterFallback(
		"or-key",
		timeout=5,
		client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="internal"))),
	)
	primary = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503, text="overloaded")))
	client = GeminiClient("g-key", client=primary, fallback=fallback)
	with pytest.raises(UpstreamFailed, match="OpenRouter"):
		await client.generate("Evaluate this")
