from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, Optional, Tuple
from .errors import UpstreamError, UpstreamFailed, UpstreamRateLimited
from .settings import settings


logger = logging.getLogger(__name__)


def _classify(err: Exception, source: str) -> UpstreamError:
	if isinstance(err, httpx.HTTPStatusError) and err.response.status_code == 429:
		return UpstreamRateLimited(f"{source} rate limited the request")
	if isinstance(err, httpx.TimeoutException):
		return UpstreamFailed(f"{source} timed out")
	return UpstreamFailed(f"{source} call failed: {err}")


def gemini_endpoint(model: str) -> Tuple[str, bool]:
	"""generateContent URL for the configured provider, and whether the key goes in the query string."""
	if settings.gemini_provider == "vertex":
		region = settings.vertex_region
		project = settings.vertex_project or "placeholder-project"
		# Vertex AI Express takes the API key as a header
		return (
			f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{model}:generateContent",
			False,
		)
	return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent", True


class OpenRouterFallback:
	"""Chat-completions call used when Gemini gives up."""

	def __init__(self, api_key: str, *, timeout: float, client: Optional[httpx.AsyncClient] = None) -> None:
		self.model = settings.openrouter_model
		self.url = settings.openrouter_base_url
		headers = {
			"Authorization": f"Bearer {api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		self.headers = {k: v for k, v in headers.items() if v}
		self._client = client or httpx.AsyncClient(timeout=timeout)

	async def complete(self, prompt: str, *, temperature: Optional[float], max_tokens: Optional[int]) -> str:
		body: Dict[str, Any] = {"model": self.model, "messages": [{"role": "user", "content": prompt}]}
		if temperature is not None:
			body["temperature"] = temperature
		if max_tokens is not None:
			body["max_tokens"] = max_tokens
		try:
			r = await self._client.post(self.url, headers=self.headers, json=body)
			r.raise_for_status()
		except (httpx.HTTPStatusError, httpx.RequestError) as err:
			raise _classify(err, "OpenRouter") from err
		try:
			return r.json()["choices"][0]["message"]["content"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise UpstreamFailed(f"Unexpected OpenRouter response: {r.text[:200]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()


class GeminiClient:
	"""Text-generation collaborator: ``generate(prompt) -> raw text``.

	Raises ``UpstreamRateLimited`` on HTTP 429 and ``UpstreamFailed`` for every
	other failure. When an OpenRouter key is configured, a failed Gemini call
	is retried once against OpenRouter before giving up.
	"""

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
		client: Optional[httpx.AsyncClient] = None,
		fallback: Optional[OpenRouterFallback] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.url, self._key_in_query = gemini_endpoint(self.model)
		timeout = timeout if timeout is not None else settings.generation_timeout_seconds
		self._client = client or httpx.AsyncClient(timeout=timeout)
		if fallback is None and settings.openrouter_api_key:
			fallback = OpenRouterFallback(settings.openrouter_api_key, timeout=timeout)
		self.fallback = fallback

	async def generate(self, prompt: str, *, temperature: Optional[float] = None, max_output_tokens: Optional[int] = None) -> str:
		config: Dict[str, Any] = {}
		if temperature is not None:
			config["temperature"] = temperature
		if max_output_tokens is not None:
			config["maxOutputTokens"] = max_output_tokens
		body: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		if config:
			body["generationConfig"] = config
		try:
			return await self._generate_content(body)
		except UpstreamError as primary_error:
			if self.fallback is None:
				raise
			logger.warning("Gemini call failed (%s), falling back to OpenRouter", primary_error)
			try:
				return await self.fallback.complete(prompt, temperature=temperature, max_tokens=max_output_tokens)
			except UpstreamError as fallback_error:
				# A Gemini rate limit outranks a generic fallback failure
				if isinstance(primary_error, UpstreamRateLimited) and not isinstance(fallback_error, UpstreamRateLimited):
					logger.warning("OpenRouter fallback failed too (%s)", fallback_error)
					raise primary_error from fallback_error
				raise

	async def _generate_content(self, body: Dict[str, Any]) -> str:
		if self._key_in_query:
			params, headers = {"key": self.api_key}, {}
		else:
			params, headers = {}, {"x-goog-api-key": self.api_key}
		try:
			r = await self._client.post(self.url, params=params, headers=headers, json=body)
			r.raise_for_status()
		except (httpx.HTTPStatusError, httpx.RequestError) as err:
			raise _classify(err, "Gemini") from err
		try:
			return r.json()["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise UpstreamFailed(f"Unexpected Gemini response: {r.text[:200]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()
		if self.fallback is not None:
			await self.fallback.aclose()
