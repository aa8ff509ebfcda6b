from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from .errors import UpstreamFailed
from .normalizer import normalize
from .retry import RetryPolicy, default_retry_policy
from .schemas import Category, GenerationResult
from .settings import settings


logger = logging.getLogger(__name__)

Upstream = Callable[[Category], Awaitable[str]]


@dataclass
class _CacheEntry:
	value: GenerationResult
	expires_at: float


class GenerationCache:
	"""Per-process TTL cache plus the in-flight markers, both keyed by category.

	Every method is synchronous, so on the event loop each call is atomic with
	respect to other coroutines; no lock is needed. One instance is built at
	startup and handed to the deduplicator.
	"""

	def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
		self.ttl_seconds = ttl_seconds
		self._clock = clock
		self._entries: Dict[str, _CacheEntry] = {}
		self._inflight: Dict[str, asyncio.Future] = {}

	def get(self, key: str) -> Optional[GenerationResult]:
		entry = self._entries.get(key)
		if entry is None:
			return None
		if self._clock() >= entry.expires_at:
			del self._entries[key]
			logger.info("Cache expired for generation: %s", key)
			return None
		return entry.value

	def put(self, key: str, value: GenerationResult) -> None:
		self._entries[key] = _CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)

	def inflight(self, key: str) -> Optional[asyncio.Future]:
		return self._inflight.get(key)

	def begin(self, key: str, handle: asyncio.Future) -> None:
		self._inflight[key] = handle

	def settle(self, key: str, handle: Optional[asyncio.Future]) -> None:
		# Only the handle that owns the marker may clear it
		if self._inflight.get(key) is handle:
			del self._inflight[key]

	def inflight_count(self) -> int:
		return len(self._inflight)


class GenerationDeduplicator:
	"""Single-flight, cached, retried generation per category.

	Concurrent callers for the same category share one upstream call and get
	the same result object or the same exception. A caller that gives up
	waiting does not cancel the shared call for the others.
	"""

	def __init__(
		self,
		upstream: Upstream,
		cache: GenerationCache,
		*,
		retry_policy: Optional[RetryPolicy] = None,
		timeout_seconds: Optional[float] = None,
		normalizer: Callable[[str], GenerationResult] = normalize,
	) -> None:
		self.upstream = upstream
		self.cache = cache
		self.retry_policy = retry_policy or default_retry_policy()
		self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.generation_timeout_seconds
		self.normalizer = normalizer

	async def generate(self, category: Category) -> GenerationResult:
		key = category.key
		cached = self.cache.get(key)
		if cached is not None:
			logger.info("Using cached generation for %s", key)
			return cached.model_copy(update={"from_cache": True})
		handle = self.cache.inflight(key)
		if handle is None:
			handle = asyncio.ensure_future(self._produce(category))
			self.cache.begin(key, handle)
			handle.add_done_callback(lambda done: self._on_settled(key, done))
		else:
			logger.info("Generation already in progress for %s, attaching", key)
		return await asyncio.shield(handle)

	async def _produce(self, category: Category) -> GenerationResult:
		key = category.key
		try:
			raw = await self.retry_policy.run(lambda: self._call_upstream(category))
			result = self.normalizer(raw)
			self.cache.put(key, result)
			return result
		finally:
			self.cache.settle(key, asyncio.current_task())

	async def _call_upstream(self, category: Category) -> str:
		try:
			return await asyncio.wait_for(self.upstream(category), timeout=self.timeout_seconds)
		except asyncio.TimeoutError as exc:
			raise UpstreamFailed(f"generation for {category.key} timed out after {self.timeout_seconds}s") from exc

	def _on_settled(self, key: str, handle: asyncio.Future) -> None:
		self.cache.settle(key, handle)
		if handle.cancelled():
			return
		# Mark the error as retrieved even when every waiter has gone away
		exc = handle.exception()
		if exc is not None:
			logger.warning("Generation for %s failed: %s", key, exc)
