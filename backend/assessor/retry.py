"""Retry policy for upstream generation calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .errors import UpstreamRateLimited
from .settings import settings


T = TypeVar("T")
logger = logging.getLogger(__name__)


def linear_backoff(base_seconds: float) -> Callable[[int], float]:
	"""Delay grows with the attempt that just failed: base, 2*base, ..."""
	def _delay(attempt: int) -> float:
		return base_seconds * attempt
	return _delay


@dataclass
class RetryPolicy:
	"""Retries only the error types in ``retry_on``; anything else is raised at once.

	``sleep`` is injectable so tests can observe the backoff without waiting.
	"""

	max_attempts: int = 2
	backoff: Callable[[int], float] = field(default_factory=lambda: linear_backoff(2.0))
	retry_on: Tuple[Type[BaseException], ...] = (UpstreamRateLimited,)
	sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

	async def run(self, func: Callable[[], Awaitable[T]]) -> T:
		attempt = 0
		while True:
			attempt += 1
			try:
				return await func()
			except self.retry_on as exc:
				if attempt >= self.max_attempts:
					logger.error("Giving up after %d/%d attempts: %s", attempt, self.max_attempts, exc)
					raise
				delay = self.backoff(attempt)
				logger.warning("Attempt %d/%d rate limited, retrying in %.1fs: %s", attempt, self.max_attempts, delay, exc)
				await self.sleep(delay)


def default_retry_policy() -> RetryPolicy:
	return RetryPolicy(
		max_attempts=settings.generation_max_attempts,
		backoff=linear_backoff(settings.generation_backoff_seconds),
	)
