import pytest

from assessor.errors import UpstreamFailed, UpstreamRateLimited
from assessor.retry import RetryPolicy, linear_backoff


class _Flaky:
	def __init__(self, *outcomes):
		self.outcomes = list(outcomes)
		self.calls = 0

	async def __call__(self):
		self.calls += 1
		outcome = self.outcomes.pop(0)
		if isinstance(outcome, BaseException):
			raise outcome
		return outcome


def _policy(sleeps, max_attempts=2):
	async def sleep(delay):
		sleeps.append(delay)
	return RetryPolicy(max_attempts=max_attempts, backoff=linear_backoff(2.0), sleep=sleep)


@pytest.mark.anyio
async def test_rate_limit_then_success():
	sleeps = []
	func = _Flaky(UpstreamRateLimited("429"), "ok")
	assert await _policy(sleeps).run(func) == "ok"
	assert func.calls == 2
	assert sleeps == [2.0]


@pytest.mark.anyio
async def test_gives_up_after_max_attempts():
	sleeps = []
	func = _Flaky(UpstreamRateLimited("429"), UpstreamRateLimited("429 again"))
	with pytest.raises(UpstreamRateLimited, match="again"):
		await _policy(sleeps).run(func)
	assert func.calls == 2
	assert sleeps == [2.0]


@pytest.mark.anyio
async def test_other_errors_are_not_retried():
	sleeps = []
	func = _Flaky(UpstreamFailed("500"), "unused")
	with pytest.raises(UpstreamFailed):
		await _policy(sleeps).run(func)
	assert func.calls == 1
	assert sleeps == []


@pytest.mark.anyio
async def test_backoff_grows_linearly():
	sleeps = []
	func = _Flaky(UpstreamRateLimited("a"), UpstreamRateLimited("b"), "ok")
	assert await _policy(sleeps, max_attempts=3).run(func) == "ok"
	assert sleeps == [2.0, 4.0]
