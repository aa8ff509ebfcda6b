from __future__ import annotations
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from .errors import EligibilityLookupFailed
from .schemas import Category, CompletionRecord, Eligibility, Workflow
from .settings import settings


logger = logging.getLogger(__name__)

DAY = timedelta(days=1)


class RecordLookup(Protocol):
	async def find_latest(self, subject_id: str, workflow: Workflow, category: Optional[Category] = None) -> Optional[CompletionRecord]:
		...


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def cooldown_for(workflow: Workflow) -> timedelta:
	if workflow is Workflow.PRESENTATION:
		return timedelta(hours=settings.presentation_cooldown_hours)
	return timedelta(days=settings.writing_cooldown_days)


def days_remaining(next_available_at: datetime, now: datetime) -> int:
	return max(0, math.ceil((next_available_at - now) / DAY))


class EligibilityTracker:
	"""Decides whether a subject may act on a category right now.

	The window is derived from the latest completion record; nothing about it
	is stored. Lookup failures fail open: the cooldown is a convenience limit,
	so an unavailable store must not lock learners out.
	"""

	def __init__(self, records: RecordLookup, workflow: Workflow, cooldown: Optional[timedelta] = None, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self.records = records
		self.workflow = workflow
		self.cooldown = cooldown if cooldown is not None else cooldown_for(workflow)
		self._clock = clock

	async def latest(self, subject_id: str, category: Optional[Category] = None) -> Optional[CompletionRecord]:
		"""Most recent record for the subject in this workflow, or None.

		None also covers a failed lookup, so callers treat an unreachable store
		as "nothing on record".
		"""
		try:
			return await self._latest(subject_id, category)
		except EligibilityLookupFailed as exc:
			scope = category.key if category is not None else "*"
			logger.warning("Eligibility lookup failed for %s/%s/%s, allowing: %s", subject_id, self.workflow.value, scope, exc)
			return None

	async def check(self, subject_id: str, category: Category) -> Eligibility:
		last = await self.latest(subject_id, category)
		if last is None:
			return Eligibility(available=True)
		now = self._clock()
		next_available_at = last.completed_at + self.cooldown
		if now >= next_available_at:
			return Eligibility(available=True, last_record=last)
		return Eligibility(
			available=False,
			next_available_at=next_available_at,
			days_remaining=days_remaining(next_available_at, now),
			last_record=last,
		)

	async def _latest(self, subject_id: str, category: Optional[Category]) -> Optional[CompletionRecord]:
		try:
			return await self.records.find_latest(subject_id, self.workflow, category)
		except Exception as exc:
			raise EligibilityLookupFailed(str(exc)) from exc
