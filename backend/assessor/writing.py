from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from .eligibility import EligibilityTracker
from .errors import CooldownActive, UpstreamFailed
from .normalizer import CRITERIA, normalize
from .retry import RetryPolicy, default_retry_policy
from .schemas import Category, CompletionRecord, CriterionScore, GenerationResult, Workflow
from .settings import settings


logger = logging.getLogger(__name__)

MAX_ANSWER_CHARS = 8000

TextGenerator = Callable[..., Awaitable[str]]


class RecordStore(Protocol):
	async def insert(self, record: CompletionRecord) -> CompletionRecord:
		...

	async def list_for_subject(self, subject_id: str, workflow: Optional[Workflow] = None) -> List[CompletionRecord]:
		...


_LEVEL_DESCRIPTORS: Dict[str, str] = {
	"a1": "Can write simple phrases and sentences about themselves and imaginary people.",
	"a2": "Can write a series of simple phrases and sentences linked with simple connectors.",
	"b1": "Can write straightforward connected texts on familiar subjects.",
	"b2": "Can write clear, detailed texts on various subjects related to their field of interest.",
	"c1": "Can write clear, well-structured texts on complex subjects.",
	"c2": "Can write complex texts with clarity and fluency in an appropriate and effective style.",
}


def _criteria_block() -> str:
	return "\n".join(f"{i}. {name}" for i, name in enumerate(CRITERIA, start=1))


def build_benchmark_prompt(category: Category) -> str:
	level = category.level.upper()
	return (
		"You are a university-level writing assessment expert working with CEFR standards.\n"
		f"Describe what a typical {category.language} writing response at CEFR level {level} achieves "
		f"({_LEVEL_DESCRIPTORS[category.level]}) by evaluating such a typical response.\n"
		"Rate each of the following 5 criteria on a scale of 1-10, where 1 is very poor and 10 is excellent:\n\n"
		f"{_criteria_block()}\n\n"
		"Write each criterion as 'Name: score' followed by one or two sentences of comment.\n"
		"Then give 'Overall percentage score: N', 'Overall feedback:' with a few sentences,\n"
		"and 'Recommendations:' as a numbered list of three specific, actionable steps for a learner at this level."
	)


def build_evaluation_prompt(question: str, answer: str) -> str:
	return (
		"You are a university-level writing assessment expert. Please evaluate the following writing sample in response to the given prompt.\n"
		"Rate each of the following 5 criteria on a scale of 1-10, where 1 is very poor and 10 is excellent:\n\n"
		f"{_criteria_block()}\n\n"
		f"Prompt: \"{question}\"\n\n"
		f"Student Answer: \"{answer}\"\n\n"
		"Please provide:\n"
		"1. A numeric score (1-10) for each of the 5 criteria, written as 'Name: score'\n"
		"2. Brief comments on strengths and areas for improvement for each criteria\n"
		"3. An overall percentage score out of 100\n"
		"4. A few sentences of overall feedback, introduced by 'Overall feedback:'\n"
		"5. Three specific, actionable recommendations, introduced by 'Recommendations:'"
	)


def generation_upstream(generate: TextGenerator) -> Callable[[Category], Awaitable[str]]:
	"""Adapt a text generator to the deduplicator's ``category -> raw text`` contract."""
	async def _upstream(category: Category) -> str:
		return await generate(build_benchmark_prompt(category), temperature=0.7, max_output_tokens=800)
	return _upstream


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def score_from_criteria(criteria: List[CriterionScore]) -> float:
	# Five criteria on 0-20 add up to a percentage
	return float(min(100, round(sum(c.score for c in criteria))))


class WritingAssessments:
	"""Evaluation, cooldown-gated submission and history for the writing workflow."""

	def __init__(
		self,
		generate: TextGenerator,
		records: RecordStore,
		tracker: EligibilityTracker,
		*,
		retry_policy: Optional[RetryPolicy] = None,
		timeout_seconds: Optional[float] = None,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self._generate = generate
		self.records = records
		self.tracker = tracker
		self.retry_policy = retry_policy or default_retry_policy()
		self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.generation_timeout_seconds
		self._clock = clock

	async def evaluate(self, question: str, answer: str) -> GenerationResult:
		question = (question or "").strip()
		answer = (answer or "").strip()
		if not question or not answer:
			raise ValueError("Question and answer are required")
		if len(answer) > MAX_ANSWER_CHARS:
			answer = answer[:MAX_ANSWER_CHARS]
		prompt = build_evaluation_prompt(question, answer)
		raw = await self.retry_policy.run(lambda: self._call(prompt))
		return normalize(raw)

	async def _call(self, prompt: str) -> str:
		try:
			return await asyncio.wait_for(self._generate(prompt, temperature=0.7, max_output_tokens=800), timeout=self.timeout_seconds)
		except asyncio.TimeoutError as exc:
			raise UpstreamFailed(f"evaluation timed out after {self.timeout_seconds}s") from exc

	async def submit(
		self,
		subject_id: str,
		category: Category,
		prompt: str,
		response: str,
		criteria: List[CriterionScore],
		feedback: Optional[str] = None,
	) -> CompletionRecord:
		eligibility = await self.tracker.check(subject_id, category)
		if not eligibility.available:
			raise CooldownActive(eligibility.next_available_at)
		score = score_from_criteria(criteria)
		record = CompletionRecord(
			subject_id=subject_id,
			workflow=Workflow.WRITING,
			category=category,
			payload={"prompt": prompt, "response": response},
			score=score,
			criterion_scores=criteria,
			feedback=feedback,
			completed_at=self._clock(),
		)
		saved = await self.records.insert(record)
		logger.info("Writing assessment saved for %s (%s), score %s", subject_id, category.key, score)
		return saved

	async def history(self, subject_id: str) -> List[CompletionRecord]:
		return await self.records.list_for_subject(subject_id, Workflow.WRITING)
