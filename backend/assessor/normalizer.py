"""
Response Normalizer
===================

Turns free-form evaluation text from the generation service into a bounded
``GenerationResult``. Everything here is pure: no I/O, no clock, no logging
side effects that change the outcome, so each branch can be tested on its own.

Scale reconciliation is a heuristic, not a protocol. Generators are asked for
1-10 criterion scores but sometimes answer on 0-20. If any parsed criterion
score is above 10 the whole generation is taken to be on 0-20 already;
otherwise every score is doubled. A generator that meant 0-20 but never
scored above 10 is therefore over-scored; that is the accepted trade-off.

The same assumption drives the overall score: a stated percentage above 100
is halved once.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple

from .errors import ParseFailed
from .schemas import CriterionScore, GenerationResult


logger = logging.getLogger(__name__)

CRITERIA: List[str] = [
	"Coherence and Clarity",
	"Organization and Structure",
	"Focus and Content Development",
	"Vocabulary and Word Choice",
	"Grammar and Conventions",
]

CRITERION_MAX = 20.0
OVERALL_MAX = 100
MIN_CONTENT_LENGTH = 40
MIN_RECOMMENDATIONS = 3
MAX_RECOMMENDATIONS = 5
FALLBACK_CRITERION_SCORE = 4.0
MAX_FEEDBACK_CHARS = 600

DEFAULT_OVERALL_FEEDBACK = (
	"The writing demonstrates various strengths and weaknesses across the evaluated criteria. "
	"Continue practicing to improve your writing skills."
)
FALLBACK_OVERALL_FEEDBACK = (
	"We could not produce a detailed evaluation this time. "
	"The scores below are a conservative placeholder; please try again later for a full assessment."
)

# (upper bound exclusive, recommendations); the last bucket catches everything >= 80
_CANNED_RECOMMENDATIONS: List[Tuple[int, List[str]]] = [
	(20, [
		"Start with basic sentence structure practice: subject + verb + object.",
		"Learn and practice using common vocabulary words in simple sentences.",
		"Focus on writing short, clear sentences before attempting paragraphs.",
		"Practice identifying and correcting basic grammar errors.",
		"Consider working with a tutor or taking a foundational writing course.",
	]),
	(40, [
		"Practice writing simple paragraphs with a clear topic sentence.",
		"Work on connecting sentences with basic transition words.",
		"Expand your vocabulary by reading texts at your level.",
		"Practice identifying and correcting common grammar errors.",
		"Try summarizing short articles to improve comprehension and writing skills.",
	]),
	(60, [
		"Focus on organizing your writing with clear introduction, body, and conclusion.",
		"Practice developing your ideas with supporting details and examples.",
		"Work on using a wider range of vocabulary appropriate to the topic.",
		"Review and practice more complex grammar structures.",
		"Analyze model essays to understand effective writing techniques.",
	]),
	(80, [
		"Work on creating more sophisticated paragraph structures with clear transitions.",
		"Practice incorporating more nuanced vocabulary to express complex ideas.",
		"Focus on developing more compelling arguments with stronger evidence.",
		"Review advanced grammar structures to eliminate recurring errors.",
		"Practice writing in different academic styles appropriate to your field.",
	]),
	(OVERALL_MAX + 1, [
		"Focus on refining your academic voice to achieve greater precision and impact.",
		"Work on incorporating more sophisticated rhetorical techniques in your writing.",
		"Practice writing more concise sentences without losing meaning or clarity.",
		"Develop more nuanced arguments that acknowledge counterpoints.",
		"Study advanced stylistic techniques used in published academic papers in your field.",
	]),
]

_NUMBER = r"(\d+(?:\.\d+)?)"
_SEP = r"[\s*:\-–—=(]*(?:score\b[\s*:=]*)?"

_CRITERION_PATTERNS = [
	re.compile(re.escape(label) + _SEP + _NUMBER + r"(?:\s*/\s*(?:10|20))?", re.IGNORECASE)
	for label in CRITERIA
]

_OVERALL_PATTERNS = [
	re.compile(r"overall\s+percentage\s+score(?:\s*\(?out\s+of\s+100\)?)?" + _SEP + _NUMBER, re.IGNORECASE),
	re.compile(r"overall\s+score(?:\s*\(?out\s+of\s+100\)?)?" + _SEP + _NUMBER, re.IGNORECASE),
	re.compile(_NUMBER + r"\s*%"),
]

_FEEDBACK_BOUNDARY = re.compile(r"\n\s*\n|overall\s+(?:percentage|score|feedback)|recommendations?\b", re.IGNORECASE)

_OVERALL_FEEDBACK = re.compile(
	r"overall\s+feedback\**" + _SEP + r"(.+?)(?=\n[^\n]*recommendations?\b|\Z)",
	re.IGNORECASE | re.DOTALL,
)

_RECOMMENDATIONS_HEADING = re.compile(
	r"^[ \t#>*\-\d.)]*(?:[A-Za-z,\-]+[ \t]+){0,4}recommendations?\b[^:\n]{0,30}:?[ \t*]*(.*)$",
	re.IGNORECASE | re.MULTILINE,
)

_NUMBERED_ITEM = re.compile(r"(?:^|\n)[ \t*]*\d+[.)][ \t]+(.+?)(?=\n[ \t*]*\d+[.)][ \t]+|\Z)", re.DOTALL)
_SENTENCE = re.compile(r"[^.!?]+[.!?]+")


def _clean(text: str) -> str:
	text = text.replace("**", "").replace("__", "")
	text = re.sub(r"\s+", " ", text)
	return text.strip(" \t\n-*:–—")


def _canned_for(overall_score: int) -> List[str]:
	for upper, recs in _CANNED_RECOMMENDATIONS:
		if overall_score < upper:
			return recs
	return _CANNED_RECOMMENDATIONS[-1][1]


def reconcile_scale(raw_scores: Sequence[float]) -> List[float]:
	"""Map raw criterion scores onto 0-20 using the doubling heuristic, then clamp."""
	if not raw_scores:
		return []
	factor = 1.0 if max(raw_scores) > 10 else 2.0
	return [min(CRITERION_MAX, max(0.0, score * factor)) for score in raw_scores]


def _criterion_feedback(text: str, match: re.Match, starts: List[int]) -> str:
	end = len(text)
	later = [s for s in starts if s > match.start()]
	if later:
		end = min(later)
	boundary = _FEEDBACK_BOUNDARY.search(text, match.end(), end)
	if boundary:
		end = boundary.start()
	feedback = _clean(text[match.end():end])
	# Drop a dangling list marker left behind by the next numbered criterion
	feedback = re.sub(r"\s*\d+[.)]?$", "", feedback).strip()
	return feedback[:MAX_FEEDBACK_CHARS]


def _extract_criteria(text: str) -> List[Tuple[str, Optional[float], str]]:
	matches = [pattern.search(text) for pattern in _CRITERION_PATTERNS]
	starts = [m.start() for m in matches if m]
	extracted = []
	for label, match in zip(CRITERIA, matches):
		if match is None:
			extracted.append((label, None, ""))
			continue
		extracted.append((label, float(match.group(1)), _criterion_feedback(text, match, starts)))
	return extracted


def _extract_stated_score(text: str) -> Optional[int]:
	for pattern in _OVERALL_PATTERNS:
		match = pattern.search(text)
		if match:
			return int(round(float(match.group(1))))
	return None


def _overall_from(stated: Optional[int], scores: Sequence[float]) -> int:
	if stated is not None:
		value = stated if stated <= OVERALL_MAX else round(stated / 2)
	else:
		value = round(sum(scores))
	return int(min(OVERALL_MAX, max(0, value)))


def _extract_overall_feedback(text: str) -> str:
	match = _OVERALL_FEEDBACK.search(text)
	if match:
		feedback = _clean(match.group(1))
		if feedback:
			return feedback[:MAX_FEEDBACK_CHARS * 2]
	return DEFAULT_OVERALL_FEEDBACK


def _recommendations_section(text: str) -> Optional[str]:
	match = _RECOMMENDATIONS_HEADING.search(text)
	if not match:
		return None
	section = (match.group(1) + text[match.end():]).strip()
	return section or None


# Recommendation extractors, tried in order; the first non-empty result wins.

def _split_numbered(section: Optional[str], text: str) -> List[str]:
	if not section:
		return []
	return [_clean(item) for item in _NUMBERED_ITEM.findall("\n" + section)]


def _split_lines(section: Optional[str], text: str) -> List[str]:
	if not section:
		return []
	lines = [_clean(line.lstrip(" \t-*•")) for line in section.splitlines()]
	lines = [line for line in lines if line]
	# A single line is one paragraph; leave it to the sentence splitter
	return lines if len(lines) > 1 else []


def _split_sentences(section: Optional[str], text: str) -> List[str]:
	if not section:
		return []
	return [_clean(s) for s in _SENTENCE.findall(section)]


def _is_score_line(sentence: str) -> bool:
	if any(p.search(sentence) for p in _CRITERION_PATTERNS):
		return True
	return any(p.search(sentence) for p in _OVERALL_PATTERNS)


def _split_whole_text(section: Optional[str], text: str) -> List[str]:
	sentences = [_clean(s) for s in _SENTENCE.findall(text)]
	return [s for s in sentences if len(s.split()) >= 4 and not _is_score_line(s)]


RECOMMENDATION_EXTRACTORS: List[Callable[[Optional[str], str], List[str]]] = [
	_split_numbered,
	_split_lines,
	_split_sentences,
	_split_whole_text,
]


def extract_recommendations(text: str) -> List[str]:
	section = _recommendations_section(text)
	for extractor in RECOMMENDATION_EXTRACTORS:
		items = [item for item in extractor(section, text) if item]
		if items:
			return items[:MAX_RECOMMENDATIONS]
	return []


def pad_recommendations(recommendations: List[str], overall_score: int) -> Tuple[List[str], bool]:
	"""Top up to the minimum with canned text; report whether any was used."""
	padded = list(recommendations)
	used_canned = False
	for canned in _canned_for(overall_score):
		if len(padded) >= MIN_RECOMMENDATIONS:
			break
		if canned not in padded:
			padded.append(canned)
			used_canned = True
	return padded, used_canned


def fallback_result() -> GenerationResult:
	scores = [CriterionScore(name=label, score=FALLBACK_CRITERION_SCORE, feedback="") for label in CRITERIA]
	overall = _overall_from(None, [c.score for c in scores])
	return GenerationResult(
		criterion_scores=scores,
		overall_score=overall,
		overall_feedback=FALLBACK_OVERALL_FEEDBACK,
		recommendations=list(_canned_for(overall)),
		provenance="fallback",
	)


def _parse(text: str) -> GenerationResult:
	if len(text.strip()) < MIN_CONTENT_LENGTH:
		raise ParseFailed("generation output too short")
	criteria = _extract_criteria(text)
	stated = _extract_stated_score(text)
	found = [score for _, score, _ in criteria if score is not None]
	if not found and stated is None:
		raise ParseFailed("no criterion or overall score found")

	rescaled = iter(reconcile_scale(found))
	criterion_scores = [
		CriterionScore(name=label, score=next(rescaled) if score is not None else 0.0, feedback=feedback)
		for label, score, feedback in criteria
	]
	overall = _overall_from(stated, [c.score for c in criterion_scores])
	recommendations, used_canned = pad_recommendations(extract_recommendations(text), overall)
	return GenerationResult(
		criterion_scores=criterion_scores,
		overall_score=overall,
		overall_feedback=_extract_overall_feedback(text),
		recommendations=recommendations,
		provenance="fallback" if used_canned else "generated",
		stated_score=stated,
	)


def normalize(raw_text: Optional[str]) -> GenerationResult:
	"""Parse generation output; never raises, always returns a usable result."""
	try:
		return _parse(raw_text or "")
	except (ParseFailed, ValueError) as exc:
		logger.info("Generation output unusable, using fallback result: %s", exc)
		return fallback_result()
