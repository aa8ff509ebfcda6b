from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


LEVELS: List[str] = ["a1", "a2", "b1", "b2", "c1", "c2"]
LANGUAGES: List[str] = ["english", "french"]


class Workflow(str, Enum):
	WRITING = "writing"
	PRESENTATION = "presentation"


class Category(BaseModel):
	"""(level, language) pair a cooldown and a cached generation are keyed on."""
	model_config = ConfigDict(frozen=True)

	level: str
	language: str

	@field_validator("level")
	@classmethod
	def _check_level(cls, value: str) -> str:
		value = (value or "").strip().lower()
		if value not in LEVELS:
			raise ValueError(f"Invalid level. Must be one of: {', '.join(LEVELS)}")
		return value

	@field_validator("language")
	@classmethod
	def _check_language(cls, value: str) -> str:
		value = (value or "").strip().lower()
		if value not in LANGUAGES:
			raise ValueError(f"Invalid language. Must be one of: {', '.join(LANGUAGES)}")
		return value

	@property
	def key(self) -> str:
		return f"{self.level}_{self.language}"


class CriterionScore(BaseModel):
	name: str
	score: float = Field(ge=0, le=20)
	feedback: str = ""


class GenerationResult(BaseModel):
	criterion_scores: List[CriterionScore]
	overall_score: int = Field(ge=0, le=100)
	overall_feedback: str
	recommendations: List[str]
	provenance: Literal["generated", "fallback"]
	# Percentage exactly as the generator stated it, before any correction
	stated_score: Optional[int] = None
	from_cache: bool = False


class StoredObject(BaseModel):
	id: str
	url: str
	view_link: Optional[str] = None


class CompletionRecord(BaseModel):
	model_config = ConfigDict(frozen=True)

	id: Optional[int] = None
	subject_id: str
	workflow: Workflow
	category: Category
	payload: Dict[str, Any] = Field(default_factory=dict)
	score: Optional[float] = None
	criterion_scores: List[CriterionScore] = Field(default_factory=list)
	feedback: Optional[str] = None
	video: Optional[StoredObject] = None
	document: Optional[StoredObject] = None
	completed_at: datetime


class Eligibility(BaseModel):
	available: bool
	next_available_at: Optional[datetime] = None
	days_remaining: Optional[int] = None
	last_record: Optional[CompletionRecord] = None
