from __future__ import annotations
from fastapi import HTTPException, Request
from pydantic import ValidationError

from .deduplicator import GenerationDeduplicator
from .eligibility import EligibilityTracker
from .saga import UploadSagaCoordinator
from .schemas import Category
from .writing import WritingAssessments


# Components are built once in the startup hook and kept on app.state

def get_deduplicator(request: Request) -> GenerationDeduplicator:
	return request.app.state.deduplicator


def get_writing(request: Request) -> WritingAssessments:
	return request.app.state.writing


def get_writing_tracker(request: Request) -> EligibilityTracker:
	return request.app.state.writing_tracker


def get_presentation_tracker(request: Request) -> EligibilityTracker:
	return request.app.state.presentation_tracker


def get_saga(request: Request) -> UploadSagaCoordinator:
	return request.app.state.saga


def category_or_400(level: str, language: str) -> Category:
	try:
		return Category(level=level, language=language)
	except ValidationError as exc:
		detail = "; ".join(err["msg"].removeprefix("Value error, ") for err in exc.errors())
		raise HTTPException(status_code=400, detail=detail)
