from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deduplicator import GenerationDeduplicator
from ..deps import category_or_400, get_deduplicator, get_writing, get_writing_tracker
from ..eligibility import EligibilityTracker
from ..errors import CooldownActive, RecordStoreError, UpstreamError
from ..schemas import CompletionRecord, CriterionScore, Eligibility, GenerationResult
from ..writing import WritingAssessments


router = APIRouter(prefix="/writing", tags=["writing"])


class EvaluateRequest(BaseModel):
	question: str
	answer: str


class SubmitRequest(BaseModel):
	subject_id: str
	level: str
	language: str
	prompt: str
	response: str
	criteria: List[CriterionScore] = Field(min_length=1)
	feedback: Optional[str] = None


class HistoryResponse(BaseModel):
	assessments: List[CompletionRecord]


def _unavailable(exc: UpstreamError) -> HTTPException:
	return HTTPException(status_code=503, detail=f"Failed to generate writing assessment, please try again: {exc}")


@router.get("/generate", response_model=GenerationResult)
async def generate(level: str, language: str, dedup: GenerationDeduplicator = Depends(get_deduplicator)):
	category = category_or_400(level, language)
	try:
		return await dedup.generate(category)
	except UpstreamError as exc:
		raise _unavailable(exc)


@router.get("/eligibility", response_model=Eligibility)
async def eligibility(subject_id: str, level: str, language: str, tracker: EligibilityTracker = Depends(get_writing_tracker)):
	return await tracker.check(subject_id, category_or_400(level, language))


@router.post("/evaluate", response_model=GenerationResult)
async def evaluate(req: EvaluateRequest, writing: WritingAssessments = Depends(get_writing)):
	try:
		return await writing.evaluate(req.question, req.answer)
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc))
	except UpstreamError as exc:
		raise _unavailable(exc)


@router.post("/submit", response_model=CompletionRecord, status_code=201)
async def submit(req: SubmitRequest, writing: WritingAssessments = Depends(get_writing)):
	category = category_or_400(req.level, req.language)
	if not req.response.strip():
		raise HTTPException(status_code=400, detail="Task and response are required")
	try:
		return await writing.submit(req.subject_id, category, req.prompt, req.response, req.criteria, req.feedback)
	except CooldownActive as exc:
		raise HTTPException(
			status_code=403,
			detail={
				"message": "You must wait between assessment attempts",
				"next_available_at": exc.next_available_at.isoformat(),
			},
		)
	except RecordStoreError as exc:
		raise HTTPException(status_code=503, detail=f"Failed to save writing assessment, please try again: {exc}")


@router.get("/history/{subject_id}", response_model=HistoryResponse)
async def history(subject_id: str, writing: WritingAssessments = Depends(get_writing)):
	return HistoryResponse(assessments=await writing.history(subject_id))
