from __future__ import annotations
from contextlib import ExitStack
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from ..deps import category_or_400, get_presentation_tracker, get_saga
from ..eligibility import EligibilityTracker
from ..errors import AlreadySubmitted, InvalidUpload, SubmissionStepFailed
from ..saga import UploadSagaCoordinator
from ..schemas import CompletionRecord, Eligibility


router = APIRouter(prefix="/presentation", tags=["presentation"])


@router.get("/eligibility", response_model=Eligibility)
async def eligibility(subject_id: str, level: str, language: str, tracker: EligibilityTracker = Depends(get_presentation_tracker)):
	return await tracker.check(subject_id, category_or_400(level, language))


@router.post("/submit", response_model=CompletionRecord)
async def submit(
	subject_id: str = Form(...),
	level: str = Form(...),
	language: str = Form(...),
	question_id: Optional[str] = Form(default=None),
	video: UploadFile = File(...),
	document: UploadFile = File(...),
	saga: UploadSagaCoordinator = Depends(get_saga),
):
	category = category_or_400(level, language)
	# Scratch copies are removed when the request finishes, whatever the outcome
	with ExitStack() as scratch:
		try:
			video_artifact = await saga.receive(scratch, video, "video")
			document_artifact = await saga.receive(scratch, document, "presentation")
		except InvalidUpload as exc:
			raise HTTPException(status_code=400, detail=str(exc))
		finally:
			await video.close()
			await document.close()
		try:
			return await saga.submit(
				subject_id,
				category,
				video_artifact,
				document_artifact,
				{"question_id": question_id},
			)
		except InvalidUpload as exc:
			raise HTTPException(status_code=400, detail=str(exc))
		except AlreadySubmitted:
			raise HTTPException(
				status_code=409,
				detail={"message": "You have already submitted the presentation assessment", "redirect_to": "/presentation-recommendations"},
			)
		except SubmissionStepFailed as exc:
			raise HTTPException(
				status_code=502,
				detail={
					"message": f"Error uploading files: the {exc.artifact} could not be saved",
					"step": exc.step,
					"compensation_warnings": exc.compensation_warnings,
				},
			)
