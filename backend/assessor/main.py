from __future__ import annotations
import logging
from typing import BinaryIO

from fastapi import FastAPI

from .db import DATABASE_URL, build_engine, build_session_factory, create_schema
from .deduplicator import GenerationCache, GenerationDeduplicator
from .eligibility import EligibilityTracker
from .errors import StorageError, UpstreamFailed
from .gemini_client import GeminiClient
from .records import CompletionRecordStore
from .retry import default_retry_policy
from .routers import presentation, writing
from .saga import UploadSagaCoordinator
from .schemas import StoredObject, Workflow
from .settings import settings
from .storage import CloudinaryVideoStorage, DriveDocumentStorage
from .writing import WritingAssessments, generation_upstream

logger = logging.getLogger("assessor")

app = FastAPI(title="Assessment Orchestration API")
app.include_router(writing.router)
app.include_router(presentation.router)


class _UnconfiguredStorage:
	def __init__(self, name: str, reason: str) -> None:
		self.name = name
		self.reason = reason

	async def upload(self, file: BinaryIO, *, folder: str, filename: str, content_type: str) -> StoredObject:
		raise StorageError(f"{self.name} storage is not configured: {self.reason}")

	async def delete(self, object_id: str) -> None:
		raise StorageError(f"{self.name} storage is not configured: {self.reason}")


async def _generation_unavailable(prompt: str, **params) -> str:
	raise UpstreamFailed("GEMINI_API_KEY is not configured")


@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"video_storage_configured": bool(settings.cloudinary_cloud_name and settings.cloudinary_api_key),
		"document_storage_configured": bool(settings.google_drive_access_token),
	}


@app.on_event("startup")
async def startup_event():
	logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
	engine = build_engine(DATABASE_URL)
	create_schema(engine)
	records = CompletionRecordStore(build_session_factory(engine))

	closables = []
	try:
		client = GeminiClient()
		closables.append(client)
		generate = client.generate
	except ValueError as exc:
		logger.warning("Text generation disabled: %s", exc)
		generate = _generation_unavailable
	try:
		videos = CloudinaryVideoStorage()
		closables.append(videos)
	except ValueError as exc:
		logger.warning("Video storage disabled: %s", exc)
		videos = _UnconfiguredStorage("video", str(exc))
	try:
		documents = DriveDocumentStorage()
		closables.append(documents)
	except ValueError as exc:
		logger.warning("Document storage disabled: %s", exc)
		documents = _UnconfiguredStorage("document", str(exc))

	writing_tracker = EligibilityTracker(records, Workflow.WRITING)
	presentation_tracker = EligibilityTracker(records, Workflow.PRESENTATION)
	cache = GenerationCache(settings.generation_cache_ttl_seconds)

	app.state.engine = engine
	app.state.closables = closables
	app.state.writing_tracker = writing_tracker
	app.state.presentation_tracker = presentation_tracker
	app.state.deduplicator = GenerationDeduplicator(generation_upstream(generate), cache, retry_policy=default_retry_policy())
	app.state.writing = WritingAssessments(generate, records, writing_tracker)
	app.state.saga = UploadSagaCoordinator(videos, documents, records, presentation_tracker)


@app.on_event("shutdown")
async def shutdown_event():
	await app.state.saga.drain()
	for closable in app.state.closables:
		await closable.aclose()
	app.state.engine.dispose()
