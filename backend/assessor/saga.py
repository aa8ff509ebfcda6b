"""
Upload Saga Coordinator
=======================

Presentation submissions touch three independent collaborators: the video
store, the document store and the record store. None of them can take part
in a transaction, so the submission is run as a saga:

	Start -> GuardChecked -> VideoUploaded -> DocumentUploaded -> RecordPersisted

Any failure after the guard deletes everything written so far before the
typed error is raised. Compensation is best-effort: a failed delete is
logged and attached to the error as a warning, never raised in its place.
A cancelled caller still gets its compensation run to completion.

The record insert runs in a worker thread that cannot be interrupted. A
persist step that times out or is cancelled is therefore never abandoned:
compensation waits for the insert to settle and deletes the row if it was
committed after all.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, BinaryIO, Callable, Dict, List, Optional, Protocol, Set, TypeVar

from .eligibility import EligibilityTracker
from .errors import (
	AlreadySubmitted,
	DocumentUploadFailed,
	DuplicateRecord,
	InvalidUpload,
	PersistFailed,
	VideoUploadFailed,
)
from .schemas import Category, CompletionRecord, StoredObject, Workflow
from .settings import settings
from .storage import BinaryStorage


T = TypeVar("T")
logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPES = ("video/mp4", "video/webm", "video/quicktime")
CHUNK_SIZE = 1024 * 1024


class RecordWriter(Protocol):
	async def insert(self, record: CompletionRecord) -> CompletionRecord:
		...

	async def delete(self, record_id: int) -> None:
		...


class UploadSource(Protocol):
	"""Anything readable in chunks, such as FastAPI's ``UploadFile``."""

	filename: Optional[str]
	content_type: Optional[str]

	async def read(self, size: int = -1) -> bytes:
		...


@dataclass
class UploadArtifact:
	"""An upload already spooled to a scratch file, rewound and ready to stream."""

	filename: str
	content_type: str
	file: BinaryIO
	size: int


class SubmissionStatus(str, Enum):
	PENDING = "pending"
	COMMITTED = "committed"
	FAILED = "failed"


@dataclass
class UploadSubmission:
	subject_id: str
	video: Optional[StoredObject] = None
	document: Optional[StoredObject] = None
	record_insert: Optional[asyncio.Future] = None
	status: SubmissionStatus = SubmissionStatus.PENDING


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def folder_for(question_id: Optional[Any]) -> str:
	return f"presentation-assessment/Question {question_id or 'General'}"


def _too_large(label: str, max_bytes: int) -> InvalidUpload:
	return InvalidUpload(f"{label.capitalize()} file is too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")


async def spool_upload(source: UploadSource, target: BinaryIO, max_bytes: int, label: str) -> int:
	"""Copy ``source`` into ``target`` chunk by chunk; stop as soon as the limit is passed."""
	size = 0
	while True:
		chunk = await source.read(CHUNK_SIZE)
		if not chunk:
			break
		size += len(chunk)
		if size > max_bytes:
			raise _too_large(label, max_bytes)
		target.write(chunk)
	target.seek(0)
	return size


def validate_artifacts(video: UploadArtifact, document: UploadArtifact, max_bytes: int) -> None:
	for label, artifact in (("video", video), ("presentation", document)):
		if artifact.size == 0:
			raise InvalidUpload(f"No {label} file uploaded")
		if artifact.size > max_bytes:
			raise _too_large(label, max_bytes)
	if video.content_type not in VIDEO_CONTENT_TYPES:
		raise InvalidUpload("Unsupported video type. Please upload MP4, WebM, or MOV.")


class UploadSagaCoordinator:
	def __init__(
		self,
		videos: BinaryStorage,
		documents: BinaryStorage,
		records: RecordWriter,
		tracker: EligibilityTracker,
		*,
		upload_timeout: Optional[float] = None,
		persist_timeout: Optional[float] = None,
		max_upload_bytes: Optional[int] = None,
		clock: Callable[[], datetime] = _utcnow,
		scratch_factory: Callable[[], BinaryIO] = tempfile.TemporaryFile,
	) -> None:
		self.videos = videos
		self.documents = documents
		self.records = records
		self.tracker = tracker
		self.upload_timeout = upload_timeout if upload_timeout is not None else settings.upload_timeout_seconds
		self.persist_timeout = persist_timeout if persist_timeout is not None else settings.persist_timeout_seconds
		self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes
		self._clock = clock
		self._scratch_factory = scratch_factory
		# Compensations outliving a cancelled request
		self._background: Set[asyncio.Task] = set()

	async def receive(self, scratch: ExitStack, source: UploadSource, label: str) -> UploadArtifact:
		"""Spool an upload into a scratch file that lives as long as ``scratch``."""
		handle = scratch.enter_context(self._scratch_factory())
		size = await spool_upload(source, handle, self.max_upload_bytes, label)
		return UploadArtifact(
			filename=source.filename or "upload",
			content_type=source.content_type or "application/octet-stream",
			file=handle,
			size=size,
		)

	async def submit(
		self,
		subject_id: str,
		category: Category,
		video: UploadArtifact,
		document: UploadArtifact,
		metadata: Optional[Dict[str, Any]] = None,
	) -> CompletionRecord:
		metadata = dict(metadata or {})
		validate_artifacts(video, document, self.max_upload_bytes)
		if await self.tracker.latest(subject_id) is not None:
			raise AlreadySubmitted(subject_id, Workflow.PRESENTATION.value)

		submission = UploadSubmission(subject_id=subject_id)
		folder = folder_for(metadata.get("question_id"))
		try:
			return await self._run(submission, category, folder, video, document, metadata)
		except asyncio.CancelledError:
			submission.status = SubmissionStatus.FAILED
			logger.warning("Submission for %s cancelled, compensating before abandoning", subject_id)
			await self._compensate_shielded(submission)
			raise

	async def _run(
		self,
		submission: UploadSubmission,
		category: Category,
		folder: str,
		video: UploadArtifact,
		document: UploadArtifact,
		metadata: Dict[str, Any],
	) -> CompletionRecord:
		try:
			submission.video = await self._bounded(
				self.videos.upload(video.file, folder=folder, filename=video.filename, content_type=video.content_type),
				self.upload_timeout,
			)
		except Exception as exc:
			submission.status = SubmissionStatus.FAILED
			logger.error("Video upload failed for %s: %s", submission.subject_id, exc)
			raise VideoUploadFailed(exc) from exc
		logger.info("Video uploaded for %s: %s", submission.subject_id, submission.video.id)

		try:
			submission.document = await self._bounded(
				self.documents.upload(document.file, folder=folder, filename=document.filename, content_type=document.content_type),
				self.upload_timeout,
			)
		except Exception as exc:
			logger.error("Document upload failed for %s: %s", submission.subject_id, exc)
			warnings = await self._fail(submission)
			raise DocumentUploadFailed(exc, warnings) from exc
		logger.info("Document uploaded for %s: %s", submission.subject_id, submission.document.id)

		record = CompletionRecord(
			subject_id=submission.subject_id,
			workflow=Workflow.PRESENTATION,
			category=category,
			payload={
				**metadata,
				"video_name": video.filename,
				"video_size": video.size,
				"document_name": document.filename,
				"document_size": document.size,
				"document_mime_type": document.content_type,
			},
			video=submission.video,
			document=submission.document,
			completed_at=self._clock(),
		)
		try:
			saved = await self._persist(submission, record)
		except DuplicateRecord as exc:
			logger.warning("Concurrent submission detected for %s", submission.subject_id)
			await self._fail(submission)
			raise AlreadySubmitted(submission.subject_id, Workflow.PRESENTATION.value) from exc
		except Exception as exc:
			logger.error("Persisting submission failed for %s: %s", submission.subject_id, exc)
			warnings = await self._fail(submission)
			raise PersistFailed(exc, warnings) from exc

		submission.status = SubmissionStatus.COMMITTED
		logger.info("Submission committed for %s (record %s)", submission.subject_id, saved.id)
		return saved

	async def _persist(self, submission: UploadSubmission, record: CompletionRecord) -> CompletionRecord:
		insert = asyncio.ensure_future(self.records.insert(record))
		submission.record_insert = insert
		# asyncio.wait leaves the insert running on timeout or cancellation
		done, _ = await asyncio.wait({insert}, timeout=self.persist_timeout)
		if not done:
			raise asyncio.TimeoutError(f"record insert still running after {self.persist_timeout}s")
		return insert.result()

	async def _bounded(self, step: Awaitable[T], timeout: Optional[float]) -> T:
		# A timed-out step is an ordinary failure for the caller
		return await asyncio.wait_for(step, timeout=timeout)

	async def _fail(self, submission: UploadSubmission) -> List[str]:
		submission.status = SubmissionStatus.FAILED
		return await self._compensate(submission)

	async def _compensate(self, submission: UploadSubmission) -> List[str]:
		"""Undo the record insert, then delete every uploaded binary, newest first.

		Returns warnings, never raises.
		"""
		warnings: List[str] = []
		record_warning = await self._undo_insert(submission)
		if record_warning is not None:
			warnings.append(record_warning)
		steps = [
			("document", submission.document, self.documents),
			("video", submission.video, self.videos),
		]
		for label, stored, storage in steps:
			if stored is None:
				continue
			try:
				await self._bounded(storage.delete(stored.id), self.upload_timeout)
				logger.info("Cleaned up %s %s for %s", label, stored.id, submission.subject_id)
			except Exception as exc:
				message = f"could not delete {label} {stored.id}: {exc}"
				logger.error("Compensation failed for %s: %s", submission.subject_id, message)
				warnings.append(message)
		return warnings

	async def _undo_insert(self, submission: UploadSubmission) -> Optional[str]:
		insert = submission.record_insert
		if insert is None:
			return None
		# Wait for the worker thread; a row it commits late must not survive
		await asyncio.wait({insert})
		if insert.cancelled() or insert.exception() is not None:
			return None
		saved = insert.result()
		try:
			await self._bounded(self.records.delete(saved.id), self.persist_timeout)
			logger.info("Removed record %s for %s", saved.id, submission.subject_id)
		except Exception as exc:
			message = f"could not delete record {saved.id}: {exc}"
			logger.error("Compensation failed for %s: %s", submission.subject_id, message)
			return message
		return None

	async def _compensate_shielded(self, submission: UploadSubmission) -> None:
		task = asyncio.ensure_future(self._compensate(submission))
		self._background.add(task)
		task.add_done_callback(self._background.discard)
		try:
			await asyncio.shield(task)
		except asyncio.CancelledError:
			# Cancelled again while waiting; the task keeps running on its own
			logger.warning("Compensation for %s continues in background", submission.subject_id)

	async def drain(self) -> None:
		"""Wait for background compensations, used on shutdown."""
		if self._background:
			await asyncio.gather(*self._background, return_exceptions=True)
