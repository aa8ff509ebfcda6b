from __future__ import annotations
from datetime import datetime
from typing import List, Optional


class AssessmentError(Exception):
	"""Base class for every error raised by the orchestration layer."""


class UpstreamError(AssessmentError):
	pass


class UpstreamRateLimited(UpstreamError):
	"""The text-generation service answered with a rate-limit signal (HTTP 429)."""


class UpstreamFailed(UpstreamError):
	"""Any other generation failure, including timeouts and malformed envelopes."""


class ParseFailed(AssessmentError):
	# Raised inside the normalizer only; always resolved to a fallback result
	pass


class EligibilityLookupFailed(AssessmentError):
	# Never surfaced; the tracker fails open
	pass


class CooldownActive(AssessmentError):
	def __init__(self, next_available_at: datetime) -> None:
		super().__init__(f"assessment unavailable until {next_available_at.isoformat()}")
		self.next_available_at = next_available_at


class AlreadySubmitted(AssessmentError):
	def __init__(self, subject_id: str, workflow: str) -> None:
		super().__init__(f"{subject_id} has already submitted the {workflow} assessment")
		self.subject_id = subject_id
		self.workflow = workflow


class InvalidUpload(AssessmentError):
	"""An uploaded artifact was rejected before anything was sent anywhere."""


class StorageError(AssessmentError):
	"""Raised by a storage collaborator when an upload or delete is rejected."""


class DuplicateRecord(AssessmentError):
	"""The persistence collaborator refused a record that violates a uniqueness rule."""


class SubmissionStepFailed(AssessmentError):
	"""A saga step failed. Carries the primary cause plus any compensation warnings.

	Compensation problems are reported through ``compensation_warnings`` and
	never replace ``__cause__``.
	"""

	step: str = "unknown"
	artifact: str = "submission"

	def __init__(self, cause: BaseException, compensation_warnings: Optional[List[str]] = None) -> None:
		super().__init__(f"{self.step} failed: {cause}")
		self.cause = cause
		self.compensation_warnings: List[str] = list(compensation_warnings or [])


class VideoUploadFailed(SubmissionStepFailed):
	step = "video_upload"
	artifact = "video"


class DocumentUploadFailed(SubmissionStepFailed):
	step = "document_upload"
	artifact = "document"


class PersistFailed(SubmissionStepFailed):
	step = "persist"
	artifact = "submission record"


class RecordStoreError(AssessmentError):
	"""The record store could not complete a read or write."""
