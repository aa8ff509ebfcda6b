"""Shared fakes for the orchestration tests."""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from assessor.errors import DuplicateRecord
from assessor.schemas import Category, CompletionRecord, StoredObject, Workflow


EVALUATION_TEXT = """Coherence and Clarity: 9 - Ideas follow each other logically.
Organization and Structure: 8 - Clear introduction and conclusion.
Focus and Content Development: 7 - Mostly on topic.
Vocabulary and Word Choice: 6 - Limited range of topic words.
Grammar and Conventions: 9 - Very few errors.

Overall percentage score: 78

Overall feedback: A solid response with clear structure. Work on vocabulary range.

Recommendations:
1. Read opinion articles and note useful collocations.
2. Plan each paragraph around one main idea.
3. Proofread for article usage before submitting.
"""


@pytest.fixture
def anyio_backend():
	return "asyncio"


@pytest.fixture
def evaluation_text():
	return EVALUATION_TEXT


@pytest.fixture
def category():
	return Category(level="b1", language="english")


class FakeStorage:
	"""In-memory binary store with failure injection."""

	def __init__(self, name: str) -> None:
		self.name = name
		self.objects: Dict[str, bytes] = {}
		self.deleted: List[str] = []
		self.upload_calls = 0
		self.fail_upload: Optional[BaseException] = None
		self.fail_delete: Optional[BaseException] = None
		self.upload_gate = None
		self.upload_started = None

	async def upload(self, file, *, folder: str, filename: str, content_type: str) -> StoredObject:
		self.upload_calls += 1
		if self.upload_started is not None:
			self.upload_started.set()
		if self.upload_gate is not None:
			await self.upload_gate.wait()
		if self.fail_upload is not None:
			raise self.fail_upload
		object_id = f"{self.name}-{self.upload_calls}"
		self.objects[object_id] = file.read()
		return StoredObject(id=object_id, url=f"https://{self.name}.test/{object_id}", view_link=f"https://{self.name}.test/view/{object_id}")

	async def delete(self, object_id: str) -> None:
		if self.fail_delete is not None:
			raise self.fail_delete
		self.objects.pop(object_id, None)
		self.deleted.append(object_id)


class FakeRecords:
	"""In-memory completion record store mirroring CompletionRecordStore."""

	def __init__(self) -> None:
		self.rows: List[CompletionRecord] = []
		self.fail_find: Optional[BaseException] = None
		self.fail_insert: Optional[BaseException] = None

	async def find_latest(self, subject_id: str, workflow: Workflow, category: Optional[Category] = None) -> Optional[CompletionRecord]:
		if self.fail_find is not None:
			raise self.fail_find
		matches = [
			r for r in self.rows
			if r.subject_id == subject_id and r.workflow == workflow and (category is None or r.category == category)
		]
		if not matches:
			return None
		return max(matches, key=lambda r: r.completed_at)

	async def insert(self, record: CompletionRecord) -> CompletionRecord:
		if self.fail_insert is not None:
			raise self.fail_insert
		if record.workflow == Workflow.PRESENTATION and any(
			r.workflow == Workflow.PRESENTATION and r.subject_id == record.subject_id for r in self.rows
		):
			raise DuplicateRecord("duplicate")
		saved = record.model_copy(update={"id": len(self.rows) + 1})
		self.rows.append(saved)
		return saved

	async def delete(self, record_id: int) -> None:
		self.rows = [r for r in self.rows if r.id != record_id]

	async def list_for_subject(self, subject_id: str, workflow: Optional[Workflow] = None) -> List[CompletionRecord]:
		rows = [r for r in self.rows if r.subject_id == subject_id and (workflow is None or r.workflow == workflow)]
		return sorted(rows, key=lambda r: r.completed_at, reverse=True)


@pytest.fixture
def records():
	return FakeRecords()


@pytest.fixture
def videos():
	return FakeStorage("video")


@pytest.fixture
def documents():
	return FakeStorage("document")
