from __future__ import annotations
import json
from datetime import timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from .errors import DuplicateRecord, RecordStoreError
from .models import CompletionRecordRow
from .schemas import Category, CompletionRecord, CriterionScore, StoredObject, Workflow


ONE_SHOT_WORKFLOWS = (Workflow.PRESENTATION,)


def _row_to_record(row: CompletionRecordRow) -> CompletionRecord:
	completed_at = row.completed_at
	# SQLite hands back naive datetimes even for timezone-aware columns
	if completed_at.tzinfo is None:
		completed_at = completed_at.replace(tzinfo=timezone.utc)
	video = StoredObject(id=row.video_id, url=row.video_url or "") if row.video_id else None
	document = None
	if row.document_id:
		document = StoredObject(id=row.document_id, url=row.document_url or "", view_link=row.document_view_link)
	return CompletionRecord(
		id=row.id,
		subject_id=row.subject_id,
		workflow=Workflow(row.workflow),
		category=Category(level=row.level, language=row.language),
		payload=json.loads(row.payload_json) if row.payload_json else {},
		score=row.score,
		criterion_scores=[CriterionScore(**c) for c in json.loads(row.criteria_json or "[]")],
		feedback=row.feedback,
		video=video,
		document=document,
		completed_at=completed_at,
	)


def _record_to_row(record: CompletionRecord) -> CompletionRecordRow:
	one_shot_key = None
	if record.workflow in ONE_SHOT_WORKFLOWS:
		one_shot_key = f"{record.workflow.value}:{record.subject_id}"
	return CompletionRecordRow(
		subject_id=record.subject_id,
		workflow=record.workflow.value,
		level=record.category.level,
		language=record.category.language,
		score=record.score,
		feedback=record.feedback,
		payload_json=json.dumps(record.payload),
		criteria_json=json.dumps([c.model_dump() for c in record.criterion_scores]),
		video_id=record.video.id if record.video else None,
		video_url=record.video.url if record.video else None,
		document_id=record.document.id if record.document else None,
		document_url=record.document.url if record.document else None,
		document_view_link=record.document.view_link if record.document else None,
		one_shot_key=one_shot_key,
		completed_at=record.completed_at,
	)


class CompletionRecordStore:
	"""Append-only store of completion records.

	Records are written once and never updated; every read returns fresh
	immutable ``CompletionRecord`` values. ``delete`` exists only to undo an
	insert whose submission failed around it. Database errors surface as
	``RecordStoreError``. The sync SQLAlchemy session runs in
	the threadpool so callers on the event loop are never blocked.
	"""

	def __init__(self, session_factory: sessionmaker) -> None:
		self._session_factory = session_factory

	async def find_latest(self, subject_id: str, workflow: Workflow, category: Optional[Category] = None) -> Optional[CompletionRecord]:
		return await run_in_threadpool(self._find_latest, subject_id, workflow, category)

	async def insert(self, record: CompletionRecord) -> CompletionRecord:
		return await run_in_threadpool(self._insert, record)

	async def list_for_subject(self, subject_id: str, workflow: Optional[Workflow] = None) -> List[CompletionRecord]:
		return await run_in_threadpool(self._list_for_subject, subject_id, workflow)

	async def delete(self, record_id: int) -> None:
		await run_in_threadpool(self._delete, record_id)

	def _find_latest(self, subject_id: str, workflow: Workflow, category: Optional[Category]) -> Optional[CompletionRecord]:
		stmt = select(CompletionRecordRow).where(
			CompletionRecordRow.subject_id == subject_id,
			CompletionRecordRow.workflow == workflow.value,
		)
		if category is not None:
			stmt = stmt.where(
				CompletionRecordRow.level == category.level,
				CompletionRecordRow.language == category.language,
			)
		stmt = stmt.order_by(CompletionRecordRow.completed_at.desc(), CompletionRecordRow.id.desc()).limit(1)
		with self._session_factory() as db:
			row = db.execute(stmt).scalars().first()
			return _row_to_record(row) if row is not None else None

	def _insert(self, record: CompletionRecord) -> CompletionRecord:
		with self._session_factory() as db:
			row = _record_to_row(record)
			db.add(row)
			try:
				db.commit()
			except IntegrityError as exc:
				db.rollback()
				raise DuplicateRecord(f"{record.workflow.value} record already exists for {record.subject_id}") from exc
			except SQLAlchemyError as exc:
				db.rollback()
				raise RecordStoreError(f"could not save {record.workflow.value} record for {record.subject_id}: {exc}") from exc
			db.refresh(row)
			return _row_to_record(row)

	def _list_for_subject(self, subject_id: str, workflow: Optional[Workflow]) -> List[CompletionRecord]:
		stmt = select(CompletionRecordRow).where(CompletionRecordRow.subject_id == subject_id)
		if workflow is not None:
			stmt = stmt.where(CompletionRecordRow.workflow == workflow.value)
		stmt = stmt.order_by(CompletionRecordRow.completed_at.desc(), CompletionRecordRow.id.desc())
		with self._session_factory() as db:
			return [_row_to_record(row) for row in db.execute(stmt).scalars().all()]

	def _delete(self, record_id: int) -> None:
		with self._session_factory() as db:
			row = db.get(CompletionRecordRow, record_id)
			if row is None:
				return
			db.delete(row)
			try:
				db.commit()
			except SQLAlchemyError as exc:
				db.rollback()
				raise RecordStoreError(f"could not delete record {record_id}: {exc}") from exc
