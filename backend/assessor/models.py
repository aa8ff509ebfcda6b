from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Float, Integer, Text, Index
from .db import Base


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class CompletionRecordRow(Base):
	__tablename__ = "completion_records"
	id = Column(Integer, primary_key=True, autoincrement=True)
	subject_id = Column(String(128), nullable=False, index=True)
	workflow = Column(String(32), nullable=False)
	level = Column(String(8), nullable=False)
	language = Column(String(32), nullable=False)
	score = Column(Float, nullable=True)
	feedback = Column(Text, nullable=True)
	payload_json = Column(Text, nullable=True)  # JSON string snapshot
	criteria_json = Column(Text, nullable=True)  # JSON array of {name, score, feedback}
	# Uploaded artifacts (presentation workflow only)
	video_id = Column(String(256), nullable=True)
	video_url = Column(Text, nullable=True)
	document_id = Column(String(256), nullable=True)
	document_url = Column(Text, nullable=True)
	document_view_link = Column(Text, nullable=True)
	# "<workflow>:<subject_id>" for one-shot workflows, NULL otherwise.
	# NULLs never collide, so only one-shot workflows are constrained.
	one_shot_key = Column(String(192), nullable=True, unique=True)
	completed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


Index("ix_completion_lookup", CompletionRecordRow.subject_id, CompletionRecordRow.workflow, CompletionRecordRow.level, CompletionRecordRow.language, CompletionRecordRow.completed_at)
