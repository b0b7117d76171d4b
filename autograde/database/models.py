"""
SQLAlchemy ORM models for the autograde database.

Tables
------
- documents       — one row per uploaded PDF with its extraction state
- grading_status  — one row per student×test evaluation attempt (upserted)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase

EXTRACTION_STATUSES = ("pending", "processing", "completed", "failed")
GRADING_STATUSES = ("pending", "processing", "completed", "failed")
DOCUMENT_TYPES = ("question", "answer", "student-sheet", "chapter-material")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Shared declarative base for all models."""
    pass


class Document(Base):
    """An uploaded PDF and the text extracted from it."""

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(256), nullable=False)
    owner_id = Column(String(64), nullable=False, index=True)
    document_type = Column(String(32), nullable=False, default="question")
    bucket = Column(String(64), nullable=False)
    path = Column(Text, nullable=False)
    file_url = Column(Text, nullable=True)
    extraction_status = Column(String(16), nullable=False, default="pending")
    extracted_text = Column(Text, nullable=True)
    has_extracted_text = Column(Boolean, nullable=False, default=False)
    doc_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    extraction_started_at = Column(DateTime(timezone=True), nullable=True)
    last_extracted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.title!r} {self.extraction_status}>"


class GradingStatus(Base):
    """Grading lifecycle and evaluation payload for one student on one test."""

    __tablename__ = "grading_status"

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(64), nullable=False)
    test_id = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    answer_sheet_id = Column(String(36), nullable=True)
    score = Column(Float, nullable=True)
    feedback = Column(Text, nullable=True)
    evaluation_result = Column(JSON, nullable=True)
    user_feedback = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("student_id", "test_id", name="uq_grading_student_test"),
        Index("ix_grading_status_test_id", "test_id"),
    )

    def __repr__(self) -> str:
        return f"<GradingStatus {self.student_id}/{self.test_id} {self.status}>"
