"""Track bulk operations (imports, associations, publishes) for observability."""

import uuid

from sqlalchemy import Column, Float, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog.db.base import Base, JSONType

JOB_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_type = Column(String(64), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="pending", index=True)
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    successful_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)
    auto_published_items = Column(Integer, nullable=False, default=0)
    errors = Column(JSONType, nullable=False, default=list)
    items = Column(JSONType, nullable=False, default=list)
    params = Column(JSONType, nullable=False, default=dict)
    error_message = Column(Text)
    duration_seconds = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
