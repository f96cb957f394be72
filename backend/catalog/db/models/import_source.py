"""Import source configuration: field mappings and auto-publish policy."""

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog.db.base import Base, JSONType


def default_stats() -> dict:
    return {
        "total_imports": 0,
        "total_products": 0,
        "last_import_at": None,
        "last_import_status": None,
    }


class ImportSource(Base):
    __tablename__ = "import_sources"

    source_id = Column(String(128), primary_key=True)
    source_name = Column(String(255), nullable=False)
    field_mappings = Column(JSONType, nullable=False, default=dict)
    auto_publish_enabled = Column(Boolean, nullable=False, default=False)
    min_score_threshold = Column(Integer, nullable=False, default=80)
    required_fields = Column(JSONType, nullable=False, default=list)
    stats = Column(JSONType, nullable=False, default=default_stats)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
