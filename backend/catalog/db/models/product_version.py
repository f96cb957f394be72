"""Append-only product version records.

One row per (entity_code, version). Rows are written once; the only later
change a row ever sees is ``is_current``/``is_current_published`` flipping to
False when a newer version takes over.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog.db.base import Base, JSONType


class ProductVersion(Base):
    __tablename__ = "product_versions"

    id = Column(Integer, primary_key=True)
    entity_code = Column(String(128), nullable=False, index=True)
    sku = Column(String(128), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    is_current = Column(Boolean, nullable=False, default=True)
    is_current_published = Column(Boolean, nullable=False, default=False)

    status = Column(String(16), nullable=False, default="draft")
    published_at = Column(DateTime(timezone=True))

    locked_fields = Column(JSONType, nullable=False, default=list)
    manually_edited = Column(Boolean, nullable=False, default=False)
    edited_by = Column(String(255))
    edited_at = Column(DateTime(timezone=True))

    completeness_score = Column(Integer, nullable=False, default=0)
    critical_issues = Column(JSONType, nullable=False, default=list)
    auto_publish_eligible = Column(Boolean, nullable=False, default=False)
    auto_publish_reason = Column(Text)

    # Incoming values that locked fields kept out, pending operator review
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_data = Column(JSONType, nullable=False, default=list)

    # Provenance: source id/name, import timestamp and the policy snapshot
    source = Column(JSONType, nullable=False, default=dict)
    data = Column(JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("entity_code", "version", name="uq_product_versions_entity_version"),
        # At most one current row per entity_code, enforced by the store
        Index(
            "uq_product_versions_current",
            "entity_code",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        Index("ix_product_versions_status_score", "status", "completeness_score"),
    )

    def to_dict(self) -> dict:
        """Flatten governance metadata and payload into one record dict."""
        return {
            **(self.data or {}),
            "entity_code": self.entity_code,
            "sku": self.sku,
            "version": self.version,
            "is_current": self.is_current,
            "is_current_published": self.is_current_published,
            "status": self.status,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "locked_fields": list(self.locked_fields or []),
            "manually_edited": self.manually_edited,
            "edited_by": self.edited_by,
            "completeness_score": self.completeness_score,
            "critical_issues": list(self.critical_issues or []),
            "auto_publish_eligible": self.auto_publish_eligible,
            "auto_publish_reason": self.auto_publish_reason,
            "has_conflict": self.has_conflict,
            "conflict_data": list(self.conflict_data or []),
            "source": self.source or {},
        }

    def __repr__(self) -> str:
        return (
            f"<ProductVersion {self.entity_code} v{self.version} "
            f"{self.status}{' current' if self.is_current else ''}>"
        )
