"""Error taxonomy shared by the versioning pipeline and the job processor."""

from __future__ import annotations

from sqlalchemy.exc import DataError, IntegrityError


class CatalogError(Exception):
    """Base class for errors raised by the catalog core."""


class ValidationError(CatalogError, ValueError):
    """Malformed input rejected before any state mutation."""


class SourceNotFoundError(CatalogError, LookupError):
    def __init__(self, source_id: str):
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class ProductNotFoundError(CatalogError, LookupError):
    def __init__(self, entity_code: str):
        super().__init__(f"Product not found: {entity_code}")
        self.entity_code = entity_code


class VersionNotFoundError(CatalogError, LookupError):
    def __init__(self, entity_code: str, version: int):
        super().__init__(f"Version {version} not found for product {entity_code}")
        self.entity_code = entity_code
        self.version = version


class CommitConflictError(CatalogError):
    """Another writer moved the current pointer first, even after retrying.

    Transient: the caller may resubmit the same commit.
    """

    def __init__(self, entity_code: str, attempts: int):
        super().__init__(
            f"Concurrent commit conflict on {entity_code} after {attempts} attempt(s)"
        )
        self.entity_code = entity_code
        self.attempts = attempts


class PublishBlockedError(CatalogError):
    """A bulk publish request for a version that does not qualify."""


class JobNotFoundError(CatalogError, LookupError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


# Failures recorded against a single batch item. Anything else escaping the
# per-item handler fails the whole job.
ITEM_ERRORS: tuple[type[Exception], ...] = (CatalogError, IntegrityError, DataError)
