"""Database models package."""
from catalog.db.models.import_source import ImportSource
from catalog.db.models.job import Job
from catalog.db.models.product_version import ProductVersion

__all__ = ["ImportSource", "Job", "ProductVersion"]
