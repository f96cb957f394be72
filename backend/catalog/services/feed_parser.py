"""Parse supplier CSV feeds into import job items."""

from __future__ import annotations

import csv
import io
import logging
from typing import Any

from catalog.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

IDENTITY_HEADERS = ("entity_code", "sku")
LIST_COLUMNS = ("tags", "images")
NUMERIC_COLUMNS = ("price",)
LIST_SEPARATOR = "|"


def validate_headers(headers: list[str] | None) -> list[str]:
    """Normalize the header row and ensure an identity column is present."""
    if not headers:
        raise ValidationError("CSV requires a header row with an entity_code or sku column")
    normalized = [(header or "").strip().lower() for header in headers]
    if not any(field in normalized for field in IDENTITY_HEADERS):
        raise ValidationError("Missing required column: entity_code or sku")
    return normalized


def _coerce(column: str, value: str) -> Any:
    if column in LIST_COLUMNS:
        return [part.strip() for part in value.split(LIST_SEPARATOR) if part.strip()]
    if column in NUMERIC_COLUMNS:
        try:
            return float(value)
        except ValueError:
            # Left as text; patch validation rejects it per row
            return value
    return value


def normalize_row(headers: list[str], row: list[str]) -> dict[str, Any]:
    """Map one CSV row onto the normalized headers, dropping empty cells."""
    record: dict[str, Any] = {}
    for column, raw in zip(headers, row):
        if not column:
            continue
        value = raw.strip() if isinstance(raw, str) else ""
        if not value:
            continue
        record[column] = _coerce(column, value)
    return record


def parse_csv(content: bytes | str) -> list[dict[str, Any]]:
    """Return one dict per non-blank data row of a CSV feed."""
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ValidationError(f"File encoding error: {str(e)}") from e

    try:
        reader = csv.reader(io.StringIO(content, newline=""))
        headers = validate_headers(next(reader, None))
        rows: list[dict[str, Any]] = []
        for row_num, row in enumerate(reader, start=2):
            if not any(cell.strip() for cell in row):
                continue
            if len(row) > len(headers):
                logger.warning(f"Row {row_num} has {len(row)} cells for {len(headers)} headers")
            rows.append(normalize_row(headers, row))
    except csv.Error as e:
        raise ValidationError(f"CSV parsing error: {str(e)}") from e

    logger.info(f"Parsed {len(rows)} rows from CSV feed")
    return rows
