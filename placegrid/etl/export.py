"""CSV export of aggregated place records."""

import csv
import io
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from placegrid.core.errors import SerializationError
from placegrid.core.models import PlaceRecord
from placegrid.etl.transform import CATEGORY_DELIMITER

# Byte-order mark so spreadsheet tools detect UTF-8 (Hebrew/Arabic names).
BOM = "\ufeff"
CSV_COLUMNS = [
    "name",
    "address",
    "lat",
    "lng",
    "id",
    "rating",
    "rating_count",
    "categories",
    "status",
    "website",
    "phone",
    "map_uri",
]
CSV_CONTENT_TYPE = "text/csv; charset=utf-8"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def to_row(record: PlaceRecord) -> List[str]:
    return [
        _cell(record.name),
        _cell(record.address),
        _cell(record.lat),
        _cell(record.lng),
        _cell(record.id),
        _cell(record.rating),
        _cell(record.rating_count),
        CATEGORY_DELIMITER.join(record.categories),
        _cell(record.status),
        _cell(record.website),
        _cell(record.phone),
        _cell(record.map_uri),
    ]


def render(records: Iterable[PlaceRecord]) -> str:
    """Render records as BOM-prefixed CSV with a fixed header row.

    Fields holding a comma, double quote or line break (CR or LF) are quoted
    with inner quotes doubled; every other field is written bare. Rows end in
    CRLF so the writer also quotes a lone CR.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_COLUMNS)
    try:
        for record in records:
            writer.writerow(to_row(record))
    except csv.Error as exc:
        raise SerializationError(f"Unable to write CSV row: {exc}") from exc
    return BOM + buffer.getvalue()


def parse(text: str) -> List[dict]:
    """Read an export produced by :func:`render` back into row dicts."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    return list(csv.DictReader(io.StringIO(text, newline="")))


def export_filename(timestamp: Optional[datetime] = None) -> str:
    """Suggested download name, e.g. ``places_2024-05-01T10-15-00.csv``."""
    timestamp = timestamp or datetime.now(timezone.utc)
    return f"places_{timestamp.strftime('%Y-%m-%dT%H-%M-%S')}.csv"
