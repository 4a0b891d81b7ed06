"""Turn CSV, JSON and pre-embedded image sources into uniform queue items."""
import csv
import json
import logging
from dataclasses import dataclass
from io import StringIO
from typing import Any, Callable, Optional, Sequence

from app.exceptions import NormalizationError, ValidationError
from app.schemas.job import CsvSource, ImageSource, JsonSource, QueueItem, SourceKind

logger = logging.getLogger(__name__)

ELEMENT_COLUMN_CANDIDATES = ("id", "element", "title", "name", "image")
TEXT_COLUMN_CANDIDATES = ("text", "plot_synopsis", "description", "content")
VECTOR_KEYS = ("vector", "embedding")
# Keys never inferred as attributes for JSON records
RESERVED_KEYS = ("id", "element", "text") + VECTOR_KEYS


@dataclass
class NormalizedSource:
    """Queue items plus what was learned about their columns."""

    items: list[QueueItem]
    columns: list[str]
    default_attribute_columns: Optional[list[str]] = None

    @property
    def total(self) -> int:
        return len(self.items)


def default_columns(columns: Sequence[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Pick the element identifier and text columns when none were configured.

    A column literally named for the concept wins; otherwise the first column
    is the element and the second (or only) column is the text.

    Args:
        columns: Available column names in source order

    Returns:
        Tuple of (element_column, text_column)
    """
    if not columns:
        return None, None

    element = next((c for c in ELEMENT_COLUMN_CANDIDATES if c in columns), columns[0])
    text = next((c for c in TEXT_COLUMN_CANDIDATES if c in columns), None)
    if text is None:
        text = columns[1] if len(columns) > 1 else columns[0]
    return element, text


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def normalize_csv(source: CsvSource, attribute_columns: Optional[list[str]] = None) -> NormalizedSource:
    """
    Parse delimited text into queue items.

    ``skip_rows`` physical lines are dropped before the header row (if any).
    Headerless input names its columns by position: ``"0"``, ``"1"``, ...

    Raises:
        ValidationError: delimiter is not a single character
        NormalizationError: a record's field count differs from the header's
    """
    if len(source.delimiter) != 1:
        raise ValidationError(f"Delimiter must be a single character, got {source.delimiter!r}")

    # newline="" keeps line breaks inside quoted fields as written
    buffer = StringIO(source.content, newline="")
    for _ in range(source.skip_rows):
        buffer.readline()
    reader = csv.reader(buffer, delimiter=source.delimiter, strict=True)

    columns: list[str] = []
    items: list[QueueItem] = []
    try:
        for row in reader:
            if not row or all(not cell.strip() for cell in row):
                continue

            line_num = reader.line_num + source.skip_rows
            if not columns:
                if source.has_header:
                    columns = [name.strip() for name in row]
                    logger.info(f"📋 CSV header columns: {columns}")
                    continue
                columns = [str(i) for i in range(len(row))]

            if len(row) != len(columns):
                raise NormalizationError(
                    f"Invalid record length on line {line_num}: "
                    f"expected {len(columns)} fields, got {len(row)}"
                )
            items.append(QueueItem(index=len(items), fields=dict(zip(columns, row))))
    except csv.Error as e:
        raise NormalizationError(f"Malformed CSV on line {reader.line_num + source.skip_rows}: {e}") from e

    logger.info(f"✅ Parsed {len(items)} CSV records from {source.filename}")
    return NormalizedSource(items=items, columns=columns)


def _lift_vector(record: dict, position: int) -> Optional[list[float]]:
    for key in VECTOR_KEYS:
        if key not in record:
            continue
        value = record[key]
        if not isinstance(value, list) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in value
        ):
            raise NormalizationError(f"Record {position}: '{key}' must be a list of numbers")
        return [float(v) for v in value]
    return None


def normalize_json(source: JsonSource, attribute_columns: Optional[list[str]] = None) -> NormalizedSource:
    """
    Turn a JSON object or array of objects into queue items.

    An explicit ``vector``/``embedding`` field becomes the item's precomputed
    vector. When no attribute columns were configured, every other field that
    is not id/text-like is offered as a default attribute.

    Raises:
        NormalizationError: unparseable JSON or non-object records
    """
    data = source.content
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise NormalizationError(f"Invalid JSON in {source.filename}: {e}") from e

    if isinstance(data, dict):
        records = [data]
    elif isinstance(data, list):
        records = data
    else:
        raise NormalizationError("JSON source must be an object or an array of objects")

    columns: list[str] = []
    items: list[QueueItem] = []
    for position, record in enumerate(records):
        if not isinstance(record, dict):
            raise NormalizationError(f"Record {position} is not a JSON object")

        vector = _lift_vector(record, position)

        fields = {
            key: _stringify(value) for key, value in record.items() if key not in VECTOR_KEYS
        }
        for key in fields:
            if key not in columns:
                columns.append(key)
        items.append(QueueItem(index=position, fields=fields, precomputed_vector=vector))

    default_attributes = None
    if attribute_columns is None:
        default_attributes = [c for c in columns if c not in RESERVED_KEYS]

    logger.info(
        f"✅ Parsed {len(items)} JSON records from {source.filename} "
        f"({sum(1 for i in items if i.precomputed_vector)} with vectors)"
    )
    return NormalizedSource(
        items=items,
        columns=columns,
        default_attribute_columns=default_attributes,
    )


def normalize_images(source: ImageSource, attribute_columns: Optional[list[str]] = None) -> NormalizedSource:
    """
    Pair caller-computed image vectors with synthetic records.

    Each record carries ``image`` and ``index`` plus an empty value for every
    configured attribute column.

    Raises:
        NormalizationError: filenames do not line up with vectors
    """
    if source.filenames is not None and len(source.filenames) != len(source.vectors):
        raise NormalizationError(
            f"Got {len(source.filenames)} filenames for {len(source.vectors)} image vectors"
        )

    placeholders = {column: "" for column in attribute_columns or []}
    items = []
    for i, vector in enumerate(source.vectors):
        image = source.filenames[i] if source.filenames else f"image_{i}"
        fields = {**placeholders, "image": image, "index": str(i)}
        items.append(QueueItem(index=i, fields=fields, precomputed_vector=list(vector)))

    logger.info(f"✅ Prepared {len(items)} pre-embedded image records")
    return NormalizedSource(items=items, columns=["image", "index", *placeholders])


NORMALIZERS: dict[SourceKind, Callable[..., NormalizedSource]] = {
    SourceKind.CSV: normalize_csv,
    SourceKind.JSON: normalize_json,
    SourceKind.IMAGE: normalize_images,
}


def normalize(source, attribute_columns: Optional[list[str]] = None) -> NormalizedSource:
    """Dispatch ``source`` to the normalizer registered for its kind."""
    return NORMALIZERS[SourceKind(source.kind)](source, attribute_columns)
