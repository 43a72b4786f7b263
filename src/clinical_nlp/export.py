"""Export analysis results as pretty-printed JSON or fully quoted CSV.

CSV rows take their header from the first record's keys. Every field is
double-quoted with inner quotes doubled; nested values (dicts, lists) are
embedded as JSON text.
"""

import csv
import io
import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from clinical_nlp.models import BatchJob

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("json", "csv")


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    return obj


def to_json_text(obj: Any) -> str:
    return json.dumps(_jsonable(obj), indent=2, ensure_ascii=False, default=str)


def _flatten_value(value: Any) -> str:
    """Render one CSV cell. Nested values and JSON literals go through json.dumps."""
    value = _jsonable(value)
    if isinstance(value, (dict, list, bool)) or value is None:
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def to_csv_text(records: Sequence[Mapping[str, Any]]) -> str:
    """Serialize records to CSV text: one header line plus one line per record."""
    if not records:
        return ""

    headers = list(records[0].keys())
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for record in records:
        writer.writerow([_flatten_value(record.get(h)) for h in headers])
    return buf.getvalue().rstrip("\n")


def batch_rows(job: BatchJob) -> list[dict[str, Any]]:
    """One flat record per batch item, in submission order."""
    rows = []
    for item in job.items:
        rows.append({
            "filename": item.filename,
            "status": item.status.value,
            "entity_count": item.result.entity_count if item.result else None,
            "avg_confidence": item.result.avg_confidence if item.result else None,
            "entity_summary": item.entity_summary,
            "entities": item.result.entities if item.result else [],
            "error": item.error,
        })
    return rows


def export_json(obj: Any, output_path: Path) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(to_json_text(obj), encoding="utf-8")
    logger.info(f"JSON exported -> {output_path}")
    return output_path


def export_csv(records: Sequence[Mapping[str, Any]], output_path: Path) -> Path:
    if not records:
        raise ValueError("No records to export")
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(to_csv_text(records) + "\n", encoding="utf-8")
    logger.info(f"CSV exported: {len(records)} rows -> {output_path}")
    return output_path


def export_results(obj: Any, output_path: Path, fmt: str | None = None) -> Path:
    """Export by format name, or by the output file's extension when ``fmt`` is None.

    For CSV, a BatchJob becomes one row per item, a single model becomes one row.
    """
    output_path = Path(output_path)
    fmt = (fmt or output_path.suffix.lstrip(".") or "json").lower()
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported format: {fmt}. Supported: {', '.join(SUPPORTED_FORMATS)}")

    if fmt == "json":
        return export_json(obj, output_path)

    if isinstance(obj, BatchJob):
        records = batch_rows(obj)
    elif isinstance(obj, BaseModel):
        records = [obj.model_dump(mode="json")]
    elif isinstance(obj, Mapping):
        records = [obj]
    else:
        records = [_jsonable(r) for r in obj]
    return export_csv(records, output_path)
